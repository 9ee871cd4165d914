"""Data model for the VM Marketplace catalog.

Plain frozen dataclasses, serialised with :func:`dataclasses.asdict` at the
API boundary.  Field names follow Python conventions; :meth:`to_api`
returns the camelCase shape ARM and the JSON API use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from az_marketplace.errors import ValidationError


@dataclass(frozen=True)
class User:
    id: str
    tenant_id: str | None = None
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    display_name: str
    state: str
    tenant_id: str | None = None

    def to_api(self) -> dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "displayName": self.display_name,
            "state": self.state,
            "tenantId": self.tenant_id,
        }

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Subscription:
        return cls(
            subscription_id=data.get("subscriptionId", ""),
            display_name=data.get("displayName", ""),
            state=data.get("state", ""),
            tenant_id=data.get("tenantId"),
        )


@dataclass(frozen=True)
class AzureLocation:
    name: str
    display_name: str
    regional_display_name: str | None = None

    def to_api(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "regionalDisplayName": self.regional_display_name,
        }

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> AzureLocation:
        return cls(
            name=data.get("name", ""),
            display_name=data.get("displayName", ""),
            regional_display_name=data.get("regionalDisplayName"),
        )


@dataclass(frozen=True)
class Publisher:
    name: str
    display_name: str
    location: str

    def to_api(self) -> dict[str, Any]:
        return {"name": self.name, "displayName": self.display_name, "location": self.location}


@dataclass(frozen=True)
class Offer:
    name: str
    display_name: str
    publisher: str
    location: str

    def to_api(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "publisher": self.publisher,
            "location": self.location,
        }


@dataclass(frozen=True)
class Sku:
    """A SKU; ``versions`` stays empty until loaded on demand."""

    name: str
    display_name: str
    publisher: str
    offer: str
    location: str
    versions: tuple[str, ...] = field(default_factory=tuple)

    def to_api(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "publisher": self.publisher,
            "offer": self.offer,
            "location": self.location,
            "versions": list(self.versions),
        }


@dataclass(frozen=True)
class VMImageReference:
    publisher: str
    offer: str
    sku: str
    version: str


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _non_empty(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _require(obj: object, kind: str, fields: tuple[str, ...]) -> None:
    for name in fields:
        if not _non_empty(getattr(obj, name, None)):
            raise ValidationError(f"{kind} {name} must be a non-empty string", field=name)


def validate_subscription(sub: Subscription) -> Subscription:
    _require(sub, "Subscription", ("subscription_id", "display_name", "state"))
    return sub


def validate_publisher(pub: Publisher) -> Publisher:
    _require(pub, "Publisher", ("name", "display_name", "location"))
    return pub


def validate_offer(offer: Offer) -> Offer:
    _require(offer, "Offer", ("name", "display_name", "publisher", "location"))
    return offer


def validate_sku(sku: Sku) -> Sku:
    _require(sku, "SKU", ("name", "display_name", "publisher", "offer", "location"))
    if not all(isinstance(v, str) for v in sku.versions):
        raise ValidationError("SKU versions must be strings", field="versions")
    return sku


def validate_image_reference(ref: VMImageReference) -> VMImageReference:
    _require(ref, "Image reference", ("publisher", "offer", "sku", "version"))
    return ref


def validate_many(items: list, validator: Any, label: str) -> list:
    """Validate every item, reporting the index of the first bad one."""
    for index, item in enumerate(items):
        try:
            validator(item)
        except ValidationError as exc:
            raise ValidationError(
                f"Invalid {label} at index {index}: {exc.message}",
                field=f"{label}s[{index}].{exc.field or 'unknown'}",
            ) from exc
    return items
