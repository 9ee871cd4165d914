"""Infrastructure-as-code snippets for a VM image reference.

The output is pasted straight into users' templates, so every rendering
is byte-stable: fixed key order, fixed indentation, no trailing newline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from az_marketplace.models import VMImageReference, validate_image_reference

AVAILABLE_FORMATS: dict[str, str] = {
    "arm": "ARM Template",
    "terraform": "Terraform",
    "bicep": "Bicep",
    "ansible": "Ansible",
}


@dataclass(frozen=True)
class IaCFormats:
    arm: str
    terraform: str
    bicep: str
    ansible: str


def arm_template(ref: VMImageReference) -> str:
    return json.dumps(
        {
            "imageReference": {
                "publisher": ref.publisher,
                "offer": ref.offer,
                "sku": ref.sku,
                "version": ref.version,
            }
        },
        indent=2,
        ensure_ascii=False,
    )


def terraform_template(ref: VMImageReference) -> str:
    return (
        "source_image_reference {\n"
        f'  publisher = "{ref.publisher}"\n'
        f'  offer     = "{ref.offer}"\n'
        f'  sku       = "{ref.sku}"\n'
        f'  version   = "{ref.version}"\n'
        "}"
    )


def bicep_template(ref: VMImageReference) -> str:
    return (
        "imageReference: {\n"
        f"  publisher: '{ref.publisher}'\n"
        f"  offer: '{ref.offer}'\n"
        f"  sku: '{ref.sku}'\n"
        f"  version: '{ref.version}'\n"
        "}"
    )


def ansible_template(ref: VMImageReference) -> str:
    return (
        "image:\n"
        f'  publisher: "{ref.publisher}"\n'
        f'  offer: "{ref.offer}"\n'
        f'  sku: "{ref.sku}"\n'
        f'  version: "{ref.version}"'
    )


_RENDERERS = {
    "arm": arm_template,
    "terraform": terraform_template,
    "bicep": bicep_template,
    "ansible": ansible_template,
}


def generate_all_formats(ref: VMImageReference) -> IaCFormats:
    """Render *ref* in every supported format.

    Raises :class:`~az_marketplace.errors.ValidationError` when a field is
    missing or blank.
    """
    validate_image_reference(ref)
    return IaCFormats(
        arm=arm_template(ref),
        terraform=terraform_template(ref),
        bicep=bicep_template(ref),
        ansible=ansible_template(ref),
    )


def render(ref: VMImageReference, fmt: str) -> str:
    """Render *ref* in one format (a key of :data:`AVAILABLE_FORMATS`)."""
    try:
        renderer = _RENDERERS[fmt]
    except KeyError:
        raise ValueError(
            f"Unknown format {fmt!r}; expected one of {', '.join(AVAILABLE_FORMATS)}"
        ) from None
    validate_image_reference(ref)
    return renderer(ref)
