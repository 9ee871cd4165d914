"""Token acquisition for Azure Resource Manager calls.

Two providers satisfy the :class:`TokenProvider` protocol:

* :class:`IdentityTokenProvider` – signed-in user flow: silent acquisition
  first, interactive (browser) fallback, scoped to a tenant authority.
* :class:`CredentialTokenProvider` – non-interactive
  ``DefaultAzureCredential`` (``az login``, managed identity, env vars).
"""

from __future__ import annotations

import base64
import json
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlsplit

from azure.core.credentials import TokenCredential
from azure.identity import AuthenticationRecord, InteractiveBrowserCredential

from az_marketplace.errors import AuthenticationError
from az_marketplace.models import User

logger = logging.getLogger(__name__)

AZURE_MGMT_URL = "https://management.azure.com"
ARM_DEFAULT_SCOPE = f"{AZURE_MGMT_URL}/.default"
ARM_USER_SCOPE = f"{AZURE_MGMT_URL}/user_impersonation"

LOGIN_AUTHORITY_HOST = "https://login.microsoftonline.com"
MULTI_TENANT_AUTHORITY = f"{LOGIN_AUTHORITY_HOST}/common"


def authority_for(tenant_id: str | None) -> str:
    """Return the tenant-specific authority, or the multi-tenant one."""
    if tenant_id:
        return f"{LOGIN_AUTHORITY_HOST}/{tenant_id}"
    return MULTI_TENANT_AUTHORITY


def authority_host(authority: str) -> str:
    """Return the scheme and host of *authority* without its tenant segment."""
    parts = urlsplit(authority)
    if not parts.netloc:
        return authority
    return f"{parts.scheme}://{parts.netloc}"


@runtime_checkable
class TokenProvider(Protocol):
    """Anything that can hand out an ARM bearer token."""

    def get_access_token(self) -> str: ...


@dataclass(frozen=True)
class TokenRequest:
    scopes: tuple[str, ...]
    account: Any
    authority: str
    tenant_id: str | None = None
    force_refresh: bool = False


class IdentityClient(Protocol):
    """Identity SDK boundary: silent and interactive token acquisition."""

    def acquire_token_silent(self, request: TokenRequest) -> str: ...
    def acquire_token_interactive(self, request: TokenRequest) -> str: ...


class IdentityTokenProvider:
    """Token provider bound to one signed-in account and optional tenant.

    The tenant matters when the selected subscription lives in a tenant
    other than the one the user signed in to (guest or Lighthouse access).
    """

    def __init__(
        self,
        identity_client: IdentityClient,
        account: Any,
        tenant_id: str | None = None,
        scopes: Sequence[str] = (ARM_USER_SCOPE,),
    ) -> None:
        self.identity_client = identity_client
        self.account = account
        self.tenant_id = tenant_id
        self.scopes = tuple(scopes)

    @property
    def authority(self) -> str:
        return authority_for(self.tenant_id)

    def _request(self, force_refresh: bool = False) -> TokenRequest:
        return TokenRequest(
            scopes=self.scopes,
            account=self.account,
            authority=self.authority,
            tenant_id=self.tenant_id,
            force_refresh=force_refresh,
        )

    def get_access_token(self, force_refresh: bool = False) -> str:
        """Return an ARM token, prompting only when silent acquisition fails.

        *force_refresh* bypasses cached tokens and goes straight to the
        interactive flow.
        """
        if self.account is None:
            raise AuthenticationError("No authenticated account available")

        request = self._request(force_refresh)
        if request.force_refresh:
            logger.info("Forced token refresh for %s", request.authority)
        else:
            try:
                return self.identity_client.acquire_token_silent(request)
            except Exception as silent_exc:
                logger.info(
                    "Silent token acquisition failed for %s (%s), falling back to interactive",
                    request.authority,
                    silent_exc,
                )

        try:
            return self.identity_client.acquire_token_interactive(request)
        except Exception as exc:
            raise AuthenticationError(
                f"Failed to acquire access token: {exc}", original_error=exc
            ) from exc


class BrowserIdentityClient:
    """``azure-identity`` implementation of :class:`IdentityClient`.

    The account is the :class:`~azure.identity.AuthenticationRecord`
    returned by :meth:`sign_in`.  One credential is kept per account: tokens
    live in that credential's in-memory cache, so silent acquisition has to
    reuse the credential that signed the user in.
    """

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self._credentials: dict[str, InteractiveBrowserCredential] = {}
        self._lock = threading.Lock()

    def _credential(self, authority: str, **kwargs: Any) -> InteractiveBrowserCredential:
        return InteractiveBrowserCredential(
            client_id=self.client_id,
            authority=authority_host(authority),
            additionally_allowed_tenants=["*"],
            **kwargs,
        )

    def sign_in(self, tenant_id: str | None = None) -> AuthenticationRecord:
        """Run the browser sign-in and return the account record."""
        credential = self._credential(
            authority_for(tenant_id),
            tenant_id=tenant_id or "organizations",
            disable_automatic_authentication=True,
        )
        record = credential.authenticate(scopes=[ARM_USER_SCOPE])
        with self._lock:
            self._credentials[record.home_account_id] = credential
        return record

    def acquire_token_silent(self, request: TokenRequest) -> str:
        record: AuthenticationRecord = request.account
        with self._lock:
            credential = self._credentials.get(record.home_account_id)
            if credential is None:
                credential = self._credential(
                    request.authority,
                    tenant_id=record.tenant_id,
                    authentication_record=record,
                    disable_automatic_authentication=True,
                )
                self._credentials[record.home_account_id] = credential
        return credential.get_token(*request.scopes, tenant_id=request.tenant_id).token

    def acquire_token_interactive(self, request: TokenRequest) -> str:
        record: AuthenticationRecord = request.account
        credential = self._credential(
            request.authority,
            tenant_id=request.tenant_id or record.tenant_id,
            login_hint=record.username,
        )
        return credential.get_token(*request.scopes).token

class CredentialTokenProvider:
    """Token provider backed by any ``azure-core`` ``TokenCredential``.

    When *tenant_id* is provided the token is scoped to that tenant.
    """

    def __init__(self, credential: TokenCredential, tenant_id: str | None = None) -> None:
        self.credential = credential
        self.tenant_id = tenant_id

    def get_access_token(self) -> str:
        kwargs: dict[str, str] = {}
        if self.tenant_id:
            kwargs["tenant_id"] = self.tenant_id
        try:
            return self.credential.get_token(ARM_DEFAULT_SCOPE, **kwargs).token
        except Exception as exc:
            raise AuthenticationError(
                f"Failed to acquire access token: {exc}", original_error=exc
            ) from exc


def _token_claims(token: str) -> dict[str, Any]:
    """Decode the (unverified) JWT payload of *token*."""
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError) as exc:
        raise AuthenticationError("Access token is not a JWT", original_error=exc) from exc
    if not isinstance(claims, dict):
        raise AuthenticationError("Access token payload is not an object")
    return claims


def user_from_token(token: str) -> User:
    """Build the signed-in :class:`User` from an ARM access token's claims."""
    claims = _token_claims(token)
    user_id = claims.get("oid") or claims.get("sub")
    if not user_id:
        raise AuthenticationError("Access token carries no user identifier")
    return User(
        id=str(user_id),
        tenant_id=claims.get("tid") or claims.get("tenant_id"),
        name=claims.get("name"),
        email=claims.get("preferred_username") or claims.get("upn"),
    )
