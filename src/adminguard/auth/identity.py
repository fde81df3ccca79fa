"""Primary-session identity lookups against the hosted auth provider.

The provider issues the portal's login session. We only need two answers
from it: who a bearer token belongs to, and whether that user holds any
admin permission.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from adminguard.config import settings
from adminguard.errors import TransientError
from adminguard.models import Identity

logger = logging.getLogger(__name__)

USER_PATH = "/auth/v1/user"
ADMIN_PERMISSION_RPC = "/rest/v1/rpc/has_any_admin_permission"


class IdentityProvider(Protocol):
    async def resolve(self, token: str) -> Identity | None:
        """Identity for a bearer token, or None if the token is not valid."""
        ...

    async def has_admin_permission(self, user_id: str) -> bool: ...


class HostedIdentityProvider:
    """Identity provider reached over HTTP.

    ``transport`` lets tests substitute an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.identity_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.identity_api_key
        self.timeout = timeout or settings.identity_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def resolve(self, token: str) -> Identity | None:
        try:
            async with self._client() as client:
                resp = await client.get(
                    USER_PATH,
                    headers={"Authorization": f"Bearer {token}", "apikey": self.api_key},
                )
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable: %s", e)
            raise TransientError() from e

        if resp.status_code in (401, 403):
            return None
        if resp.status_code >= 400:
            logger.error("Identity provider returned HTTP %d", resp.status_code)
            raise TransientError()

        data = resp.json()
        user_id = data.get("id")
        if not user_id:
            return None
        metadata = data.get("user_metadata") or {}
        return Identity(
            user_id=str(user_id),
            username=metadata.get("username") or metadata.get("full_name"),
            email=data.get("email"),
        )

    async def has_admin_permission(self, user_id: str) -> bool:
        try:
            async with self._client() as client:
                resp = await client.post(
                    ADMIN_PERMISSION_RPC,
                    headers={"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key},
                    json={"_user_id": user_id},
                )
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Admin permission check failed for %s: %s", user_id, e)
            raise TransientError() from e
        return resp.json() is True
