"""HTTP client for the verification endpoint, used by the lock screen.

Every failure path returns an unsuccessful VerifyResult; nothing here can
turn an error into a success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

VERIFY_PATH = "/api/2fa/verify"
FALLBACK_ERROR = "Verification failed"


@dataclass
class VerifyResult:
    success: bool
    error: str | None = None
    remaining_attempts: int | None = None
    blocked: bool = False


class VerificationClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def verify(self, code: str, token: str) -> VerifyResult:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport,
            ) as client:
                resp = await client.post(
                    VERIFY_PATH,
                    headers={"Authorization": f"Bearer {token}"},
                    json={"code": code},
                )
            data = resp.json()
        except (httpx.HTTPError, ValueError):
            logger.warning("Verification request failed", exc_info=True)
            return VerifyResult(success=False, error=FALLBACK_ERROR)

        if not isinstance(data, dict):
            return VerifyResult(success=False, error=FALLBACK_ERROR)
        if resp.status_code == 200 and data.get("success") is True:
            return VerifyResult(success=True)

        remaining = data.get("remaining_attempts")
        return VerifyResult(
            success=False,
            error=data.get("error") or FALLBACK_ERROR,
            remaining_attempts=remaining if isinstance(remaining, int) else None,
            blocked=data.get("blocked") is True,
        )
