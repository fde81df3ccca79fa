"""Second-factor verification and admin access management.

VerificationService is the single authority deciding whether a submitted
code elevates a session. Check order matters:

    credential present -> code shape -> identity -> account exists
    -> not blocked -> provisioned -> verify + atomic counter update

Blocked accounts short-circuit before the code is evaluated, and malformed
codes are rejected before any lookup so they never touch the counter.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from adminguard import db, events
from adminguard.auth import lockout
from adminguard.auth.identity import IdentityProvider
from adminguard.auth.totp import (
    generate_secret,
    is_code_format,
    mask_secret,
    provisioning_uri,
    qr_code_png,
    verify_code,
)
from adminguard.config import TOTP_WINDOW, Severity, settings
from adminguard.errors import (
    AccountNotFoundError,
    AdminGuardError,
    AuthenticationError,
    BlockedError,
    ConflictError,
    IncorrectCodeError,
    NotProvisionedError,
    PermissionDeniedError,
    TransientError,
    ValidationError,
)
from adminguard.models import AccountSummary, Identity, ProvisioningResult, VerifyResponse
from adminguard.store import SecondFactorStore

logger = logging.getLogger(__name__)

BLOCKED_NOW_MESSAGE = "Too many failed attempts. Your account is blocked. Contact an administrator."


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an Authorization header value."""
    if not authorization:
        raise AuthenticationError()
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError()
    return token


def validate_code(code: Any) -> str:
    if not is_code_format(code):
        raise ValidationError()
    return code


class VerificationService:
    def __init__(
        self,
        store: SecondFactorStore,
        identity: IdentityProvider,
        *,
        clock: Callable[[], float] = time.time,
        window: int = TOTP_WINDOW,
    ) -> None:
        self.store = store
        self.identity = identity
        self.clock = clock
        self.window = window

    async def verify(self, authorization: str | None, code: Any) -> VerifyResponse:
        """Verify a code for the caller. Raises an AdminGuardError on any failure."""
        token = bearer_token(authorization)
        code = validate_code(code)
        try:
            return await self._verify(token, code)
        except AdminGuardError:
            raise
        except Exception as e:
            logger.error("TOTP verification error: %s", e, exc_info=True)
            raise TransientError() from e

    async def _verify(self, token: str, code: str) -> VerifyResponse:
        identity = await self.identity.resolve(token)
        if identity is None:
            raise AuthenticationError("Invalid session")
        user_id = identity.user_id
        logger.info("TOTP verification attempt for user %s", user_id)

        account = await self.store.get(user_id)
        if account is None:
            raise AccountNotFoundError()
        if account.is_blocked:
            raise BlockedError()
        if not account.can_verify:
            raise NotProvisionedError()

        if verify_code(account.totp_secret or "", code, self.window, now=self.clock()):
            if not await self.store.record_success(user_id):
                # Blocked by a concurrent failure between load and reset.
                raise BlockedError()
            await events.emit(Severity.INFO, "verify_success", "TOTP verification succeeded", user_id=user_id)
            return VerifyResponse()

        outcome = await self.store.record_failure(user_id)
        if outcome is None:
            raise BlockedError()
        if outcome.is_blocked:
            await events.emit(
                Severity.WARNING, "account_blocked",
                f"Blocked after {outcome.failed_attempts} failed attempts",
                user_id=user_id, context={"failed_attempts": outcome.failed_attempts},
            )
            raise BlockedError(BLOCKED_NOW_MESSAGE, blocked_now=True)

        remaining = lockout.remaining_attempts(outcome.failed_attempts)
        await events.emit(
            Severity.INFO, "verify_failure", "TOTP verification failed",
            user_id=user_id, context={"failed_attempts": outcome.failed_attempts},
        )
        raise IncorrectCodeError(remaining)


class AccessManager:
    """Operator actions: grant, provision, unblock and revoke admin 2FA records."""

    def __init__(
        self,
        store: SecondFactorStore,
        identity: IdentityProvider,
        *,
        issuer: str | None = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.issuer = issuer or settings.totp_issuer

    async def authorize(self, authorization: str | None) -> Identity:
        """Resolve the caller and require an admin permission."""
        token = bearer_token(authorization)
        identity = await self.identity.resolve(token)
        if identity is None:
            raise AuthenticationError("Invalid session")
        if not await self.identity.has_admin_permission(identity.user_id):
            logger.warning("Operator action denied for user %s", identity.user_id)
            raise PermissionDeniedError()
        return identity

    async def list_accounts(self) -> list[AccountSummary]:
        return [a.summary() for a in await self.store.list_accounts()]

    async def grant(self, user_id: str, *, actor: str | None = None) -> AccountSummary:
        account = await self.store.create(user_id)
        await events.emit(Severity.INFO, "access_granted", "Added to admin two-factor list",
                          user_id=user_id, context={"actor": actor})
        return account.summary()

    async def provision(
        self,
        user_id: str,
        *,
        account_name: str | None = None,
        force: bool = False,
        actor: str | None = None,
    ) -> ProvisioningResult:
        account = await self.store.get(user_id)
        if account is None:
            raise AccountNotFoundError()
        if account.is_provisioned and not force:
            raise ConflictError("Two-factor is already provisioned for this user")
        if account.is_provisioned and (account.is_blocked or account.failed_attempts):
            # Re-provisioning keeps the lockout state; operators unblock explicitly.
            logger.warning(
                "Re-provisioning %s with failed_attempts=%d blocked=%s",
                user_id, account.failed_attempts, account.is_blocked,
            )
            await events.emit(
                Severity.WARNING, "reprovision_with_lockout_state",
                "Secret replaced while failure state remains",
                user_id=user_id,
                context={"failed_attempts": account.failed_attempts, "is_blocked": account.is_blocked},
            )

        secret = generate_secret()
        if await self.store.set_secret(user_id, secret) is None:
            raise AccountNotFoundError()
        await events.emit(Severity.INFO, "provisioned", "TOTP secret provisioned",
                          user_id=user_id, context={"actor": actor, "reprovision": account.is_provisioned})
        uri = provisioning_uri(secret, account_name or "Admin", self.issuer)
        return ProvisioningResult(
            user_id=user_id,
            secret=secret,
            masked_secret=mask_secret(secret),
            otpauth_uri=uri,
            qr_code_png=qr_code_png(uri),
        )

    async def unblock(self, user_id: str, *, actor: str | None = None) -> AccountSummary:
        account = await self.store.unblock(user_id)
        if account is None:
            raise AccountNotFoundError()
        await events.emit(Severity.INFO, "unblocked", "Account unblocked by operator",
                          user_id=user_id, context={"actor": actor})
        return account.summary()

    async def revoke(self, user_id: str, *, actor: str | None = None) -> None:
        if not await self.store.delete(user_id):
            raise AccountNotFoundError()
        await events.emit(Severity.INFO, "access_revoked", "Removed from admin two-factor list",
                          user_id=user_id, context={"actor": actor})

    async def recent_events(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        if not db.pool_is_open():
            return []
        return await events.get_events(user_id=user_id, limit=limit)
