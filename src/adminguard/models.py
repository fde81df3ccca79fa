"""Pydantic models for second-factor accounts and API payloads."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from adminguard.config import TwoFactorStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


# === Persistent records ===


class SecondFactorAccount(BaseModel):
    """One row of admin_2fa_settings. ``totp_secret`` is the decrypted base32 text."""

    user_id: str
    totp_secret: str | None = None
    is_provisioned: bool = False
    is_blocked: bool = False
    failed_attempts: int = Field(default=0, ge=0)
    last_failed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def status(self) -> TwoFactorStatus:
        if self.is_blocked:
            return TwoFactorStatus.BLOCKED
        if not self.is_provisioned:
            return TwoFactorStatus.PENDING
        return TwoFactorStatus.READY

    @property
    def can_verify(self) -> bool:
        return self.is_provisioned and bool(self.totp_secret)

    def summary(self) -> AccountSummary:
        return AccountSummary(
            user_id=self.user_id,
            status=self.status,
            is_provisioned=self.is_provisioned,
            is_blocked=self.is_blocked,
            failed_attempts=self.failed_attempts,
            last_failed_at=self.last_failed_at,
            created_at=self.created_at,
        )


class FailureOutcome(BaseModel):
    """Counter state right after a recorded failure."""

    failed_attempts: int
    is_blocked: bool


# === Identity ===


class Identity(BaseModel):
    user_id: str
    username: str | None = None
    email: str | None = None


# === API payloads ===


class VerifyResponse(BaseModel):
    success: bool = True


class AccountSummary(BaseModel):
    """Operator-facing view of an account. Never carries the secret."""

    user_id: str
    status: TwoFactorStatus
    is_provisioned: bool
    is_blocked: bool
    failed_attempts: int
    last_failed_at: datetime | None = None
    created_at: datetime | None = None


class GrantRequest(BaseModel):
    user_id: str


class ProvisionRequest(BaseModel):
    account_name: str | None = None
    force: bool = False


class ProvisioningResult(BaseModel):
    """Returned exactly once, at provisioning time."""

    user_id: str
    secret: str
    masked_secret: str
    otpauth_uri: str
    qr_code_png: str = ""
