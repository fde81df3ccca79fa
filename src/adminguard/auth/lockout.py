"""Lockout state machine for second-factor accounts.

unprovisioned -> provisioned-active -> blocked, with an attempt counter in
[0, BLOCK_THRESHOLD) while active. A block only ends through an operator
unblock; there is no time-based decay.

These are pure transitions returning updated copies. The Postgres store runs
the same transitions as conditional UPDATE statements.
"""

from __future__ import annotations

from datetime import UTC, datetime

from adminguard.config import BLOCK_THRESHOLD
from adminguard.models import SecondFactorAccount


def remaining_attempts(failed_attempts: int) -> int:
    return max(BLOCK_THRESHOLD - failed_attempts, 0)


def provision(account: SecondFactorAccount, secret: str, *, now: datetime | None = None) -> SecondFactorAccount:
    # Block and attempt state are left as they are.
    return account.model_copy(update={
        "totp_secret": secret,
        "is_provisioned": True,
        "updated_at": now or datetime.now(UTC),
    })


def record_success(account: SecondFactorAccount, *, now: datetime | None = None) -> SecondFactorAccount:
    if account.is_blocked:
        raise ValueError(f"Cannot record success on blocked account {account.user_id}")
    return account.model_copy(update={
        "failed_attempts": 0,
        "last_failed_at": None,
        "updated_at": now or datetime.now(UTC),
    })


def record_failure(account: SecondFactorAccount, *, now: datetime | None = None) -> SecondFactorAccount:
    now = now or datetime.now(UTC)
    attempts = account.failed_attempts + 1
    return account.model_copy(update={
        "failed_attempts": attempts,
        "last_failed_at": now,
        "is_blocked": account.is_blocked or attempts >= BLOCK_THRESHOLD,
        "updated_at": now,
    })


def unblock(account: SecondFactorAccount, *, now: datetime | None = None) -> SecondFactorAccount:
    return account.model_copy(update={
        "is_blocked": False,
        "failed_attempts": 0,
        "last_failed_at": None,
        "updated_at": now or datetime.now(UTC),
    })
