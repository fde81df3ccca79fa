"""Persistence for second-factor accounts.

Two backends share one async interface:

- PostgresSecondFactorStore: admin_2fa_settings via the psycopg pool. Counter
  changes are single conditional UPDATE ... RETURNING statements, so two
  concurrent submissions for one user can never both read the same
  pre-increment value. Secrets are encrypted at rest.
- MemorySecondFactorStore: process-local dict guarded by an asyncio.Lock,
  used by tests and local development.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from adminguard import crypto
from adminguard.auth import lockout
from adminguard.config import BLOCK_THRESHOLD
from adminguard.db import fetch_all, fetch_one
from adminguard.errors import ConflictError
from adminguard.models import FailureOutcome, SecondFactorAccount


class SecondFactorStore(Protocol):
    async def get(self, user_id: str) -> SecondFactorAccount | None: ...

    async def list_accounts(self) -> list[SecondFactorAccount]: ...

    async def create(self, user_id: str) -> SecondFactorAccount: ...

    async def set_secret(self, user_id: str, secret: str) -> SecondFactorAccount | None: ...

    async def record_success(self, user_id: str) -> bool:
        """Reset the counter. False if the account is missing or blocked."""
        ...

    async def record_failure(self, user_id: str) -> FailureOutcome | None:
        """Count a failure, blocking at the threshold. None if missing or already blocked."""
        ...

    async def unblock(self, user_id: str) -> SecondFactorAccount | None: ...

    async def delete(self, user_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class MemorySecondFactorStore:
    def __init__(self, accounts: list[SecondFactorAccount] | None = None) -> None:
        self._accounts: dict[str, SecondFactorAccount] = {a.user_id: a for a in accounts or []}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> SecondFactorAccount | None:
        return self._accounts.get(user_id)

    async def list_accounts(self) -> list[SecondFactorAccount]:
        return sorted(self._accounts.values(), key=lambda a: a.created_at, reverse=True)

    async def create(self, user_id: str) -> SecondFactorAccount:
        async with self._lock:
            if user_id in self._accounts:
                raise ConflictError(f"User {user_id} already has a two-factor record")
            account = SecondFactorAccount(user_id=user_id)
            self._accounts[user_id] = account
            return account

    async def set_secret(self, user_id: str, secret: str) -> SecondFactorAccount | None:
        async with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                return None
            account = self._accounts[user_id] = lockout.provision(account, secret)
            return account

    async def record_success(self, user_id: str) -> bool:
        async with self._lock:
            account = self._accounts.get(user_id)
            if account is None or account.is_blocked:
                return False
            self._accounts[user_id] = lockout.record_success(account)
            return True

    async def record_failure(self, user_id: str) -> FailureOutcome | None:
        async with self._lock:
            account = self._accounts.get(user_id)
            if account is None or account.is_blocked:
                return None
            account = self._accounts[user_id] = lockout.record_failure(account)
            return FailureOutcome(failed_attempts=account.failed_attempts, is_blocked=account.is_blocked)

    async def unblock(self, user_id: str) -> SecondFactorAccount | None:
        async with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                return None
            account = self._accounts[user_id] = lockout.unblock(account)
            return account

    async def delete(self, user_id: str) -> bool:
        async with self._lock:
            return self._accounts.pop(user_id, None) is not None


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

_COLUMNS = """user_id, totp_secret, is_provisioned, is_blocked, failed_attempts,
              last_failed_at, created_at, updated_at"""


def _row_to_account(row: dict[str, Any]) -> SecondFactorAccount:
    data = dict(row)
    if data.get("totp_secret"):
        data["totp_secret"] = crypto.decrypt_secret(data["totp_secret"])
    return SecondFactorAccount(**data)


class PostgresSecondFactorStore:
    async def get(self, user_id: str) -> SecondFactorAccount | None:
        row = await fetch_one(
            f"SELECT {_COLUMNS} FROM admin_2fa_settings WHERE user_id = %s",
            (user_id,),
        )
        return _row_to_account(row) if row else None

    async def list_accounts(self) -> list[SecondFactorAccount]:
        # Secrets are not needed for listing; skip decryption entirely.
        rows = await fetch_all(
            """SELECT user_id, NULL AS totp_secret, is_provisioned, is_blocked,
                      failed_attempts, last_failed_at, created_at, updated_at
               FROM admin_2fa_settings
               ORDER BY created_at DESC"""
        )
        return [_row_to_account(r) for r in rows]

    async def create(self, user_id: str) -> SecondFactorAccount:
        row = await fetch_one(
            f"""INSERT INTO admin_2fa_settings (user_id, is_provisioned, is_blocked, failed_attempts)
                VALUES (%s, FALSE, FALSE, 0)
                ON CONFLICT (user_id) DO NOTHING
                RETURNING {_COLUMNS}""",
            (user_id,),
        )
        if row is None:
            raise ConflictError(f"User {user_id} already has a two-factor record")
        return _row_to_account(row)

    async def set_secret(self, user_id: str, secret: str) -> SecondFactorAccount | None:
        row = await fetch_one(
            f"""UPDATE admin_2fa_settings
                SET totp_secret = %s, is_provisioned = TRUE, updated_at = now()
                WHERE user_id = %s
                RETURNING {_COLUMNS}""",
            (crypto.encrypt_secret(secret), user_id),
        )
        return _row_to_account(row) if row else None

    async def record_success(self, user_id: str) -> bool:
        row = await fetch_one(
            """UPDATE admin_2fa_settings
               SET failed_attempts = 0, last_failed_at = NULL, updated_at = now()
               WHERE user_id = %s AND NOT is_blocked
               RETURNING user_id""",
            (user_id,),
        )
        return row is not None

    async def record_failure(self, user_id: str) -> FailureOutcome | None:
        # SET expressions see the pre-update row, so both columns use the old count.
        row = await fetch_one(
            """UPDATE admin_2fa_settings
               SET failed_attempts = failed_attempts + 1,
                   last_failed_at = now(),
                   is_blocked = (failed_attempts + 1 >= %s),
                   updated_at = now()
               WHERE user_id = %s AND NOT is_blocked
               RETURNING failed_attempts, is_blocked""",
            (BLOCK_THRESHOLD, user_id),
        )
        return FailureOutcome(**row) if row else None

    async def unblock(self, user_id: str) -> SecondFactorAccount | None:
        row = await fetch_one(
            f"""UPDATE admin_2fa_settings
                SET is_blocked = FALSE, failed_attempts = 0, last_failed_at = NULL,
                    updated_at = now()
                WHERE user_id = %s
                RETURNING {_COLUMNS}""",
            (user_id,),
        )
        return _row_to_account(row) if row else None

    async def delete(self, user_id: str) -> bool:
        rows = await fetch_all(
            "DELETE FROM admin_2fa_settings WHERE user_id = %s RETURNING user_id",
            (user_id,),
        )
        return bool(rows)
