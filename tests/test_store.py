"""Tests for the Postgres store's queries, with the database calls stubbed out."""

from __future__ import annotations

import asyncio
import base64
import os
from datetime import UTC, datetime

import pytest

from adminguard import crypto
from adminguard.config import BLOCK_THRESHOLD, Settings
from adminguard.errors import ConflictError
from adminguard.store import PostgresSecondFactorStore


class RecordingDB:
    """Stands in for db.fetch_all/db.fetch_one and remembers each call."""

    def __init__(self, result=None) -> None:
        self.result = result
        self.calls: list[tuple[str, tuple]] = []

    async def fetch_one(self, query, params=None):
        self.calls.append((" ".join(query.split()), params))
        return self.result

    async def fetch_all(self, query, params=None):
        self.calls.append((" ".join(query.split()), params))
        return self.result or []


@pytest.fixture(autouse=True)
def master_key(monkeypatch):
    key = base64.b64encode(os.urandom(32)).decode()
    monkeypatch.setattr("adminguard.crypto.settings", Settings(_env_file=None, adminguard_master_key=key))


def _install(monkeypatch, result=None) -> RecordingDB:
    db = RecordingDB(result)
    monkeypatch.setattr("adminguard.store.fetch_one", db.fetch_one)
    monkeypatch.setattr("adminguard.store.fetch_all", db.fetch_all)
    return db


def _row(**kw) -> dict:
    now = datetime.now(UTC)
    row = {
        "user_id": "alice", "totp_secret": None, "is_provisioned": False, "is_blocked": False,
        "failed_attempts": 0, "last_failed_at": None, "created_at": now, "updated_at": now,
    }
    row.update(kw)
    return row


def test_set_secret_encrypts(monkeypatch):
    db = _install(monkeypatch)
    asyncio.run(PostgresSecondFactorStore().set_secret("alice", "JBSWY3DPEHPK3PXP"))
    _, params = db.calls[0]
    assert params[0] != "JBSWY3DPEHPK3PXP"
    assert crypto.decrypt_secret(params[0]) == "JBSWY3DPEHPK3PXP"
    assert params[1] == "alice"


def test_get_decrypts(monkeypatch):
    _install(monkeypatch, _row(totp_secret=crypto.encrypt_secret("JBSWY3DPEHPK3PXP"), is_provisioned=True))
    account = asyncio.run(PostgresSecondFactorStore().get("alice"))
    assert account.totp_secret == "JBSWY3DPEHPK3PXP"
    assert account.can_verify


def test_get_missing(monkeypatch):
    _install(monkeypatch)
    assert asyncio.run(PostgresSecondFactorStore().get("ghost")) is None


def test_record_failure_is_one_conditional_update(monkeypatch):
    db = _install(monkeypatch, {"failed_attempts": 5, "is_blocked": True})
    outcome = asyncio.run(PostgresSecondFactorStore().record_failure("alice"))
    assert outcome.failed_attempts == 5
    assert outcome.is_blocked
    [(query, params)] = db.calls
    assert query.startswith("UPDATE admin_2fa_settings")
    assert "AND NOT is_blocked" in query
    assert params == (BLOCK_THRESHOLD, "alice")


def test_record_failure_on_blocked_account(monkeypatch):
    _install(monkeypatch, None)
    assert asyncio.run(PostgresSecondFactorStore().record_failure("alice")) is None


def test_record_success_skips_blocked(monkeypatch):
    db = _install(monkeypatch, None)
    assert asyncio.run(PostgresSecondFactorStore().record_success("alice")) is False
    assert "AND NOT is_blocked" in db.calls[0][0]


def test_create_conflict(monkeypatch):
    _install(monkeypatch, None)
    with pytest.raises(ConflictError):
        asyncio.run(PostgresSecondFactorStore().create("alice"))


def test_list_never_selects_secret(monkeypatch):
    db = _install(monkeypatch, [_row(), _row(user_id="bob")])
    accounts = asyncio.run(PostgresSecondFactorStore().list_accounts())
    assert [a.user_id for a in accounts] == ["alice", "bob"]
    assert "NULL AS totp_secret" in db.calls[0][0]
