"""Shared fixtures: a fixed clock, a fake identity provider and a memory store."""

from __future__ import annotations

import pytest
from helpers import SECRET, TOKEN, USER_ID, FakeClock, FakeIdentity

from adminguard.models import Identity, SecondFactorAccount
from adminguard.store import MemorySecondFactorStore


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity(
        users={TOKEN: Identity(user_id=USER_ID, username="alice"),
               "token-root": Identity(user_id="root", username="root")},
        admins={"root"},
    )


@pytest.fixture
def store() -> MemorySecondFactorStore:
    return MemorySecondFactorStore([
        SecondFactorAccount(user_id=USER_ID, totp_secret=SECRET, is_provisioned=True),
    ])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
