"""Test doubles and constants shared across test modules."""

from __future__ import annotations

from adminguard.auth.totp import get_code, time_counter
from adminguard.models import Identity

SECRET = "JBSWY3DPEHPK3PXP"
NOW = 1_700_000_000.0
TOKEN = "token-alice"
USER_ID = "alice"


class FakeIdentity:
    def __init__(self, users: dict[str, Identity] | None = None, admins: set[str] | None = None) -> None:
        self.users = users or {}
        self.admins = admins or set()
        self.resolve_calls = 0

    async def resolve(self, token: str) -> Identity | None:
        self.resolve_calls += 1
        return self.users.get(token)

    async def has_admin_permission(self, user_id: str) -> bool:
        return user_id in self.admins


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def wrong_code(secret: str = SECRET, now: float = NOW) -> str:
    """A six-digit code that matches no step within +-2 of ``now``."""
    counter = time_counter(now)
    taken = {get_code(secret, (counter + off) * 30) for off in range(-2, 3)}
    return next(f"{i:06d}" for i in range(1_000_000) if f"{i:06d}" not in taken)
