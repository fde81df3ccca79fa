"""Tests for the client-side route guard and idle-timeout session."""

from __future__ import annotations

import asyncio
import contextlib

import httpx
import pytest
from helpers import NOW

from adminguard.client.api import VerificationClient
from adminguard.client.session import (
    GuardContext,
    GuardStatus,
    MemorySessionStorage,
    SessionGuard,
    evaluate_guard,
    is_protected,
)
from adminguard.config import LOCK_SCREEN_PATH, SESSION_EXPIRY_KEY, SESSION_USER_KEY
from adminguard.models import SecondFactorAccount


@pytest.fixture
def navigations() -> list:
    return []


@pytest.fixture
def guard(clock, navigations) -> SessionGuard:
    g = SessionGuard(
        MemorySessionStorage(),
        navigate=lambda path, from_path: navigations.append((path, from_path)),
        clock=clock,
    )
    g.set_user("alice")
    return g


def _elevated(guard: SessionGuard, path: str = "/admin/dashboard") -> SessionGuard:
    guard.establish("alice")
    guard.enter(path)
    return guard


def _ready_account(**kw) -> SecondFactorAccount:
    return SecondFactorAccount(user_id="alice", totp_secret="JBSWY3DPEHPK3PXP", is_provisioned=True, **kw)


# --- stored marker ---

def test_session_expires_after_idle_timeout(guard, clock):
    _elevated(guard)
    clock.now = NOW + 599
    assert guard.is_elevated
    clock.now = NOW + 601
    assert not guard.is_elevated


def test_activity_extends_session(guard, clock):
    _elevated(guard)
    clock.now = NOW + 300
    assert guard.record_activity()
    clock.now = NOW + 650
    assert guard.is_elevated
    assert float(guard.storage.get(SESSION_EXPIRY_KEY)) == NOW + 900


def test_activity_outside_protected_area_does_not_extend(guard, clock):
    _elevated(guard, path="/profile")
    clock.now = NOW + 300
    assert not guard.record_activity()
    clock.now = NOW + 650
    assert not guard.is_elevated


def test_activity_without_session_does_nothing(guard):
    guard.enter("/admin/dashboard")
    assert not guard.record_activity()
    assert guard.storage.get(SESSION_USER_KEY) is None


def test_session_of_other_user_is_ignored(guard, clock):
    guard.storage.set(SESSION_USER_KEY, "bob")
    guard.storage.set(SESSION_EXPIRY_KEY, repr(NOW + 600))
    assert guard.read_session() is None


@pytest.mark.parametrize("raw", ["soon", "", "nan", "inf"])
def test_unparseable_expiry_is_not_elevated(guard, raw):
    guard.storage.set(SESSION_USER_KEY, "alice")
    guard.storage.set(SESSION_EXPIRY_KEY, raw)
    assert not guard.is_elevated


def test_stored_session_survives_new_guard(guard, clock):
    _elevated(guard)
    restored = SessionGuard(guard.storage, clock=clock)
    restored.set_user("alice")
    assert restored.is_elevated


def test_logout_and_user_switch_clear_session(guard):
    _elevated(guard)
    guard.set_user("bob")
    assert guard.storage.get(SESSION_USER_KEY) is None

    guard.set_user("alice")
    _elevated(guard)
    guard.logout()
    assert guard.user_id is None
    assert guard.storage.get(SESSION_EXPIRY_KEY) is None


# --- timer ---

def test_tick_counts_down_then_locks(guard, clock, navigations):
    _elevated(guard)
    clock.now = NOW + 100.5
    assert guard.tick() == 500
    assert guard.remaining_time == 500

    clock.now = NOW + 600
    assert guard.tick() == 0
    assert navigations == [(LOCK_SCREEN_PATH, "/admin/dashboard")]
    assert guard.path == LOCK_SCREEN_PATH
    assert not guard.authenticated
    assert guard.storage.get(SESSION_USER_KEY) is None


def test_tick_locks_when_marker_removed(guard, navigations):
    _elevated(guard)
    guard.storage.remove(SESSION_EXPIRY_KEY)
    assert guard.tick() == 0
    assert navigations


def test_tick_idle_outside_protected_area(guard, clock, navigations):
    _elevated(guard, path="/")
    clock.now = NOW + 700
    assert guard.tick() is None
    assert navigations == []


def test_run_stops_after_lock(guard, clock, navigations):
    _elevated(guard)
    clock.now = NOW + 601
    asyncio.run(asyncio.wait_for(guard.run(interval=0), timeout=1))
    assert navigations == [(LOCK_SCREEN_PATH, "/admin/dashboard")]


def test_start_and_stop(guard):
    _elevated(guard)

    async def _run():
        task = guard.start(interval=0.01)
        await asyncio.sleep(0.03)
        guard.stop()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        return task

    task = asyncio.run(_run())
    assert task.cancelled()
    assert guard.is_elevated


# --- guard decision ---

def test_is_protected():
    assert is_protected("/admin")
    assert is_protected("/admin/users")
    assert not is_protected(LOCK_SCREEN_PATH)
    assert not is_protected("/profile")


@pytest.mark.parametrize("ctx, elevated, expected", [
    (GuardContext(user_id="alice", auth_loading=True), True, GuardStatus.LOADING),
    (GuardContext(user_id="alice", role_loading=True, role_check_error="boom"), True, GuardStatus.LOADING),
    (GuardContext(user_id="alice", role_check_error="boom"), True, GuardStatus.ROLE_CHECK_ERROR),
    (GuardContext(), True, GuardStatus.NOT_LOGGED_IN),
    (GuardContext(user_id="alice", has_admin_role=False), True, GuardStatus.NOT_ADMIN),
    (GuardContext(user_id="alice", has_admin_role=None), True, GuardStatus.NOT_ADMIN),
    (GuardContext(user_id="alice", has_admin_role=True), True, GuardStatus.NO_2FA_RECORD),
    (GuardContext(user_id="alice", has_admin_role=True,
                  account=SecondFactorAccount(user_id="alice", is_blocked=True)), True, GuardStatus.NOT_PROVISIONED),
    (GuardContext(user_id="alice", has_admin_role=True,
                  account=_ready_account(is_blocked=True)), True, GuardStatus.BLOCKED),
    (GuardContext(user_id="alice", has_admin_role=True, account=_ready_account()), False, GuardStatus.NEEDS_2FA),
    (GuardContext(user_id="alice", has_admin_role=True, account=_ready_account()), True, GuardStatus.AUTHORIZED),
])
def test_evaluate_guard_priority(ctx, elevated, expected):
    assert evaluate_guard(ctx, elevated) == expected


def test_evaluate_uses_stored_session(guard):
    ctx = GuardContext(user_id="alice", has_admin_role=True, account=_ready_account())
    assert guard.evaluate("/admin", ctx) == GuardStatus.NEEDS_2FA
    guard.establish("alice")
    assert guard.evaluate("/admin", ctx) == GuardStatus.AUTHORIZED


def test_evaluate_redirects_to_lock_screen_when_unverified(guard, navigations):
    ctx = GuardContext(user_id="alice", has_admin_role=True, account=_ready_account())
    assert guard.evaluate("/admin/dashboard", ctx) == GuardStatus.NEEDS_2FA
    assert navigations == [(LOCK_SCREEN_PATH, "/admin/dashboard")]
    assert guard.path == LOCK_SCREEN_PATH


def test_evaluate_does_not_redirect_when_authorized_or_unprotected(guard, navigations):
    ctx = GuardContext(user_id="alice", has_admin_role=True, account=_ready_account())
    assert guard.evaluate("/profile", ctx) == GuardStatus.NEEDS_2FA
    guard.establish("alice")
    assert guard.evaluate("/admin/dashboard", ctx) == GuardStatus.AUTHORIZED
    assert guard.evaluate("/admin/dashboard", GuardContext(user_id="alice", has_admin_role=False)) == GuardStatus.NOT_ADMIN
    assert navigations == []


def test_evaluate_lock_screen_is_unguarded(guard):
    assert guard.evaluate(LOCK_SCREEN_PATH, GuardContext()) is None


def test_evaluate_user_change_drops_session(guard):
    _elevated(guard)
    ctx = GuardContext(user_id="bob", has_admin_role=True, account=SecondFactorAccount(
        user_id="bob", totp_secret="JBSWY3DPEHPK3PXP", is_provisioned=True,
    ))
    assert guard.evaluate("/admin", ctx) == GuardStatus.NEEDS_2FA
    assert guard.storage.get(SESSION_USER_KEY) is None


# --- lock screen ---

def _verification_client(status: int, body, calls: list | None = None) -> VerificationClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status, json=body)

    return VerificationClient("https://portal.example.org", transport=httpx.MockTransport(handler))


def test_submit_code_success_elevates(guard, clock):
    client = _verification_client(200, {"success": True})
    result = asyncio.run(guard.submit_code(client, "123456", "tok"))
    assert result.success
    assert guard.is_elevated
    assert guard.authenticated
    assert guard.remaining_time == 600
    assert float(guard.storage.get(SESSION_EXPIRY_KEY)) == NOW + 600


def test_submit_code_failure_does_not_elevate(guard):
    body = {"success": False, "error": "Incorrect code. 4 attempts remaining.", "remaining_attempts": 4}
    result = asyncio.run(guard.submit_code(_verification_client(400, body), "000000", "tok"))
    assert not result.success
    assert result.remaining_attempts == 4
    assert not guard.is_elevated


def test_submit_code_checks_format_locally(guard):
    calls = []
    client = _verification_client(200, {"success": True}, calls)
    result = asyncio.run(guard.submit_code(client, "12345", "tok"))
    assert result.error == "Please enter the 6-digit code"
    assert calls == []
    assert not guard.is_elevated


def test_submit_code_requires_login(clock):
    guard = SessionGuard(MemorySessionStorage(), clock=clock)
    result = asyncio.run(guard.submit_code(_verification_client(200, {"success": True}), "123456", "tok"))
    assert result.error == "Not logged in"
    assert not guard.is_elevated
