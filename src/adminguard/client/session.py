"""Client-side admin route guard and elevated-session idle timer.

The elevated session is a short-lived marker kept in session-scoped storage
under two keys (user id, absolute expiry). It is re-validated on every read:
a missing or unparseable field, another user's id, or a past expiry all read
as "not elevated". The server stays the only place a code is checked; this
module only remembers that a check passed and for how long.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from adminguard.auth.totp import is_code_format
from adminguard.client.api import VerificationClient, VerifyResult
from adminguard.config import (
    IDLE_TIMEOUT_SECONDS,
    LOCK_SCREEN_PATH,
    PROTECTED_PREFIX,
    SESSION_EXPIRY_KEY,
    SESSION_USER_KEY,
)
from adminguard.models import SecondFactorAccount

logger = logging.getLogger(__name__)


class GuardStatus(StrEnum):
    LOADING = "loading"
    ROLE_CHECK_ERROR = "role_check_error"
    NOT_LOGGED_IN = "not_logged_in"
    NOT_ADMIN = "not_admin"
    NO_2FA_RECORD = "no_2fa_record"
    NOT_PROVISIONED = "not_provisioned"
    BLOCKED = "blocked"
    NEEDS_2FA = "needs_2fa"
    AUTHORIZED = "authorized"


@dataclass
class GuardContext:
    """What the guard knows about the current user when a route renders."""
    user_id: str | None = None
    has_admin_role: bool | None = None
    account: SecondFactorAccount | None = None
    auth_loading: bool = False
    session_loading: bool = False
    role_loading: bool = False
    role_check_error: str | None = None


@dataclass(frozen=True)
class ElevatedSession:
    user_id: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def remaining(self, now: float) -> int:
        """Whole seconds left, rounded up, never negative."""
        return max(0, math.ceil(self.expires_at - now))


class SessionStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemorySessionStorage:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


def is_protected(path: str) -> bool:
    return path.startswith(PROTECTED_PREFIX) and path != LOCK_SCREEN_PATH


def evaluate_guard(ctx: GuardContext, elevated: bool) -> GuardStatus:
    if ctx.auth_loading or ctx.session_loading or ctx.role_loading:
        return GuardStatus.LOADING
    if ctx.role_check_error:
        return GuardStatus.ROLE_CHECK_ERROR
    if not ctx.user_id:
        return GuardStatus.NOT_LOGGED_IN
    if ctx.has_admin_role is not True:
        return GuardStatus.NOT_ADMIN
    if ctx.account is None:
        return GuardStatus.NO_2FA_RECORD
    if not ctx.account.is_provisioned:
        return GuardStatus.NOT_PROVISIONED
    if ctx.account.is_blocked:
        return GuardStatus.BLOCKED
    if not elevated:
        return GuardStatus.NEEDS_2FA
    return GuardStatus.AUTHORIZED


class SessionGuard:
    """Tracks one user's elevated session and locks it after idling.

    ``navigate(path, from_path)`` is called when the guard sends the user to
    the lock screen.
    """

    def __init__(
        self,
        storage: SessionStorage,
        *,
        navigate: Callable[[str, str | None], None] | None = None,
        clock: Callable[[], float] = time.time,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
    ) -> None:
        self.storage = storage
        self.navigate = navigate
        self.clock = clock
        self.idle_timeout = idle_timeout
        self.user_id: str | None = None
        self.path: str = "/"
        self.remaining_time: int | None = None
        # Whether this guard granted elevation; the timer only runs while set.
        self.authenticated = False
        self._task: asyncio.Task | None = None

    # --- stored marker ---

    def read_session(self) -> ElevatedSession | None:
        user_id = self.storage.get(SESSION_USER_KEY)
        raw_expiry = self.storage.get(SESSION_EXPIRY_KEY)
        if not user_id or not raw_expiry:
            return None
        try:
            expires_at = float(raw_expiry)
        except ValueError:
            return None
        if not math.isfinite(expires_at):
            return None
        session = ElevatedSession(user_id=user_id, expires_at=expires_at)
        if self.user_id is None or session.user_id != self.user_id:
            return None
        if session.is_expired(self.clock()):
            return None
        return session

    def _write_session(self) -> ElevatedSession:
        session = ElevatedSession(user_id=self.user_id or "", expires_at=self.clock() + self.idle_timeout)
        self.storage.set(SESSION_USER_KEY, session.user_id)
        self.storage.set(SESSION_EXPIRY_KEY, repr(session.expires_at))
        return session

    def clear_session(self) -> None:
        self.storage.remove(SESSION_USER_KEY)
        self.storage.remove(SESSION_EXPIRY_KEY)
        self.remaining_time = None
        self.authenticated = False

    @property
    def is_elevated(self) -> bool:
        return self.read_session() is not None

    # --- lifecycle ---

    def set_user(self, user_id: str | None) -> None:
        """Primary login changed. Losing or switching the user drops elevation."""
        if user_id is None or (self.user_id is not None and user_id != self.user_id):
            self.clear_session()
        self.user_id = user_id

    def establish(self, user_id: str) -> ElevatedSession:
        """Start a fresh elevated session after a successful verification."""
        self.user_id = user_id
        session = self._write_session()
        self.remaining_time = session.remaining(self.clock())
        self.authenticated = True
        logger.info("Elevated session established for %s", user_id)
        return session

    def enter(self, path: str) -> None:
        """Route change. Entering the protected area while elevated counts as activity."""
        self.path = path
        self.record_activity()

    def record_activity(self) -> bool:
        """Extend the session to now + idle timeout. Only inside the protected area."""
        if not is_protected(self.path) or not self.is_elevated:
            return False
        session = self._write_session()
        self.remaining_time = session.remaining(self.clock())
        self.authenticated = True
        return True

    def evaluate(self, path: str, ctx: GuardContext) -> GuardStatus | None:
        """Guard decision for a route. None for the lock screen, which is never guarded.

        A protected route that still needs the second factor sends the user to
        the lock screen, remembering where they were headed.
        """
        if path == LOCK_SCREEN_PATH:
            return None
        if ctx.user_id != self.user_id:
            self.set_user(ctx.user_id)
        status = evaluate_guard(ctx, self.is_elevated)
        if status == GuardStatus.NEEDS_2FA and is_protected(path):
            self.path = LOCK_SCREEN_PATH
            if self.navigate is not None:
                self.navigate(LOCK_SCREEN_PATH, path)
        return status

    def tick(self) -> int | None:
        """Recompute remaining time; lock once it reaches zero or the marker is gone."""
        if not self.authenticated or not is_protected(self.path):
            return None
        session = self.read_session()
        remaining = session.remaining(self.clock()) if session else 0
        if remaining <= 0:
            self.lock()
            return 0
        self.remaining_time = remaining
        return remaining

    def lock(self) -> None:
        from_path = self.path
        self.clear_session()
        if is_protected(from_path):
            logger.info("Admin session locked for %s", self.user_id)
            self.path = LOCK_SCREEN_PATH
            if self.navigate is not None:
                self.navigate(LOCK_SCREEN_PATH, from_path)

    def logout(self) -> None:
        self.clear_session()
        self.user_id = None
        self.stop()

    # --- lock screen ---

    async def submit_code(self, client: VerificationClient, code: str, token: str) -> VerifyResult:
        """Send a code to the server; only a server success elevates."""
        if not is_code_format(code):
            return VerifyResult(success=False, error="Please enter the 6-digit code")
        if self.user_id is None:
            return VerifyResult(success=False, error="Not logged in")
        result = await client.verify(code, token)
        if result.success:
            self.establish(self.user_id)
        else:
            self.clear_session()
        return result

    # --- timer ---

    async def run(self, interval: float = 1.0) -> None:
        """Tick every ``interval`` seconds until locked or cancelled."""
        while True:
            await asyncio.sleep(interval)
            if self.tick() == 0 or not self.authenticated:
                return

    def start(self, interval: float = 1.0) -> asyncio.Task:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self.run(interval))
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
