"""Error taxonomy for second-factor verification and access management.

Every error carries the HTTP status it maps to and a user-facing message.
The dashboard renders them through ``to_body()``; nothing else needs to know
about status codes.
"""

from __future__ import annotations

from typing import Any


class AdminGuardError(Exception):
    status_code = 500
    default_message = "Unexpected server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class AuthenticationError(AdminGuardError):
    status_code = 401
    default_message = "Authentication required"


class ValidationError(AdminGuardError):
    status_code = 400
    default_message = "Invalid code format"


class AccountNotFoundError(AdminGuardError):
    status_code = 404
    default_message = "Two-factor settings not found"


class NotProvisionedError(AdminGuardError):
    status_code = 400
    default_message = "Two-factor setup is not complete"


class BlockedError(AdminGuardError):
    status_code = 403
    default_message = "Your account is blocked. Contact an administrator."

    def __init__(self, message: str | None = None, *, blocked_now: bool = False) -> None:
        super().__init__(message)
        self.blocked_now = blocked_now

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        if self.blocked_now:
            body["blocked"] = True
        return body


class IncorrectCodeError(AdminGuardError):
    status_code = 400

    def __init__(self, remaining_attempts: int) -> None:
        self.remaining_attempts = remaining_attempts
        noun = "attempt" if remaining_attempts == 1 else "attempts"
        super().__init__(f"Incorrect code. {remaining_attempts} {noun} remaining.")

    def to_body(self) -> dict[str, Any]:
        return {**super().to_body(), "remaining_attempts": self.remaining_attempts}


class TransientError(AdminGuardError):
    status_code = 500
    default_message = "Server error"


class PermissionDeniedError(AdminGuardError):
    status_code = 403
    default_message = "Insufficient permissions"


class ConflictError(AdminGuardError):
    status_code = 409
    default_message = "Conflicting state"
