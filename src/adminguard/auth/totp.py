"""TOTP (Time-based One-Time Password) generation and verification for admin 2FA.

Codes follow RFC 6238 with HMAC-SHA1, 6 digits and a 30 second step and are
computed by pyotp. Secrets go through the permissive base32 decoder first and
are re-encoded, so stored secrets with stray separators keep working.
"""

from __future__ import annotations

import base64
import io
import re
import time
from datetime import UTC, datetime
from urllib.parse import quote

import pyotp
import qrcode

from adminguard.auth.base32 import decode_base32
from adminguard.config import TOTP_DIGITS, TOTP_PERIOD_SECONDS, TOTP_WINDOW

_CODE_RE = re.compile(rf"[0-9]{{{TOTP_DIGITS}}}")


def is_code_format(code: object) -> bool:
    """True for exactly six ASCII digits."""
    return isinstance(code, str) and _CODE_RE.fullmatch(code) is not None


def generate_secret() -> str:
    """Generate a new TOTP secret (base32-encoded, 32 chars)."""
    return pyotp.random_base32()


def time_counter(now: float | None = None) -> int:
    """Step counter for a unix timestamp (defaults to the wall clock)."""
    if now is None:
        now = time.time()
    return int(now // TOTP_PERIOD_SECONDS)


def _normalized(key: bytes) -> str:
    return base64.b32encode(key).decode()


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(_normalized(decode_base32(secret)), digits=TOTP_DIGITS, interval=TOTP_PERIOD_SECONDS)


def _for_time(now: float | None) -> datetime:
    # Timezone-aware, so pyotp derives the counter without local-time conversion.
    return datetime.fromtimestamp(time.time() if now is None else now, UTC)


def generate_code(key: bytes, counter: int) -> str:
    """HOTP value for raw key bytes at ``counter`` (RFC 4226)."""
    return pyotp.HOTP(_normalized(key), digits=TOTP_DIGITS).at(counter)


def get_code(secret: str, now: float | None = None) -> str:
    """Get the TOTP code for a base32 secret at ``now``."""
    return _totp(secret).at(_for_time(now))


def verify_code(
    secret: str,
    code: str,
    window: int = TOTP_WINDOW,
    now: float | None = None,
) -> bool:
    """Verify a TOTP code against a secret, accepting +-window steps of drift."""
    if window < 0:
        raise ValueError("window must be non-negative")
    # pyotp NFKC-normalizes before comparing, which would accept full-width digits.
    if not code.isascii():
        return False
    return _totp(secret).verify(code, for_time=_for_time(now), valid_window=window)


def provisioning_uri(secret: str, account_name: str, issuer: str) -> str:
    """Get the otpauth:// URI for QR code enrollment."""
    label = quote(f"{issuer}:{account_name}", safe=":@")
    return (
        f"otpauth://totp/{label}"
        f"?secret={secret}"
        f"&issuer={quote(issuer, safe='')}"
        f"&algorithm=SHA1&digits={TOTP_DIGITS}&period={TOTP_PERIOD_SECONDS}"
    )


def mask_secret(secret: str) -> str:
    """Show only the first and last four characters of a secret."""
    if len(secret) <= 8:
        return secret
    return secret[:4] + "*" * min(len(secret) - 8, 16) + secret[-4:]


def qr_code_png(uri: str) -> str:
    """Render a provisioning URI as a base64-encoded PNG for authenticator apps."""
    img = qrcode.make(uri)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode()
