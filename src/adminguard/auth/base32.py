"""Permissive RFC 4648 base32 decoding for shared TOTP secrets.

Unlike ``base64.b32decode`` this never raises: characters outside the
alphabet (spaces, dashes, padding, typos) are dropped and any trailing bits
that do not complete a byte are discarded. Secrets typed by hand from an
authenticator app's manual-entry screen decode the same as clean ones.
"""

from __future__ import annotations

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_VALUES = {ch: i for i, ch in enumerate(ALPHABET)}


def clean_base32(text: str) -> str:
    """Upper-case and drop everything outside the base32 alphabet."""
    return "".join(ch for ch in text.upper() if ch in _VALUES)


def decode_base32(text: str) -> bytes:
    """Decode base32 text into key bytes, ``floor(len(valid) * 5 / 8)`` long."""
    out = bytearray()
    buffer = 0
    bits = 0
    for ch in clean_base32(text):
        buffer = (buffer << 5) | _VALUES[ch]
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((buffer >> bits) & 0xFF)
    return bytes(out)
