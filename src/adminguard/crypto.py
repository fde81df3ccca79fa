"""AES-256-GCM encryption for TOTP secrets stored in the database.

Stored form is base64(nonce + ciphertext + tag). The column name is bound in
as associated data, so a value copied into another table will not decrypt.
"""

from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from adminguard.config import settings

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_AAD = b"admin_2fa_settings.totp_secret"


def generate_key() -> str:
    """New base64 master key for ADMINGUARD_MASTER_KEY."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode()


def _master_key() -> bytes:
    raw = settings.adminguard_master_key
    if not raw:
        raise RuntimeError("ADMINGUARD_MASTER_KEY not set")
    key = base64.b64decode(raw)
    if len(key) != 32:
        raise ValueError("ADMINGUARD_MASTER_KEY must be 32 bytes (base64-encoded)")
    return key


def encrypt_secret(secret: str) -> str:
    nonce = os.urandom(_NONCE_SIZE)
    sealed = AESGCM(_master_key()).encrypt(nonce, secret.encode(), _AAD)
    return base64.b64encode(nonce + sealed).decode()


def decrypt_secret(token: str) -> str:
    raw = base64.b64decode(token)
    nonce, sealed = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
    return AESGCM(_master_key()).decrypt(nonce, sealed, _AAD).decode()
