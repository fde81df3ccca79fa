"""Admin Guard: TOTP second factor for the community portal admin area."""

__version__ = "0.1.0"
