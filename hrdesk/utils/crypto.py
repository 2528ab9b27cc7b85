"""Password hashing for accounts created from chat.

Hashes are stored as ``scrypt$<salt>$<digest>`` with URL-safe base64 parts.
"""

from __future__ import annotations

import base64
import secrets

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

_N, _R, _P, _LEN = 2**14, 8, 1, 32


def _kdf(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=_LEN, n=_N, r=_R, p=_P)


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = _kdf(salt).derive(password.encode())
    return "scrypt${}${}".format(
        base64.urlsafe_b64encode(salt).decode(),
        base64.urlsafe_b64encode(digest).decode(),
    )


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, salt_b64, digest_b64 = stored.split("$")
    except ValueError:
        return False
    if scheme != "scrypt":
        return False
    try:
        _kdf(base64.urlsafe_b64decode(salt_b64)).verify(password.encode(), base64.urlsafe_b64decode(digest_b64))
    except InvalidKey:
        return False
    return True


def temporary_password() -> str:
    """Readable one-time password; the account is flagged to change it."""
    return f"Temp{secrets.token_urlsafe(6)}!"
