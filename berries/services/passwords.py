"""
Password hashing for local accounts.

Hashes are PBKDF2-HMAC-SHA256 hex digests stored next to a per-user random
salt on the `users` row.
"""
from __future__ import annotations

import hashlib
import secrets
from typing import Optional, Tuple

from berries.config import settings


def hash_password(password: str, salt: Optional[str] = None, iterations: Optional[int] = None) -> Tuple[str, str]:
    """Return ``(hex_digest, salt)``, generating a salt when none is given."""
    salt = salt or secrets.token_hex(16)
    rounds = iterations or settings.password_hash_iterations
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), rounds)
    return digest.hex(), salt


def verify_password(password: str, stored_hash: str, salt: str, iterations: Optional[int] = None) -> bool:
    digest, _ = hash_password(password, salt=salt, iterations=iterations)
    # Constant-time comparison
    return secrets.compare_digest(digest, stored_hash)
