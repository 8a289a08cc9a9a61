from __future__ import annotations

import re
import secrets
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

HASH_METHOD = "pbkdf2:sha256"
OTP_DIGITS = "0123456789"
OTP_LENGTH = 6


def hash_password(plain: str, method: str = HASH_METHOD, salt_length: int = 16) -> str:
    return generate_password_hash(plain or "", method=method, salt_length=salt_length)


def is_hashed(value: Optional[str]) -> bool:
    if not value:
        return False
    v = str(value)
    # Werkzeug hashes start with the method prefix like 'pbkdf2:sha256:'
    return v.startswith("pbkdf2:") or v.startswith("scrypt:")


def verify_password(stored_value: Optional[str], candidate: Optional[str]) -> bool:
    """Check ``candidate`` against a stored werkzeug hash. Anything unhashed never matches."""
    if not is_hashed(stored_value):
        return False
    try:
        return check_password_hash(str(stored_value), candidate or "")
    except ValueError:
        return False


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Return a secure numeric OTP of the requested length."""
    return "".join(secrets.choice(OTP_DIGITS) for _ in range(length))


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def mask_mobile(mobile: Optional[str]) -> str:
    """Replace every digit except the last four with ``*``."""
    return re.sub(r"\d(?=\d{4})", "*", mobile or "")
