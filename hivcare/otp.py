"""
One-time passcode generation and hashing.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

import bcrypt

from hivcare.config import OTP_EXPIRY_MINUTES, OTP_HASH_ROUNDS, OTP_LENGTH
from hivcare.database import utcnow


def generate_otp(length: int = OTP_LENGTH) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_otp(code: str, rounds: int = OTP_HASH_ROUNDS) -> str:
    return bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_otp(code: str, code_hash: str) -> bool:
    try:
        return bcrypt.checkpw(code.encode("utf-8"), code_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def otp_expiry_time(minutes: int = OTP_EXPIRY_MINUTES, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=minutes)


def is_otp_expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    return (now or utcnow()) > expires_at
