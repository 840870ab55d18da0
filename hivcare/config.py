"""
Centralised configuration constants and environment helpers.
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ── Database ─────────────────────────────────────────────────────────
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///hivcare.db")
DATABASE_ECHO = _env_flag("DATABASE_ECHO")

# ── Sessions ─────────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
SESSION_EXPIRY_DAYS = 7
SESSION_COOKIE = "hivcare-session"

# ── Batch job trigger ────────────────────────────────────────────────
# Shared secret expected as "Authorization: Bearer <CRON_SECRET>".
CRON_SECRET = os.getenv("CRON_SECRET", "")

# ── OTP authentication ───────────────────────────────────────────────
OTP_LENGTH = 6
OTP_EXPIRY_MINUTES = 10
OTP_MAX_ATTEMPTS = 5
OTP_HASH_ROUNDS = 12

# "console" logs codes locally, "webhook" posts them to the URLs below.
OTP_DELIVERY_MODE = os.getenv("OTP_DELIVERY_MODE", "console")
OTP_EMAIL_WEBHOOK_URL = os.getenv("OTP_EMAIL_WEBHOOK_URL", "")
OTP_SMS_WEBHOOK_URL = os.getenv("OTP_SMS_WEBHOOK_URL", "")
OTP_DELIVERY_TIMEOUT = float(os.getenv("OTP_DELIVERY_TIMEOUT", "10"))
OTP_SENDER_NAME = os.getenv("OTP_SENDER_NAME", "HIV Care Portal")

# When enabled, an OTP request still succeeds if delivery fails; the user
# must then authenticate with OTP_FALLBACK_CODE (if set) or a code obtained
# out-of-band. Every such event is logged as a warning.
ALLOW_LOGIN_ON_DELIVERY_FAILURE = _env_flag("ALLOW_LOGIN_ON_DELIVERY_FAILURE")
OTP_FALLBACK_CODE = os.getenv("OTP_FALLBACK_CODE", "")

# ── Rate limits (requests, window seconds) ───────────────────────────
AUTH_RATE_LIMIT = (5, 60)
GENERAL_RATE_LIMIT = (100, 60)

# ── Task generation policy ───────────────────────────────────────────
LTFU_DAYS = 90
LAB_DUE_MONTHS = 6
REFILL_WINDOW_DAYS = 3
VL_MONITOR_MONTHS = 12

# ── Clinical thresholds (copies/mL) ──────────────────────────────────
VL_UNDETECTABLE_BELOW = 50
VL_SUPPRESSED_BELOW = 1000

HIV_VL_PANEL_CODE = "HIV_VL"
CD4_PANEL_CODE = "CD4"

# ── API server ───────────────────────────────────────────────────────
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
MAX_LIST_LIMIT = 100
DEFAULT_LIST_LIMIT = 50

# ── Logging ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "logs/hivcare.log")


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
