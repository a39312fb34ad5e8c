"""
Constants and environment-driven settings used across the Cancha Leconte backend.
"""

import os
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"

APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
LOGIN_PAGE_PATH = "/admin/login"

# Sessions
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM = "HS256"
JWT_ISSUER = "cancha-leconte"
JWT_AUDIENCE = "admin-users"
MIN_JWT_SECRET_LENGTH = 32
SESSION_DURATION_HOURS = float(os.getenv("SESSION_DURATION_HOURS", "2"))
SESSION_REMEMBER_DURATION_HOURS = float(os.getenv("SESSION_REMEMBER_DURATION_HOURS", "24"))
# Refresh-on-read thresholds (hours of remaining lifetime)
SESSION_REFRESH_THRESHOLD_HOURS = 0.5
SESSION_REMEMBER_REFRESH_THRESHOLD_HOURS = 1.0

SESSION_COOKIE_NAME = "cancha-admin-session"
CSRF_COOKIE_NAME = "cancha-csrf-token"
CSRF_HEADER_NAME = "x-csrf-token"
CSRF_TOKEN_MAX_AGE_SECONDS = 24 * 60 * 60

# Passwords
PASSWORD_SALT_ROUNDS = int(os.getenv("PASSWORD_SALT_ROUNDS", "12"))
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 255

# Persisted rate limiter
RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("RATE_LIMIT_MAX_ATTEMPTS", "5"))
RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("RATE_LIMIT_WINDOW_MINUTES", "15"))
RATE_LIMIT_BASE_DELAY_SECONDS = int(os.getenv("RATE_LIMIT_BASE_DELAY_SECONDS", "60"))
RATE_LIMIT_MAX_MULTIPLIER = 8
GENERAL_RATE_LIMIT_MAX_REQUESTS = 100
GENERAL_RATE_LIMIT_WINDOW_MINUTES = 15
LOGIN_ATTEMPT_RETENTION_HOURS = 24

# In-process endpoint limits (slowapi / limits notation)
GAME_VIEW_RATE_LIMIT = "30/minute"
REGISTRATION_RATE_LIMIT = "5/minute"
STATUS_RATE_LIMIT = "15/minute"
MI_REGISTRO_VIEW_RATE_LIMIT = "50 per 15 minutes"
MI_REGISTRO_CANCEL_RATE_LIMIT = "20 per 5 minutes"
WEBHOOK_RATE_LIMIT = "1000/minute"

# Friend registration rules
LOCATION_NAME = "Cancha Leconte"
PLAYER_NAME_MIN_LENGTH = 2
PLAYER_NAME_MAX_LENGTH = 100
PHONE_MIN_LENGTH = 10
PHONE_MAX_LENGTH = 20
REGISTRATION_CUTOFF_HOURS = 2
CANCELLATION_CUTOFF_HOURS = 2
FULL_REFUND_CUTOFF_HOURS = 24
MAX_WAITING_LIST_SIZE = 10
# Games stay reachable through their share link this long after kickoff
GAME_ACCESS_GRACE_HOURS = 2
CANCELLATION_REASON_MAX_LENGTH = 500

# WhatsApp webhook
WHATSAPP_WEBHOOK_VERIFY_TOKEN = os.getenv("WHATSAPP_WEBHOOK_VERIFY_TOKEN", "")
WHATSAPP_APP_SECRET = os.getenv("WHATSAPP_APP_SECRET", "")

# Maintenance worker
MAINTENANCE_POLL_INTERVAL_SECONDS = 3600

SENSITIVE_HEADERS = {"authorization", "cookie", "x-csrf-token", "x-api-key"}


def validate_security_config() -> None:
    """
    Check security-relevant settings at startup.

    Raises:
        RuntimeError: If JWT_SECRET is missing or too short in production
    """
    problems = []
    if not JWT_SECRET:
        problems.append("JWT_SECRET is not set")
    elif len(JWT_SECRET) < MIN_JWT_SECRET_LENGTH:
        problems.append(f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")
    if not WHATSAPP_WEBHOOK_VERIFY_TOKEN:
        logger.warning("WHATSAPP_WEBHOOK_VERIFY_TOKEN is not set; webhook verification will fail")

    if problems:
        message = "; ".join(problems)
        if IS_PRODUCTION:
            raise RuntimeError(f"Invalid security configuration: {message}")
        logger.warning(f"Insecure configuration (allowed outside production): {message}")
