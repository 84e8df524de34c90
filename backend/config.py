# backend/config.py
# Environment-aware configuration for the project access backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT verification (tokens are issued by the identity service)
DEFAULT_SECRET_KEY = "dev-secret-key-change-me"
SECRET_KEY = os.environ.get("SECRET_KEY", DEFAULT_SECRET_KEY)
ALGORITHM = "HS256"

# Database configuration
# DATABASE_URL takes precedence (managed Postgres in staging/prod)
# Falls back to SQLite for local development and tests
DATABASE_URL = os.environ.get("DATABASE_URL", "").strip()
DATABASE_PATH = os.environ.get("DATABASE_PATH", "taskboard.db")

# Invitations
INVITATION_TTL_HOURS = int(os.environ.get("INVITATION_TTL_HOURS", "72"))
APP_URL = os.environ.get("APP_URL", "http://localhost:5173").rstrip("/")

# Outgoing email (invitation notifier). Unset host = console delivery.
EMAIL_HOST = os.environ.get("EMAIL_HOST", "").strip()
EMAIL_PORT = int(os.environ.get("EMAIL_PORT", "587"))
EMAIL_USER = os.environ.get("EMAIL_USER", "")
EMAIL_PASSWORD = os.environ.get("EMAIL_PASSWORD", "")
EMAIL_USE_TLS = os.environ.get("EMAIL_USE_TLS", "true").lower() == "true"
EMAIL_FROM = os.environ.get("EMAIL_FROM", "noreply@taskboard.local")
EMAIL_FROM_NAME = os.environ.get("EMAIL_FROM_NAME", "Task Manager")

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())
    else:
        CORS_ORIGINS.append(APP_URL)


def check_secret_key() -> None:
    """Refuse to verify tokens in prod with the built-in development secret."""
    if SECRET_KEY != DEFAULT_SECRET_KEY:
        return
    if IS_PROD:
        print("[CONFIG] ERROR: SECRET_KEY is unset in prod")
        raise RuntimeError("SECRET_KEY must be set when ENV=prod")
    if IS_STAGING:
        print("[CONFIG] WARNING: SECRET_KEY is the development default")


check_secret_key()

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Invitation TTL: {INVITATION_TTL_HOURS} hours")
print(f"[CONFIG] Email delivery: {'SMTP ' + EMAIL_HOST if EMAIL_HOST else 'console'}")
