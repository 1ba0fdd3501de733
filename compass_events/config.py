"""config.py — Central configuration — environment variables, constants, logging.

All values are read once at import. Factories in aws_clients / app accept
explicit overrides, so tests never need to patch the environment.
"""
from __future__ import annotations

import logging
import os

__all__ = [
    "APP_URL",
    "BCRYPT_ROUNDS",
    "DEFAULT_PAGE_SIZE",
    "DYNAMODB_ENDPOINT",
    "DYNAMODB_REGION",
    "EMAIL_VERIFICATION_ENABLED",
    "EVENTS_TABLE",
    "EVENT_STATUS_ACTIVE",
    "EVENT_STATUS_INACTIVE",
    "EVENT_STATUSES",
    "JWT_SECRET",
    "JWT_TTL_SECONDS",
    "REGISTRATIONS_TABLE",
    "ROLES",
    "ROLE_ADMIN",
    "ROLE_ORGANIZER",
    "ROLE_PARTICIPANT",
    "S3_BUCKET",
    "S3_ENDPOINT",
    "S3_REGION",
    "SES_MAIL_FROM",
    "SES_REGION",
    "UNIQUE_KEYS_TABLE",
    "USERS_TABLE",
    "logger",
]


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y")


def _env_int(name: str, default: int) -> int:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Invalid %s=%r; using %s", name, raw, default)
        return default


# ---------------------------------------------------------------------------
# DynamoDB
# ---------------------------------------------------------------------------

DYNAMODB_REGION = os.environ.get("DYNAMODB_REGION", "us-east-1")
# Set to http://localhost:8000 for DynamoDB Local.
DYNAMODB_ENDPOINT = os.environ.get("DYNAMODB_ENDPOINT", "")

USERS_TABLE = os.environ.get("USERS_TABLE", "Users")
EVENTS_TABLE = os.environ.get("EVENTS_TABLE", "Events")
REGISTRATIONS_TABLE = os.environ.get("REGISTRATIONS_TABLE", "Registrations")
UNIQUE_KEYS_TABLE = os.environ.get("UNIQUE_KEYS_TABLE", "UniqueKeys")

# ---------------------------------------------------------------------------
# S3 / SES
# ---------------------------------------------------------------------------

S3_BUCKET = os.environ.get("S3_BUCKET_NAME", "compass-events-images")
S3_REGION = os.environ.get("S3_REGION", os.environ.get("AWS_REGION", "us-east-1"))
S3_ENDPOINT = os.environ.get("S3_ENDPOINT", "")

SES_REGION = os.environ.get("SES_REGION", os.environ.get("AWS_REGION", "us-east-1"))
SES_MAIL_FROM = os.environ.get("SES_MAIL_FROM", "")
APP_URL = os.environ.get("APP_URL", "http://localhost:3000")

# New users start inactive only when a verification email can actually be sent.
EMAIL_VERIFICATION_ENABLED = _env_bool("EMAIL_VERIFICATION_ENABLED", bool(SES_MAIL_FROM))

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_TTL_SECONDS = _env_int("JWT_TTL_SECONDS", 3600)
BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 10)

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

ROLE_ADMIN = "admin"
ROLE_ORGANIZER = "organizer"
ROLE_PARTICIPANT = "participant"
ROLES = {ROLE_ADMIN, ROLE_ORGANIZER, ROLE_PARTICIPANT}

EVENT_STATUS_ACTIVE = "active"
EVENT_STATUS_INACTIVE = "inactive"
EVENT_STATUSES = {EVENT_STATUS_ACTIVE, EVENT_STATUS_INACTIVE}

DEFAULT_PAGE_SIZE = 10

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("compass_events")
logger.setLevel(logging.INFO)
