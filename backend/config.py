"""
Module: config.py
Description: Environment-driven settings for Spend Sentinel.

All values are read once at import time from the process environment,
after loading a local .env file if one exists.

Author: Spend Sentinel Team
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# =============================================================================
# Database
# =============================================================================

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./spend_sentinel.db")
DATABASE_ECHO = _env_bool("DATABASE_ECHO", "false")


# =============================================================================
# Authentication
# =============================================================================

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production-spend-sentinel-dev-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session_token")

# Development bypass: every request is treated as this actor
AUTH_BYPASS = _env_bool("AUTH_BYPASS", "false")
AUTH_BYPASS_USER_ID = int(os.getenv("AUTH_BYPASS_USER_ID", "1"))
AUTH_BYPASS_ROLE = os.getenv("AUTH_BYPASS_ROLE", "Admin")

# Roles that may look at alerts but not resolve them
RESOLVE_FORBIDDEN_ROLES = _env_list("RESOLVE_FORBIDDEN_ROLES", "Employee")


# =============================================================================
# Anomaly Detection
# =============================================================================

ZSCORE_THRESHOLD = float(os.getenv("ZSCORE_THRESHOLD", "3.0"))

# Flag days of users whose daily spend never varies (see DESIGN.md)
FLAG_ZERO_VARIANCE = _env_bool("FLAG_ZERO_VARIANCE", "true")


# =============================================================================
# Forecasting
# =============================================================================

FORECAST_HISTORY_MONTHS = int(os.getenv("FORECAST_HISTORY_MONTHS", "12"))
FORECAST_HORIZON_MONTHS = int(os.getenv("FORECAST_HORIZON_MONTHS", "3"))
FORECAST_BAND = float(os.getenv("FORECAST_BAND", "0.15"))
CHART_STEP = int(os.getenv("CHART_STEP", "1000"))


# =============================================================================
# HTTP
# =============================================================================

CORS_ORIGINS = _env_list(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
)
