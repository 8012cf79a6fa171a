"""
Centralized configuration for the video tracking service.

Provides environment-aware settings so main.py, the API routes and the
tracking core read the same values.
"""

import os


def is_dev_mode() -> bool:
    """Check if running in development mode (--dev flag or DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running on Railway (production environment)."""
    return bool(os.environ.get("RAILWAY_ENVIRONMENT"))


def get_api_port() -> int:
    """Get API server port from env or default."""
    return int(os.getenv("API_PORT", "8000"))


def get_frontend_url() -> str:
    """Get frontend URL, falling back to the API port on localhost."""
    return os.environ.get(
        "FRONTEND_URL", f"http://localhost:{get_api_port()}"
    ).rstrip("/")


def get_allowed_origins() -> list[str]:
    """
    Get list of allowed CORS origins.

    Includes localhost variants for dev and the production frontend URL.
    """
    hosts = ["localhost", "127.0.0.1"]
    ports = [3000, 5173, get_api_port()]
    origins = [f"http://{host}:{port}" for host in hosts for port in ports]

    frontend_url = get_frontend_url()
    if frontend_url not in origins:
        origins.append(frontend_url)

    return origins


def get_log_level() -> str:
    """Get root log level name (LOG_LEVEL env, INFO by default)."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


# =====================================================
# Video tracking settings
# =====================================================


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def get_completion_threshold() -> float:
    """Completion percentage at which a lesson counts as watched (0-100)."""
    return _get_float("VIDEO_COMPLETION_THRESHOLD", 95.0)


def get_ingest_timeout_seconds() -> float:
    """Upper bound for applying one ingestion batch."""
    return _get_float("VIDEO_INGEST_TIMEOUT_SECONDS", 10.0)


def get_max_clock_skew_seconds() -> float:
    """How far in the future a client event timestamp may be."""
    return _get_float("VIDEO_MAX_CLOCK_SKEW_SECONDS", 300.0)


def get_max_event_age_seconds() -> float:
    """How far in the past a client event timestamp may be (re-queued batches)."""
    return _get_float("VIDEO_MAX_EVENT_AGE_SECONDS", 86400.0)


def get_lock_timeout_ms() -> int:
    """Postgres lock_timeout applied inside the ingestion transaction."""
    return int(_get_float("VIDEO_LOCK_TIMEOUT_MS", 2000))


# Required environment variables for production
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("JWT_SECRET", "Secret key for JWT tokens", True),
    ("SENTRY_DSN", "Sentry DSN for error reporting", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if is_production() and required_in_dev:
                errors.append(f"  ✗ {name}: Not set ({description})")
            elif required_in_dev or not in_dev:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        for error in errors:
            print(error)
        return False, warnings

    return True, warnings
