"""
ACMS Global Constants

Centralized location for system-wide constants used across the application.
"""

from datetime import datetime, timezone


def get_current_timestamp() -> datetime:
    """Get current timestamp with UTC timezone."""
    return datetime.now(timezone.utc)


# Application Constants
APP_NAME = "ACMS Backend API"
APP_VERSION = "0.1.0"

# Key namespace
KEY_SEPARATOR = ":"
RATE_LIMIT_PREFIX = "rl"
MAX_KEY_LENGTH = 250

# Cache domains used by collaborators
PRINCIPAL_DOMAIN = "principal"
ATTENDANCE_DOMAIN = "attendance"
MARKS_DOMAIN = "marks"
DASHBOARD_DOMAIN = "dashboard"
ANNOUNCEMENTS_DOMAIN = "announcements"

# Fields never written into a cached principal snapshot
PRINCIPAL_SECRET_FIELDS = frozenset(
    {
        "password",
        "password_hash",
        "hashed_password",
        "refresh_token",
        "reset_password_token",
    }
)
