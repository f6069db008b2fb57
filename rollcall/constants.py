"""
rollcall.constants — Shared Constants
======================================

Single source of truth for field limits and role sets.  Import from here
instead of duplicating in services and API schemas.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------
ADMIN_ROLES: frozenset[str] = frozenset({"owner", "admin"})

# ---------------------------------------------------------------------------
# Session field limits
# ---------------------------------------------------------------------------
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 5000
LOCATION_MAX_LENGTH = 500

# ---------------------------------------------------------------------------
# Participation field limits
# ---------------------------------------------------------------------------
NOTES_MAX_LENGTH = 1000

# ---------------------------------------------------------------------------
# Pagination / batch defaults (upper bounds come from config.yaml)
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 20
DEFAULT_ROSTER_PAGE_SIZE = 100
DEFAULT_BULK_ATTENDANCE_LIMIT = 100
DEFAULT_ROSTER_PAGE_LIMIT = 500
DEFAULT_HISTORY_PAGE_LIMIT = 100

# ---------------------------------------------------------------------------
# Session list windows
# ---------------------------------------------------------------------------
SESSION_LIST_WINDOWS: tuple[str, ...] = ("all", "upcoming", "past")
