"""
encore.constants — Shared Constants
====================================

Single source of truth for tenant defaults, source kinds and quota plans.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
MAX_PAGE_SIZE = 30  # attendance entries per bucket

# ---------------------------------------------------------------------------
# Member schema
# ---------------------------------------------------------------------------
MEMBER_ID_PROPERTY = "Member ID"
TOTAL_POINT_TYPE = "Total"

BASE_MEMBER_PROPERTY_TYPES: dict[str, str] = {
    "Member ID": "string!",
    "First Name": "string!",
    "Last Name": "string!",
    "Email": "string!",
    "Birthday": "date?",
}

BASE_POINT_TYPES: dict[str, dict[str, str]] = {
    TOTAL_POINT_TYPE: {
        "start": "1970-01-01T00:00:00+00:00",
        "end": "9999-12-31T23:59:59+00:00",
    },
}

# Regular expressions tested against incoming field titles, in priority order
DEFAULT_FIELD_MATCHERS: list[dict] = [
    {"condition": "contains", "expression": "ID", "property": "Member ID", "filters": [], "priority": 0},
    {"condition": "contains", "expression": "First Name", "property": "First Name", "filters": [], "priority": 1},
    {"condition": "contains", "expression": "Last Name", "property": "Last Name", "filters": [], "priority": 2},
    {"condition": "contains", "expression": "Email", "property": "Email", "filters": [], "priority": 3},
    {"condition": "contains", "expression": "Birthday", "property": "Birthday", "filters": [], "priority": 4},
]

# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------
SOURCE_SPREADSHEET = "spreadsheet"
SOURCE_FORM = "form"
CONTENT_KINDS: frozenset[str] = frozenset({SOURCE_SPREADSHEET, SOURCE_FORM})

ITEM_FOLDER = "folder"
ITEM_OTHER = "other"

# ---------------------------------------------------------------------------
# Quota plans
# ---------------------------------------------------------------------------
QUOTA_FIELDS: tuple[str, ...] = (
    "read_operations_left",
    "modify_operations_left",
    "manual_syncs_left",
    "source_folders_left",
    "events_left",
    "members_left",
)

# Counters reset by the periodic refresh; capacity counters are never reset
REFRESHED_QUOTA_FIELDS: tuple[str, ...] = (
    "read_operations_left",
    "modify_operations_left",
    "manual_syncs_left",
)

INVITED_LIMITS: dict[str, int] = {
    "read_operations_left": 30,
    "modify_operations_left": 30,
    "manual_syncs_left": 5,
    "source_folders_left": 20,
    "events_left": 100,
    "members_left": 200,
}

UNINVITED_LIMITS: dict[str, int] = {
    "read_operations_left": 10,
    "modify_operations_left": 10,
    "manual_syncs_left": 2,
    "source_folders_left": 2,
    "events_left": 20,
    "members_left": 200,
}

# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
UNTYPED_EVENT_BUCKET = "etc"
UNTYPED_EVENT_TITLE = "Other"
BIRTHDAY_WINDOWS: dict[str, int] = {"weekly": 7, "monthly": 30}
