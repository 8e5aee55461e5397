"""
Encore — Event & Attendee Synchronization for Organizations
============================================================
Discovers events from shared folder hierarchies, pulls attendee data out
of the spreadsheets and forms inside them, merges it into one member
roster per tenant, and keeps points, attendance history and dashboard
statistics consistent with every sync.

Package layout::

    encore/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Default schemas, matchers, quota plans
    ├── errors.py          # Error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (tenants, events, members, …)
    │   └── seed.py        # Tenant bootstrap (dashboard + quota rows)
    ├── engine/            # Pure logic, no I/O
    │   ├── properties.py  # Property types + value classification
    │   ├── matchers.py    # Field title → member property matching
    │   ├── state.py       # In-memory sync working set
    │   ├── quota.py       # Pending quota delta + ignore context
    │   ├── ownership.py   # Folder ownership tie-break
    │   ├── points.py      # Point accrual
    │   ├── pagination.py  # Attendance bucket repagination
    │   └── dashboard.py   # Dashboard aggregate recomputation
    ├── providers/         # Folder + content source adapters
    ├── services/          # Sync phases, quota limiter, maintenance jobs
    └── api/               # FastAPI app
"""

__version__ = "0.1.0"
