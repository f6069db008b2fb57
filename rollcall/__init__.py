"""
Rollcall — Session & Participation Lifecycle Engine
====================================================
Organizations publish time-boxed sessions with finite capacity, members
enroll, a waitlist absorbs overflow, and attendance / payment are tracked
afterwards.  Every enrollment decision is made under a row lock on the
session so capacity holds under concurrent joins.

Package layout::

    rollcall/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Field limits, role sets, page bounds
    ├── errors.py          # RollcallError taxonomy (kind + message)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, transaction(), run_db()
    │   ├── models.py      # ORM models (6 tables)
    │   └── seed.py        # Demo organization seeder
    ├── engine/
    │   ├── status.py      # Status enums + transition tables
    │   ├── records.py     # Frozen records the engine reasons about
    │   ├── capacity.py    # Join decision + promotion policy
    │   └── conflicts.py   # Double-booking rule + error message
    ├── services/
    │   ├── scope.py               # Organization scope guard
    │   ├── waitlist_service.py    # Locked counts, admit, promote
    │   ├── conflict_service.py    # Double-booking queries
    │   ├── session_service.py     # Session lifecycle controller
    │   └── participation_service.py  # Participation lifecycle controller
    └── api/
        ├── main.py        # FastAPI app + error handler
        ├── deps.py        # JWT → CallerContext
        └── routes/        # Session + participation endpoints
"""

__version__ = "0.1.0"
