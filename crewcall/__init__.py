"""
Crewcall — Event Participation & Gamification for Part-Time Staff
==================================================================
Coordinates staff sign-ups for scheduled events, turns confirmed
participation into points, and derives each staff member's level from
an append-only points ledger.

Package layout::

    crewcall/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Notification kinds, channels, shared helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + init_db
    │   ├── models.py      # ORM models (levels, staff, events, ledger, audit)
    │   └── seed.py        # Default settings + starter ladder
    ├── engine/
    │   ├── context.py     # EngineContext + Actor (explicit, no globals)
    │   ├── errors.py      # Typed error taxonomy
    │   ├── ladder.py      # Level Ladder lookup & eligibility
    │   ├── ledger.py      # Ledger arithmetic
    │   ├── admission.py   # Sign-up / cancellation admission control
    │   ├── lifecycle.py   # Event status transition table
    │   └── notify_rules.py # Notification eligibility resolver
    ├── services/
    │   ├── audit.py            # Audit-log helpers
    │   ├── ledger_service.py   # Point adjustments + materialised totals
    │   ├── level_service.py    # Ladder CRUD
    │   ├── event_service.py    # Lifecycle operations
    │   ├── signup_service.py   # Sign-up / cancellation
    │   ├── selection_service.py # Confirmation + close workflow
    │   ├── staff_service.py    # Staff records
    │   ├── settings_service.py # Settings + context loading
    │   ├── templates.py        # Notification text rendering
    │   └── notification_service.py # Channels + fan-out dispatcher
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT → Actor, engine, context
        └── routes/        # events, points, levels, staff, settings
"""

__version__ = "0.1.0"
