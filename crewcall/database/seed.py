"""
crewcall.database.seed — Default Settings & Starter Ladder
===========================================================

Baseline rows seeded on first startup so the dashboard is immediately
usable.  Idempotent — settings are inserted only when the key is
missing, and the starter ladder only when the ``levels`` table is empty.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from crewcall.database.models import Level, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "chat.connected": (False, "integrations", "Telegram bot connected and usable"),
    "chat.bot_name": ("", "integrations", "Display name of the connected bot"),
    "display.timezone": (
        "", "display", "Override for the local calendar timezone (blank = config)",
    ),
}

# (name, min_points), most prestigious first
DEFAULT_LADDER: list[tuple[str, int]] = [
    ("Gold", 1000),
    ("Silver", 500),
    ("Bronze", 0),
]


def seed_default_settings(session: Session) -> int:
    inserted = 0
    for key, (value, category, description) in DEFAULT_SETTINGS.items():
        if session.get(Setting, key) is not None:
            continue
        session.add(Setting(
            key=key,
            value_json=json.dumps(value),
            category=category,
            description=description,
        ))
        inserted += 1
    return inserted


def seed_default_ladder(session: Session) -> int:
    if session.scalar(select(Level.id).limit(1)) is not None:
        return 0
    for rank, (name, min_points) in enumerate(DEFAULT_LADDER):
        session.add(Level(name=name, min_points=min_points, rank=rank))
    return len(DEFAULT_LADDER)


def seed_defaults(engine: Engine) -> None:
    """Insert missing settings and, on an empty database, the starter ladder."""
    with Session(engine) as session:
        settings_count = seed_default_settings(session)
        levels_count = seed_default_ladder(session)
        session.commit()
    if settings_count or levels_count:
        logger.info(
            "Seeded %d default settings and %d levels", settings_count, levels_count
        )
