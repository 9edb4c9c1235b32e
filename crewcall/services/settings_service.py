"""
crewcall.services.settings_service — Settings CRUD & Context Loading
=====================================================================

Typed read/write access to the ``settings`` table, plus
:func:`load_context`, which folds the ladder and the integration
toggles into the :class:`~crewcall.engine.context.EngineContext` every
engine operation receives.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from crewcall.config import CrewcallConfig
from crewcall.constants import Channel
from crewcall.database.models import Level, Setting
from crewcall.engine.context import Actor, EngineContext, require_admin
from crewcall.engine.errors import InvalidSetting
from crewcall.engine.ladder import LevelLadder
from crewcall.services.audit import log_admin_action

if TYPE_CHECKING:
    from crewcall.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

CHAT_CONNECTED_KEY = "chat.connected"
CHAT_BOT_NAME_KEY = "chat.bot_name"
TIMEZONE_KEY = "display.timezone"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns *default* when the key does not exist; a value that is not
    valid JSON is returned as the raw string.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def get_all_settings(engine) -> list[Setting]:
    """Fetch every setting row, ordered by category then key."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


def load_ladder(session: Session) -> LevelLadder:
    return LevelLadder.from_rows(session.scalars(select(Level)).all())


def is_known_timezone(name: Any) -> bool:
    if not isinstance(name, str) or not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def build_context(session: Session, cfg: CrewcallConfig | None = None) -> EngineContext:
    """Assemble an :class:`EngineContext` inside an open session.

    A stored timezone override that no longer resolves falls back to the
    configured timezone.
    """
    timezone = cfg.timezone if cfg else "UTC"
    tz_override = get_setting_value(session, TIMEZONE_KEY, "") or ""
    if tz_override:
        if is_known_timezone(tz_override):
            timezone = tz_override
        else:
            logger.warning(
                "Ignoring unknown timezone override %r; using %s", tz_override, timezone
            )
    return EngineContext(
        ladder=load_ladder(session),
        chat_connected=bool(get_setting_value(session, CHAT_CONNECTED_KEY, False)),
        timezone=timezone,
    )


def load_context(engine, cfg: CrewcallConfig | None = None) -> EngineContext:
    """Snapshot the ladder and integration toggles for one request."""
    with Session(engine) as session:
        return build_context(session, cfg)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def validate_setting(key: str, value: Any) -> None:
    """Reject values the engine could not use for known keys."""
    if key == TIMEZONE_KEY:
        if value in ("", None):
            return
        if not is_known_timezone(value):
            raise InvalidSetting(f"Unknown timezone: {value!r}")
    elif key == CHAT_CONNECTED_KEY and not isinstance(value, bool):
        raise InvalidSetting(f"{key} must be true or false")


def bulk_upsert(engine, settings: list[dict], *, actor: Actor) -> int:
    """Upsert many settings at once (admin-only).

    Each dict needs ``key`` and ``value``; ``category`` and
    ``description`` are optional.  Every real change is recorded in
    ``admin_log``.  Returns the number of rows touched.  Nothing is
    written if any value fails :func:`validate_setting`.
    """
    require_admin(actor)
    for item in settings:
        validate_setting(item["key"], item["value"])
    count = 0
    with Session(engine) as session:
        for item in settings:
            key = item["key"]
            value_json = json.dumps(item["value"])
            existing = session.get(Setting, key)

            before_snapshot: dict | None = None
            if existing:
                before_snapshot = {
                    "key": existing.key,
                    "value": json.loads(existing.value_json) if existing.value_json else None,
                    "category": existing.category,
                    "description": existing.description,
                }
                existing.value_json = value_json
                if "category" in item:
                    existing.category = item["category"]
                if "description" in item:
                    existing.description = item["description"]
            else:
                existing = Setting(
                    key=key,
                    value_json=value_json,
                    category=item.get("category", "general"),
                    description=item.get("description"),
                )
                session.add(existing)

            after_snapshot = {
                "key": key,
                "value": item["value"],
                "category": existing.category,
                "description": existing.description,
            }
            if before_snapshot != after_snapshot:
                log_admin_action(
                    session,
                    actor_id=actor.id,
                    action_type="UPDATE" if before_snapshot else "CREATE",
                    target_table="settings",
                    target_id=key,
                    before=before_snapshot,
                    after=after_snapshot,
                )
            count += 1
        session.commit()

    logger.info("Admin %d updated %d settings", actor.id, count)
    return count


def set_chat_integration(
    engine, *, connected: bool, bot_name: str = "", actor: Actor
) -> None:
    """Flip the chat integration toggle (after the bot token was verified)."""
    bulk_upsert(
        engine,
        [
            {"key": CHAT_CONNECTED_KEY, "value": bool(connected), "category": "integrations"},
            {"key": CHAT_BOT_NAME_KEY, "value": bot_name, "category": "integrations"},
        ],
        actor=actor,
    )


def get_integration_status(
    engine, dispatcher: NotificationDispatcher | None = None
) -> dict[str, Any]:
    """Chat toggle from the settings table; mail mode from the live channel."""
    mail = dispatcher.channels.get(Channel.PRIMARY) if dispatcher else None
    with Session(engine) as session:
        return {
            "chat_connected": bool(get_setting_value(session, CHAT_CONNECTED_KEY, False)),
            "chat_bot_name": get_setting_value(session, CHAT_BOT_NAME_KEY, "") or "",
            "mail_configured": mail is not None,
            "mail_test_mode": bool(getattr(mail, "test_mode", True)),
        }
