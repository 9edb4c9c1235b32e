"""
crewcall.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings (organisation
identity, dashboard port, local timezone, mail sender).  Runtime toggles
such as the chat integration live in the ``settings`` database table and
are folded into :class:`~crewcall.engine.context.EngineContext`.

Usage::

    from crewcall.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.organization_name) # "Harbor Events Crew"
    print(cfg.timezone)          # "Europe/Berlin"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CrewcallConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    organization_name: str

    # Dashboard
    dashboard_port: int

    # Local calendar used for the "no sign-up on the event day" rule
    timezone: str = "UTC"

    # Outbound mail
    mail_sender: str = "no-reply@localhost"

    # Optional
    app_url: str | None = None  # Linked from notification messages


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> CrewcallConfig:
    """Read *path* and return a :class:`CrewcallConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``timezone`` is not a known IANA zone name.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    tz_name = raw.get("timezone") or "UTC"
    try:
        ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Unknown timezone in config: {tz_name!r}") from exc

    return CrewcallConfig(
        organization_name=raw["organization_name"],
        dashboard_port=int(raw["dashboard_port"]),
        timezone=tz_name,
        mail_sender=raw.get("mail_sender") or "no-reply@localhost",
        app_url=raw.get("app_url") or None,
    )
