"""
crewcall.services.notification_service — Channels & Fan-out Dispatcher
=======================================================================

Adapter for the outbound notification collaborator.  The engine decides
*whether* each staff member is notified on each channel
(:mod:`crewcall.engine.notify_rules`); this module renders the text,
calls the channel and reports what happened.

Failures are logged and reported, never raised and never retried.
Callers invoke the dispatcher only after their transaction committed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from crewcall.config import CrewcallConfig
from crewcall.constants import Channel, NotificationKind
from crewcall.engine.context import EngineContext
from crewcall.engine.notify_rules import should_notify
from crewcall.services import templates

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


# ---------------------------------------------------------------------------
# Recipient snapshot (safe to use after the session closed)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PreferenceSnapshot:
    notify_new_events: bool = True
    notify_points: bool = True
    notify_level_up: bool = True


@dataclass(frozen=True, slots=True)
class Recipient:
    id: int
    name: str
    email: str | None
    chat_id: str | None
    status: str
    preferences: PreferenceSnapshot | None = None

    @classmethod
    def from_staff(cls, staff) -> Recipient:
        prefs = staff.preferences
        return cls(
            id=staff.id,
            name=staff.name,
            email=staff.email,
            chat_id=staff.chat_id,
            status=staff.status,
            preferences=PreferenceSnapshot(
                notify_new_events=prefs.notify_new_events,
                notify_points=prefs.notify_points,
                notify_level_up=prefs.notify_level_up,
            ) if prefs is not None else None,
        )

    def contact_for(self, channel: Channel) -> str | None:
        return self.email if channel == Channel.PRIMARY else self.chat_id


# ---------------------------------------------------------------------------
# Dispatch report
# ---------------------------------------------------------------------------
@dataclass
class DispatchReport:
    """What a fan-out did, per (staff id, channel)."""

    sent: list[tuple[int, str]] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)
    skipped: list[tuple[int, str]] = field(default_factory=list)

    def merge(self, other: DispatchReport) -> DispatchReport:
        self.sent.extend(other.sent)
        self.failed.extend(other.failed)
        self.skipped.extend(other.skipped)
        return self

    @property
    def warnings(self) -> list[str]:
        return [
            f"Notification to staff {staff_id} via {channel} failed"
            for staff_id, channel in self.failed
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": len(self.sent),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------
class NotificationChannel(Protocol):
    def send(self, contact: str, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        ...


class MailChannel:
    """Sends mail through an HTTP mail API (``POST {api_url}`` with JSON).

    Without an API URL the channel runs in test mode: the message is
    logged and reported as sent.
    """

    def __init__(
        self,
        *,
        sender: str,
        api_url: str | None = None,
        api_key: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.sender = sender
        self.api_url = api_url
        self.api_key = api_key
        self._client = client

    @property
    def test_mode(self) -> bool:
        return not self.api_url

    def send(self, contact: str, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        subject, text = templates.render(kind, payload)
        if self.test_mode:
            logger.info("[mail test mode] to=%s subject=%r", contact, subject)
            return True

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        body = {"from": self.sender, "to": [contact], "subject": subject, "text": text}
        client = self._client or httpx.Client(timeout=10)
        try:
            resp = client.post(self.api_url, json=body, headers=headers)
        finally:
            if self._client is None:
                client.close()
        if resp.status_code >= 300:
            logger.warning(
                "Mail API rejected message to %s: status=%s body=%s",
                contact, resp.status_code, resp.text[:300],
            )
            return False
        return True


class TelegramChannel:
    """Sends chat messages via the Telegram Bot API ``sendMessage``."""

    def __init__(self, *, bot_token: str, client: httpx.Client | None = None) -> None:
        self.bot_token = bot_token
        self._client = client

    def send(self, contact: str, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        _, text = templates.render(kind, payload)
        url = f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage"
        data = {"chat_id": contact, "text": text, "disable_web_page_preview": True}
        client = self._client or httpx.Client(timeout=10)
        try:
            resp = client.post(url, json=data)
        finally:
            if self._client is None:
                client.close()
        ok = resp.status_code == 200 and bool(resp.json().get("ok"))
        if not ok:
            logger.warning(
                "Telegram sendMessage failed for chat %s: status=%s body=%s",
                contact, resp.status_code, resp.text[:300],
            )
        return ok


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
class NotificationDispatcher:
    """Resolves eligibility per recipient/channel and calls the channels."""

    def __init__(
        self,
        channels: dict[Channel, NotificationChannel],
        app_url: str | None = None,
    ) -> None:
        self.channels = channels
        self.app_url = app_url

    def notify(
        self,
        recipient: Recipient,
        kind: NotificationKind,
        payload: dict[str, Any],
        ctx: EngineContext,
        only: Channel | None = None,
    ) -> DispatchReport:
        """Try every channel, or just *only*, for one recipient."""
        report = DispatchReport()
        for channel_name, channel in self.channels.items():
            if only is not None and channel_name != only:
                continue
            key = (recipient.id, channel_name.value)
            if not should_notify(recipient, kind, channel_name, ctx):
                report.skipped.append(key)
                continue
            contact = recipient.contact_for(channel_name)
            try:
                ok = channel.send(contact, kind, payload)
            except Exception:
                logger.exception(
                    "Failed to send %s notification to staff %d via %s",
                    kind, recipient.id, channel_name,
                )
                ok = False
            if ok:
                report.sent.append(key)
            else:
                logger.warning(
                    "%s notification to staff %d via %s was not delivered",
                    kind, recipient.id, channel_name,
                )
                report.failed.append(key)
        return report

    def fan_out(
        self,
        recipients: Iterable[Recipient],
        kind: NotificationKind,
        payload: dict[str, Any],
        ctx: EngineContext,
        only: Channel | None = None,
    ) -> DispatchReport:
        report = DispatchReport()
        payload = {"app_url": self.app_url, **payload}
        count = 0
        for recipient in recipients:
            report.merge(self.notify(recipient, kind, payload, ctx, only=only))
            count += 1
        logger.info(
            "Fan-out %s to %d staff: %d sent, %d failed, %d skipped",
            kind, count, len(report.sent), len(report.failed), len(report.skipped),
        )
        return report


def dispatch(
    dispatcher: NotificationDispatcher | None,
    recipients: Iterable[Recipient],
    kind: NotificationKind,
    payload: dict[str, Any],
    ctx: EngineContext,
) -> DispatchReport:
    """Fan out when a dispatcher is configured; an empty report otherwise."""
    if dispatcher is None:
        return DispatchReport()
    return dispatcher.fan_out(recipients, kind, payload, ctx)


def build_dispatcher(cfg: CrewcallConfig) -> NotificationDispatcher:
    """Wire channels from the environment.

    ``MAIL_API_URL`` / ``MAIL_API_KEY`` configure mail (test mode when the
    URL is unset); ``TELEGRAM_BOT_TOKEN`` enables the chat channel.
    """
    channels: dict[Channel, NotificationChannel] = {
        Channel.PRIMARY: MailChannel(
            sender=cfg.mail_sender,
            api_url=os.getenv("MAIL_API_URL") or None,
            api_key=os.getenv("MAIL_API_KEY") or None,
        ),
    }
    token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    if token:
        channels[Channel.CHAT] = TelegramChannel(bot_token=token)
    else:
        logger.info("TELEGRAM_BOT_TOKEN not set — chat notifications disabled")
    return NotificationDispatcher(channels, app_url=cfg.app_url)


def verify_telegram_bot(bot_token: str, client: httpx.Client | None = None) -> str | None:
    """Return the bot's username if *bot_token* is accepted by ``getMe``."""
    if not bot_token:
        return None
    own_client = client is None
    client = client or httpx.Client(timeout=10)
    try:
        resp = client.get(f"{TELEGRAM_API}/bot{bot_token}/getMe")
    except httpx.HTTPError:
        logger.warning("Telegram getMe request failed", exc_info=True)
        return None
    finally:
        if own_client:
            client.close()
    if resp.status_code != 200 or not resp.json().get("ok"):
        logger.warning("Telegram rejected bot token: status=%s", resp.status_code)
        return None
    return resp.json().get("result", {}).get("username") or ""
