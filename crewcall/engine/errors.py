"""
crewcall.engine.errors — Typed Error Taxonomy
==============================================

Every business failure the engine can report has its own exception
class with a stable ``code`` (the name surfaced to API clients).
Admission failures share :class:`AdmissionDenied` so callers can catch
them as one family; the API layer maps families onto HTTP status codes.
"""

from __future__ import annotations

import enum


class CrewcallError(Exception):
    """Base class for all expected, caller-recoverable failures."""

    code: str = "CrewcallError"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "detail": self.message}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
class InvalidTransition(CrewcallError):
    code = "InvalidTransition"

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move event from '{current}' to '{requested}'")


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------
class AdmissionReason(enum.StrEnum):
    """Reason codes returned by admission checks."""
    EVENT_NOT_OPEN = "EventNotOpen"
    DEADLINE_PASSED = "DeadlinePassed"
    ALREADY_SIGNED_UP = "AlreadySignedUp"
    NOT_SIGNED_UP = "NotSignedUp"
    LEVEL_NOT_MET = "LevelNotMet"


class AdmissionDenied(CrewcallError):
    """A sign-up or cancellation was refused."""

    reason: AdmissionReason

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message)

    @property
    def code(self) -> str:  # type: ignore[override]
        return self.reason.value


class EventNotOpen(AdmissionDenied):
    reason = AdmissionReason.EVENT_NOT_OPEN


class DeadlinePassed(AdmissionDenied):
    reason = AdmissionReason.DEADLINE_PASSED


class AlreadySignedUp(AdmissionDenied):
    reason = AdmissionReason.ALREADY_SIGNED_UP


class NotSignedUp(AdmissionDenied):
    reason = AdmissionReason.NOT_SIGNED_UP


class LevelNotMet(AdmissionDenied):
    reason = AdmissionReason.LEVEL_NOT_MET


ADMISSION_ERRORS: dict[AdmissionReason, type[AdmissionDenied]] = {
    cls.reason: cls
    for cls in (EventNotOpen, DeadlinePassed, AlreadySignedUp, NotSignedUp, LevelNotMet)
}


# ---------------------------------------------------------------------------
# Integrity / authorization / validation
# ---------------------------------------------------------------------------
class LevelInUse(CrewcallError):
    code = "LevelInUse"


class Forbidden(CrewcallError):
    code = "Forbidden"


class InvalidReason(CrewcallError):
    code = "InvalidReason"


class NotFound(CrewcallError):
    code = "NotFound"


class InvalidEventSpec(CrewcallError):
    code = "InvalidEventSpec"


class InvalidLadder(CrewcallError):
    code = "InvalidLadder"


class InvalidChatId(CrewcallError):
    code = "InvalidChatId"


class DuplicateEmail(CrewcallError):
    code = "DuplicateEmail"


class InvalidStaffRecord(CrewcallError):
    code = "InvalidStaffRecord"


class InvalidSetting(CrewcallError):
    code = "InvalidSetting"


class StaffHasHistory(CrewcallError):
    """The staff member has ledger entries, which are never deleted."""

    code = "StaffHasHistory"
