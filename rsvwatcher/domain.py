from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Plan:
    """A bookable plan offered by the reservation site.

    Identity is ``id``; ``label`` is only for display.
    """

    id: int
    label: str


@dataclass(frozen=True)
class Slot:
    """An available calendar date for a plan."""

    plan_id: int
    plan_label: str
    date_iso: str  # YYYY-MM-DD
    key: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", f"{self.plan_id}|{self.date_iso}")


@dataclass(frozen=True)
class SessionContext:
    """Cookies and anti-forgery tokens of one upstream session.

    Built fresh every cycle: the site issues new tokens per session.
    """

    cookie: str
    csrf_token: str
    token_fields: str
    token_unlocked: str


@dataclass(frozen=True)
class CalendarPage:
    html: str
    cookie: str


class UpstreamError(RuntimeError):
    """The reservation site answered with a non-2xx status."""

    def __init__(self, message: str, *, status: int, url: str):
        super().__init__(message)
        self.status = status
        self.url = url


class DeliveryError(RuntimeError):
    """Telegram did not accept a message."""
