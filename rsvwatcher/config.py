from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CALENDAR_URL = "https://toronto.rsvsys.jp/reservations/calendar"
DEFAULT_CALENDAR_AJAX_URL = "https://toronto.rsvsys.jp/ajax/reservations/calendar"

_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no"}


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID supports a single value or a comma-separated list.
    # Examples:
    #   TELEGRAM_CHAT_ID=123456789
    #   TELEGRAM_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        # Groups/supergroups have negative ids.
        try:
            int(p)
        except ValueError as e:
            raise RuntimeError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e

        if p == "0":
            raise RuntimeError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    return tuple(result)


def _parse_plan_ids(raw: str) -> tuple[int, ...]:
    result: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = int(part)
        except ValueError:
            logger.warning("Ignoring invalid PLAN_IDS entry: %r", part)
            continue
        if value > 0 and value not in result:
            result.append(value)
    return tuple(result)


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(float(raw))
    except (ValueError, OverflowError):
        logger.warning("%s=%r is not a number, using %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%r must be >= %s, using %s", name, raw, minimum, default)
        return default
    return value


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if default:
        return raw not in _FALSE
    return raw in _TRUE


@dataclass(frozen=True)
class Settings:
    calendar_url: str = DEFAULT_CALENDAR_URL
    calendar_ajax_url: str = DEFAULT_CALENDAR_AJAX_URL
    event_id: int = 16

    telegram_bot_token: str = ""
    telegram_chat_ids: tuple[str, ...] = ()

    poll_interval_ms: int = 45000
    request_timeout_ms: int = 20000
    months_ahead: int = 1

    # Empty means "every plan the site offers".
    plan_ids: tuple[int, ...] = ()

    dry_run: bool = False
    send_startup_notice: bool = True

    debug_calendar_response: bool = False
    # 0 logs the whole body.
    debug_calendar_response_max_chars: int = 3000

    # Full discovery attempts per cycle; each attempt opens a new session.
    check_retry_attempts: int = 1

    # Where we store already notified slots
    state_file: str = ".watcher-state.json"

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    dry_run = _env_flag("DRY_RUN", False)
    telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "").strip()
    telegram_chat_ids = _parse_telegram_chat_ids(os.getenv("TELEGRAM_CHAT_ID", ""))

    if not dry_run and (not telegram_bot_token or not telegram_chat_ids):
        raise RuntimeError("Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID (required unless DRY_RUN=true)")

    return Settings(
        calendar_url=os.getenv("CALENDAR_URL") or DEFAULT_CALENDAR_URL,
        calendar_ajax_url=os.getenv("CALENDAR_AJAX_URL") or DEFAULT_CALENDAR_AJAX_URL,
        event_id=_env_int("EVENT_ID", 16),
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
        poll_interval_ms=_env_int("POLL_INTERVAL_MS", 45000),
        request_timeout_ms=_env_int("REQUEST_TIMEOUT_MS", 20000),
        months_ahead=_env_int("MONTHS_AHEAD", 1),
        plan_ids=_parse_plan_ids(os.getenv("PLAN_IDS", "")),
        dry_run=dry_run,
        send_startup_notice=_env_flag("SEND_STARTUP_NOTICE", True),
        debug_calendar_response=_env_flag("DEBUG_CALENDAR_RESPONSE", False),
        debug_calendar_response_max_chars=_env_int("DEBUG_CALENDAR_RESPONSE_MAX_CHARS", 3000, minimum=0),
        check_retry_attempts=_env_int("CHECK_RETRY_ATTEMPTS", 1),
        state_file=os.getenv("STATE_FILE") or ".watcher-state.json",
    )
