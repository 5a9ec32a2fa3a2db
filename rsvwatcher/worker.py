from __future__ import annotations

import logging
import threading
from typing import Iterable

from tenacity import RetryCallState, retry, stop_after_attempt, wait_exponential

from rsvwatcher.config import Settings
from rsvwatcher.discovery import discover_slots
from rsvwatcher.domain import DeliveryError, Slot
from rsvwatcher.state_file import WatcherState, now_iso, save_state
from rsvwatcher.telegram_notifier import send_telegram_message

logger = logging.getLogger(__name__)

ALERT_TITLE = "Japan visa slot available"


def build_alert_text(settings: Settings, slots: Iterable[Slot], *, checked_at: str | None = None) -> str:
    lines = [ALERT_TITLE, ""]
    for slot in slots:
        lines.append(f"Plan: {slot.plan_label} (ID: {slot.plan_id})")
        lines.append(f"Date: {slot.date_iso}")
        lines.append("")

    lines.append(f"Checked at: {checked_at or now_iso()}")
    lines.append(f"URL: {settings.calendar_url}")
    return "\n".join(lines)


def build_startup_text(settings: Settings) -> str:
    return "\n".join(
        [
            "Visa watcher started",
            f"Time: {now_iso()}",
            f"URL: {settings.calendar_url}",
        ]
    )


def _broadcast_telegram(settings: Settings, text: str) -> None:
    if settings.dry_run:
        logger.info("DRY_RUN telegram message:\n%s", text)
        return

    errors: list[tuple[str, Exception]] = []

    for chat_id in settings.telegram_chat_ids:
        try:
            send_telegram_message(
                bot_token=settings.telegram_bot_token,
                chat_id=chat_id,
                text=text,
                timeout_seconds=settings.request_timeout_seconds,
            )
        except Exception as e:
            # Best-effort: don't stop sending to other chat_ids.
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            errors.append((chat_id, e))

    if errors:
        failed = ", ".join([cid for cid, _ in errors])
        raise DeliveryError(f"Failed to send telegram message to some recipients: {failed}") from errors[-1][1]


def send_startup_notice(settings: Settings) -> None:
    _broadcast_telegram(settings, build_startup_text(settings))


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning("Discovery attempt %s failed (%s)", retry_state.attempt_number, _short_exc(retry_state))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying discovery with a new session...")
        return
    logger.info("Retrying discovery with a new session in %.0f sec.", sleep_seconds)


def _discover_with_retry(settings: Settings) -> list[Slot]:
    decorated = retry(
        stop=stop_after_attempt(settings.check_retry_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=8),
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(discover_slots)

    return decorated(settings)


def run_check_once(settings: Settings, state: WatcherState) -> list[Slot]:
    """One polling cycle. Returns the slots that were notified.

    New slots are marked seen before the alert goes out: a failed delivery is
    not retried for them, but nothing is ever announced twice.
    """
    current = _discover_with_retry(settings)
    new_slots = state.filter_new(current)

    logger.info("Slots: current=%d new=%d seen=%d", len(current), len(new_slots), len(state.seen))

    if not new_slots:
        logger.info("No new slots")
        return []

    _broadcast_telegram(settings, build_alert_text(settings, new_slots))
    logger.info("Sent alert for %d available slot(s)", len(new_slots))

    save_state(settings.state_file, state)
    logger.info("State saved to %s", settings.state_file)
    return new_slots


def run_forever(settings: Settings, state: WatcherState, *, stop_event: threading.Event | None = None) -> None:
    stop_event = stop_event or threading.Event()
    logger.info(
        "Worker started. poll=%sms monthsAhead=%s dryRun=%s",
        settings.poll_interval_ms,
        settings.months_ahead,
        settings.dry_run,
    )
    while not stop_event.is_set():
        try:
            run_check_once(settings, state)
        except Exception as e:
            logger.error("Check failed (%s: %s)", type(e).__name__, e)
        stop_event.wait(settings.poll_interval_seconds)

    logger.info("Worker stopped.")
