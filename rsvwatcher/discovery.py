from __future__ import annotations

import calendar
import datetime as dt
import logging
from typing import Iterable, Sequence

import httpx

from rsvwatcher.config import Settings
from rsvwatcher.domain import Plan, SessionContext, Slot
from rsvwatcher.markup import extract_input_value, parse_available_dates, parse_plans, parse_selected_value
from rsvwatcher.rsv_client import build_client, fetch_calendar, fetch_initial_page, select_category

logger = logging.getLogger(__name__)


def add_months(date: dt.date, months: int) -> dt.date:
    """Same day-of-month ``months`` later, clamped to the last day of a shorter month
    (Jan 31 + 1 -> Feb 28/29)."""
    index = date.month - 1 + months
    year = date.year + index // 12
    month = index % 12 + 1
    day = min(date.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def select_target_plans(all_plans: Sequence[Plan], plan_ids: Sequence[int]) -> list[Plan]:
    if not plan_ids:
        return list(all_plans)

    wanted = set(plan_ids)
    from_page = [p for p in all_plans if p.id in wanted]
    if from_page:
        return from_page

    # The page may have stopped rendering plans; explicit ids still drive the checks.
    return [Plan(id=plan_id, label=f"Plan {plan_id}") for plan_id in plan_ids]


def dedupe_slots(slots: Iterable[Slot]) -> list[Slot]:
    by_key: dict[str, Slot] = {}
    for slot in slots:
        by_key.setdefault(slot.key, slot)
    return sorted(by_key.values(), key=lambda s: (s.date_iso, s.plan_id))


def open_session(client: httpx.Client, *, settings: Settings) -> tuple[SessionContext, str]:
    """Run the landing GET and the category POST; return the session and the category HTML."""
    initial = fetch_initial_page(client, settings=settings)
    context = select_category(client, settings=settings, page=initial)

    session = SessionContext(
        cookie=context.cookie,
        csrf_token=extract_input_value(context.html, "_csrfToken"),
        token_fields=extract_input_value(context.html, "_Token[fields]"),
        token_unlocked=extract_input_value(context.html, "_Token[unlocked]"),
    )
    return session, context.html


def _plan_catalog(context_html: str) -> list[Plan]:
    plans = parse_plans(context_html)
    if plans:
        return plans

    selected = parse_selected_value(context_html, "plan")
    if selected.isdigit() and int(selected) > 0:
        return [Plan(id=int(selected), label=f"Plan {int(selected)}")]
    return []


def discover_slots(
    settings: Settings,
    *,
    client: httpx.Client | None = None,
    today: dt.date | None = None,
) -> list[Slot]:
    """Currently available slots of every target plan within ``months_ahead`` months.

    Requests are strictly sequential. Callers filter out already notified slots.
    """
    if client is None:
        with build_client(settings) as own_client:
            return discover_slots(settings, client=own_client, today=today)

    today = today or dt.date.today()

    session, context_html = open_session(client, settings=settings)
    all_plans = _plan_catalog(context_html)

    # Without an allow-list, ask once with no plan selected: the plan list
    # depends on the category context chosen above.
    if not settings.plan_ids:
        seed_html = fetch_calendar(client, settings=settings, session=session, plan_id=None, date=today)
        discovered = parse_plans(seed_html)
        if discovered:
            all_plans = discovered

    target_plans = select_target_plans(all_plans, settings.plan_ids)
    if not target_plans:
        raise RuntimeError("No plans detected from calendar page.")

    logger.info("Checking %d plan(s): %s", len(target_plans), ", ".join(str(p.id) for p in target_plans))

    found: list[Slot] = []
    for plan in target_plans:
        for offset in range(settings.months_ahead):
            date = add_months(today, offset)
            calendar_html = fetch_calendar(client, settings=settings, session=session, plan_id=plan.id, date=date)
            for date_iso in parse_available_dates(calendar_html, date):
                found.append(Slot(plan_id=plan.id, plan_label=plan.label, date_iso=date_iso))

    return dedupe_slots(found)
