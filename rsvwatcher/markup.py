from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from rsvwatcher.domain import Plan

_PLAN_INPUT_ID = re.compile(r"^plan-(\d+)$")
_YEAR_MONTH = re.compile(r"(\d{4})\s*年.*?(\d{1,2})\s*月", re.S)
_RSV_DATE = re.compile(r"^(\d{4})/(\d{2})/(\d{2})$")
_DAY_NUMBER = re.compile(r"^\d{1,2}$")
_DAY_LABEL_CLASS = re.compile(r"^sc_cal_date")
_AVAILABLE_ICON = re.compile(r"icon_circle\.svg", re.I)
_DISABLED_ICON = re.compile(r"icon_disabled\.svg", re.I)
_AVAILABLE_TEXT = re.compile(r"\bAvailable\b|受付中", re.I)
_WHITESPACE = re.compile(r"\s+")


_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&nbsp;", " "),
)


def _soup(html: str) -> BeautifulSoup:
    # Escape every "&" so the parser hands back entity references verbatim;
    # only the _ENTITIES table is decoded, by decode_html().
    return BeautifulSoup(html.replace("&", "&amp;"), "html.parser")


def decode_html(text: str) -> str:
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def _clean(text: str) -> str:
    return decode_html(text).strip()


def _input_values(soup: BeautifulSoup, field_name: str, *, checked_only: bool = False) -> Iterable[str]:
    for el in soup.find_all("input", attrs={"name": field_name}):
        value = el.get("value")
        if value is None:
            continue
        if checked_only and not el.has_attr("checked"):
            continue
        yield _clean(value)


def extract_input_value(html: str, field_name: str) -> str:
    """Value of the first ``<input name=field_name value=...>``, or ``""``."""
    return next(iter(_input_values(_soup(html), field_name)), "")


def parse_selected_value(html: str, field_name: str) -> str:
    """Like :func:`extract_input_value`, falling back to the checked radio of a group."""
    soup = _soup(html)
    value = next(iter(_input_values(soup, field_name)), "")
    if value:
        return value
    return next(iter(_input_values(soup, field_name, checked_only=True)), "")


def dedupe_plans(plans: Iterable[Plan]) -> list[Plan]:
    # Same id with another label counts as a different plan: the site has
    # shipped duplicated ids with different text.
    seen: set[tuple[int, str]] = set()
    result: list[Plan] = []
    for p in plans:
        if (p.id, p.label) in seen:
            continue
        seen.add((p.id, p.label))
        result.append(p)
    return result


def parse_plans(html: str) -> list[Plan]:
    """Plans from ``<input id="plan-N">`` immediately followed by ``<label for="plan-N">``."""
    plans: list[Plan] = []
    for el in _soup(html).find_all("input", id=_PLAN_INPUT_ID):
        input_id = el["id"]
        label = el.find_next_sibling()
        if label is None or label.name != "label" or label.get("for") != input_id:
            continue

        plan_id = int(_PLAN_INPUT_ID.match(input_id).group(1))
        text = _clean(_WHITESPACE.sub(" ", label.get_text()))
        if plan_id > 0 and text:
            plans.append(Plan(id=plan_id, label=text))

    return dedupe_plans(plans)


def _year_month(soup: BeautifulSoup, fallback: dt.date) -> tuple[int, int]:
    header = soup.find("div", class_="date")
    if header is not None:
        m = _YEAR_MONTH.search(decode_html(header.get_text()))
        if m:
            year, month = int(m.group(1)), int(m.group(2))
            if 1 <= month <= 12:
                return year, month
    return fallback.year, fallback.month


def parse_year_month(html: str, fallback: dt.date) -> tuple[int, int]:
    """Year and month shown in the calendar header ("2025年 <b>3</b>月").

    Never raises: without a usable header the fallback date's year/month is returned.
    """
    return _year_month(_soup(html), fallback)


def rsv_date_to_iso(raw: str) -> str:
    m = _RSV_DATE.match(raw.strip())
    if not m:
        return ""
    return to_iso_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def to_iso_date(year: int, month: int, day: int) -> str:
    try:
        return dt.date(year, month, day).isoformat()
    except ValueError:
        return ""


@dataclass(frozen=True)
class CellVerdict:
    available: bool
    dates: tuple[str, ...] = ()


UNAVAILABLE = CellVerdict(available=False)

# A classifier returns None when it has no opinion about the cell.
CellClassifier = Callable[[Tag, int, int], Optional[CellVerdict]]


def classify_by_date_icon(cell: Tag, year: int, month: int) -> Optional[CellVerdict]:
    """Current markup: a circle icon plus absolute ``data-date="YYYY/MM/DD"`` attributes."""
    if not _AVAILABLE_ICON.search(cell.decode_contents()):
        return None

    dates = [rsv_date_to_iso(el["data-date"]) for el in cell.find_all(attrs={"data-date": True})]
    dates = [d for d in dates if d]
    if not dates:
        return None
    return CellVerdict(available=True, dates=tuple(dates))


def classify_by_disabled_icon(cell: Tag, year: int, month: int) -> Optional[CellVerdict]:
    if _DISABLED_ICON.search(cell.decode_contents()):
        return UNAVAILABLE
    return None


def classify_by_label_text(cell: Tag, year: int, month: int) -> Optional[CellVerdict]:
    """Older markup: "Available"/"受付中" text and a bare day number in ``div.sc_cal_date``."""
    if not _AVAILABLE_TEXT.search(cell.decode_contents()):
        return None

    day_label = cell.find("div", class_=_DAY_LABEL_CLASS)
    if day_label is None:
        return None

    day_text = _clean(day_label.get_text())
    if not _DAY_NUMBER.match(day_text):
        return None

    day = int(day_text)
    if day < 1 or day > 31:
        return None

    iso = to_iso_date(year, month, day)
    if not iso:
        return None
    return CellVerdict(available=True, dates=(iso,))


CELL_CLASSIFIERS: tuple[CellClassifier, ...] = (
    classify_by_date_icon,
    classify_by_disabled_icon,
    classify_by_label_text,
)


def classify_cell(
    cell: Tag,
    year: int,
    month: int,
    classifiers: Sequence[CellClassifier] = CELL_CLASSIFIERS,
) -> Optional[CellVerdict]:
    for classifier in classifiers:
        verdict = classifier(cell, year, month)
        if verdict is not None:
            return verdict
    return None


def parse_available_dates(
    html: str,
    fallback_date: dt.date,
    classifiers: Sequence[CellClassifier] = CELL_CLASSIFIERS,
) -> list[str]:
    """Sorted, de-duplicated ISO dates of every available ``<td>`` in a calendar fragment."""
    soup = _soup(html)
    year, month = _year_month(soup, fallback_date)

    dates: set[str] = set()
    for cell in soup.find_all("td"):
        verdict = classify_cell(cell, year, month, classifiers)
        if verdict is not None and verdict.available:
            dates.update(verdict.dates)

    return sorted(dates)
