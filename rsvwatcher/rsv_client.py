from __future__ import annotations

import datetime as dt
import json
import logging
from time import monotonic
from urllib.parse import urlsplit

import httpx

from rsvwatcher.config import Settings
from rsvwatcher.domain import CalendarPage, SessionContext, UpstreamError
from rsvwatcher.markup import extract_input_value

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (visa-slot-watcher)"


def build_client(settings: Settings, *, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    return httpx.Client(
        timeout=settings.request_timeout_seconds,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
        transport=transport,
    )


def format_rsv_date(date: dt.date) -> str:
    return f"{date.year:04d}/{date.month:02d}/{date.day:02d}"


def cookie_header_from_response(response: httpx.Response) -> str:
    """Join the ``name=value`` part of every Set-Cookie header into one Cookie header."""
    pairs = [raw.split(";", 1)[0].strip() for raw in response.headers.get_list("set-cookie")]
    return "; ".join(p for p in pairs if p)


def parse_cookie_header(cookie: str) -> dict[str, str]:
    result: dict[str, str] = {}
    for part in cookie.split(";"):
        part = part.strip()
        key, eq, value = part.partition("=")
        key = key.strip()
        if not eq or not key:
            continue
        result[key] = value.strip()
    return result


def merge_cookie_headers(existing: str, new: str) -> str:
    """Merge two Cookie headers; on a key collision the value from ``new`` wins."""
    merged = parse_cookie_header(existing or "")
    merged.update(parse_cookie_header(new or ""))
    return "; ".join(f"{k}={v}" for k, v in merged.items())


def unwrap_html(body: str) -> str:
    """Return ``html`` from a ``{"html": "..."}`` envelope, or the body unchanged."""
    trimmed = body.strip()
    if not trimmed.startswith("{"):
        return body

    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        return body

    if isinstance(parsed, dict) and isinstance(parsed.get("html"), str):
        return parsed["html"]
    return body


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _xhr_headers(settings: Settings, cookie: str) -> dict[str, str]:
    headers = {
        "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
        "Accept": "text/html, */*; q=0.01",
        "X-Requested-With": "XMLHttpRequest",
        "Origin": _origin(settings.calendar_url),
        "Referer": settings.calendar_url,
    }
    if cookie:
        headers["Cookie"] = cookie
    return headers


def _request(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    settings: Settings,
    **kwargs,
) -> tuple[httpx.Response, str]:
    """Send a request and read its decoded body within one overall deadline.

    The client timeout bounds each connect/read/write step; this bounds the
    whole exchange, redirects and body included.
    """
    deadline = monotonic() + settings.request_timeout_seconds
    chunks: list[bytes] = []
    with client.stream(method, url, **kwargs) as response:
        _check_deadline(deadline, response, settings)
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            _check_deadline(deadline, response, settings)
    body = b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
    return response, body


def _check_deadline(deadline: float, response: httpx.Response, settings: Settings) -> None:
    if monotonic() > deadline:
        raise httpx.ReadTimeout(
            f"{response.request.method} {response.request.url} exceeded {settings.request_timeout_ms} ms",
            request=response.request,
        )


def fetch_initial_page(client: httpx.Client, *, settings: Settings) -> CalendarPage:
    response, body = _request(
        client,
        "GET",
        settings.calendar_url,
        settings=settings,
        headers={"Accept": "text/html,application/xhtml+xml"},
    )
    if not response.is_success:
        raise UpstreamError(
            f"initial GET failed: {response.status_code}",
            status=response.status_code,
            url=settings.calendar_url,
        )
    # Cookies set on a redirect hop belong to the session too.
    cookie = ""
    for hop in (*response.history, response):
        cookie = merge_cookie_headers(cookie, cookie_header_from_response(hop))
    return CalendarPage(html=body, cookie=cookie)


def select_category(client: httpx.Client, *, settings: Settings, page: CalendarPage) -> CalendarPage:
    """Submit the empty category search, trying the ajax endpoint before the page endpoint."""
    form = {"_method": "POST"}
    csrf_token = extract_input_value(page.html, "_csrfToken")
    if csrf_token:
        form["_csrfToken"] = csrf_token
    form["category"] = ""
    form["event"] = str(settings.event_id)
    form["search"] = "exec"

    last_error: UpstreamError | None = None
    for url in (settings.calendar_ajax_url, settings.calendar_url):
        response, body = _request(
            client, "POST", url, settings=settings, data=form, headers=_xhr_headers(settings, page.cookie)
        )
        if not response.is_success:
            last_error = UpstreamError(
                f"category select POST failed via {url}: {response.status_code} body={body[:300]}",
                status=response.status_code,
                url=url,
            )
            logger.warning("Category select via %s returned %s", url, response.status_code)
            continue

        return CalendarPage(
            html=unwrap_html(body),
            cookie=merge_cookie_headers(page.cookie, cookie_header_from_response(response)),
        )

    assert last_error is not None
    raise last_error


def fetch_calendar(
    client: httpx.Client,
    *,
    settings: Settings,
    session: SessionContext,
    plan_id: int | None,
    date: dt.date,
) -> str:
    """Month calendar HTML for a plan; ``plan_id=None`` asks without a selected plan."""
    form = {"_method": "POST"}
    if session.csrf_token:
        form["_csrfToken"] = session.csrf_token
    form["event"] = str(settings.event_id)
    if plan_id is not None and plan_id > 0:
        form["plan"] = str(plan_id)
    form["date"] = format_rsv_date(date)
    form["disp_type"] = "month"
    form["search"] = "exec"
    if session.token_fields:
        form["_Token[fields]"] = session.token_fields
    form["_Token[unlocked]"] = session.token_unlocked or ""

    response, body = _request(
        client,
        "POST",
        settings.calendar_ajax_url,
        settings=settings,
        data=form,
        headers=_xhr_headers(settings, session.cookie),
    )

    if settings.debug_calendar_response:
        max_chars = settings.debug_calendar_response_max_chars
        preview = body if max_chars == 0 else body[:max_chars]
        logger.info(
            "Calendar response plan=%s date=%s status=%s body:\n%s",
            plan_id,
            format_rsv_date(date),
            response.status_code,
            preview,
        )

    if not response.is_success:
        raise UpstreamError(
            f"calendar POST failed for plan {plan_id}: {response.status_code}",
            status=response.status_code,
            url=settings.calendar_ajax_url,
        )

    return unwrap_html(body)
