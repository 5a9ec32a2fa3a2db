from __future__ import annotations

import httpx

from rsvwatcher.domain import DeliveryError

TELEGRAM_MAX_CHARS = 3900


def split_for_telegram(text: str, max_len: int = TELEGRAM_MAX_CHARS) -> list[str]:
    """Split on line boundaries into chunks of at most ``max_len`` characters.

    A single line longer than ``max_len`` is cut into ``max_len`` pieces.
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) <= max_len:
            current = candidate
            continue

        if current:
            chunks.append(current)
            current = ""

        if len(line) <= max_len:
            current = line
            continue

        rest = line
        while len(rest) > max_len:
            chunks.append(rest[:max_len])
            rest = rest[max_len:]
        current = rest

    if current:
        chunks.append(current)
    return chunks


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"

    with httpx.Client(timeout=timeout_seconds) as client:
        for chunk in split_for_telegram(text):
            payload = {
                "chat_id": chat_id,
                "text": chunk,
                "disable_web_page_preview": True,
            }
            r = client.post(url, json=payload)
            if not r.is_success:
                raise DeliveryError(f"telegram send failed: {r.status_code} {r.text}")
