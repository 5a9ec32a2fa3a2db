from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Iterable

from rsvwatcher.domain import Slot

logger = logging.getLogger(__name__)


def now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class WatcherState:
    """Slot keys already notified, mapped to the time they were first seen.

    Keys are only ever added.
    """

    seen: dict[str, str] = field(default_factory=dict)

    def filter_new(self, slots: Iterable[Slot], *, seen_at: str | None = None) -> list[Slot]:
        """Return slots whose key is not yet seen and mark them seen in one step."""
        seen_at = seen_at or now_iso()
        new_slots: list[Slot] = []
        for slot in slots:
            if slot.key in self.seen:
                continue
            self.seen[slot.key] = seen_at
            new_slots.append(slot)
        return new_slots


def load_state(path: str) -> WatcherState:
    if not os.path.exists(path):
        return WatcherState()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        # Corrupted state shouldn't brick the watcher; start fresh.
        logger.warning("State load failed for %s (%s: %s), starting empty", path, type(e).__name__, e)
        return WatcherState()

    seen_raw = raw.get("seen") if isinstance(raw, dict) else None
    if not isinstance(seen_raw, dict):
        logger.warning("State file %s has no 'seen' mapping, starting empty", path)
        return WatcherState()

    return WatcherState(seen={str(k): str(v) for k, v in seen_raw.items()})


def save_state(path: str, state: WatcherState) -> None:
    data = {"seen": dict(state.seen)}

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)
