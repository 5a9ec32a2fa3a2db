from __future__ import annotations

import pytest

from rsvwatcher.config import DEFAULT_CALENDAR_URL, load_settings

_ENV_NAMES = (
    "CALENDAR_URL",
    "CALENDAR_AJAX_URL",
    "EVENT_ID",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "POLL_INTERVAL_MS",
    "REQUEST_TIMEOUT_MS",
    "MONTHS_AHEAD",
    "PLAN_IDS",
    "DRY_RUN",
    "SEND_STARTUP_NOTICE",
    "DEBUG_CALENDAR_RESPONSE",
    "DEBUG_CALENDAR_RESPONSE_MAX_CHARS",
    "CHECK_RETRY_ATTEMPTS",
    "STATE_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def empty_dotenv(tmp_path) -> str:
    # An explicit empty file keeps a developer .env out of these tests.
    path = tmp_path / ".env"
    path.write_text("")
    return str(path)


def _credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "1")


def test_defaults(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    _credentials(monkeypatch)

    settings = load_settings(dotenv_path=empty_dotenv)

    assert settings.calendar_url == DEFAULT_CALENDAR_URL
    assert settings.event_id == 16
    assert settings.poll_interval_ms == 45000
    assert settings.request_timeout_ms == 20000
    assert settings.request_timeout_seconds == 20.0
    assert settings.months_ahead == 1
    assert settings.plan_ids == ()
    assert settings.dry_run is False
    assert settings.send_startup_notice is True
    assert settings.debug_calendar_response is False
    assert settings.debug_calendar_response_max_chars == 3000
    assert settings.check_retry_attempts == 1
    assert settings.state_file == ".watcher-state.json"


def test_missing_credentials_are_fatal_outside_dry_run(empty_dotenv: str) -> None:
    with pytest.raises(RuntimeError, match="Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID"):
        load_settings(dotenv_path=empty_dotenv)


def test_dry_run_does_not_need_credentials(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    monkeypatch.setenv("DRY_RUN", "TRUE")

    settings = load_settings(dotenv_path=empty_dotenv)

    assert settings.dry_run is True
    assert settings.telegram_chat_ids == ()


def test_plan_ids_keep_positive_integers_in_order(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    _credentials(monkeypatch)
    monkeypatch.setenv("PLAN_IDS", " 34, 20,abc,-1,0,,20 ")

    assert load_settings(dotenv_path=empty_dotenv).plan_ids == (34, 20)


@pytest.mark.parametrize("raw, expected", [("abc", 45000), ("-5", 45000), ("0", 45000), ("1500.7", 1500), ("60000", 60000)])
def test_invalid_numbers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int, empty_dotenv: str) -> None:
    _credentials(monkeypatch)
    monkeypatch.setenv("POLL_INTERVAL_MS", raw)

    assert load_settings(dotenv_path=empty_dotenv).poll_interval_ms == expected


def test_debug_preview_accepts_zero(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    _credentials(monkeypatch)
    monkeypatch.setenv("DEBUG_CALENDAR_RESPONSE", "true")
    monkeypatch.setenv("DEBUG_CALENDAR_RESPONSE_MAX_CHARS", "0")

    settings = load_settings(dotenv_path=empty_dotenv)

    assert settings.debug_calendar_response is True
    assert settings.debug_calendar_response_max_chars == 0


def test_startup_notice_can_be_disabled(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    _credentials(monkeypatch)
    monkeypatch.setenv("SEND_STARTUP_NOTICE", "False")

    assert load_settings(dotenv_path=empty_dotenv).send_startup_notice is False


def test_load_settings_parses_multiple_telegram_chat_ids(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    # Chat ids (csv) with spaces, duplicates and empty parts.
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "1, 2,2,, -1003, 1")

    assert load_settings(dotenv_path=empty_dotenv).telegram_chat_ids == ("1", "2", "-1003")


def test_load_settings_rejects_empty_telegram_chat_ids(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", " , ,")

    with pytest.raises(RuntimeError, match=r"Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID"):
        load_settings(dotenv_path=empty_dotenv)


def test_load_settings_rejects_non_integer_telegram_chat_id(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "abc")

    with pytest.raises(RuntimeError, match=r"Invalid TELEGRAM_CHAT_ID"):
        load_settings(dotenv_path=empty_dotenv)


def test_load_settings_rejects_zero_chat_id(monkeypatch: pytest.MonkeyPatch, empty_dotenv: str) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "t")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "0")

    with pytest.raises(RuntimeError, match=r"not a valid chat id"):
        load_settings(dotenv_path=empty_dotenv)


def test_load_settings_does_not_override_existing_env_with_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    # load_dotenv(override=False) must not overwrite already-set env vars.
    _credentials(monkeypatch)

    dotenv = tmp_path / ".env"
    dotenv.write_text("TELEGRAM_CHAT_ID=999\n")

    settings = load_settings(dotenv_path=str(dotenv))
    assert settings.telegram_chat_ids == ("1",)
