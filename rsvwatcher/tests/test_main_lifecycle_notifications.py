from __future__ import annotations

from unittest.mock import ANY, patch

import main
from rsvwatcher.config import Settings
from rsvwatcher.state_file import WatcherState


def _settings(*, send_startup_notice: bool = True) -> Settings:
    return Settings(
        telegram_bot_token="TEST_TOKEN",
        telegram_chat_ids=("1",),
        poll_interval_ms=1,
        send_startup_notice=send_startup_notice,
        state_file=":memory:",
    )


def _args(once: bool):
    return type("Args", (), {"once": once})()


def test_main_sends_startup_notice_in_once_mode() -> None:
    settings = _settings()
    state = WatcherState()

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.load_state", return_value=state),
        patch("main.run_check_once") as run_once,
        patch("main.send_startup_notice") as notice,
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(True)),
    ):
        assert main.main() == 0
        run_once.assert_called_once_with(settings, state)
        notice.assert_called_once_with(settings)


def test_startup_notice_failure_does_not_block_the_loop() -> None:
    settings = _settings()

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.load_state", return_value=WatcherState()),
        patch("main.send_startup_notice", side_effect=RuntimeError("telegram down")),
        patch("main.run_forever") as run_forever,
        patch("main._install_stop_handlers"),
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(False)),
    ):
        assert main.main() == 0
        run_forever.assert_called_once_with(settings, ANY, stop_event=ANY)


def test_startup_notice_can_be_disabled() -> None:
    settings = _settings(send_startup_notice=False)

    with (
        patch("main.load_settings", return_value=settings),
        patch("main.load_state", return_value=WatcherState()),
        patch("main.run_check_once"),
        patch("main.send_startup_notice") as notice,
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(True)),
    ):
        assert main.main() == 0
        notice.assert_not_called()


def test_configuration_error_exits_non_zero_before_the_loop() -> None:
    with (
        patch("main.load_settings", side_effect=RuntimeError("Missing TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID")),
        patch("main.run_forever") as run_forever,
        patch("main.run_check_once") as run_once,
        patch("main.argparse.ArgumentParser.parse_args", return_value=_args(False)),
    ):
        assert main.main() == 1
        run_forever.assert_not_called()
        run_once.assert_not_called()
