import argparse
import logging
import signal
import threading

from rsvwatcher.config import load_settings
from rsvwatcher.state_file import load_state
from rsvwatcher.worker import run_check_once, run_forever, send_startup_notice

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, frame) -> None:
        logger.info("Received signal %s, stopping after the current check", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main() -> int:
    parser = argparse.ArgumentParser(description="rsvwatcher: reservation slot watcher")
    parser.add_argument("--once", action="store_true", help="Run single check and exit")
    args = parser.parse_args()

    _setup_logging()

    try:
        settings = load_settings()
    except RuntimeError as e:
        logger.error("Fatal: %s", e)
        return 1

    logger.info("Watcher started (dryRun=%s, state=%s)", settings.dry_run, settings.state_file)
    state = load_state(settings.state_file)

    # Startup probe (best-effort)
    if settings.send_startup_notice:
        try:
            send_startup_notice(settings)
            logger.info("Startup telegram notice sent")
        except Exception:
            logger.warning("Startup telegram notice failed", exc_info=True)
    else:
        logger.info("Startup telegram notice disabled")

    if args.once:
        run_check_once(settings, state)
        return 0

    stop_event = threading.Event()
    _install_stop_handlers(stop_event)
    run_forever(settings, state, stop_event=stop_event)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
