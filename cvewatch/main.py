"""
CVE Watch - Main Entry Point

Starts the twice-daily CVE check and keeps the process alive until
SIGINT or SIGTERM.
"""

import sys
import signal
import threading
from pathlib import Path

from . import __version__
from .config import load_config, validate_config
from .logging_setup import configure_logging
from .orchestrator import SecurityOrchestrator
from .scheduler import CVEWatchScheduler, SCHEDULE_DESCRIPTION


def main():
    """Main entry point."""
    print("=" * 60)
    print("  CVE Watch")
    print("  Organization Security Monitoring")
    print("=" * 60)
    print()

    config = load_config()

    errors = validate_config(config)
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        print()
        print("Please check your .env file and try again.")
        sys.exit(1)

    Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)

    logger = configure_logging(config)
    logger.info("cvewatch_starting", version=__version__, environment=config.app_env)

    orchestrator = SecurityOrchestrator(config)
    scheduler = CVEWatchScheduler(orchestrator, config)

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        if shutdown_event.is_set():
            logger.warning("forced_shutdown")
            sys.exit(1)
        shutdown_event.set()
        logger.info("shutdown_requested", signal=signum)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler.start()

    print()
    print(f"Scheduler started. {SCHEDULE_DESCRIPTION}.")
    print("Press Ctrl+C to stop.")
    print()

    try:
        shutdown_event.wait()
    finally:
        scheduler.stop()
        orchestrator.cleanup()
        logger.info("cvewatch_stopped")


if __name__ == "__main__":
    main()
