"""
CVE Watch - One-Shot Execution Mode

Runs a single CVE check for cron jobs, GitHub Actions and other
environments where a continuous scheduler is not appropriate.
"""

import os
import sys
from pathlib import Path
from typing import Dict, Any

from . import __version__
from .config import load_config, validate_config
from .logging_setup import configure_logging
from .orchestrator import SecurityOrchestrator


def run_single_check(scan_type: str = "scheduled") -> Dict[str, Any]:
    """
    Execute a single CVE check without scheduling.

    Returns:
        Dict with run statistics.

    Raises:
        SystemExit: On configuration errors or a failed run.
    """
    config = load_config()

    errors = validate_config(config)
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)

    logger = configure_logging(config)
    logger.info("single_run_started", version=__version__, scan_type=scan_type)

    orchestrator = None
    try:
        orchestrator = SecurityOrchestrator(config)
        stats = orchestrator.run(scan_type=scan_type)
    except Exception as e:
        logger.error("run_failed", error=str(e), exc_info=True)
        print(f"\nFatal error: {e}")
        sys.exit(1)
    finally:
        if orchestrator is not None:
            orchestrator.cleanup()

    print()
    print("=" * 60)
    print("  Run Summary")
    print("=" * 60)
    print(f"Advisories Fetched: {stats['advisories_fetched']}")
    print(f"Organizations Checked: {stats['organizations_checked']}")
    print(f"Organizations Failed: {stats['organizations_failed']}")
    print(f"Vulnerabilities Found: {stats['vulnerabilities_found']}")
    print(f"Alerts Created: {stats['alerts_created']}")
    print(f"Fixes Sent: {stats['fixes_sent']}")
    print("=" * 60)

    # Set GitHub Actions output if available
    if github_output := os.getenv("GITHUB_OUTPUT"):
        try:
            with open(github_output, "a") as f:
                for key in (
                    "advisories_fetched",
                    "organizations_checked",
                    "organizations_failed",
                    "vulnerabilities_found",
                    "alerts_created",
                    "fixes_sent",
                ):
                    f.write(f"{key}={stats[key]}\n")
            logger.info("github_output_written", path=github_output)
        except OSError as e:
            logger.warning("github_output_write_failed", error=str(e))

    logger.info("single_run_completed", run_id=stats["run_id"])
    return stats


def main():
    """Entry point for one-shot execution."""
    run_single_check()


if __name__ == "__main__":
    main()
