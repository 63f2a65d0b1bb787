"""
Operator command line for CVE Watch.

Lists and updates alerts, manages organization settings, retries pending
dispatches and triggers a manual check. Output is JSON on stdout.
"""

import argparse
import json
import sys
from typing import Any, List, Optional

from .collector.models import AlertStatus, OrganizationSecurityConfig
from .config import Config, load_config, validate_config
from .exceptions import CVEWatchError
from .known_cves import load_known_cves
from .logging_setup import configure_logging
from .storage.alerts import AlertStore
from .storage.organizations import OrganizationConfigStore


def _emit(data: Any):
    print(json.dumps(data, indent=2, default=str))


def _dump(model) -> dict:
    return model.model_dump(mode="json")


def _require_valid(config: Config) -> bool:
    errors = validate_config(config)
    for error in errors:
        print(f"Configuration error: {error}", file=sys.stderr)
    return not errors


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    from .orchestrator import SecurityOrchestrator
    from .scheduler import CVEWatchScheduler

    if not _require_valid(config):
        return 2
    orchestrator = SecurityOrchestrator(config)
    try:
        status = CVEWatchScheduler(orchestrator, config).trigger_manual_check()
    finally:
        orchestrator.cleanup()
    _emit(_dump(status))
    return 0 if status.last_run_status == "success" else 1


def cmd_alerts_list(args: argparse.Namespace, config: Config) -> int:
    store = AlertStore(config.database_path)
    status = AlertStatus(args.status) if args.status else None
    alerts = store.get_alerts(args.org, status=status, limit=args.limit)
    _emit({"data": [_dump(a) for a in alerts], "count": len(alerts)})
    return 0


def cmd_alerts_summary(args: argparse.Namespace, config: Config) -> int:
    store = AlertStore(config.database_path)
    summary = store.get_security_summary(args.org)
    summary["recent_alerts"] = [_dump(a) for a in summary["recent_alerts"]]
    _emit(summary)
    return 0


def cmd_alerts_update(args: argparse.Namespace, config: Config) -> int:
    store = AlertStore(config.database_path)
    alert = store.update_status(
        args.alert_id,
        AlertStatus(args.status),
        pr_url=args.pr_url,
        pr_number=args.pr_number,
        error_message=args.error_message,
    )
    _emit(_dump(alert))
    return 0


def cmd_alerts_ignore(args: argparse.Namespace, config: Config) -> int:
    store = AlertStore(config.database_path)
    _emit(_dump(store.ignore_alert(args.alert_id)))
    return 0


def cmd_alerts_redispatch(args: argparse.Namespace, config: Config) -> int:
    from .orchestrator import SecurityOrchestrator

    if not _require_valid(config):
        return 2
    orchestrator = SecurityOrchestrator(config)
    try:
        result = orchestrator.redispatch_pending(args.org)
    finally:
        orchestrator.cleanup()
    _emit(result)
    return 0


def cmd_orgs_add(args: argparse.Namespace, config: Config) -> int:
    store = OrganizationConfigStore(config.database_path)
    org = OrganizationSecurityConfig(
        organization_id=args.org,
        github_app_installation_id=args.installation_id,
        github_repo_full_name=args.repo,
        auto_fix_enabled=not args.disabled,
    )
    store.upsert(org)
    _emit(_dump(org))
    return 0


def cmd_orgs_list(args: argparse.Namespace, config: Config) -> int:
    store = OrganizationConfigStore(config.database_path)
    _emit([_dump(o) for o in store.list_all()])
    return 0


def cmd_known_cves(args: argparse.Namespace, config: Config) -> int:
    _emit([_dump(d) for d in load_known_cves(config.known_cves_path)])
    return 0


def cmd_purge(args: argparse.Namespace, config: Config) -> int:
    store = AlertStore(config.database_path)
    _emit(store.purge_expired(config.alert_retention_days, config.scan_retention_days))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cvewatch-admin", description="CVE Watch operator tools")
    parser.add_argument("--env-file", type=str, help="Path to a .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Run a manual CVE check now")
    p.set_defaults(func=cmd_run)

    alerts = sub.add_parser("alerts", help="Inspect and update alerts")
    alerts_sub = alerts.add_subparsers(dest="alerts_command", required=True)

    p = alerts_sub.add_parser("list", help="List an organization's alerts")
    p.add_argument("--org", required=True, help="Organization id")
    p.add_argument("--status", choices=[s.value for s in AlertStatus])
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_alerts_list)

    p = alerts_sub.add_parser("summary", help="Summarize an organization's recent alerts")
    p.add_argument("--org", required=True, help="Organization id")
    p.set_defaults(func=cmd_alerts_summary)

    p = alerts_sub.add_parser("update", help="Apply a remediation status update")
    p.add_argument("alert_id")
    p.add_argument("--status", required=True, choices=[s.value for s in AlertStatus])
    p.add_argument("--pr-url")
    p.add_argument("--pr-number", type=int)
    p.add_argument("--error-message")
    p.set_defaults(func=cmd_alerts_update)

    p = alerts_sub.add_parser("ignore", help="Ignore an alert")
    p.add_argument("alert_id")
    p.set_defaults(func=cmd_alerts_ignore)

    p = alerts_sub.add_parser("redispatch", help="Retry dispatch of pending alerts")
    p.add_argument("--org", help="Limit to one organization")
    p.set_defaults(func=cmd_alerts_redispatch)

    orgs = sub.add_parser("orgs", help="Manage organization settings")
    orgs_sub = orgs.add_subparsers(dest="orgs_command", required=True)

    p = orgs_sub.add_parser("add", help="Add or update an organization")
    p.add_argument("--org", required=True, help="Organization id")
    p.add_argument("--installation-id", required=True, help="GitHub App installation id")
    p.add_argument("--repo", required=True, help="Repository as owner/name")
    p.add_argument("--disabled", action="store_true", help="Store with auto-fix disabled")
    p.set_defaults(func=cmd_orgs_add)

    p = orgs_sub.add_parser("list", help="List organizations")
    p.set_defaults(func=cmd_orgs_list)

    p = sub.add_parser("known-cves", help="Show the curated CVE table")
    p.set_defaults(func=cmd_known_cves)

    p = sub.add_parser("purge", help="Delete alerts and scans past retention")
    p.set_defaults(func=cmd_purge)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the operator CLI."""
    args = build_parser().parse_args(argv)
    config = load_config(args.env_file)
    configure_logging(config, stream=sys.stderr)

    try:
        return args.func(args, config)
    except CVEWatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
