"""
CVE check orchestration.

One run fetches advisories once, then walks every organization with
auto-fix enabled: fetch its manifest, match it, persist new alerts and
hand them to the remediation service.
"""

import time
import uuid
from typing import Any, Dict, Iterable, List, Optional

import structlog

from .config import Config
from .collector.advisories import GitHubAdvisoryClient
from .collector.models import Advisory, CVEAlert, Finding, KnownCVEDefinition, OrganizationSecurityConfig
from .delivery.remediation import RemediationDispatcher
from .github.app_auth import GitHubAppAuth
from .github.manifest import ManifestFetcher
from .known_cves import load_known_cves
from .matching import find_vulnerabilities
from .storage.alerts import AlertStore
from .storage.organizations import OrganizationConfigStore

logger = structlog.get_logger(__name__)


class SecurityOrchestrator:
    """
    Coordinates one CVE check across all eligible organizations.

    Organizations are processed one after another; a failure while
    handling one organization is logged and the loop moves on.
    """

    def __init__(
        self,
        config: Config,
        advisory_client: Optional[GitHubAdvisoryClient] = None,
        manifest_fetcher: Optional[ManifestFetcher] = None,
        alert_store: Optional[AlertStore] = None,
        org_store: Optional[OrganizationConfigStore] = None,
        dispatcher: Optional[RemediationDispatcher] = None,
        known_cves: Optional[Iterable[KnownCVEDefinition]] = None
    ):
        """
        Initialize the orchestrator.

        Components default to real implementations built from config.
        """
        self.config = config

        self.advisory_client = advisory_client or GitHubAdvisoryClient(config)
        self.manifest_fetcher = manifest_fetcher or ManifestFetcher(config, GitHubAppAuth(config))
        self.alert_store = alert_store or AlertStore(config.database_path)
        self.org_store = org_store or OrganizationConfigStore(config.database_path)
        self.dispatcher = dispatcher or RemediationDispatcher(config)
        self.known_cves = tuple(known_cves) if known_cves is not None else load_known_cves(config.known_cves_path)

        logger.info("orchestrator_initialized", known_cves=len(self.known_cves))

    def run(self, scan_type: str = "scheduled") -> Dict[str, Any]:
        """
        Execute one CVE check.

        Args:
            scan_type: 'scheduled' or 'manual', recorded with the run.

        Returns:
            Dict with run statistics.

        Raises:
            Exception: If advisories or organizations cannot be loaded.
        """
        run_id = str(uuid.uuid4())[:8]
        start_time = time.time()
        log = logger.bind(run_id=run_id)

        log.info("cve_check_started", scan_type=scan_type)
        self.alert_store.start_run(run_id, scan_type)

        stats = {
            "run_id": run_id,
            "advisories_fetched": 0,
            "organizations_checked": 0,
            "organizations_failed": 0,
            "vulnerabilities_found": 0,
            "alerts_created": 0,
            "alerts_existing": 0,
            "fixes_sent": 0,
            "error_messages": []
        }

        try:
            # Step 1: Fetch advisories once for all organizations
            advisories = self.advisory_client.fetch_advisories()
            stats["advisories_fetched"] = len(advisories)

            # Step 2: Organizations with auto-fix enabled
            organizations = self.org_store.list_auto_fix_enabled()
            log.info("organizations_loaded", count=len(organizations))
        except Exception as e:
            log.error("cve_check_aborted", error=str(e))
            stats["error_messages"].append(f"Run error: {e}")
            self.alert_store.end_run(run_id, stats, status="failed")
            raise

        if not organizations:
            log.info("no_organizations_with_auto_fix")
            self.alert_store.end_run(run_id, stats, status="completed")
            return stats

        # Step 3: Check each organization
        for org in organizations:
            stats["organizations_checked"] += 1
            try:
                self._process_organization(org, advisories, stats, run_id, scan_type)
            except Exception as e:
                stats["organizations_failed"] += 1
                stats["error_messages"].append(f"{org.organization_id}: {e}")
                log.error(
                    "org_processing_failed",
                    organization_id=org.organization_id,
                    repo=org.github_repo_full_name,
                    error=str(e)
                )
                self.alert_store.record_scan(
                    org.organization_id,
                    org.github_repo_full_name,
                    scan_status="failed",
                    scan_type=scan_type,
                    error_message=str(e)[:2000],
                    run_id=run_id
                )

        self._purge_expired(log)

        duration = time.time() - start_time
        self.alert_store.end_run(run_id, stats, status="completed")

        log.info(
            "cve_check_completed",
            advisories=stats["advisories_fetched"],
            organizations=stats["organizations_checked"],
            organizations_failed=stats["organizations_failed"],
            vulnerabilities=stats["vulnerabilities_found"],
            alerts_created=stats["alerts_created"],
            fixes_sent=stats["fixes_sent"],
            duration_seconds=round(duration, 1)
        )
        return stats

    def _process_organization(
        self,
        org: OrganizationSecurityConfig,
        advisories: List[Advisory],
        stats: Dict[str, Any],
        run_id: str,
        scan_type: str
    ):
        """Scan one organization and dispatch its new findings."""
        log = logger.bind(run_id=run_id, organization_id=org.organization_id)
        log.info("checking_organization", repo=org.github_repo_full_name)

        manifest = self.manifest_fetcher.fetch_package_json(
            org.github_app_installation_id,
            org.github_repo_full_name
        )

        findings = find_vulnerabilities(manifest, advisories, self.known_cves)
        stats["vulnerabilities_found"] += len(findings)

        fixes_sent = 0
        for finding in findings:
            alert = self.alert_store.create_if_absent(org.organization_id, finding)
            if alert is None:
                stats["alerts_existing"] += 1
                continue

            stats["alerts_created"] += 1
            if self._dispatch(alert, finding):
                fixes_sent += 1

        stats["fixes_sent"] += fixes_sent
        if findings:
            log.info("organization_vulnerabilities_found", count=len(findings), fixes_sent=fixes_sent)
        else:
            log.info("organization_clean")

        self.alert_store.record_scan(
            org.organization_id,
            org.github_repo_full_name,
            scan_status="completed",
            scan_type=scan_type,
            vulnerabilities_found=len(findings),
            fixes_sent=fixes_sent,
            run_id=run_id
        )

    def _dispatch(self, alert: CVEAlert, finding: Finding) -> bool:
        """Dispatch one alert; only a confirmed dispatch marks it notified."""
        sent = self.dispatcher.dispatch(alert.organization_id, finding, alert.id)
        if sent:
            return self.alert_store.mark_notified(alert.id)
        return False

    def _purge_expired(self, log):
        try:
            self.alert_store.purge_expired(
                self.config.alert_retention_days,
                self.config.scan_retention_days
            )
        except Exception as e:
            log.warning("retention_purge_failed", error=str(e))

    def redispatch_pending(self, organization_id: Optional[str] = None) -> Dict[str, int]:
        """
        Retry dispatch for alerts that never reached the remediation service.

        Scans do not retry these on their own since the alert row already
        exists; this is the operator action for that case.

        Args:
            organization_id: Limit to one organization.

        Returns:
            Dict with attempted and sent counts.
        """
        pending = self.alert_store.get_pending_alerts(organization_id)
        sent = 0
        for alert in pending:
            finding = Finding(
                cve_id=alert.cve_id,
                ghsa_id=alert.ghsa_id,
                package_name=alert.package_name,
                installed_version=alert.installed_version or "",
                patched_version=alert.patched_version,
                severity=alert.severity,
                title=alert.title,
                description=alert.description,
            )
            if self._dispatch(alert, finding):
                sent += 1

        logger.info("pending_alerts_redispatched", attempted=len(pending), sent=sent)
        return {"attempted": len(pending), "sent": sent}

    def cleanup(self):
        """Clean up resources."""
        self.advisory_client.close()
        self.manifest_fetcher.close()
        self.dispatcher.close()
        self.alert_store.close()
        self.org_store.close()
        logger.info("orchestrator_cleanup_complete")
