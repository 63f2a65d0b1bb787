"""Unit tests for the SQLite alert and organization stores."""

import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone

from cvewatch.collector.models import AlertStatus, Finding, OrganizationSecurityConfig, Severity
from cvewatch.exceptions import AlertNotFoundError, InvalidStatusTransitionError
from cvewatch.storage.alerts import DESCRIPTION_MAX_LENGTH, AlertStore
from cvewatch.storage.organizations import OrganizationConfigStore

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _finding(cve_id: str = "CVE-2025-29927", severity: Severity = Severity.CRITICAL, **kwargs) -> Finding:
    values = dict(
        cve_id=cve_id,
        package_name="next",
        installed_version="14.2.20",
        patched_version="15.2.3",
        severity=severity,
        title="Next.js Middleware Authorization Bypass",
        description="bypass",
    )
    values.update(kwargs)
    return Finding(**values)


class StoreTestCase(unittest.TestCase):
    """Gives each test a fresh database file."""

    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.db_path = os.path.join(tmp.name, "cvewatch.db")
        self.store = AlertStore(self.db_path)
        self.addCleanup(self.store.close)


class TestCreateIfAbsent(StoreTestCase):
    """At most one alert exists per (organization, CVE)."""

    def test_creates_pending_alert(self) -> None:
        alert = self.store.create_if_absent("org-1", _finding(), now=NOW)
        self.assertIsNotNone(alert)
        self.assertEqual(alert.status, AlertStatus.PENDING)
        self.assertEqual(alert.organization_id, "org-1")
        self.assertEqual(alert.severity, Severity.CRITICAL)
        self.assertEqual(alert.created_at, NOW)
        self.assertFalse(alert.scan_triggered)
        self.assertIsNone(alert.notified_at)

    def test_second_insert_is_noop(self) -> None:
        first = self.store.create_if_absent("org-1", _finding())
        second = self.store.create_if_absent("org-1", _finding(installed_version="14.2.21"))
        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(len(self.store.get_alerts("org-1")), 1)
        self.assertEqual(self.store.find_alert("org-1", "CVE-2025-29927").installed_version, "14.2.20")

    def test_same_cve_other_org(self) -> None:
        self.assertIsNotNone(self.store.create_if_absent("org-1", _finding()))
        self.assertIsNotNone(self.store.create_if_absent("org-2", _finding()))

    def test_no_recreate_after_resolution(self) -> None:
        alert = self.store.create_if_absent("org-1", _finding())
        self.store.mark_notified(alert.id)
        self.store.update_status(alert.id, AlertStatus.RESOLVED, pr_url="https://github.com/acme/web/pull/9", pr_number=9)
        self.assertIsNone(self.store.create_if_absent("org-1", _finding()))

    def test_description_truncated(self) -> None:
        alert = self.store.create_if_absent("org-1", _finding(description="d" * 5000))
        self.assertEqual(len(alert.description), DESCRIPTION_MAX_LENGTH)

    def test_concurrent_inserts_create_one_alert(self) -> None:
        results = []

        def insert() -> None:
            results.append(self.store.create_if_absent("org-1", _finding()))
            self.store.close()

        threads = [threading.Thread(target=insert) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sum(1 for r in results if r is not None), 1)
        self.assertEqual(len(self.store.get_alerts("org-1")), 1)


class TestStatusLifecycle(StoreTestCase):
    """Status changes follow the remediation lifecycle."""

    def setUp(self) -> None:
        super().setUp()
        self.alert = self.store.create_if_absent("org-1", _finding())

    def test_mark_notified(self) -> None:
        self.assertTrue(self.store.mark_notified(self.alert.id, now=NOW))
        alert = self.store.get_alert(self.alert.id)
        self.assertEqual(alert.status, AlertStatus.NOTIFIED)
        self.assertEqual(alert.notified_at, NOW)
        self.assertTrue(alert.scan_triggered)

    def test_mark_notified_does_not_clobber_fixing(self) -> None:
        self.store.update_status(self.alert.id, AlertStatus.FIXING)
        self.assertFalse(self.store.mark_notified(self.alert.id))
        self.assertEqual(self.store.get_alert(self.alert.id).status, AlertStatus.FIXING)

    def test_resolve_records_pr(self) -> None:
        self.store.mark_notified(self.alert.id)
        alert = self.store.update_status(
            self.alert.id, AlertStatus.RESOLVED,
            pr_url="https://github.com/acme/web/pull/42", pr_number=42, now=NOW,
        )
        self.assertEqual(alert.status, AlertStatus.RESOLVED)
        self.assertTrue(alert.pr_created)
        self.assertEqual(alert.pr_number, 42)
        self.assertEqual(alert.resolved_at, NOW)

    def test_failed_records_error(self) -> None:
        alert = self.store.update_status(self.alert.id, AlertStatus.FAILED, error_message="npm install failed")
        self.assertEqual(alert.status, AlertStatus.FAILED)
        self.assertEqual(alert.error_message, "npm install failed")

    def test_failed_can_be_retried(self) -> None:
        self.store.update_status(self.alert.id, AlertStatus.FAILED)
        self.assertEqual(self.store.update_status(self.alert.id, AlertStatus.FIXING).status, AlertStatus.FIXING)

    def test_terminal_states_reject_changes(self) -> None:
        self.store.ignore_alert(self.alert.id)
        with self.assertRaises(InvalidStatusTransitionError) as ctx:
            self.store.update_status(self.alert.id, AlertStatus.FIXING)
        self.assertEqual(ctx.exception.current, "ignored")
        self.assertEqual(ctx.exception.requested, "fixing")

    def test_notified_reserved_for_dispatch(self) -> None:
        with self.assertRaises(InvalidStatusTransitionError):
            self.store.update_status(self.alert.id, AlertStatus.NOTIFIED)

    def test_pending_cannot_resolve(self) -> None:
        with self.assertRaises(InvalidStatusTransitionError):
            self.store.update_status(self.alert.id, AlertStatus.RESOLVED)

    def test_same_status_refreshes_metadata(self) -> None:
        self.store.update_status(self.alert.id, AlertStatus.FAILED, error_message="first")
        alert = self.store.update_status(self.alert.id, AlertStatus.FAILED, error_message="second")
        self.assertEqual(alert.error_message, "second")

    def test_unknown_alert(self) -> None:
        with self.assertRaises(AlertNotFoundError):
            self.store.update_status("missing", AlertStatus.IGNORED)
        with self.assertRaises(AlertNotFoundError):
            self.store.get_alert("missing")


class TestQueries(StoreTestCase):
    """Listing, pending lookups and the summary."""

    def test_get_alerts_newest_first_with_filter(self) -> None:
        old = self.store.create_if_absent("org-1", _finding("CVE-1"), now=NOW - timedelta(days=2))
        new = self.store.create_if_absent("org-1", _finding("CVE-2"), now=NOW)
        self.store.mark_notified(new.id)

        self.assertEqual([a.cve_id for a in self.store.get_alerts("org-1")], ["CVE-2", "CVE-1"])
        pending = self.store.get_alerts("org-1", status=AlertStatus.PENDING)
        self.assertEqual([a.id for a in pending], [old.id])
        self.assertEqual(len(self.store.get_alerts("org-1", limit=1)), 1)

    def test_get_pending_alerts(self) -> None:
        self.store.create_if_absent("org-1", _finding("CVE-1"), now=NOW)
        self.store.create_if_absent("org-2", _finding("CVE-2"), now=NOW + timedelta(seconds=1))
        self.assertEqual([a.cve_id for a in self.store.get_pending_alerts()], ["CVE-1", "CVE-2"])
        self.assertEqual([a.cve_id for a in self.store.get_pending_alerts("org-2")], ["CVE-2"])

    def test_security_summary(self) -> None:
        for i in range(12):
            severity = Severity.CRITICAL if i % 2 else Severity.HIGH
            self.store.create_if_absent("org-1", _finding(f"CVE-{i}", severity), now=NOW + timedelta(minutes=i))
        newest = self.store.find_alert("org-1", "CVE-11")
        self.store.mark_notified(newest.id)
        self.store.update_status(newest.id, AlertStatus.RESOLVED, pr_url="https://github.com/acme/web/pull/1")

        summary = self.store.get_security_summary("org-1")

        self.assertEqual(summary["total_alerts"], 10)
        self.assertEqual(summary["pending"], 9)
        self.assertEqual(summary["resolved"], 1)
        self.assertEqual(summary["critical"], 5)
        self.assertEqual([a.cve_id for a in summary["recent_alerts"]], ["CVE-11", "CVE-10", "CVE-9", "CVE-8", "CVE-7"])


class TestRetentionAndHistory(StoreTestCase):
    """Retention purge, scan history and run logs."""

    def test_purge_expired(self) -> None:
        self.store.create_if_absent("org-1", _finding("CVE-OLD"), now=NOW - timedelta(days=181))
        self.store.create_if_absent("org-1", _finding("CVE-NEW"), now=NOW - timedelta(days=179))
        self.store.record_scan("org-1", "acme/web", now=NOW - timedelta(days=91))
        self.store.record_scan("org-1", "acme/web", now=NOW - timedelta(days=89))

        result = self.store.purge_expired(180, 90, now=NOW)

        self.assertEqual(result, {"alerts_deleted": 1, "scans_deleted": 1})
        self.assertIsNone(self.store.find_alert("org-1", "CVE-OLD"))
        self.assertIsNotNone(self.store.find_alert("org-1", "CVE-NEW"))
        self.assertEqual(len(self.store.get_recent_scans("org-1")), 1)
        self.assertEqual(self.store.purge_expired(180, 90, now=NOW), {"alerts_deleted": 0, "scans_deleted": 0})

    def test_purged_pair_can_alert_again(self) -> None:
        self.store.create_if_absent("org-1", _finding(), now=NOW - timedelta(days=200))
        self.store.purge_expired(180, 90, now=NOW)
        self.assertIsNotNone(self.store.create_if_absent("org-1", _finding(), now=NOW))

    def test_run_log(self) -> None:
        self.store.start_run("run-1", "manual")
        self.store.end_run("run-1", {
            "advisories_fetched": 40,
            "organizations_checked": 3,
            "organizations_failed": 1,
            "alerts_created": 2,
            "error_messages": ["org-3: boom"],
        })

        run = self.store.get_recent_runs()[0]
        self.assertEqual(run["run_id"], "run-1")
        self.assertEqual(run["scan_type"], "manual")
        self.assertEqual(run["status"], "completed")
        self.assertEqual(run["advisories_fetched"], 40)
        self.assertEqual(run["organizations_failed"], 1)
        self.assertEqual(run["errors"], "org-3: boom")
        self.assertIsNotNone(run["ended_at"])

    def test_scan_record(self) -> None:
        self.store.record_scan(
            "org-1", "acme/web", scan_status="failed", scan_type="manual",
            error_message="404", run_id="run-1",
        )
        scan = self.store.get_recent_scans("org-1")[0]
        self.assertEqual(scan["scan_status"], "failed")
        self.assertEqual(scan["error_message"], "404")
        self.assertEqual(scan["run_id"], "run-1")


class TestOrganizationConfigStore(unittest.TestCase):
    """Only auto-fix organizations with an installation and repo are scanned."""

    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.store = OrganizationConfigStore(os.path.join(tmp.name, "cvewatch.db"))
        self.addCleanup(self.store.close)

    def _org(self, org_id: str, installation_id="1", repo="acme/web", enabled=True) -> OrganizationSecurityConfig:
        return OrganizationSecurityConfig(
            organization_id=org_id,
            github_app_installation_id=installation_id,
            github_repo_full_name=repo,
            auto_fix_enabled=enabled,
        )

    def test_list_auto_fix_enabled(self) -> None:
        self.store.upsert(self._org("a"))
        self.store.upsert(self._org("b", enabled=False))
        self.store.upsert(self._org("c", installation_id=None))
        self.store.upsert(self._org("d", repo=""))
        self.store.upsert(self._org("e", installation_id=42))

        eligible = self.store.list_auto_fix_enabled()

        self.assertEqual([o.organization_id for o in eligible], ["a", "e"])
        self.assertEqual(eligible[1].github_app_installation_id, "42")
        self.assertEqual(len(self.store.list_all()), 5)

    def test_upsert_updates(self) -> None:
        self.store.upsert(self._org("a"))
        self.store.upsert(self._org("a", repo="acme/api", enabled=False))
        org = self.store.get("a")
        self.assertEqual(org.github_repo_full_name, "acme/api")
        self.assertFalse(org.auto_fix_enabled)
        self.assertIsNone(self.store.get("missing"))


if __name__ == "__main__":
    unittest.main()
