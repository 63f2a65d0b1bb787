"""
SQLite-based alert repository.

Stores one CVE alert per (organization, CVE) for the lifetime of that pair,
tracks each alert through its remediation lifecycle, and keeps per-organization
scan history and run logs for auditing.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

import structlog

from ..collector.models import AlertStatus, CVEAlert, Finding, Severity
from ..exceptions import AlertNotFoundError, InvalidStatusTransitionError
from .database import SQLiteDatabase, to_db_timestamp, utcnow

logger = structlog.get_logger(__name__)

DESCRIPTION_MAX_LENGTH = 2000

# Statuses an external actor may set, keyed by the current status.
# NOTIFIED is reserved for the scan cycle (mark_notified).
ALLOWED_TRANSITIONS: Dict[AlertStatus, frozenset] = {
    AlertStatus.PENDING: frozenset({
        AlertStatus.FIXING, AlertStatus.FAILED, AlertStatus.IGNORED,
    }),
    AlertStatus.NOTIFIED: frozenset({
        AlertStatus.FIXING, AlertStatus.RESOLVED, AlertStatus.FAILED, AlertStatus.IGNORED,
    }),
    AlertStatus.FIXING: frozenset({
        AlertStatus.RESOLVED, AlertStatus.FAILED, AlertStatus.IGNORED,
    }),
    AlertStatus.FAILED: frozenset({AlertStatus.FIXING, AlertStatus.IGNORED}),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.IGNORED: frozenset(),
}


class AlertStore(SQLiteDatabase):
    """
    Persistent store for CVE alerts, scan history and run logs.

    Uniqueness of (organization_id, cve_id) is enforced by the table
    constraint; inserts never read first.
    """

    SCHEMA = """
    -- CVE alerts table
    CREATE TABLE IF NOT EXISTS cve_alerts (
        id TEXT PRIMARY KEY,
        organization_id TEXT NOT NULL,
        cve_id TEXT NOT NULL,
        ghsa_id TEXT,
        package_name TEXT NOT NULL,
        installed_version TEXT,
        patched_version TEXT,
        severity TEXT NOT NULL CHECK (severity IN ('critical', 'high', 'medium', 'low')),
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (
            status IN ('pending', 'notified', 'fixing', 'resolved', 'failed', 'ignored')
        ),
        notified_at TEXT,
        resolved_at TEXT,
        scan_triggered INTEGER NOT NULL DEFAULT 0,
        pr_created INTEGER NOT NULL DEFAULT 0,
        pr_url TEXT,
        pr_number INTEGER,
        error_message TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (organization_id, cve_id)
    );

    -- Per-organization scan history
    CREATE TABLE IF NOT EXISTS security_scans (
        id TEXT PRIMARY KEY,
        run_id TEXT,
        organization_id TEXT NOT NULL,
        github_repo_full_name TEXT NOT NULL,
        scan_type TEXT NOT NULL DEFAULT 'scheduled' CHECK (scan_type IN ('scheduled', 'manual')),
        scan_status TEXT NOT NULL DEFAULT 'completed' CHECK (scan_status IN ('completed', 'failed')),
        vulnerabilities_found INTEGER NOT NULL DEFAULT 0,
        fixes_sent INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        created_at TEXT NOT NULL
    );

    -- Run logs table
    CREATE TABLE IF NOT EXISTS run_logs (
        run_id TEXT PRIMARY KEY,
        scan_type TEXT NOT NULL DEFAULT 'scheduled',
        started_at TEXT NOT NULL,
        ended_at TEXT,
        status TEXT DEFAULT 'running',
        advisories_fetched INTEGER DEFAULT 0,
        organizations_checked INTEGER DEFAULT 0,
        organizations_failed INTEGER DEFAULT 0,
        vulnerabilities_found INTEGER DEFAULT 0,
        alerts_created INTEGER DEFAULT 0,
        fixes_sent INTEGER DEFAULT 0,
        errors TEXT
    );

    -- Indexes for efficient queries
    CREATE INDEX IF NOT EXISTS idx_alerts_org_status ON cve_alerts(organization_id, status, created_at);
    CREATE INDEX IF NOT EXISTS idx_alerts_status ON cve_alerts(status, created_at);
    CREATE INDEX IF NOT EXISTS idx_alerts_created ON cve_alerts(created_at);
    CREATE INDEX IF NOT EXISTS idx_scans_org ON security_scans(organization_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_scans_created ON security_scans(created_at);
    CREATE INDEX IF NOT EXISTS idx_run_started ON run_logs(started_at);
    """

    def __init__(self, db_path: str):
        super().__init__(db_path)
        logger.info("alert_store_initialized", db_path=str(self.db_path))

    @staticmethod
    def _row_to_alert(row) -> CVEAlert:
        return CVEAlert.model_validate(dict(row))

    # Alert lifecycle

    def create_if_absent(
        self,
        organization_id: str,
        finding: Finding,
        now: Optional[datetime] = None
    ) -> Optional[CVEAlert]:
        """
        Insert a pending alert unless one exists for (organization, CVE).

        Args:
            organization_id: Owning organization.
            finding: Detected vulnerability.
            now: Creation time override.

        Returns:
            The new alert, or None if the pair was already recorded.
        """
        alert_id = str(uuid.uuid4())
        timestamp = to_db_timestamp(now or utcnow())
        description = finding.description[:DESCRIPTION_MAX_LENGTH] if finding.description else None

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO cve_alerts (
                    id, organization_id, cve_id, ghsa_id, package_name,
                    installed_version, patched_version, severity, title,
                    description, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                ON CONFLICT(organization_id, cve_id) DO NOTHING
                """,
                (
                    alert_id, organization_id, finding.cve_id, finding.ghsa_id,
                    finding.package_name, finding.installed_version,
                    finding.patched_version, finding.severity.value, finding.title,
                    description, timestamp, timestamp
                )
            )
            created = cursor.rowcount == 1

        if not created:
            logger.debug("alert_already_exists", organization_id=organization_id, cve_id=finding.cve_id)
            return None

        logger.info(
            "alert_created",
            alert_id=alert_id,
            organization_id=organization_id,
            cve_id=finding.cve_id
        )
        return self.get_alert(alert_id)

    def mark_notified(self, alert_id: str, now: Optional[datetime] = None) -> bool:
        """
        Record a confirmed dispatch.

        Only a pending alert moves; a status already set by the remediation
        service is left untouched.

        Returns:
            True if the alert moved to notified.
        """
        timestamp = to_db_timestamp(now or utcnow())
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE cve_alerts
                SET status = 'notified', notified_at = ?, scan_triggered = 1, updated_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (timestamp, timestamp, alert_id)
            )
            updated = cursor.rowcount == 1

        if updated:
            logger.info("alert_marked_notified", alert_id=alert_id)
        else:
            logger.warning("alert_not_pending_on_notify", alert_id=alert_id)
        return updated

    def update_status(
        self,
        alert_id: str,
        status: AlertStatus,
        pr_url: Optional[str] = None,
        pr_number: Optional[int] = None,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CVEAlert:
        """
        Apply a status change reported by the remediation service.

        Resolving with a PR URL records the PR and resolved_at; failing with
        a message records error_message. Repeating the current status only
        refreshes that metadata.

        Raises:
            AlertNotFoundError: Unknown alert id.
            InvalidStatusTransitionError: Change not allowed from the current status.
        """
        status = AlertStatus(status)
        timestamp = to_db_timestamp(now or utcnow())
        current = self.get_alert(alert_id).status

        if status != current and status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(alert_id, current.value, status.value)

        assignments = ["status = ?", "updated_at = ?"]
        values: List[Any] = [status.value, timestamp]

        if status == AlertStatus.RESOLVED and pr_url:
            assignments += ["pr_created = 1", "pr_url = ?", "pr_number = ?", "resolved_at = ?"]
            values += [pr_url, pr_number, timestamp]
        if status == AlertStatus.FAILED and error_message:
            assignments.append("error_message = ?")
            values.append(error_message)

        values += [alert_id, current.value]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE cve_alerts SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                values
            )
            applied = cursor.rowcount == 1

        if not applied:
            # Status changed between read and write
            latest = self.get_alert(alert_id).status
            raise InvalidStatusTransitionError(alert_id, latest.value, status.value)

        logger.info("alert_status_updated", alert_id=alert_id, previous=current.value, status=status.value)
        return self.get_alert(alert_id)

    def ignore_alert(self, alert_id: str) -> CVEAlert:
        """Mark an alert as ignored."""
        return self.update_status(alert_id, AlertStatus.IGNORED)

    # Queries

    def get_alert(self, alert_id: str) -> CVEAlert:
        """
        Get an alert by id.

        Raises:
            AlertNotFoundError: If no alert has this id.
        """
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM cve_alerts WHERE id = ?", (alert_id,)).fetchone()
        if row is None:
            raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return self._row_to_alert(row)

    def find_alert(self, organization_id: str, cve_id: str) -> Optional[CVEAlert]:
        """Get the alert for an (organization, CVE) pair if it exists."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM cve_alerts WHERE organization_id = ? AND cve_id = ?",
            (organization_id, cve_id)
        ).fetchone()
        return self._row_to_alert(row) if row else None

    def get_alerts(
        self,
        organization_id: str,
        status: Optional[AlertStatus] = None,
        limit: int = 50
    ) -> List[CVEAlert]:
        """
        Get an organization's alerts, newest first.

        Args:
            organization_id: Organization to list.
            status: Optional status filter.
            limit: Maximum number of alerts.
        """
        query = "SELECT * FROM cve_alerts WHERE organization_id = ?"
        params: List[Any] = [organization_id]
        if status:
            query += " AND status = ?"
            params.append(AlertStatus(status).value)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        conn = self._get_connection()
        return [self._row_to_alert(row) for row in conn.execute(query, params).fetchall()]

    def get_pending_alerts(self, organization_id: Optional[str] = None) -> List[CVEAlert]:
        """Get alerts still waiting for a successful dispatch, oldest first."""
        query = "SELECT * FROM cve_alerts WHERE status = 'pending'"
        params: List[Any] = []
        if organization_id:
            query += " AND organization_id = ?"
            params.append(organization_id)
        query += " ORDER BY created_at, rowid"

        conn = self._get_connection()
        return [self._row_to_alert(row) for row in conn.execute(query, params).fetchall()]

    def get_security_summary(self, organization_id: str) -> Dict[str, Any]:
        """
        Summarize an organization's ten most recent alerts.

        Returns:
            Dict with total, pending, resolved and critical counts plus the
            five most recent alerts.
        """
        alerts = self.get_alerts(organization_id, limit=10)
        return {
            "total_alerts": len(alerts),
            "pending": sum(1 for a in alerts if a.status == AlertStatus.PENDING),
            "resolved": sum(1 for a in alerts if a.status == AlertStatus.RESOLVED),
            "critical": sum(1 for a in alerts if a.severity == Severity.CRITICAL),
            "recent_alerts": alerts[:5],
        }

    # Retention

    def purge_expired(
        self,
        alert_retention_days: int = 180,
        scan_retention_days: int = 90,
        now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """
        Delete alerts and scan records past their retention period.

        Idempotent: safe to run repeatedly.

        Returns:
            Dict with alerts_deleted and scans_deleted counts.
        """
        now = now or utcnow()
        alert_cutoff = to_db_timestamp(now - timedelta(days=alert_retention_days))
        scan_cutoff = to_db_timestamp(now - timedelta(days=scan_retention_days))

        with self._transaction() as conn:
            alerts_deleted = conn.execute(
                "DELETE FROM cve_alerts WHERE created_at < ?", (alert_cutoff,)
            ).rowcount
            scans_deleted = conn.execute(
                "DELETE FROM security_scans WHERE created_at < ?", (scan_cutoff,)
            ).rowcount

        if alerts_deleted or scans_deleted:
            logger.info(
                "retention_purge",
                alerts_deleted=alerts_deleted,
                scans_deleted=scans_deleted,
                alert_cutoff=alert_cutoff
            )
        return {"alerts_deleted": alerts_deleted, "scans_deleted": scans_deleted}

    # Scan history

    def record_scan(
        self,
        organization_id: str,
        github_repo_full_name: str,
        scan_status: str = "completed",
        scan_type: str = "scheduled",
        vulnerabilities_found: int = 0,
        fixes_sent: int = 0,
        error_message: Optional[str] = None,
        run_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Record the outcome of scanning one organization.

        Returns:
            The scan record id.
        """
        scan_id = str(uuid.uuid4())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO security_scans (
                    id, run_id, organization_id, github_repo_full_name, scan_type,
                    scan_status, vulnerabilities_found, fixes_sent, error_message, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    scan_id, run_id, organization_id, github_repo_full_name, scan_type,
                    scan_status, vulnerabilities_found, fixes_sent, error_message,
                    to_db_timestamp(now or utcnow())
                )
            )
        return scan_id

    def get_recent_scans(self, organization_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Get an organization's most recent scan records."""
        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT * FROM security_scans
            WHERE organization_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (organization_id, limit)
        )
        return [dict(row) for row in cursor.fetchall()]

    # Run logging methods

    def start_run(self, run_id: str, scan_type: str = "scheduled") -> str:
        """
        Record the start of a check run.

        Returns:
            The run_id.
        """
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO run_logs (run_id, scan_type, started_at) VALUES (?, ?, ?)",
                (run_id, scan_type, to_db_timestamp(utcnow()))
            )
        logger.info("run_started", run_id=run_id, scan_type=scan_type)
        return run_id

    def end_run(self, run_id: str, stats: Dict[str, Any], status: str = "completed"):
        """
        Record the end of a check run with its totals.

        Args:
            run_id: Run identifier.
            stats: Run statistics as returned by the orchestrator.
            status: Final status (completed, failed).
        """
        errors = stats.get("error_messages") or []
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE run_logs
                SET ended_at = ?, status = ?, advisories_fetched = ?,
                    organizations_checked = ?, organizations_failed = ?,
                    vulnerabilities_found = ?, alerts_created = ?, fixes_sent = ?,
                    errors = ?
                WHERE run_id = ?
                """,
                (
                    to_db_timestamp(utcnow()), status,
                    stats.get("advisories_fetched", 0),
                    stats.get("organizations_checked", 0),
                    stats.get("organizations_failed", 0),
                    stats.get("vulnerabilities_found", 0),
                    stats.get("alerts_created", 0),
                    stats.get("fixes_sent", 0),
                    "; ".join(errors) if errors else None,
                    run_id
                )
            )
        logger.info("run_ended", run_id=run_id, status=status)

    def get_recent_runs(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Get recent check runs.

        Args:
            limit: Maximum number of runs to return.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT * FROM run_logs ORDER BY started_at DESC LIMIT ?",
            (limit,)
        )
        return [dict(row) for row in cursor.fetchall()]
