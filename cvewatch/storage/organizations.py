"""Organization security configuration store."""

from typing import List, Optional

import structlog

from ..collector.models import OrganizationSecurityConfig
from .database import SQLiteDatabase, to_db_timestamp, utcnow

logger = structlog.get_logger(__name__)


class OrganizationConfigStore(SQLiteDatabase):
    """
    Organizations' GitHub App installations and auto-fix flags.

    The check run only reads this table; rows are written by the account
    settings flow or by operators.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS organization_security_configs (
        organization_id TEXT PRIMARY KEY,
        github_app_installation_id TEXT,
        github_repo_full_name TEXT,
        auto_fix_enabled INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_org_auto_fix ON organization_security_configs(auto_fix_enabled);
    """

    def list_auto_fix_enabled(self) -> List[OrganizationSecurityConfig]:
        """
        Get organizations eligible for scanning.

        Eligible means auto-fix is on and both the installation id and the
        repository name are set.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT organization_id, github_app_installation_id,
                   github_repo_full_name, auto_fix_enabled
            FROM organization_security_configs
            WHERE auto_fix_enabled = 1
              AND github_app_installation_id IS NOT NULL AND github_app_installation_id != ''
              AND github_repo_full_name IS NOT NULL AND github_repo_full_name != ''
            ORDER BY created_at, rowid
            """
        )
        return [OrganizationSecurityConfig.model_validate(dict(row)) for row in cursor.fetchall()]

    def list_all(self) -> List[OrganizationSecurityConfig]:
        """Get every configured organization."""
        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT organization_id, github_app_installation_id,
                   github_repo_full_name, auto_fix_enabled
            FROM organization_security_configs
            ORDER BY created_at, rowid
            """
        )
        return [OrganizationSecurityConfig.model_validate(dict(row)) for row in cursor.fetchall()]

    def get(self, organization_id: str) -> Optional[OrganizationSecurityConfig]:
        """Get one organization's configuration."""
        conn = self._get_connection()
        row = conn.execute(
            """
            SELECT organization_id, github_app_installation_id,
                   github_repo_full_name, auto_fix_enabled
            FROM organization_security_configs
            WHERE organization_id = ?
            """,
            (organization_id,)
        ).fetchone()
        return OrganizationSecurityConfig.model_validate(dict(row)) if row else None

    def upsert(self, config: OrganizationSecurityConfig):
        """Insert or replace an organization's configuration."""
        timestamp = to_db_timestamp(utcnow())
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO organization_security_configs (
                    organization_id, github_app_installation_id, github_repo_full_name,
                    auto_fix_enabled, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(organization_id) DO UPDATE SET
                    github_app_installation_id = excluded.github_app_installation_id,
                    github_repo_full_name = excluded.github_repo_full_name,
                    auto_fix_enabled = excluded.auto_fix_enabled,
                    updated_at = excluded.updated_at
                """,
                (
                    config.organization_id,
                    config.github_app_installation_id,
                    config.github_repo_full_name,
                    int(config.auto_fix_enabled),
                    timestamp,
                    timestamp
                )
            )
        logger.info(
            "organization_config_saved",
            organization_id=config.organization_id,
            auto_fix_enabled=config.auto_fix_enabled
        )
