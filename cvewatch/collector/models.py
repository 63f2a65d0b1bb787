"""
Data models for advisories, findings and persisted alerts.

These Pydantic models provide structured, validated representations
of GitHub advisory data, organization manifests and CVE alert records.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum


class Severity(str, Enum):
    """Alert severity levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Parse a severity string, accepting GitHub's 'moderate' spelling."""
        text = str(value or "").strip().lower()
        if text == "moderate":
            text = "medium"
        return cls(text)


class AlertStatus(str, Enum):
    """Lifecycle states of a CVE alert."""
    PENDING = "pending"      # Alert created, not yet dispatched
    NOTIFIED = "notified"    # Sent to the remediation service
    FIXING = "fixing"        # Remediation service is working on it
    RESOLVED = "resolved"    # PR created successfully
    FAILED = "failed"        # Fix attempt failed
    IGNORED = "ignored"      # User chose to ignore


class AdvisoryVulnerability(BaseModel):
    """One affected package entry inside a GitHub advisory."""

    package_name: Optional[str] = Field(default=None, description="Affected package name")
    ecosystem: Optional[str] = Field(default=None, description="Package ecosystem")
    vulnerable_version_range: Optional[str] = Field(default=None, description="Affected range as published")
    patched_version: Optional[str] = Field(default=None, description="First patched version")

    @classmethod
    def from_github_data(cls, data: Dict[str, Any]) -> "AdvisoryVulnerability":
        """Create an entry from a GitHub advisory `vulnerabilities[]` item."""
        package = data.get("package") or {}

        # The REST API returns a plain string, older payloads an object
        first_patched = data.get("first_patched_version")
        if isinstance(first_patched, dict):
            first_patched = first_patched.get("identifier")

        return cls(
            package_name=package.get("name"),
            ecosystem=package.get("ecosystem"),
            vulnerable_version_range=data.get("vulnerable_version_range"),
            patched_version=first_patched or None,
        )


class Advisory(BaseModel):
    """A reviewed advisory from the GitHub Advisory Database."""

    ghsa_id: str = Field(description="GitHub Security Advisory identifier")
    cve_id: Optional[str] = Field(default=None, description="CVE identifier if assigned")
    severity: Severity = Field(description="Advisory severity tier")
    summary: str = Field(default="", description="Short advisory title")
    description: str = Field(default="", description="Full advisory text")
    published_at: Optional[datetime] = Field(default=None, description="Publication time")
    vulnerabilities: List[AdvisoryVulnerability] = Field(default_factory=list)

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: Any) -> Severity:
        return Severity.parse(value)

    @classmethod
    def from_github_data(cls, data: Dict[str, Any]) -> "Advisory":
        """Create an Advisory from a GitHub `/advisories` response item."""
        return cls(
            ghsa_id=data["ghsa_id"],
            cve_id=data.get("cve_id") or None,
            severity=data.get("severity"),
            summary=data.get("summary") or "",
            description=data.get("description") or "",
            published_at=data.get("published_at"),
            vulnerabilities=[
                AdvisoryVulnerability.from_github_data(v)
                for v in data.get("vulnerabilities") or []
            ],
        )


class KnownCVEDefinition(BaseModel):
    """
    Curated CVE entry checked against every manifest.

    Affected ranges are parse-checked at load time so that a malformed or
    one-sided range cannot sit silently in the table.
    """

    model_config = ConfigDict(frozen=True)

    cve_id: str
    package: str
    affected: tuple[str, ...] = Field(min_length=1)
    patched: str
    severity: Severity
    title: str
    description: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: Any) -> Severity:
        return Severity.parse(value)

    @field_validator("affected", mode="before")
    @classmethod
    def _validate_ranges(cls, value: Any) -> tuple:
        from ..versions import validate_range_spec

        if isinstance(value, str):
            value = [value]
        ranges = tuple(str(v).strip() for v in value)
        for spec in ranges:
            validate_range_spec(spec)
        return ranges


class Finding(BaseModel):
    """A detected vulnerability for one organization, before persistence."""

    cve_id: str
    ghsa_id: Optional[str] = None
    package_name: str
    installed_version: str
    patched_version: Optional[str] = None
    severity: Severity
    title: str
    description: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize for the remediation service."""
        return {
            "cve_id": self.cve_id,
            "ghsa_id": self.ghsa_id,
            "package_name": self.package_name,
            "installed_version": self.installed_version,
            "patched_version": self.patched_version,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
        }


class PackageManifest(BaseModel):
    """Direct and dev dependencies declared in a package.json."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    dependencies: Dict[str, str] = Field(default_factory=dict)
    dev_dependencies: Dict[str, str] = Field(default_factory=dict, alias="devDependencies")

    @field_validator("dependencies", "dev_dependencies", mode="before")
    @classmethod
    def _keep_string_specs(cls, value: Any) -> Dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {k: v for k, v in value.items() if isinstance(v, str)}

    @property
    def all_dependencies(self) -> Dict[str, str]:
        """Direct dependencies merged with dev dependencies (dev wins)."""
        return {**self.dependencies, **self.dev_dependencies}


class OrganizationSecurityConfig(BaseModel):
    """An organization's GitHub App installation and auto-fix setting."""

    organization_id: str
    github_app_installation_id: Optional[str] = None
    github_repo_full_name: Optional[str] = None
    auto_fix_enabled: bool = False

    @field_validator("github_app_installation_id", mode="before")
    @classmethod
    def _installation_id_as_str(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class CVEAlert(BaseModel):
    """Persisted security alert for one organization and CVE."""

    id: str
    organization_id: str
    cve_id: str
    ghsa_id: Optional[str] = None
    package_name: str
    installed_version: Optional[str] = None
    patched_version: Optional[str] = None
    severity: Severity
    title: str
    description: Optional[str] = None
    status: AlertStatus = AlertStatus.PENDING
    notified_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    scan_triggered: bool = False
    pr_created: bool = False
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class InstallationToken(BaseModel):
    """Short-lived installation access token minted for a GitHub App."""

    model_config = ConfigDict(extra="ignore")

    token: str
    expires_at: Optional[datetime] = None
    permissions: Dict[str, str] = Field(default_factory=dict)
    repository_selection: Optional[str] = None
