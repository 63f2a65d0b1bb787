"""Collector package for advisory data and shared models."""

from .models import (
    Advisory,
    AdvisoryVulnerability,
    AlertStatus,
    CVEAlert,
    Finding,
    KnownCVEDefinition,
    OrganizationSecurityConfig,
    PackageManifest,
    Severity,
)

__all__ = [
    "Advisory",
    "AdvisoryVulnerability",
    "AlertStatus",
    "CVEAlert",
    "Finding",
    "KnownCVEDefinition",
    "OrganizationSecurityConfig",
    "PackageManifest",
    "Severity",
]
