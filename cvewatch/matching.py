"""
Matching of organization manifests against vulnerability sources.

Two sources are checked: the curated known-CVE table (version-range aware)
and the fetched GitHub advisories (package presence only).
"""

from typing import Iterable, List, Optional

from .collector.models import Advisory, Finding, KnownCVEDefinition, PackageManifest
from .known_cves import KNOWN_CVES
from .versions import is_version_vulnerable, strip_version_prefix

ADVISORY_DESCRIPTION_LIMIT = 500


def check_for_known_cves(
    manifest: PackageManifest,
    known_cves: Iterable[KnownCVEDefinition] = KNOWN_CVES
) -> List[Finding]:
    """
    Check a manifest against the curated CVE table.

    Args:
        manifest: Parsed package.json.
        known_cves: Curated definitions (defaults to the built-in table).

    Returns:
        One finding per vulnerable table entry.
    """
    findings = []
    all_deps = manifest.all_dependencies

    for definition in known_cves:
        installed_version = all_deps.get(definition.package)

        if installed_version and is_version_vulnerable(installed_version, definition.affected):
            findings.append(Finding(
                cve_id=definition.cve_id,
                package_name=definition.package,
                installed_version=strip_version_prefix(installed_version),
                patched_version=definition.patched,
                severity=definition.severity,
                title=definition.title,
                description=definition.description,
            ))

    return findings


def check_advisory_affects_org(advisory: Advisory, manifest: PackageManifest) -> Optional[Finding]:
    """
    Check whether any package named by an advisory is a dependency.

    Only the first matching vulnerability entry is reported.

    Args:
        advisory: Advisory to test.
        manifest: Parsed package.json.

    Returns:
        A finding, or None when no dependency matches.
    """
    all_deps = manifest.all_dependencies

    for vuln in advisory.vulnerabilities:
        package_name = vuln.package_name
        if package_name and all_deps.get(package_name):
            return Finding(
                cve_id=advisory.cve_id or advisory.ghsa_id,
                ghsa_id=advisory.ghsa_id,
                package_name=package_name,
                installed_version=strip_version_prefix(all_deps[package_name]),
                patched_version=vuln.patched_version,
                severity=advisory.severity,
                title=advisory.summary,
                description=advisory.description[:ADVISORY_DESCRIPTION_LIMIT] or None,
            )

    return None


def find_vulnerabilities(
    manifest: PackageManifest,
    advisories: Iterable[Advisory],
    known_cves: Iterable[KnownCVEDefinition] = KNOWN_CVES
) -> List[Finding]:
    """
    Run both matchers; advisory findings already covered by the table are dropped.

    Returns:
        Known-table findings followed by advisory findings.
    """
    known_findings = check_for_known_cves(manifest, known_cves)
    known_ids = {f.cve_id for f in known_findings}

    advisory_findings = []
    for advisory in advisories:
        finding = check_advisory_affects_org(advisory, manifest)
        if finding and finding.cve_id not in known_ids:
            advisory_findings.append(finding)

    return known_findings + advisory_findings
