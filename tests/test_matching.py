"""Unit tests for cvewatch.matching and cvewatch.known_cves."""

import os
import tempfile
import unittest

from pydantic import ValidationError

from cvewatch.collector.models import Advisory, PackageManifest, Severity
from cvewatch.known_cves import KNOWN_CVES, build_known_cves, load_known_cves
from cvewatch.matching import (
    check_advisory_affects_org,
    check_for_known_cves,
    find_vulnerabilities,
)


def _manifest(dependencies=None, dev_dependencies=None) -> PackageManifest:
    """Build a manifest the way package.json spells it."""
    return PackageManifest.model_validate({
        "name": "app",
        "dependencies": dependencies or {},
        "devDependencies": dev_dependencies or {},
    })


def _advisory(ghsa_id: str = "GHSA-aaaa-bbbb-cccc", cve_id="CVE-2025-0001", packages=("lodash",), **kwargs) -> Advisory:
    """Build an advisory from GitHub-shaped data."""
    data = {
        "ghsa_id": ghsa_id,
        "cve_id": cve_id,
        "severity": "high",
        "summary": "Prototype pollution",
        "description": "Details",
        "vulnerabilities": [
            {"package": {"ecosystem": "npm", "name": name}, "first_patched_version": "4.17.21"}
            for name in packages
        ],
    }
    data.update(kwargs)
    return Advisory.from_github_data(data)


class TestKnownCveMatcher(unittest.TestCase):
    """Manifests are checked against the curated table."""

    def test_next_middleware_bypass(self) -> None:
        findings = check_for_known_cves(_manifest({"next": "^14.2.20"}))
        self.assertEqual(len(findings), 1)
        finding = findings[0]
        self.assertEqual(finding.cve_id, "CVE-2025-29927")
        self.assertEqual(finding.severity, Severity.CRITICAL)
        self.assertEqual(finding.patched_version, "15.2.3")
        self.assertEqual(finding.installed_version, "14.2.20")
        self.assertEqual(finding.package_name, "next")

    def test_patched_next_is_clean(self) -> None:
        self.assertEqual(check_for_known_cves(_manifest({"next": "14.2.25"})), [])

    def test_dev_dependency_is_checked(self) -> None:
        findings = check_for_known_cves(_manifest(dev_dependencies={"react": "19.1.0"}))
        self.assertEqual([f.cve_id for f in findings], ["CVE-2025-55182"])

    def test_dev_dependency_overrides_direct(self) -> None:
        manifest = _manifest({"react": "19.1.0"}, {"react": "19.2.1"})
        self.assertEqual(check_for_known_cves(manifest), [])

    def test_unrelated_packages(self) -> None:
        self.assertEqual(check_for_known_cves(_manifest({"express": "4.18.2"})), [])


class TestAdvisoryMatcher(unittest.TestCase):
    """An advisory matches on the first vulnerability entry present in the manifest."""

    def test_match_builds_finding(self) -> None:
        finding = check_advisory_affects_org(_advisory(), _manifest({"lodash": "~4.17.15"}))
        self.assertIsNotNone(finding)
        self.assertEqual(finding.cve_id, "CVE-2025-0001")
        self.assertEqual(finding.ghsa_id, "GHSA-aaaa-bbbb-cccc")
        self.assertEqual(finding.installed_version, "4.17.15")
        self.assertEqual(finding.patched_version, "4.17.21")
        self.assertEqual(finding.title, "Prototype pollution")
        self.assertEqual(finding.severity, Severity.HIGH)

    def test_first_match_wins(self) -> None:
        advisory = _advisory(packages=("left-pad", "lodash", "axios"))
        finding = check_advisory_affects_org(advisory, _manifest({"axios": "1.0.0", "lodash": "4.0.0"}))
        self.assertEqual(finding.package_name, "lodash")

    def test_falls_back_to_ghsa_id(self) -> None:
        finding = check_advisory_affects_org(_advisory(cve_id=None), _manifest({"lodash": "4.0.0"}))
        self.assertEqual(finding.cve_id, "GHSA-aaaa-bbbb-cccc")

    def test_description_truncated(self) -> None:
        advisory = _advisory(description="x" * 2000)
        finding = check_advisory_affects_org(advisory, _manifest({"lodash": "4.0.0"}))
        self.assertEqual(len(finding.description), 500)

    def test_identifier_object_patched_version(self) -> None:
        advisory = Advisory.from_github_data({
            "ghsa_id": "GHSA-1111-2222-3333",
            "severity": "critical",
            "vulnerabilities": [
                {"package": {"name": "lodash"}, "first_patched_version": {"identifier": "4.17.21"}}
            ],
        })
        finding = check_advisory_affects_org(advisory, _manifest({"lodash": "4.0.0"}))
        self.assertEqual(finding.patched_version, "4.17.21")

    def test_no_patched_version(self) -> None:
        advisory = _advisory()
        advisory.vulnerabilities[0].patched_version = None
        finding = check_advisory_affects_org(advisory, _manifest({"lodash": "4.0.0"}))
        self.assertIsNone(finding.patched_version)

    def test_no_dependency_match(self) -> None:
        self.assertIsNone(check_advisory_affects_org(_advisory(), _manifest({"react": "18.0.0"})))


class TestFindVulnerabilities(unittest.TestCase):
    """Both matchers combined; advisory duplicates of table CVEs are dropped."""

    def test_known_cve_wins_over_advisory_with_same_id(self) -> None:
        advisory = _advisory(ghsa_id="GHSA-f82v-jwr5-mffw", cve_id="CVE-2025-29927", packages=("next",))
        findings = find_vulnerabilities(_manifest({"next": "^14.2.20"}), [advisory])
        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0].cve_id, "CVE-2025-29927")
        self.assertIsNone(findings[0].ghsa_id)

    def test_known_findings_come_first(self) -> None:
        findings = find_vulnerabilities(
            _manifest({"next": "14.2.20", "lodash": "4.0.0"}),
            [_advisory()],
        )
        self.assertEqual([f.cve_id for f in findings], ["CVE-2025-29927", "CVE-2025-0001"])

    def test_clean_manifest(self) -> None:
        self.assertEqual(find_vulnerabilities(_manifest({"express": "4.18.2"}), [_advisory()]), [])


class TestKnownCveTable(unittest.TestCase):
    """The curated table is validated when it is built."""

    def test_builtin_table(self) -> None:
        ids = [d.cve_id for d in KNOWN_CVES]
        self.assertEqual(ids, ["CVE-2025-29927", "CVE-2025-55182"])
        self.assertIsInstance(KNOWN_CVES, tuple)

    def test_rejects_one_sided_range(self) -> None:
        with self.assertRaises(ValidationError):
            build_known_cves([{
                "cve_id": "CVE-2099-0001", "package": "x", "affected": [">=1.0.0"],
                "patched": "2.0.0", "severity": "high", "title": "t",
            }])

    def test_rejects_unknown_severity(self) -> None:
        with self.assertRaises(ValidationError):
            build_known_cves([{
                "cve_id": "CVE-2099-0001", "package": "x", "affected": ["1.0.0"],
                "patched": "2.0.0", "severity": "urgent", "title": "t",
            }])

    def test_rejects_duplicates(self) -> None:
        entry = {
            "cve_id": "CVE-2099-0001", "package": "x", "affected": ["1.0.0"],
            "patched": "2.0.0", "severity": "low", "title": "t",
        }
        with self.assertRaises(ValueError):
            build_known_cves([entry, dict(entry)])

    def test_yaml_extension(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "known_cves.yaml")
            with open(path, "w", encoding="utf-8") as f:
                f.write(
                    "known_cves:\n"
                    "  - cve_id: CVE-2099-1234\n"
                    "    package: axios\n"
                    "    affected: ['>=1.0.0 <1.6.0']\n"
                    "    patched: 1.6.0\n"
                    "    severity: high\n"
                    "    title: Axios SSRF\n"
                )
            table = load_known_cves(path)
        self.assertEqual(len(table), 3)
        findings = check_for_known_cves(_manifest({"axios": "^1.5.0"}), table)
        self.assertEqual([f.cve_id for f in findings], ["CVE-2099-1234"])

    def _load_yaml(self, text: str):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "known_cves.yaml")
            with open(path, "w", encoding="utf-8") as f:
                f.write(text)
            return load_known_cves(path)

    def test_yaml_top_level_list_rejected(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            self._load_yaml("- cve_id: CVE-2099-1234\n  package: axios\n")
        self.assertIn("known_cves.yaml", str(ctx.exception))

    def test_yaml_entry_without_cve_id_rejected(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            self._load_yaml("known_cves:\n  - package: axios\n    patched: 1.6.0\n")
        self.assertIn("known_cves[0]", str(ctx.exception))
        self.assertIn("axios", str(ctx.exception))

    def test_yaml_known_cves_not_a_list_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self._load_yaml("known_cves: CVE-2099-1234\n")

    def test_empty_yaml_uses_builtin(self) -> None:
        self.assertEqual(self._load_yaml(""), KNOWN_CVES)

    def test_missing_yaml_uses_builtin(self) -> None:
        self.assertEqual(load_known_cves("/nonexistent/known_cves.yaml"), KNOWN_CVES)


if __name__ == "__main__":
    unittest.main()
