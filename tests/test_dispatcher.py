"""Unit tests for the remediation dispatcher (HTTP mocked)."""

import unittest
from unittest.mock import MagicMock

import requests

from cvewatch.collector.models import Finding, Severity
from cvewatch.config import Config
from cvewatch.delivery.remediation import RemediationDispatcher


def _finding() -> Finding:
    return Finding(
        cve_id="CVE-2025-0001",
        ghsa_id="GHSA-aaaa-bbbb-cccc",
        package_name="lodash",
        installed_version="4.17.15",
        patched_version="4.17.21",
        severity=Severity.HIGH,
        title="Prototype pollution",
        description="Details",
    )


def _dispatcher(session: MagicMock, url: str = "https://ws.example.com") -> RemediationDispatcher:
    return RemediationDispatcher(Config(remediation_service_url=url, http_max_tries=1), session=session)


class TestRemediationDispatcher(unittest.TestCase):
    """Findings are posted to the fixer service; failures return False."""

    def test_payload_shape(self) -> None:
        payload = RemediationDispatcher.build_payload("org-1", _finding(), "alert-1")
        self.assertEqual(payload, {
            "organizationId": "org-1",
            "alertId": "alert-1",
            "vulnerability": {
                "cve_id": "CVE-2025-0001",
                "ghsa_id": "GHSA-aaaa-bbbb-cccc",
                "package_name": "lodash",
                "installed_version": "4.17.15",
                "patched_version": "4.17.21",
                "severity": "high",
                "title": "Prototype pollution",
                "description": "Details",
            },
        })

    def test_successful_dispatch(self) -> None:
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=202)
        dispatcher = _dispatcher(session)

        self.assertTrue(dispatcher.dispatch("org-1", _finding(), "alert-1"))

        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "https://ws.example.com/fix-security-vulnerability")
        self.assertEqual(kwargs["json"]["alertId"], "alert-1")
        self.assertEqual(kwargs["timeout"], 30.0)

    def test_non_2xx_returns_false(self) -> None:
        session = MagicMock()
        response = MagicMock(status_code=503)
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
        session.post.return_value = response

        self.assertFalse(_dispatcher(session).dispatch("org-1", _finding(), "alert-1"))

    def test_connection_error_returns_false(self) -> None:
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")

        self.assertFalse(_dispatcher(session).dispatch("org-1", _finding(), "alert-1"))

    def test_unset_url_returns_false(self) -> None:
        session = MagicMock()

        self.assertFalse(_dispatcher(session, url="").dispatch("org-1", _finding(), "alert-1"))
        session.post.assert_not_called()


if __name__ == "__main__":
    unittest.main()
