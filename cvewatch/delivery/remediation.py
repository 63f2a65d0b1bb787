"""
Remediation service dispatcher.

Hands a new finding to the external fixer service (WS-Assistant), which
opens a pull request and later reports back through the alert status
update contract.
"""

from typing import Any, Dict

import requests
import structlog

from ..config import Config
from ..collector.models import Finding
from ..http_utils import build_session, with_retries

logger = structlog.get_logger(__name__)


class RemediationDispatcher:
    """
    Posts findings to the remediation service.

    dispatch() returns a boolean and never raises for delivery problems;
    the caller uses the result to decide whether the alert was notified.
    """

    FIX_ENDPOINT = "/fix-security-vulnerability"

    def __init__(self, config: Config, session: requests.Session = None):
        """
        Initialize the dispatcher.

        Args:
            config: Application configuration with WS_ASSISTANT_HTTP_URL.
            session: Optional pre-built HTTP session.
        """
        self.config = config
        self.base_url = config.remediation_service_url
        self.session = session or build_session({"Accept": "application/json"})
        self._post = with_retries(self._post_once, config.http_max_tries)

        logger.info("remediation_dispatcher_initialized", configured=bool(self.base_url))

    def _post_once(self, url: str, payload: Dict[str, Any]) -> None:
        response = self.session.post(url, json=payload, timeout=self.config.http_timeout_seconds)
        response.raise_for_status()

    @staticmethod
    def build_payload(organization_id: str, finding: Finding, alert_id: str) -> Dict[str, Any]:
        """Build the request body sent to the remediation service."""
        return {
            "organizationId": organization_id,
            "alertId": alert_id,
            "vulnerability": finding.to_payload(),
        }

    def dispatch(self, organization_id: str, finding: Finding, alert_id: str) -> bool:
        """
        Send a finding for automatic remediation.

        Args:
            organization_id: Organization that owns the alert.
            finding: The vulnerability to fix.
            alert_id: Persisted alert id, echoed back in status updates.

        Returns:
            True if the service accepted the request (2xx).
        """
        if not self.base_url:
            logger.error("remediation_service_not_configured")
            return False

        logger.info(
            "dispatching_fix_request",
            organization_id=organization_id,
            cve_id=finding.cve_id,
            alert_id=alert_id
        )

        try:
            self._post(
                f"{self.base_url}{self.FIX_ENDPOINT}",
                self.build_payload(organization_id, finding, alert_id)
            )
        except requests.RequestException as e:
            response = getattr(e, "response", None)
            logger.error(
                "fix_request_failed",
                organization_id=organization_id,
                cve_id=finding.cve_id,
                status_code=response.status_code if response is not None else None,
                error=str(e)
            )
            return False

        logger.info("fix_request_sent", organization_id=organization_id, cve_id=finding.cve_id)
        return True

    def close(self):
        """Close the HTTP session."""
        self.session.close()
