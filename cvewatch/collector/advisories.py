"""
GitHub Advisory Database client.

Fetches the most recently published critical and high severity advisories
for one ecosystem. The two severity tiers are requested in parallel and
merged, keeping the critical copy of any advisory present in both.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List

import requests
import structlog
from pydantic import ValidationError

from ..config import Config
from ..http_utils import build_session, github_headers, with_retries
from .models import Advisory

logger = structlog.get_logger(__name__)


class GitHubAdvisoryClient:
    """
    Client for the GitHub Advisory Database REST endpoint.

    A failing severity tier is logged and contributes no advisories; the
    fetch as a whole never raises.
    """

    SEVERITY_TIERS = ("critical", "high")

    def __init__(self, config: Config, session: requests.Session = None):
        """
        Initialize the advisory client.

        Args:
            config: Application configuration.
            session: Optional pre-built HTTP session.
        """
        self.config = config
        self.advisories_url = f"{config.github_api_url}/advisories"

        self.session = session or build_session()
        # Optional token only raises the rate limit
        self.headers = github_headers(config, config.github_token)

        self._get_page = with_retries(self._request_page, config.http_max_tries)

        logger.info(
            "advisory_client_initialized",
            ecosystem=config.advisory_ecosystem,
            has_token=bool(config.github_token)
        )

    def _request_page(self, severity: str) -> List[Dict[str, Any]]:
        params = {
            "ecosystem": self.config.advisory_ecosystem,
            "severity": severity,
            "per_page": self.config.advisory_page_size,
            "sort": "published",
            "direction": "desc",
        }
        response = self.session.get(
            self.advisories_url,
            params=params,
            headers=self.headers,
            timeout=self.config.http_timeout_seconds
        )
        response.raise_for_status()
        return response.json()

    def fetch_by_severity(self, severity: str) -> List[Advisory]:
        """
        Fetch one page of advisories for a severity tier.

        Args:
            severity: 'critical' or 'high'.

        Returns:
            Parsed advisories; empty on any request failure.
        """
        try:
            raw = self._get_page(severity)
        except requests.RequestException as e:
            response = getattr(e, "response", None)
            logger.error(
                "advisory_fetch_failed",
                severity=severity,
                error=str(e),
                status_code=response.status_code if response is not None else None,
                response_body=response.text[:500] if response is not None else None
            )
            return []
        except ValueError as e:
            logger.error("advisory_response_invalid", severity=severity, error=str(e))
            return []

        if not isinstance(raw, list):
            logger.error(
                "advisory_response_invalid",
                severity=severity,
                error=f"expected a list, got {type(raw).__name__}"
            )
            return []

        advisories = []
        for item in raw:
            try:
                advisories.append(Advisory.from_github_data(item))
            except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
                ghsa_id = item.get("ghsa_id", "unknown") if isinstance(item, dict) else "unknown"
                logger.warning("advisory_parse_error", ghsa_id=ghsa_id, error=str(e))

        logger.info("advisories_fetched", severity=severity, count=len(advisories))
        return advisories

    def fetch_advisories(self) -> List[Advisory]:
        """
        Fetch critical and high advisories in parallel and merge them.

        Returns:
            Advisories deduplicated by ghsa_id, critical tier first.
        """
        logger.info("advisory_fetch_started")

        with ThreadPoolExecutor(max_workers=len(self.SEVERITY_TIERS)) as pool:
            futures = [pool.submit(self.fetch_by_severity, s) for s in self.SEVERITY_TIERS]
            tiers = [future.result() for future in futures]

        merged = merge_advisories(*tiers)
        logger.info("advisory_fetch_completed", unique_advisories=len(merged))
        return merged

    def close(self):
        """Close the HTTP session."""
        self.session.close()


def merge_advisories(*tiers: List[Advisory]) -> List[Advisory]:
    """
    Concatenate advisory lists, keeping the first copy of each ghsa_id.

    Pass tiers in priority order.
    """
    seen = set()
    merged = []
    for tier in tiers:
        for advisory in tier:
            if advisory.ghsa_id not in seen:
                seen.add(advisory.ghsa_id)
                merged.append(advisory)
    return merged
