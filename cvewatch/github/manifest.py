"""Fetches an organization's package.json through its GitHub App installation."""

import base64
import binascii
import json

import requests
import structlog
from pydantic import ValidationError

from ..config import Config
from ..exceptions import ManifestFetchError
from ..http_utils import build_session, github_headers, with_retries
from ..collector.models import PackageManifest
from .app_auth import GitHubAppAuth

logger = structlog.get_logger(__name__)


class ManifestFetcher:
    """
    Reads package.json from a repository using an installation token.

    Errors are raised as ManifestFetchError; callers decide how to isolate them.
    """

    def __init__(self, config: Config, auth: GitHubAppAuth, session: requests.Session = None):
        self.config = config
        self.auth = auth
        self.session = session or build_session()
        self._get_contents = with_retries(self._request_contents, config.http_max_tries)

    def _request_contents(self, url: str, branch: str, token: str) -> dict:
        response = self.session.get(
            url,
            params={"ref": branch},
            headers=github_headers(self.config, token),
            timeout=self.config.http_timeout_seconds
        )
        response.raise_for_status()
        return response.json()

    def fetch_package_json(
        self,
        installation_id: str,
        repo_full_name: str,
        branch: str = None
    ) -> PackageManifest:
        """
        Fetch and parse package.json at a branch.

        Args:
            installation_id: GitHub App installation id for the repository.
            repo_full_name: 'owner/repo'.
            branch: Git ref; defaults to the configured manifest branch.

        Returns:
            Parsed manifest.

        Raises:
            GitHubAppAuthError: If the installation token cannot be minted.
            ManifestFetchError: If the file cannot be fetched, decoded or parsed.
        """
        branch = branch or self.config.manifest_branch
        token = self.auth.get_installation_access_token(installation_id)

        url = f"{self.config.github_api_url}/repos/{repo_full_name}/contents/package.json"
        try:
            data = self._get_contents(url, branch, token.token)
            content = base64.b64decode(data["content"]).decode("utf-8")
            manifest = PackageManifest.model_validate(json.loads(content))
        except (
            requests.RequestException,
            KeyError,
            TypeError,
            binascii.Error,
            UnicodeDecodeError,
            ValueError,
            ValidationError,
        ) as e:
            logger.error(
                "manifest_fetch_failed",
                repo=repo_full_name,
                branch=branch,
                error=str(e)
            )
            raise ManifestFetchError(f"Failed to fetch package.json: {e}") from e

        logger.debug(
            "manifest_fetched",
            repo=repo_full_name,
            dependencies=len(manifest.all_dependencies)
        )
        return manifest

    def close(self):
        """Close the HTTP sessions."""
        self.session.close()
        self.auth.close()
