"""
GitHub App authentication.

Generates App-level JWTs and exchanges them for installation access tokens.
Tokens are minted fresh on every call; nothing is cached, so each caller
sees the installation's permissions as of that call.
"""

import base64
import binascii
import time
from typing import Any, Dict, List

import jwt
import requests
import structlog
from pydantic import ValidationError

from ..config import Config
from ..exceptions import GitHubAppAuthError
from ..http_utils import build_session, github_headers
from ..collector.models import InstallationToken

logger = structlog.get_logger(__name__)

# GitHub rejects App JWTs valid for more than 10 minutes
JWT_CLOCK_SKEW_SECONDS = 60
JWT_LIFETIME_SECONDS = 600


def normalize_private_key(raw_key: str) -> str:
    """
    Turn a configured private key into PEM text.

    Accepts raw PEM, or base64-encoded PEM. Literal backslash-n sequences,
    as produced by single-line environment variables, become newlines.

    Raises:
        GitHubAppAuthError: If the key is missing or not valid base64.
    """
    if not raw_key:
        raise GitHubAppAuthError("GH_APP_PRIVATE_KEY environment variable is not set")

    private_key = raw_key
    if "-----BEGIN" not in private_key:
        try:
            private_key = base64.b64decode(private_key, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.error("github_app_key_parse_failed", error=str(e))
            raise GitHubAppAuthError("Invalid GH_APP_PRIVATE_KEY format") from e

    return private_key.replace("\\n", "\n")


class GitHubAppAuth:
    """
    Credential provider for one GitHub App.

    Every failure is raised as GitHubAppAuthError; there is no retry here.
    """

    def __init__(self, config: Config, session: requests.Session = None):
        """
        Initialize the provider.

        Args:
            config: Application configuration with GH_APP_ID and key.
            session: Optional pre-built HTTP session.
        """
        self.config = config
        self.app_id = str(config.gh_app_id)
        self.api_url = config.github_api_url
        self.session = session or build_session()

    def generate_app_jwt(self) -> str:
        """
        Generate a JWT that authenticates as the App itself.

        Returns:
            Encoded RS256 JWT valid for ten minutes.
        """
        private_key = normalize_private_key(self.config.gh_app_private_key)

        now = int(time.time())
        payload = {
            "iat": now - JWT_CLOCK_SKEW_SECONDS,
            "exp": now + JWT_LIFETIME_SECONDS,
            "iss": self.app_id,
        }

        try:
            return jwt.encode(payload, private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.error("github_app_jwt_failed", error=str(e))
            raise GitHubAppAuthError(f"Failed to generate GitHub App JWT: {e}") from e

    def _call(self, method: str, path: str, token: str, action: str) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                headers=github_headers(self.config, token),
                json={} if method == "POST" else None,
                timeout=self.config.http_timeout_seconds
            )
            response.raise_for_status()
        except requests.RequestException as e:
            response = getattr(e, "response", None)
            payload = _response_payload(response)
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.error(
                "github_app_request_failed",
                action=action,
                status_code=response.status_code if response is not None else None,
                payload=payload,
                error=str(e)
            )
            raise GitHubAppAuthError(
                f"Failed to {action}: {message or e}",
                status_code=response.status_code if response is not None else None,
                payload=payload
            ) from e

        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "github_app_response_invalid",
                action=action,
                status_code=response.status_code,
                error=str(e)
            )
            raise GitHubAppAuthError(
                f"Failed to {action}: response is not valid JSON",
                status_code=response.status_code,
                payload=response.text
            ) from e

    def get_installation_access_token(self, installation_id: str) -> InstallationToken:
        """
        Mint an installation access token (valid about one hour).

        Args:
            installation_id: GitHub App installation id.

        Returns:
            The new token with its expiry and permissions.
        """
        app_jwt = self.generate_app_jwt()
        data = self._call(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            app_jwt,
            "get installation access token"
        )
        try:
            token = InstallationToken.model_validate(data)
        except ValidationError as e:
            logger.error("installation_token_invalid", installation_id=installation_id, error=str(e))
            raise GitHubAppAuthError(
                "Failed to get installation access token: unexpected response shape",
                payload=data
            ) from e

        logger.debug("installation_token_minted", installation_id=installation_id)
        return token

    def get_installation_details(self, installation_id: str) -> Dict[str, Any]:
        """
        Get installation metadata (account, permissions, target type).

        Args:
            installation_id: GitHub App installation id.
        """
        app_jwt = self.generate_app_jwt()
        return self._call(
            "GET",
            f"/app/installations/{installation_id}",
            app_jwt,
            "get installation details"
        )

    def get_installation_repositories(self, installation_id: str) -> List[Dict[str, Any]]:
        """
        List repositories the installation can access.

        Args:
            installation_id: GitHub App installation id.
        """
        token = self.get_installation_access_token(installation_id)
        data = self._call(
            "GET",
            "/installation/repositories",
            token.token,
            "get installation repositories"
        )
        if not isinstance(data, dict):
            raise GitHubAppAuthError(
                "Failed to get installation repositories: unexpected response shape",
                payload=data
            )
        return data.get("repositories", [])

    def close(self):
        """Close the HTTP session."""
        self.session.close()


def _response_payload(response: requests.Response) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
