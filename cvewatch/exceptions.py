"""Exception hierarchy for the CVE watch service."""

from typing import Any, Optional


class CVEWatchError(Exception):
    """Base class for all CVE watch errors."""


class GitHubAppAuthError(CVEWatchError):
    """
    Raised when a GitHub App credential cannot be produced or exchanged.

    Carries the upstream HTTP status and response payload when the failure
    came from the GitHub API rather than from local key handling.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ManifestFetchError(CVEWatchError):
    """Raised when an organization's package.json cannot be fetched or parsed."""


class AlertNotFoundError(CVEWatchError):
    """Raised when an alert id does not exist."""


class InvalidStatusTransitionError(CVEWatchError):
    """Raised when an alert status change is not allowed by the lifecycle."""

    def __init__(self, alert_id: str, current: str, requested: str):
        super().__init__(
            f"Alert {alert_id} cannot move from '{current}' to '{requested}'"
        )
        self.alert_id = alert_id
        self.current = current
        self.requested = requested
