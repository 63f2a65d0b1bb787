"""Shared HTTP session and retry helpers for outbound API calls."""

from typing import Callable, Optional, TypeVar

import backoff
import requests
import structlog

from .config import Config

logger = structlog.get_logger(__name__)

USER_AGENT = "CVEWatch-Security-Monitor/1.0"

T = TypeVar("T")


def github_headers(config: Config, token: Optional[str] = None) -> dict:
    """Standard GitHub REST headers, with a bearer token when given."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": config.github_api_version,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def build_session(extra_headers: Optional[dict] = None) -> requests.Session:
    """Create a requests session with the service User-Agent."""
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    if extra_headers:
        session.headers.update(extra_headers)
    return session


def is_client_error(exc: Exception) -> bool:
    """True for 4xx responses other than 429; retrying those cannot help."""
    response = getattr(exc, "response", None)
    if response is None:
        return False
    return 400 <= response.status_code < 500 and response.status_code != 429


def _log_retry(details: dict) -> None:
    logger.warning(
        "http_retry",
        target=details["target"].__name__,
        tries=details["tries"],
        wait_seconds=round(details.get("wait", 0), 2),
        error=str(details.get("exception"))
    )


def with_retries(func: Callable[..., T], max_tries: int) -> Callable[..., T]:
    """
    Wrap a request function with exponential backoff.

    Args:
        func: Callable that raises requests.RequestException on failure.
        max_tries: Total attempts, including the first.

    Returns:
        Wrapped callable.
    """
    return backoff.on_exception(
        backoff.expo,
        requests.RequestException,
        max_tries=max_tries,
        max_time=120,
        giveup=is_client_error,
        on_backoff=_log_retry,
        logger=None
    )(func)
