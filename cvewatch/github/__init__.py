"""GitHub App authentication and repository access."""

from .app_auth import GitHubAppAuth, normalize_private_key
from .manifest import ManifestFetcher

__all__ = ["GitHubAppAuth", "ManifestFetcher", "normalize_private_key"]
