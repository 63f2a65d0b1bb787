"""
Configuration module for the CVE watch service.

Loads configuration from environment variables and .env file,
validates required settings, and provides typed access to configuration values.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Runtime environment ("production" runs a check on startup)
    app_env: str = "development"

    # GitHub API Configuration
    github_api_url: str = "https://api.github.com"
    github_api_version: str = "2022-11-28"
    github_token: Optional[str] = None  # Optional, raises advisory rate limits

    # GitHub App Configuration
    gh_app_id: str = ""
    gh_app_private_key: str = ""

    # Remediation service (WS-Assistant)
    remediation_service_url: str = ""

    # Advisory Configuration
    advisory_ecosystem: str = "npm"
    advisory_page_size: int = 25

    # Manifest Configuration
    manifest_branch: str = "main"

    # HTTP Configuration
    http_timeout_seconds: float = 30.0
    http_max_tries: int = 3

    # Database Configuration
    database_path: str = "./data/cvewatch.db"
    alert_retention_days: int = 180
    scan_retention_days: int = 90

    # Curated CVE table extension
    known_cves_path: str = "./known_cves.yaml"

    # Logging Configuration
    log_level: str = "INFO"
    log_file: str = "./logs/cvewatch.log"

    @property
    def is_production(self) -> bool:
        """True when running with APP_ENV=production."""
        return self.app_env.lower() == "production"


def load_config(env_path: Optional[str] = None) -> Config:
    """
    Load configuration from environment variables and optional .env file.

    Args:
        env_path: Optional path to .env file. If not provided, searches
                  current directory and parent directories.

    Returns:
        Config object with loaded values.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        env_file = Path(".env")
        if env_file.exists():
            load_dotenv(env_file)
        else:
            for parent in Path.cwd().parents:
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    break

    return Config(
        app_env=os.getenv("APP_ENV", "development"),

        # GitHub
        github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        github_api_version=os.getenv("GITHUB_API_VERSION", "2022-11-28"),
        github_token=os.getenv("GITHUB_TOKEN") or None,

        # GitHub App
        gh_app_id=os.getenv("GH_APP_ID", ""),
        gh_app_private_key=os.getenv("GH_APP_PRIVATE_KEY", ""),

        # Remediation
        remediation_service_url=os.getenv("WS_ASSISTANT_HTTP_URL", "").rstrip("/"),

        # Advisories
        advisory_ecosystem=os.getenv("ADVISORY_ECOSYSTEM", "npm"),
        advisory_page_size=int(os.getenv("ADVISORY_PAGE_SIZE", "25")),

        # Manifest
        manifest_branch=os.getenv("MANIFEST_BRANCH", "main"),

        # HTTP
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
        http_max_tries=int(os.getenv("HTTP_MAX_TRIES", "3")),

        # Database
        database_path=os.getenv("DATABASE_PATH", "./data/cvewatch.db"),
        alert_retention_days=int(os.getenv("ALERT_RETENTION_DAYS", "180")),
        scan_retention_days=int(os.getenv("SCAN_RETENTION_DAYS", "90")),

        # Known CVEs
        known_cves_path=os.getenv("KNOWN_CVES_PATH", "./known_cves.yaml"),

        # Logging
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", "./logs/cvewatch.log"),
    )


def validate_config(config: Config) -> list[str]:
    """
    Validate that required configuration values are present.

    Args:
        config: Configuration object to validate.

    Returns:
        List of validation error messages. Empty if valid.
    """
    errors = []

    if not config.gh_app_id:
        errors.append("GH_APP_ID is required")
    if not config.gh_app_private_key:
        errors.append("GH_APP_PRIVATE_KEY is required")
    if not config.remediation_service_url:
        errors.append("WS_ASSISTANT_HTTP_URL is required")

    if config.remediation_service_url and not config.remediation_service_url.startswith(
        ("http://", "https://")
    ):
        errors.append("WS_ASSISTANT_HTTP_URL must use http or https")
    if not config.github_api_url.startswith(("http://", "https://")):
        errors.append("GITHUB_API_URL must use http or https")

    # Validate numeric ranges
    if config.advisory_page_size < 1 or config.advisory_page_size > 100:
        errors.append("ADVISORY_PAGE_SIZE must be between 1 and 100")
    if config.http_timeout_seconds <= 0:
        errors.append("HTTP_TIMEOUT_SECONDS must be greater than 0")
    if config.http_max_tries < 1:
        errors.append("HTTP_MAX_TRIES must be at least 1")
    if config.alert_retention_days < 1:
        errors.append("ALERT_RETENTION_DAYS must be at least 1")
    if config.scan_retention_days < 1:
        errors.append("SCAN_RETENTION_DAYS must be at least 1")

    return errors


# Global config instance (lazy loaded)
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config():
    """Reset the global configuration instance (useful for testing)."""
    global _config
    _config = None
