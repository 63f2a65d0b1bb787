"""SQLite-backed persistence for alerts and organization settings."""

from .alerts import ALLOWED_TRANSITIONS, AlertStore
from .organizations import OrganizationConfigStore

__all__ = ["ALLOWED_TRANSITIONS", "AlertStore", "OrganizationConfigStore"]
