"""Delivery of findings to the remediation service."""

from .remediation import RemediationDispatcher

__all__ = ["RemediationDispatcher"]
