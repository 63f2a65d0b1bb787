"""
CVE Watch - Organization Security Monitoring

This package periodically pulls critical and high severity npm advisories,
matches them against each organization's package.json, stores deduplicated
alerts and hands new findings to a remediation service.
"""

__version__ = "1.0.0"
__author__ = "Security Automation"
