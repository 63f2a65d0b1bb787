"""
Curated table of critical CVEs checked against every manifest.

The built-in entries cover framework vulnerabilities that must be caught
even before they show up in the advisory feed. Additional entries can be
supplied in a YAML file (KNOWN_CVES_PATH) with the same fields.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import structlog
import yaml

from .collector.models import KnownCVEDefinition

logger = structlog.get_logger(__name__)


_BUILTIN_KNOWN_CVES: Tuple[Dict[str, Any], ...] = (
    {
        "cve_id": "CVE-2025-29927",
        "package": "next",
        "title": "Next.js Middleware Authorization Bypass",
        "affected": [">=11.1.4 <12.3.5", ">=13.0.0 <13.5.9", ">=14.0.0 <14.2.25", ">=15.0.0 <15.2.3"],
        "patched": "15.2.3",
        "severity": "critical",
        "description": (
            "Authorization bypass via x-middleware-subrequest header allows attackers "
            "to bypass middleware authentication."
        ),
    },
    {
        "cve_id": "CVE-2025-55182",
        "package": "react",
        "title": "React Server Components Remote Code Execution",
        "affected": ["19.0.0", "19.1.0", "19.1.1", "19.2.0"],
        "patched": "19.2.1",
        "severity": "critical",
        "description": (
            "Critical RCE vulnerability in React Flight protocol. Allows unauthenticated "
            "remote code execution on the server."
        ),
    },
)


def build_known_cves(entries: Iterable[Dict[str, Any]]) -> Tuple[KnownCVEDefinition, ...]:
    """
    Validate raw entries into an immutable table.

    Raises:
        pydantic.ValidationError: If an entry has a bad range or severity.
        ValueError: If a CVE id appears twice.
    """
    table = tuple(KnownCVEDefinition(**entry) for entry in entries)
    seen = set()
    for definition in table:
        if definition.cve_id in seen:
            raise ValueError(f"Duplicate known CVE entry: {definition.cve_id}")
        seen.add(definition.cve_id)
    return table


def load_known_cves(extra_path: Optional[str] = None) -> Tuple[KnownCVEDefinition, ...]:
    """
    Load the built-in table plus optional entries from a YAML file.

    The YAML file holds a top-level `known_cves` list. Entries whose cve_id
    matches a built-in entry replace it.

    Args:
        extra_path: Path to the YAML file. Missing files are ignored.

    Returns:
        Tuple of validated definitions.

    Raises:
        ValueError: If the file is not shaped as a `known_cves` list of
            entries that each carry a cve_id.
        pydantic.ValidationError: If an entry has a bad range or severity.
    """
    entries: Dict[str, Dict[str, Any]] = {
        entry["cve_id"]: dict(entry) for entry in _BUILTIN_KNOWN_CVES
    }

    if extra_path and Path(extra_path).exists():
        with open(extra_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{extra_path}: expected a mapping with a 'known_cves' list")
        extra = data.get("known_cves") or []
        if not isinstance(extra, list):
            raise ValueError(f"{extra_path}: 'known_cves' must be a list")
        for index, entry in enumerate(extra):
            if not isinstance(entry, dict) or not entry.get("cve_id"):
                raise ValueError(f"{extra_path}: known_cves[{index}] has no cve_id: {entry!r}")
            entries[entry["cve_id"]] = entry
        logger.info("known_cves_extended", path=extra_path, extra_entries=len(extra))

    return build_known_cves(entries.values())


KNOWN_CVES: Tuple[KnownCVEDefinition, ...] = build_known_cves(_BUILTIN_KNOWN_CVES)
