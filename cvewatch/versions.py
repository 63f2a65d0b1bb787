"""
Version range evaluation for npm dependency specs.

A vulnerability spec is either a bare version token ("19.1.0"), matched
by equality or prefix, or a compound range (">=14.0.0 <14.2.25") compared
on integer (major, minor, patch) triples. Several specs for one CVE are
OR'ed together.
"""

import re
from typing import Iterable, NamedTuple, Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)

_PREFIX_RE = re.compile(r"^[\^~]")
_LEADING_INT_RE = re.compile(r"^\d+")

VersionTriple = Tuple[int, int, int]


class VersionRange(NamedTuple):
    """Half-open interval [minimum, maximum) of version triples."""
    minimum: VersionTriple
    maximum: VersionTriple

    def contains(self, version: VersionTriple) -> bool:
        return self.minimum <= version < self.maximum


def strip_version_prefix(version: str) -> str:
    """Drop a leading caret or tilde: '^15.2.0' -> '15.2.0'."""
    return _PREFIX_RE.sub("", version.strip())


def parse_version_triple(version: str) -> VersionTriple:
    """
    Parse a version into a (major, minor, patch) triple.

    Each component keeps only its leading digits; missing or non-numeric
    components become 0, so '19.1.0-canary.1' -> (19, 1, 0) and '15' -> (15, 0, 0).
    """
    parts = strip_version_prefix(version).split(".")
    numbers = []
    for part in parts[:3]:
        match = _LEADING_INT_RE.match(part)
        numbers.append(int(match.group()) if match else 0)
    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


def is_bare_version(spec: str) -> bool:
    """A spec without comparison operators is a bare version token."""
    return "<" not in spec and ">" not in spec


def parse_range(spec: str) -> Optional[VersionRange]:
    """
    Parse a '>=A.B.C <X.Y.Z' spec.

    Returns None when the spec lacks either bound. One-sided specs are
    not evaluated.
    """
    minimum = maximum = None
    for token in spec.split():
        if token.startswith(">="):
            minimum = parse_version_triple(token[2:])
        elif token.startswith("<") and not token.startswith("<="):
            maximum = parse_version_triple(token[1:])
    if minimum is None or maximum is None:
        return None
    return VersionRange(minimum, maximum)


def validate_range_spec(spec: str) -> None:
    """
    Raise ValueError unless spec is a bare token or a two-sided range.

    Used when loading curated CVE tables.
    """
    if not spec:
        raise ValueError("empty version spec")
    if is_bare_version(spec):
        return
    tokens = spec.split()
    for token in tokens:
        if not (token.startswith(">=") or (token.startswith("<") and not token.startswith("<="))):
            raise ValueError(f"unsupported comparator in version spec: {spec!r}")
    if parse_range(spec) is None:
        raise ValueError(f"version spec needs both '>=' and '<' bounds: {spec!r}")


def is_version_vulnerable(installed_version: Optional[str], vulnerable_specs: Iterable[str]) -> bool:
    """
    Check whether an installed version falls in any vulnerable spec.

    Args:
        installed_version: Version as declared in package.json (may carry ^ or ~).
        vulnerable_specs: Bare tokens and/or '>=min <max' ranges.

    Returns:
        True if at least one spec matches.
    """
    if not installed_version:
        return False

    clean_version = strip_version_prefix(installed_version)
    version = parse_version_triple(clean_version)

    for spec in vulnerable_specs:
        if is_bare_version(spec):
            # Prefix match also catches pre-release suffixes
            if clean_version == spec or clean_version.startswith(spec):
                return True
            continue

        version_range = parse_range(spec)
        if version_range is None:
            logger.warning("one_sided_range_ignored", spec=spec)
            continue

        if version_range.contains(version):
            return True

    return False
