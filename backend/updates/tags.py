"""
Semantic version helpers for image tags.

Parsing and precedence are delegated to python-semver. Image tags rarely
follow strict semver, so they are normalized before the library sees them:
- Strict semver (optional "v" prefix) keeps its prerelease identifiers
- Four-or-more-part numeric tags keep the extra parts as numeric prerelease
  (24.04.13.3.1 -> 24.4.13-3.1, as published by some calendar-versioned images)
- Anything else is coerced from its first N[.N[.N]] run (fix__50 -> 50.0.0)
"""

import logging
import re
from typing import Optional

from semver import Version

logger = logging.getLogger(__name__)

MAX_TRANSFORM_PATTERN_LENGTH = 1024

NUMERIC_SEGMENTS_PATTERN = re.compile(r'^v?(\d+)\.(\d+)\.(\d+)((?:\.\d+)+)$')
COERCE_PATTERN = re.compile(r'(?:^|\D)(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?=$|\D)')
PLACEHOLDER_PATTERN = re.compile(r'\$(\d+)')


def _parse_strict(value: str) -> Optional[Version]:
    if value.startswith('v'):
        value = value[1:]
    try:
        return Version.parse(value).replace(build=None)
    except ValueError:
        return None


def parse(tag: str) -> Optional[Version]:
    """
    Parse an image tag into a semver Version, or None when it carries no version.

    Build metadata is dropped; it never takes part in precedence.

    Raises:
        TypeError: when tag is None
    """
    if tag is None:
        raise TypeError("Cannot parse a missing tag")

    value = str(tag).strip()
    if not value:
        return None

    match = NUMERIC_SEGMENTS_PATTERN.match(value)
    if match:
        major, minor, patch, extra = match.groups()
        prerelease = '.'.join(str(int(part)) for part in extra.strip('.').split('.'))
        return Version(int(major), int(minor), int(patch), prerelease=prerelease)

    version = _parse_strict(value)
    if version is not None:
        return version

    match = COERCE_PATTERN.search(value)
    if match:
        major, minor, patch = match.groups()
        return Version(int(major), int(minor or 0), int(patch or 0))

    return None


def is_greater(version: str, other_version: str) -> bool:
    """Return True when version >= other_version; False if either is not a version."""
    version_semver = parse(version)
    other_semver = parse(other_version)
    if version_semver is None or other_semver is None:
        return False
    return version_semver >= other_semver


def diff(version: str, other_version: str) -> Optional[str]:
    """
    Return the kind of change between two versions.

    One of major, premajor, minor, preminor, patch, prepatch, prerelease,
    or None when the versions are equal or either cannot be parsed.
    """
    v1 = parse(version)
    v2 = parse(other_version)
    if v1 is None or v2 is None:
        return None

    comparison = v1.compare(v2)
    if comparison == 0:
        return None

    high, low = (v1, v2) if comparison > 0 else (v2, v1)
    high_has_pre = high.prerelease is not None
    low_has_pre = low.prerelease is not None

    if low_has_pre and not high_has_pre:
        # Going from a prerelease to its release
        if not low.patch and not low.minor:
            return 'major'
        if low.finalize_version() == high:
            if low.minor and not low.patch:
                return 'minor'
            return 'patch'

    prefix = 'pre' if high_has_pre else ''
    if v1.major != v2.major:
        return f"{prefix}major"
    if v1.minor != v2.minor:
        return f"{prefix}minor"
    if v1.patch != v2.patch:
        return f"{prefix}patch"
    return 'prerelease'


def transform(formula: Optional[str], tag: str) -> str:
    """
    Apply a "<regex> => <replacement>" formula to a tag.

    $N placeholders in the replacement are filled from the regex groups.
    The tag is returned unchanged when the formula is empty, malformed or
    does not match.

    Examples:
        >>> transform('^v(.+)$ => $1', 'v1.2.3')
        '1.2.3'
        >>> transform('^(\\d+\\.\\d+)-.*-(\\d+) => $1.$2', '1.2-xyz-3')
        '1.2.3'
    """
    if not formula or '=>' not in formula:
        return tag

    try:
        pattern, replacement = formula.split('=>', 1)
        pattern = pattern.strip()
        replacement = replacement.strip()

        if len(pattern) > MAX_TRANSFORM_PATTERN_LENGTH:
            logger.warning(f"Tag transform pattern exceeds {MAX_TRANSFORM_PATTERN_LENGTH} chars, ignoring it")
            return tag

        match = re.search(pattern, tag)
        if not match:
            return tag

        def fill(placeholder: re.Match) -> str:
            index = int(placeholder.group(1))
            if index > (match.re.groups or 0):
                return ''
            return match.group(index) or ''

        return PLACEHOLDER_PATTERN.sub(fill, replacement)

    except re.error as e:
        logger.warning(f"Invalid tag transform formula '{formula}': {e}")
        return tag
