"""
Tag candidate selection.

Turns the raw tag list of a repository into the ordered list of tags a
container could move to, highest first. The first candidate becomes the
result tag of the watch cycle.
"""

import logging
import re
from functools import cmp_to_key
from typing import List, Optional, Pattern, Tuple

from models.container_models import Container
from updates import tags as semver

logger = logging.getLogger(__name__)

NUMERIC_PART_PATTERN = re.compile(r'(\d+(\.\d+)*)')
PREFIX_PATTERN = re.compile(r'^(.*?)(\d+.*)$')


def _safe_regex(pattern: str) -> Optional[Pattern]:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning(f"Invalid regex pattern \"{pattern}\": {e}")
        return None


def apply_include_exclude_filters(container: Container, tags: List[str]) -> Tuple[List[str], bool]:
    """
    Apply include/exclude regexes to tags.

    Returns:
        (filtered tags, whether include-filter recovery is allowed)

    Recovery applies when a semver image's current tag does not itself match
    the include regex: candidates are then not required to be greater than
    the current tag.
    """
    filtered = list(tags)
    allow_recovery = False

    if container.include_tags:
        include_regex = _safe_regex(container.include_tags)
        if include_regex:
            filtered = [tag for tag in filtered if include_regex.search(tag)]
            if container.image.tag.semver and not include_regex.search(container.image.tag.value):
                logger.warning(
                    f"Current tag \"{container.image.tag.value}\" does not match include_tags regex "
                    f"\"{container.include_tags}\". Trying best-effort semver upgrade within filtered tags."
                )
                allow_recovery = True
    else:
        filtered = [tag for tag in filtered if not tag.startswith('sha')]

    if container.exclude_tags:
        exclude_regex = _safe_regex(container.exclude_tags)
        if exclude_regex:
            filtered = [tag for tag in filtered if not exclude_regex.search(tag)]

    # Cosign signature tags are never versions
    filtered = [tag for tag in filtered if not tag.endswith('.sig')]
    return filtered, allow_recovery


def filter_by_current_prefix(container: Container, tags: List[str]) -> List[str]:
    """Keep tags sharing the current tag's non-numeric prefix (v1.2 → v*)"""
    match = PREFIX_PATTERN.match(container.image.tag.value)
    current_prefix = match.group(1) if match else ''

    if current_prefix:
        filtered = [tag for tag in tags if tag.startswith(current_prefix)]
    else:
        filtered = [tag for tag in tags if tag[:1].isdigit()]

    if not filtered:
        if current_prefix:
            logger.warning(f"No tags found with existing prefix: '{current_prefix}'; check your regex filters")
        else:
            logger.warning("No tags found starting with a number (no prefix); check your regex filters")
    return filtered


def filter_by_segment_count(container: Container, tags: List[str]) -> List[str]:
    """Keep tags with as many numeric segments as the current tag (1.2 ≠ 1.2.3)"""
    reference = NUMERIC_PART_PATTERN.search(semver.transform(container.transform_tags, container.image.tag.value))
    if not reference:
        return tags

    reference_groups = len(reference.group(0).split('.'))
    kept = []
    for tag in tags:
        numeric_part = NUMERIC_PART_PATTERN.search(semver.transform(container.transform_tags, tag))
        if numeric_part and len(numeric_part.group(0).split('.')) == reference_groups:
            kept.append(tag)
    return kept


def filter_semver_only(tags: List[str], transform_tags: Optional[str]) -> List[str]:
    return [tag for tag in tags if semver.parse(semver.transform(transform_tags, tag)) is not None]


def sort_semver_descending(tags: List[str], transform_tags: Optional[str]) -> List[str]:
    def compare(t1: str, t2: str) -> int:
        greater = semver.is_greater(
            semver.transform(transform_tags, t2),
            semver.transform(transform_tags, t1),
        )
        return 1 if greater else -1

    return sorted(tags, key=cmp_to_key(compare))


def get_tag_candidates(container: Container, tags: List[str]) -> List[str]:
    """
    Candidate tags for the container, best first.

    - Non-semver image without include_tags: nothing to advise
    - Non-semver image with include_tags: best semver tags among the filtered ones
    - Semver image: same prefix, semver-parseable, same segment count and
      not lower than the current tag (the current tag itself stays a candidate)
    """
    base_tags, allow_recovery = apply_include_exclude_filters(container, tags)

    if not container.image.tag.semver and not container.include_tags:
        return []

    if not container.image.tag.semver:
        logger.warning(
            f"Current tag \"{container.image.tag.value}\" is not semver but include_tags filter "
            f"\"{container.include_tags}\" is set. Advising best semver tag from filtered candidates."
        )
        return sort_semver_descending(filter_semver_only(base_tags, container.transform_tags),
                                      container.transform_tags)

    filtered = base_tags
    if not filtered:
        logger.warning("No tags found after filtering; check your regex filters")

    if not container.include_tags:
        filtered = filter_by_current_prefix(container, filtered)

    filtered = filter_semver_only(filtered, container.transform_tags)
    filtered = filter_by_segment_count(container, filtered)

    if not allow_recovery:
        current = semver.transform(container.transform_tags, container.image.tag.value)
        filtered = [
            tag for tag in filtered
            if semver.is_greater(semver.transform(container.transform_tags, tag), current)
        ]

    return sort_semver_descending(filtered, container.transform_tags)
