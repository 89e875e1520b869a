"""
Trigger thresholds and trigger references.

A threshold is a short string from user configuration ("minor",
"patch-no-digest", ...). It is parsed once into a Threshold and never
rejected: anything unknown behaves like "all".
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from models.container_models import Container

logger = logging.getLogger(__name__)

NON_DIGEST_ONLY_SUFFIX = '-no-digest'

SUPPORTED_THRESHOLDS = [
    'all',
    'major',
    'minor',
    'patch',
    'major-only',
    'minor-only',
    'digest',
    'major-no-digest',
    'minor-no-digest',
    'patch-no-digest',
    'major-only-no-digest',
    'minor-only-no-digest',
]


@dataclass(frozen=True)
class Threshold:
    """Parsed threshold: base category plus whether digest updates are excluded"""
    base: str = 'all'
    non_digest_only: bool = False


@dataclass(frozen=True)
class TriggerReference:
    """Entry of a trigger_include / trigger_exclude list ("name[:threshold]")"""
    id: str
    threshold: str = 'all'


def parse_threshold(threshold: Optional[str]) -> Threshold:
    """
    Parse a threshold string.

    Examples:
        >>> parse_threshold('minor-no-digest')
        Threshold(base='minor', non_digest_only=True)
        >>> parse_threshold(None)
        Threshold(base='all', non_digest_only=False)
    """
    normalized = (threshold or 'all').strip().lower()
    non_digest_only = normalized.endswith(NON_DIGEST_ONLY_SUFFIX)
    base = normalized[:-len(NON_DIGEST_ONLY_SUFFIX)] if non_digest_only else normalized
    return Threshold(base=base, non_digest_only=non_digest_only)


def is_threshold_reached(container: Container, threshold: Union[str, Threshold, None]) -> bool:
    """
    Return True if the container's update reaches the threshold.

    Updates without a usable semver delta (non-semver tags, created-date
    changes) reach every tag threshold since their size cannot be judged.
    """
    if not isinstance(threshold, Threshold):
        threshold = parse_threshold(threshold)

    update_kind = container.update_kind
    kind = update_kind.kind
    semver_diff = update_kind.semver_diff

    if threshold.non_digest_only and kind == 'digest':
        return False

    if threshold.base == 'digest':
        return kind == 'digest'

    if threshold.base == 'all':
        return True

    if kind == 'tag' and semver_diff and semver_diff != 'unknown':
        if threshold.base == 'major-only':
            return semver_diff == 'major'
        if threshold.base == 'minor-only':
            return semver_diff == 'minor'
        if threshold.base == 'minor':
            return semver_diff != 'major'
        if threshold.base == 'patch':
            return semver_diff not in ('major', 'minor')
        return True

    return True


def parse_trigger_reference(reference: str) -> TriggerReference:
    """
    Parse a "name[:threshold]" trigger reference.

    Unknown thresholds and references with more than one ':' keep the
    default threshold "all".

    Examples:
        >>> parse_trigger_reference('ntfy.home:minor')
        TriggerReference(id='ntfy.home', threshold='minor')
        >>> parse_trigger_reference('update:bogus')
        TriggerReference(id='update', threshold='all')
    """
    if ':' not in reference:
        return TriggerReference(id=reference.strip())

    trigger_id, _, threshold_part = reference.partition(':')
    trigger_reference = TriggerReference(id=trigger_id.strip())

    if ':' in threshold_part:
        logger.debug(f"Ignoring threshold of malformed trigger reference '{reference}'")
        return trigger_reference

    candidate = threshold_part.strip().lower()
    if candidate in SUPPORTED_THRESHOLDS:
        return TriggerReference(id=trigger_reference.id, threshold=candidate)
    return trigger_reference


def parse_trigger_references(value: str) -> List[TriggerReference]:
    """Parse a comma separated list of trigger references, ignoring blanks"""
    return [
        parse_trigger_reference(entry.strip())
        for entry in value.split(',')
        if entry.strip()
    ]


def reference_matches_id(reference: str, trigger_id: str) -> bool:
    """
    Return True when a trigger reference designates the trigger id.

    A reference may be the full id (docker.update), the trigger name only
    (update) or the last provider.name pair of a longer id.
    """
    reference_normalized = reference.lower()
    trigger_id_normalized = trigger_id.lower()

    if reference_normalized == trigger_id_normalized:
        return True

    parts = trigger_id_normalized.split('.')
    trigger_name = parts[-1]
    if not trigger_name:
        return False
    if reference_normalized == trigger_name:
        return True

    if len(parts) >= 2:
        return reference_normalized == f"{parts[-2]}.{trigger_name}"

    return False
