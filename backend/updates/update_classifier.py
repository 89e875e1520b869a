"""
Update Classifier

Pure functions deciding whether a container's image has an update, what kind
of update it is, and whether the update policy suppresses it.

Nothing here touches the network or storage, and nothing is cached: every
call recomputes from container.image, container.result and
container.update_policy.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional, Union

from models.container_models import Container, UpdateKind
from updates import tags

logger = logging.getLogger(__name__)

# Maps node-semver style diffs onto the reported categories;
# prereleases of major/minor/patch count as their base category
SEMVER_DIFF_CATEGORIES = {
    'major': 'major',
    'premajor': 'major',
    'minor': 'minor',
    'preminor': 'minor',
    'patch': 'patch',
    'prepatch': 'patch',
    'prerelease': 'prerelease',
}

LINK_PLACEHOLDER_PATTERN = re.compile(r'\$\{(\w+)\}')


def _unknown() -> UpdateKind:
    return UpdateKind(kind='unknown', semver_diff='unknown')


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: Union[datetime, str, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    try:
        return _as_utc(datetime.fromisoformat(str(value).replace('Z', '+00:00')))
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp: {value}")
        return None


def _is_digest_watched(container: Container) -> bool:
    """Digest-watch mode decides the verdict only when both digests are known"""
    return (
        container.image.digest.watch
        and container.image.digest.value is not None
        and container.result is not None
        and container.result.digest is not None
    )


def _created_differs(container: Container) -> bool:
    local_created = _parse_timestamp(container.image.created)
    remote_created = _parse_timestamp(container.result.created if container.result else None)
    if local_created is None or remote_created is None:
        return False
    return local_created != remote_created


def _tags_differ(container: Container) -> bool:
    local_tag = tags.transform(container.transform_tags, container.image.tag.value)
    remote_tag = tags.transform(container.transform_tags, container.result.tag)
    return local_tag != remote_tag


def compute_semver_diff(container: Container) -> str:
    """Category of the tag bump (major|minor|patch|prerelease|unknown)"""
    if not container.image.tag.semver:
        return 'unknown'
    semver_diff = tags.diff(
        tags.transform(container.transform_tags, container.image.tag.value),
        tags.transform(container.transform_tags, container.result.tag),
    )
    return SEMVER_DIFF_CATEGORIES.get(semver_diff, 'unknown')


def compute_raw_tag_update(container: Container) -> UpdateKind:
    if container.result is None or container.result.tag is None:
        return _unknown()

    has_tag_update = _tags_differ(container)
    if not has_tag_update:
        # A created-date-only difference is still a raw update (see has_raw_update)
        # but carries no stable remote value that could be skipped
        return _unknown()

    return UpdateKind(
        kind='tag',
        local_value=container.image.tag.value,
        remote_value=container.result.tag,
        semver_diff=compute_semver_diff(container),
    )


def compute_raw_digest_update(container: Container) -> UpdateKind:
    if not _is_digest_watched(container):
        return _unknown()
    if container.image.digest.value == container.result.digest:
        return _unknown()
    return UpdateKind(
        kind='digest',
        local_value=container.image.digest.value,
        remote_value=container.result.digest,
        semver_diff='unknown',
    )


def compute_raw_update_kind(container: Container) -> UpdateKind:
    """
    Classify the difference between the local image and the remote result.

    Digest-watch mode, when both digests are known, takes precedence over
    any tag comparison.
    """
    if container.result is None:
        return _unknown()

    if _is_digest_watched(container):
        return compute_raw_digest_update(container)
    return compute_raw_tag_update(container)


def has_raw_update(container: Container) -> bool:
    """
    True when the remote result differs from the local image, before policy.

    Tags are compared after transform; differing creation dates also count,
    as a fallback for legacy registries where tags alone are unreliable.
    """
    if container.result is None:
        return False

    if _is_digest_watched(container):
        return container.image.digest.value != container.result.digest

    has_update = container.result.tag is not None and _tags_differ(container)
    return has_update or _created_differs(container)


def is_suppressed(container: Container, update_kind: UpdateKind, now: Optional[datetime] = None) -> bool:
    """
    Check whether the update policy hides this update.

    Order: an active snooze wins; then skip_tags for tag updates;
    then skip_digests for digest updates.
    """
    update_policy = container.update_policy
    if update_policy is None:
        return False

    snooze_until = _parse_timestamp(update_policy.snooze_until)
    if snooze_until is not None:
        now = _as_utc(now) if now else datetime.now(timezone.utc)
        if snooze_until > now:
            return True

    if update_kind.kind == 'tag' and update_kind.remote_value and update_policy.skip_tags is not None:
        return update_kind.remote_value in update_policy.skip_tags

    if update_kind.kind == 'digest' and update_kind.remote_value and update_policy.skip_digests is not None:
        return update_kind.remote_value in update_policy.skip_digests

    return False


def is_update_available(container: Container, now: Optional[datetime] = None) -> bool:
    """True iff a raw update exists and the update policy does not suppress it"""
    if not has_raw_update(container):
        return False
    return not is_suppressed(container, compute_raw_update_kind(container), now=now)


def render_link(container: Container, tag_value: str) -> Optional[str]:
    """
    Render the container's link_template for a given tag.

    Placeholders: ${original} (${raw} kept for older templates), ${transformed},
    and ${major} ${minor} ${patch} ${prerelease} for semver images.
    Unknown placeholders render empty.

    Example:
        link_template = "https://github.com/org/app/releases/tag/v${major}.${minor}.${patch}"
    """
    if not container.link_template:
        return None

    transformed = tags.transform(container.transform_tags, tag_value) if container.transform_tags else tag_value
    link_vars = {
        'raw': tag_value,
        'original': tag_value,
        'transformed': transformed,
        'major': '',
        'minor': '',
        'patch': '',
        'prerelease': '',
    }

    if container.image.tag.semver:
        version = tags.parse(transformed)
        if version is not None:
            link_vars['major'] = str(version.major)
            link_vars['minor'] = str(version.minor)
            link_vars['patch'] = str(version.patch)
            link_vars['prerelease'] = version.prerelease.split('.')[0] if version.prerelease else ''

    return LINK_PLACEHOLDER_PATTERN.sub(lambda m: link_vars.get(m.group(1), ''), container.link_template)
