"""
Container Models for DockDrift
Pydantic models for watched containers, their images and registry results

update_kind, update_available and link are computed on every read from
image + result + update_policy; they are never stored on the model.
"""

import logging
import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


logger = logging.getLogger(__name__)

# Registries report nanosecond precision (2024-05-01T10:00:00.123456789Z)
FRACTIONAL_SECONDS_PATTERN = re.compile(r'(\.\d{6})\d+')


def normalize_timestamp(value: Any) -> Any:
    """Trim sub-microsecond digits; unparseable strings become None"""
    if not isinstance(value, str):
        return value
    value = FRACTIONAL_SECONDS_PATTERN.sub(r'\1', value.strip())
    try:
        datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Ignoring unparseable timestamp: {value}")
        return None
    return value


Timestamp = Annotated[Optional[datetime], BeforeValidator(normalize_timestamp)]


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys (updateKind, semverDiff...)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RegistryRef(FrozenCamelModel):
    """Registry an image is pulled from"""
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    lookup_image: Optional[str] = None


class ImageTag(FrozenCamelModel):
    value: str = Field(..., min_length=1)
    semver: bool = False


class ImageDigest(FrozenCamelModel):
    watch: bool = False
    value: Optional[str] = None
    repo: Optional[str] = None


class ContainerImage(FrozenCamelModel):
    """Immutable snapshot of the locally known image"""
    id: str = Field(..., min_length=1)
    registry: RegistryRef
    name: str = Field(..., min_length=1)
    tag: ImageTag
    digest: ImageDigest = Field(default_factory=ImageDigest)
    architecture: str = Field(..., min_length=1)
    os: str = Field(..., min_length=1)
    variant: Optional[str] = None
    created: Timestamp = None


class ContainerResult(CamelModel):
    """Freshly observed remote state, overwritten on each watch cycle"""
    tag: Optional[str] = Field(None, min_length=1)
    digest: Optional[str] = None
    created: Timestamp = None
    link: Optional[str] = None


class UpdateKind(CamelModel):
    kind: Literal['tag', 'digest', 'unknown'] = 'unknown'
    local_value: Optional[str] = None
    remote_value: Optional[str] = None
    semver_diff: Optional[Literal['major', 'minor', 'patch', 'prerelease', 'unknown']] = 'unknown'


class UpdatePolicy(CamelModel):
    """User-controlled suppression of reported updates"""
    skip_tags: Optional[List[str]] = None
    skip_digests: Optional[List[str]] = None
    snooze_until: Timestamp = None


class ContainerError(CamelModel):
    message: str = Field(..., min_length=1)


class Container(CamelModel):
    """A watched container with its image and last registry result"""
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    display_icon: str = 'mdi:docker'
    status: str = 'unknown'
    watcher: str = Field(..., min_length=1)
    agent: Optional[str] = None
    include_tags: Optional[str] = None
    exclude_tags: Optional[str] = None
    transform_tags: Optional[str] = None
    link_template: Optional[str] = None
    trigger_include: Optional[str] = None
    trigger_exclude: Optional[str] = None
    update_policy: Optional[UpdatePolicy] = None
    image: ContainerImage
    result: Optional[ContainerResult] = None
    error: Optional[ContainerError] = None
    labels: Optional[Dict[str, str]] = None

    @model_validator(mode='after')
    def default_display_name(self):
        if not self.display_name:
            self.display_name = self.name
        return self

    @property
    def update_kind(self) -> UpdateKind:
        from updates.update_classifier import compute_raw_update_kind
        return compute_raw_update_kind(self)

    @property
    def update_available(self) -> bool:
        from updates.update_classifier import is_update_available
        return is_update_available(self)

    @property
    def link(self) -> Optional[str]:
        from updates.update_classifier import render_link
        if not self.link_template:
            return None
        return render_link(self, self.image.tag.value)

    @property
    def result_link(self) -> Optional[str]:
        """Result link, rendered from link_template when one is configured"""
        from updates.update_classifier import render_link
        if self.result is None:
            return None
        if self.link_template:
            return render_link(self, self.result.tag or '')
        return self.result.link

    def to_template_dict(self) -> Dict[str, Any]:
        """
        Plain camelCase view of the container, including computed values.

        This is the only shape the template engine walks; it contains
        dicts, lists and scalars only.
        """
        data = self.model_dump(mode='json', by_alias=True, exclude_none=True)
        data['updateKind'] = self.update_kind.model_dump(mode='json', by_alias=True, exclude_none=True)
        data['updateAvailable'] = self.update_available
        if self.link_template:
            data['link'] = self.link
            if self.result is not None:
                data['result']['link'] = self.result_link
        return data


class ContainerReport(BaseModel):
    """Container emitted by a watch cycle, with whether its result changed"""
    container: Container
    changed: bool


def full_name(container: Container) -> str:
    """Business id of the container: {watcher}_{name}"""
    return f"{container.watcher}_{container.name}"


def result_changed(container: Container, other: Optional[Container]) -> bool:
    """True when other is missing or its result tag/digest/created differ"""
    if other is None:
        return True
    mine = container.result or ContainerResult()
    theirs = other.result or ContainerResult()
    return (
        mine.tag != theirs.tag
        or mine.digest != theirs.digest
        or mine.created != theirs.created
    )


def _flatten_into(flat: Dict[str, Any], prefix: str, value: Any):
    if isinstance(value, dict):
        for key, item in value.items():
            _flatten_into(flat, f"{prefix}_{key}" if prefix else key, item)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _flatten_into(flat, f"{prefix}_{index}", item)
    else:
        flat[prefix] = value


def flatten(container: Container) -> Dict[str, Any]:
    """
    Flatten the container into underscore-joined snake_case keys.

    Useful for key/value integrations (MQTT topics, env exports...).

    Example:
        >>> flatten(container)['image_tag_value']
        '1.2.3'
    """
    data = container.model_dump(mode='json', exclude_none=True)
    data['update_kind'] = container.update_kind.model_dump(mode='json', exclude_none=True)
    data['update_available'] = container.update_available
    if container.link_template:
        data['link'] = container.link
        if container.result is not None:
            data['result']['link'] = container.result_link

    flat: Dict[str, Any] = {}
    _flatten_into(flat, '', data)
    return flat
