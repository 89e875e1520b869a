"""
Shared pytest fixtures for DockDrift tests.

Fixtures provided:
- make_container: Factory building a Container with sensible defaults
- container: A semver nginx container without result
- registry_client: RegistryClient with small page size and no auth
- event_bus: Fresh event bus instance

Containers are pydantic models; nested image fields are passed as plain
dicts and validated by the model.
"""

import pytest
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from event_bus import EventBus
from models.container_models import Container
from updates.registry_client import RegistryClient


DEFAULT_REGISTRY_URL = "https://registry-1.docker.io/v2"


def build_container(
    tag: str = "1.2.3",
    semver: bool = True,
    result: Optional[Dict[str, Any]] = None,
    digest_watch: bool = False,
    digest_value: Optional[str] = None,
    digest_repo: Optional[str] = None,
    created: Optional[datetime] = None,
    image_overrides: Optional[Dict[str, Any]] = None,
    **fields,
) -> Container:
    """Build a Container for tests; extra keyword arguments become container fields"""
    image = {
        "id": "sha256:image123",
        "registry": {"name": "hub", "url": DEFAULT_REGISTRY_URL},
        "name": "library/nginx",
        "tag": {"value": tag, "semver": semver},
        "digest": {"watch": digest_watch, "value": digest_value, "repo": digest_repo},
        "architecture": "amd64",
        "os": "linux",
        "created": created,
    }
    if image_overrides:
        image.update(image_overrides)

    data = {
        "id": "container123",
        "name": "nginx",
        "watcher": "local",
        "image": image,
        "result": result,
    }
    data.update(fields)
    return Container.model_validate(data)


@pytest.fixture
def make_container():
    """Factory fixture, see build_container"""
    return build_container


@pytest.fixture
def container():
    """Semver container running nginx 1.2.3 with no registry result yet"""
    return build_container()


@pytest.fixture
def registry_client():
    """Anonymous registry client with deterministic paging"""
    return RegistryClient(name="hub", timeout=5, page_size=2)


@pytest.fixture
def event_bus():
    """Fresh event bus (not the global singleton)"""
    return EventBus()


@pytest.fixture
def now():
    return datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
