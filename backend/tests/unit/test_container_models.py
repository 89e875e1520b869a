"""
Tests for container models.

Covers:
- camelCase aliases and defaults
- Registry timestamp normalization (nanoseconds, invalid values)
- Immutable image snapshots
- result_changed / full_name / flatten / to_template_dict
"""

import pytest
from datetime import datetime, timezone
from pydantic import ValidationError

from models.container_models import (
    ContainerImage,
    ContainerResult,
    flatten,
    full_name,
    normalize_timestamp,
    result_changed,
)


@pytest.mark.unit
class TestContainerValidation:

    def test_display_name_defaults_to_name(self, container):
        assert container.display_name == "nginx"
        assert container.display_icon == "mdi:docker"

    def test_camel_case_input(self, make_container):
        container = make_container(displayName="Web server", linkTemplate="https://x/${major}")

        assert container.display_name == "Web server"
        assert container.link_template == "https://x/${major}"

    def test_image_is_immutable(self, container):
        with pytest.raises(ValidationError):
            container.image.name = "library/httpd"

    def test_empty_result_tag_is_rejected(self):
        with pytest.raises(ValidationError):
            ContainerResult(tag="")

    def test_missing_image_fields_are_rejected(self):
        with pytest.raises(ValidationError):
            ContainerImage.model_validate({"id": "sha256:x", "name": "nginx"})


@pytest.mark.unit
class TestTimestamps:

    def test_nanoseconds_are_truncated(self):
        result = ContainerResult(tag="1.3.0", created="2024-05-01T10:00:00.123456789Z")

        assert result.created == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)

    def test_invalid_timestamp_becomes_none(self):
        assert ContainerResult(tag="1.3.0", created="yesterday").created is None

    def test_datetimes_pass_through(self):
        value = datetime(2024, 5, 1, tzinfo=timezone.utc)

        assert normalize_timestamp(value) is value

    def test_image_created_is_normalized(self, make_container):
        container = make_container(image_overrides={"created": "2024-05-01T10:00:00.500000000Z"})

        assert container.image.created == datetime(2024, 5, 1, 10, 0, 0, 500000, tzinfo=timezone.utc)


@pytest.mark.unit
class TestResultChanged:

    def test_missing_previous_container(self, container):
        assert result_changed(container, None) is True

    def test_same_result(self, make_container):
        current = make_container(result={"tag": "1.3.0", "digest": "sha256:a"})
        previous = make_container(result={"tag": "1.3.0", "digest": "sha256:a"})

        assert result_changed(current, previous) is False

    @pytest.mark.parametrize("previous_result", [
        {"tag": "1.2.9", "digest": "sha256:a"},
        {"tag": "1.3.0", "digest": "sha256:b"},
        {"tag": "1.3.0", "digest": "sha256:a", "created": "2024-01-01T00:00:00Z"},
        None,
    ])
    def test_different_result(self, make_container, previous_result):
        current = make_container(result={"tag": "1.3.0", "digest": "sha256:a"})
        previous = make_container(result=previous_result)

        assert result_changed(current, previous) is True

    def test_both_without_result(self, container, make_container):
        assert result_changed(container, make_container()) is False


@pytest.mark.unit
class TestViews:

    def test_full_name(self, make_container):
        assert full_name(make_container(watcher="remote", name="db")) == "remote_db"

    def test_template_dict_uses_camel_case(self, make_container):
        container = make_container(result={"tag": "1.3.0"})

        data = container.to_template_dict()

        assert data["displayName"] == "nginx"
        assert data["image"]["tag"]["value"] == "1.2.3"
        assert data["updateAvailable"] is True
        assert data["updateKind"] == {
            "kind": "tag",
            "localValue": "1.2.3",
            "remoteValue": "1.3.0",
            "semverDiff": "minor",
        }

    def test_template_dict_includes_rendered_links(self, make_container):
        container = make_container(
            result={"tag": "1.3.0"},
            link_template="https://example.com/v${major}.${minor}",
        )

        data = container.to_template_dict()

        assert data["link"] == "https://example.com/v1.2"
        assert data["result"]["link"] == "https://example.com/v1.3"

    def test_flatten(self, make_container):
        container = make_container(
            result={"tag": "1.3.0"},
            labels={"com.example.tier": "web"},
        )

        flat = flatten(container)

        assert flat["image_tag_value"] == "1.2.3"
        assert flat["image_registry_name"] == "hub"
        assert flat["result_tag"] == "1.3.0"
        assert flat["update_kind_kind"] == "tag"
        assert flat["update_kind_semver_diff"] == "minor"
        assert flat["update_available"] is True
        assert flat["labels_com.example.tier"] == "web"
        assert not any(isinstance(value, (dict, list)) for value in flat.values())
