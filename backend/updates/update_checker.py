"""
Update Checker Service

Runs a watch cycle: for each container, list the remote tags, pick the best
candidate, resolve its manifest when digests are watched, and store the
observation as container.result. Reports are emitted on the event bus for
triggers to act on.
"""

import logging
from typing import Dict, List, Optional, Tuple

from event_bus import Event, EventBus, EventType
from models.container_models import (
    Container,
    ContainerError,
    ContainerImage,
    ContainerReport,
    ContainerResult,
    result_changed,
)
from updates.registry_client import RegistryClient
from updates.tag_candidates import get_tag_candidates

logger = logging.getLogger(__name__)


class UpdateChecker:
    """
    Service that checks containers for available image updates.

    Workflow:
    1. For each container:
       - Normalize the image for its registry
       - List tags and compute ranked tag candidates
       - Resolve the candidate's manifest digest when digests are watched
       - Record the result (or the error) on a copy of the container
    2. Emit one container_report per container and one container_reports batch
    """

    def __init__(self, registry_client: RegistryClient, event_bus: Optional[EventBus] = None):
        self.registry = registry_client
        self.event_bus = event_bus

    async def find_new_version(self, container: Container) -> Tuple[ContainerResult, ContainerImage]:
        """
        Find the newest version available for a container.

        Returns:
            (result, image) where image carries a refreshed local repo digest
            for manifest version 2 images

        Raises:
            RegistryError: when the registry cannot be queried
        """
        image = self.registry.normalize_image(container.image)

        tags = await self.registry.list_tags(image)
        candidates = get_tag_candidates(container, tags)
        logger.debug(f"{container.name}: {len(candidates)} tag candidate(s) out of {len(tags)} tag(s)")

        result_tag = candidates[0] if candidates else container.image.tag.value
        result = ContainerResult(tag=result_tag)
        refreshed_image = container.image

        if container.image.digest.watch and container.image.digest.repo:
            image_to_resolve = self.registry.with_tag(image, result_tag)
            remote = await self.registry.resolve_manifest(image_to_resolve)
            result = ContainerResult(tag=result_tag, digest=remote.digest, created=remote.created)

            if remote.version == 2:
                local = await self.registry.resolve_manifest(image_to_resolve, container.image.digest.repo)
                refreshed_image = container.image.model_copy(update={
                    'digest': container.image.digest.model_copy(update={'value': local.digest}),
                })
            else:
                # Legacy v1 local digests are only known to the Docker engine
                logger.debug(f"{container.name}: manifest v1, keeping local digest as reported by the engine")

        return result, refreshed_image

    async def check_container(self, container: Container) -> Container:
        """
        Check a single container for updates.

        Returns:
            A copy of the container with a fresh result, or with error set
            when the registry could not be queried
        """
        try:
            result, image = await self.find_new_version(container)
        except Exception as e:
            logger.error(f"Error checking container {container.name}: {e}")
            return container.model_copy(update={
                'error': ContainerError(message=str(e) or e.__class__.__name__),
                'result': None,
            })

        checked = container.model_copy(update={'result': result, 'image': image, 'error': None})
        if checked.update_available:
            kind = checked.update_kind
            logger.info(
                f"Update available for {container.name}: "
                f"{kind.local_value} → {kind.remote_value} ({kind.kind})"
            )
        return checked

    async def check_all(self, containers: List[Container]) -> Tuple[List[Container], Dict[str, int]]:
        """
        Check all containers for updates.

        Returns:
            (checked containers, stats) with stats keys: total, checked, updates_found, errors
        """
        logger.info("Starting update check for all containers")

        stats = {
            "total": len(containers),
            "checked": 0,
            "updates_found": 0,
            "errors": 0,
        }

        checked_containers: List[Container] = []
        reports: List[ContainerReport] = []

        for container in containers:
            checked = await self.check_container(container)
            checked_containers.append(checked)

            if checked.error is not None:
                stats["errors"] += 1
            else:
                stats["checked"] += 1
                if checked.update_available:
                    stats["updates_found"] += 1

            report = ContainerReport(container=checked, changed=result_changed(checked, container))
            reports.append(report)
            await self._emit(EventType.CONTAINER_REPORT, report)

        await self._emit(EventType.CONTAINER_REPORTS, reports)

        logger.info(f"Update check complete: {stats}")
        return checked_containers, stats

    async def _emit(self, event_type: EventType, payload):
        if self.event_bus is None:
            return
        await self.event_bus.emit(Event(event_type, payload))
