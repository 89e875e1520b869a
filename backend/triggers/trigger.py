"""
Trigger base class

A trigger acts on container reports emitted by the update checker (send a
notification, run a webhook, apply the update...). This class owns every
decision shared by triggers: whether a report qualifies (update available,
threshold reached, agent and include/exclude references) and how titles and
bodies are rendered. Implementations only override trigger() / trigger_batch()
and optionally dismiss().
"""

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config.settings import AppConfig
from event_bus import Event, EventBus, EventType
from models.container_models import Container, ContainerReport, full_name
from triggers.template import render_batch, render_simple
from triggers.thresholds import (
    SUPPORTED_THRESHOLDS,
    is_threshold_reached,
    parse_threshold,
    parse_trigger_references,
    reference_matches_id,
)

logger = logging.getLogger(__name__)

DEFAULT_SIMPLE_TITLE = 'New ${container.updateKind.kind} found for container ${container.name}'
DEFAULT_SIMPLE_BODY = (
    'Container ${container.name} running with ${container.updateKind.kind} '
    '${container.updateKind.localValue} can be updated to ${container.updateKind.kind} '
    '${container.updateKind.remoteValue}'
    '${container.result && container.result.link ? "\\n" + container.result.link : ""}'
)
DEFAULT_BATCH_TITLE = '${containers.length} updates available'


def _default_threshold() -> str:
    return AppConfig.TRIGGER_THRESHOLD


class TriggerConfiguration(BaseModel):
    """Options shared by every trigger"""
    model_config = ConfigDict(extra='allow', populate_by_name=True)

    auto: bool = True
    order: int = 100
    threshold: str = Field(default_factory=_default_threshold, validate_default=True)
    mode: Literal['simple', 'batch'] = 'simple'
    once: bool = True
    disable_title: bool = Field(False, alias='disabletitle')
    simple_title: str = Field(DEFAULT_SIMPLE_TITLE, alias='simpletitle')
    simple_body: str = Field(DEFAULT_SIMPLE_BODY, alias='simplebody')
    batch_title: str = Field(DEFAULT_BATCH_TITLE, alias='batchtitle')
    resolve_notifications: bool = Field(False, alias='resolvenotifications')

    @field_validator('threshold', mode='before')
    @classmethod
    def validate_threshold(cls, v: Any) -> str:
        """Unknown thresholds fall back to 'all' instead of rejecting the trigger"""
        normalized = str(v).strip().lower() if v is not None else 'all'
        if normalized not in SUPPORTED_THRESHOLDS:
            logger.warning(f"Unsupported trigger threshold '{v}', using 'all'")
            return 'all'
        return normalized

    @field_validator('mode', mode='before')
    @classmethod
    def validate_mode(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class Trigger:
    """
    Base trigger.

    Usage:
        class LogTrigger(Trigger):
            async def trigger(self, container):
                logger.info(self.compose_message(container))

        await LogTrigger('log', 'console', {'threshold': 'minor'}).init(event_bus)
    """

    def __init__(
        self,
        provider: str,
        name: str,
        configuration: Union[TriggerConfiguration, Dict[str, Any], None] = None,
        agent: Optional[str] = None,
        strict_agent_match: bool = False,
    ):
        self.provider = provider
        self.name = name
        self.agent = agent
        self.strict_agent_match = strict_agent_match
        if isinstance(configuration, TriggerConfiguration):
            self.configuration = configuration
        else:
            self.configuration = TriggerConfiguration.model_validate(configuration or {})
        self.notification_results: Dict[str, Any] = {}
        self._event_bus: Optional[EventBus] = None

    @property
    def id(self) -> str:
        return f"{self.provider}.{self.name}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r})"

    # ==================== Filtering ====================

    def _is_included_or_excluded(self, container: Container, references: str) -> bool:
        trigger_id = self.id.lower()
        for reference in parse_trigger_references(references):
            if reference_matches_id(reference.id, trigger_id):
                return is_threshold_reached(container, reference.threshold)
        return False

    def is_trigger_included(self, container: Container, trigger_include: Optional[str]) -> bool:
        if not trigger_include:
            return True
        return self._is_included_or_excluded(container, trigger_include)

    def is_trigger_excluded(self, container: Container, trigger_exclude: Optional[str]) -> bool:
        if not trigger_exclude:
            return False
        return self._is_included_or_excluded(container, trigger_exclude)

    def must_trigger(self, container: Container) -> bool:
        """
        Check agent scope and the container's include/exclude trigger references.

        A reference only counts when its own threshold is reached too.
        """
        if self.agent and self.agent != container.agent:
            return False
        if self.strict_agent_match and self.agent != container.agent:
            return False
        return (
            self.is_trigger_included(container, container.trigger_include)
            and not self.is_trigger_excluded(container, container.trigger_exclude)
        )

    def _qualifies(self, report: ContainerReport) -> bool:
        return (report.changed or not self.configuration.once) and report.container.update_available

    # ==================== Event handling ====================

    async def handle_container_report(self, report: ContainerReport):
        """Simple mode: trigger for one changed container with an update"""
        if not self._qualifies(report):
            return

        container = report.container
        container_name = full_name(container)
        try:
            if not is_threshold_reached(container, parse_threshold(self.configuration.threshold)):
                logger.debug(f"{self.id} [{container_name}] Threshold not reached => ignore")
            elif not self.must_trigger(container):
                logger.debug(f"{self.id} [{container_name}] Trigger conditions not met => ignore")
            else:
                logger.debug(f"{self.id} [{container_name}] Run")
                result = await self.trigger(container)
                if self.configuration.resolve_notifications and result:
                    self.notification_results[container_name] = result
        except Exception as e:
            logger.warning(f"{self.id} [{container_name}] Error ({e})")
            logger.debug(f"{self.id} [{container_name}] Trigger failure", exc_info=True)

    async def handle_container_reports(self, reports: List[ContainerReport]):
        """Batch mode: trigger once for all qualifying containers"""
        try:
            threshold = parse_threshold(self.configuration.threshold)
            containers = [
                report.container
                for report in reports
                if self._qualifies(report)
                and self.must_trigger(report.container)
                and is_threshold_reached(report.container, threshold)
            ]
            if containers:
                logger.debug(f"{self.id} Run batch ({len(containers)} containers)")
                await self.trigger_batch(containers)
        except Exception as e:
            logger.warning(f"{self.id} Error ({e})")
            logger.debug(f"{self.id} Batch trigger failure", exc_info=True)

    async def handle_container_update_applied(self, container_id: str):
        """Dismiss the notification previously sent for an updated container (keyed by full name)"""
        trigger_result = self.notification_results.pop(container_id, None)
        if not trigger_result:
            return
        try:
            logger.info(f"{self.id} Dismissing notification for container {container_id}")
            await self.dismiss(container_id, trigger_result)
        except Exception as e:
            logger.warning(f"{self.id} Error dismissing notification for container {container_id} ({e})")
            logger.debug(f"{self.id} Dismiss failure", exc_info=True)

    async def _on_container_report(self, event: Event):
        await self.handle_container_report(event.payload)

    async def _on_container_reports(self, event: Event):
        await self.handle_container_reports(event.payload)

    async def _on_container_update_applied(self, event: Event):
        await self.handle_container_update_applied(event.payload)

    async def init(self, event_bus: EventBus):
        """Initialize the trigger and register it on the event bus"""
        await self.init_trigger()
        self._event_bus = event_bus

        if self.configuration.auto:
            logger.info(f"{self.id} Registering for auto execution ({self.configuration.mode} mode)")
            if self.configuration.mode == 'simple':
                event_bus.subscribe(EventType.CONTAINER_REPORT, self._on_container_report,
                                    order=self.configuration.order)
            else:
                event_bus.subscribe(EventType.CONTAINER_REPORTS, self._on_container_reports,
                                    order=self.configuration.order)
        else:
            logger.info(f"{self.id} Registering for manual execution")

        if self.configuration.resolve_notifications:
            logger.info(f"{self.id} Registering for notification resolution")
            event_bus.subscribe(EventType.CONTAINER_UPDATE_APPLIED, self._on_container_update_applied)

    def deregister(self):
        """Remove every event bus registration made by init()"""
        if self._event_bus is None:
            return
        subscriptions = (
            (EventType.CONTAINER_REPORT, self._on_container_report),
            (EventType.CONTAINER_REPORTS, self._on_container_reports),
            (EventType.CONTAINER_UPDATE_APPLIED, self._on_container_update_applied),
        )
        for event_type, handler in subscriptions:
            registered = self._event_bus.subscribers.get(event_type.value, [])
            if any(h == handler for _, h in registered):
                self._event_bus.unsubscribe(event_type, handler)
        self._event_bus = None

    # ==================== Overridable hooks ====================

    async def init_trigger(self):
        pass

    async def trigger(self, container: Container) -> Any:
        logger.warning(f"{self.id} Cannot trigger container result; this trigger does not implement \"simple\" mode")
        return container

    async def trigger_batch(self, containers: List[Container]) -> Any:
        logger.warning(f"{self.id} Cannot trigger container results; this trigger does not implement \"batch\" mode")
        return containers

    async def dismiss(self, container_id: str, trigger_result: Any):
        pass

    # ==================== Rendering ====================

    def render_simple_title(self, container: Container) -> str:
        return render_simple(self.configuration.simple_title, container)

    def render_simple_body(self, container: Container) -> str:
        return render_simple(self.configuration.simple_body, container)

    def render_batch_title(self, containers: List[Container]) -> str:
        return render_batch(self.configuration.batch_title, containers)

    def render_batch_body(self, containers: List[Container]) -> str:
        return '\n'.join(f"- {self.render_simple_body(container)}\n" for container in containers)

    def format_title_and_body(self, title: str, body: str) -> str:
        """Join title and body; override for provider specific formatting"""
        return f"{title}\n\n{body}"

    def compose_message(self, container: Container) -> str:
        body = self.render_simple_body(container)
        if self.configuration.disable_title:
            return body
        return self.format_title_and_body(self.render_simple_title(container), body)

    def compose_batch_message(self, containers: List[Container]) -> str:
        body = self.render_batch_body(containers)
        if self.configuration.disable_title:
            return body
        return self.format_title_and_body(self.render_batch_title(containers), body)
