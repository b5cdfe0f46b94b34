"""
Post-mutation side effects: audit log entry + event publication.

Both are fire-and-forget from the dispatcher's point of view.  A failure is
logged as a warning and never changes the result of the mutation that
triggered it.
"""

import logging
from abc import ABC, abstractmethod

import redis

from cloudnet.dao.base import AuditLogRepository
from cloudnet.schemas.events import NetworkEvent

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    @abstractmethod
    def publish(self, event_type: str, payload: NetworkEvent) -> None:
        """Deliver *payload* under *event_type*."""


class LoggingEventPublisher(EventPublisher):
    def publish(self, event_type: str, payload: NetworkEvent) -> None:
        logger.info("event %s %s", event_type, payload.model_dump_json())


class RedisEventPublisher(EventPublisher):
    """Publishes events on ``{prefix}:{event_type}`` Redis channels."""

    def __init__(self, url: str, channel_prefix: str = "cloudnet") -> None:
        self._url = url
        self._channel_prefix = channel_prefix
        self._client = None

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def publish(self, event_type: str, payload: NetworkEvent) -> None:
        channel = f"{self._channel_prefix}:{event_type}"
        receivers = self._get_client().publish(channel, payload.model_dump_json())
        logger.debug("Published %s to %d subscriber(s)", event_type, receivers)


class SideEffectEmitter:
    def __init__(self, audit_log: AuditLogRepository, publisher: EventPublisher) -> None:
        self._audit_log = audit_log
        self._publisher = publisher

    def emit(self, event: NetworkEvent, action: str, resource_path: str) -> None:
        try:
            self._audit_log.log_action(
                event.actor, action, resource_path, event.model_dump(mode="json")
            )
        except Exception as exc:
            logger.warning("Audit log write failed for %s %s: %s", action, resource_path, exc)

        try:
            self._publisher.publish(event.event_type, event)
        except Exception as exc:
            logger.warning("Event publish failed for %s: %s", event.event_type, exc)
