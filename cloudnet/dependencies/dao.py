"""
FastAPI dependencies for repositories and the network dispatcher.

Routes declare `dispatcher: NetworkDispatcher = Depends(get_dispatcher)` and
receive an instance wired from `settings` at runtime.  Tests swap any piece
by overriding the matching dependency:

    app.dependency_overrides[get_dispatcher] = lambda: fake_dispatcher
"""

import logging
from functools import lru_cache

from cloudnet.cache.backends import RedisCacheBackend
from cloudnet.cache.layer import NetworkCache
from cloudnet.cloud.aws import build_aws_handlers
from cloudnet.cloud.azure import build_azure_handlers
from cloudnet.cloud.gcp import build_gcp_handlers
from cloudnet.cloud.ncp import build_ncp_handlers
from cloudnet.cloud.registry import ProviderRegistry
from cloudnet.config import settings
from cloudnet.dao.audit import LoggingAuditLogRepository
from cloudnet.dao.base import AuditLogRepository, CredentialRepository
from cloudnet.dao.dynamodb import DynamoDBAuditLogRepository, DynamoDBCredentialRepository
from cloudnet.operations.poller import OperationPoller
from cloudnet.schemas.common import PROVIDER_AWS, PROVIDER_AZURE, PROVIDER_GCP, PROVIDER_NCP
from cloudnet.services.credentials import FernetCredentialDecryptor
from cloudnet.services.dispatcher import NetworkDispatcher
from cloudnet.services.side_effects import (
    EventPublisher,
    LoggingEventPublisher,
    RedisEventPublisher,
    SideEffectEmitter,
)

logger = logging.getLogger(__name__)

# Stateless apart from the cached table handle
_credential_repository = DynamoDBCredentialRepository()


def get_credential_repository() -> CredentialRepository:
    """Return the active CredentialRepository implementation."""
    return _credential_repository


@lru_cache
def get_audit_log_repository() -> AuditLogRepository:
    if settings.dynamodb_audit_table:
        return DynamoDBAuditLogRepository()
    return LoggingAuditLogRepository()


def _event_publisher() -> EventPublisher:
    if settings.event_backend == "redis":
        if not settings.redis_url:
            logger.warning("event_backend=redis but redis_url is blank; logging events instead")
            return LoggingEventPublisher()
        return RedisEventPublisher(settings.redis_url, settings.event_channel_prefix)
    return LoggingEventPublisher()


def build_registry() -> ProviderRegistry:
    poller = OperationPoller(
        interval=settings.operation_poll_interval_seconds,
        timeout=settings.operation_timeout_seconds,
    )
    registry = ProviderRegistry()
    registry.register(PROVIDER_AWS, build_aws_handlers())
    registry.register(PROVIDER_GCP, build_gcp_handlers(poller))
    registry.register(PROVIDER_AZURE, build_azure_handlers())
    registry.register(PROVIDER_NCP, build_ncp_handlers())
    return registry


@lru_cache
def get_dispatcher() -> NetworkDispatcher:
    """Return the process-wide dispatcher."""
    backend = RedisCacheBackend(settings.redis_url) if settings.redis_url else None
    if backend is None:
        logger.info("Cache disabled (redis_url is blank)")
    return NetworkDispatcher(
        registry=build_registry(),
        decryptor=FernetCredentialDecryptor(settings.credential_encryption_key),
        cache=NetworkCache(backend, ttl_seconds=settings.cache_ttl_seconds),
        emitter=SideEffectEmitter(get_audit_log_repository(), _event_publisher()),
    )
