import json
import logging

from cloudnet.dao.base import AuditLogRepository

audit_logger = logging.getLogger("cloudnet.audit")


class LoggingAuditLogRepository(AuditLogRepository):
    """Writes audit entries to the ``cloudnet.audit`` logger."""

    def log_action(self, actor: str, action: str, resource_path: str, details: dict) -> None:
        audit_logger.info(
            "actor=%s action=%s resource=%s details=%s",
            actor,
            action,
            resource_path,
            json.dumps(details, default=str, sort_keys=True),
        )
