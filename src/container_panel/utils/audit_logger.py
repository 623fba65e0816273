"""Structured audit logging for operator actions."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from container_panel.utils.logging import get_logger


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Lifecycle events
    CONTAINER_CREATE = "container_create"
    CONTAINER_START = "container_start"
    CONTAINER_STOP = "container_stop"
    CONTAINER_RESTART = "container_restart"
    CONTAINER_DELETE = "container_delete"
    CONTAINER_SETTINGS_UPDATE = "container_settings_update"
    CONTAINER_MIGRATE = "container_migrate"

    # Log viewer events
    LOGS_SUBSCRIBE = "logs_subscribe"
    LOGS_UNSUBSCRIBE = "logs_unsubscribe"

    # Filesystem events
    FS_WRITE = "fs_write"
    FS_DELETE = "fs_delete"
    FS_CREATE_FILE = "fs_create_file"
    FS_CREATE_FOLDER = "fs_create_folder"
    FS_EXTRACT = "fs_extract"
    FS_COMPRESS = "fs_compress"

    # Security events
    SECURITY_PATH_REJECTED = "security_path_rejected"
    SECURITY_AUTH_REJECTED = "security_auth_rejected"

    # System events
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"


class AuditLogger:
    """Structured audit logger for tracking operator actions."""

    SENSITIVE_WORDS = ("password", "token", "secret", "auth", "credentials", "private")

    def __init__(self):
        self._logger = get_logger("audit")
        # Audit events are always emitted regardless of the root level
        self._logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: AuditEventType,
        container_id: Optional[str] = None,
        principal: Optional[str] = None,
        path: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of event being logged
            container_id: Container identity if relevant
            principal: Authenticated caller, when known
            path: Path within the container data directory, for file events
            details: Additional event-specific details
        """
        sanitized_details = self._sanitize_details(details or {})

        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
        }

        if container_id:
            event["container_id"] = container_id
        if principal:
            event["principal"] = principal
        if path is not None:
            event["path"] = path
        if sanitized_details:
            event["details"] = sanitized_details

        self._logger.info("audit_event", extra=event)

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """Redact values whose keys look like credentials (CF_TOKEN and friends)."""
        sanitized = {}
        for key, value in details.items():
            if any(word in key.lower() for word in self.SENSITIVE_WORDS):
                sanitized[key] = "***REDACTED***" if value else value
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_details(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                sanitized[key] = value

        return sanitized


# Global audit logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """
    Get the global audit logger instance.

    Returns:
        AuditLogger instance
    """
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
