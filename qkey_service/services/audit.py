"""
Audit sink boundary.

The key service and the cryptographic engine only need a fire-and-forget
``record(action, details)`` capability. Persisting and querying the audit
trail belongs to an external collaborator; the default sink writes structured
log lines.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from qkey_service.utils.logger import get_logger

logger = get_logger("audit")


class AuditSink(ABC):
    """
    Abstract destination for audit events.

    Implementations must not raise back into the caller: a failing audit
    sink never aborts a key operation.
    """

    @abstractmethod
    def record(self, action: str, details: Dict[str, Any]) -> None:
        """
        Record an audit event.

        Args:
            action: Event name (e.g., "key_requested", "key_destroyed")
            details: Structured details (never key material)
        """
        pass


class LoggingAuditSink(AuditSink):
    """Audit sink that emits one structured log line per event."""

    def record(self, action: str, details: Dict[str, Any]) -> None:
        try:
            logger.info("Audit event", action=action, **details)
        except Exception as e:
            logger.warning(f"Failed to record audit event: {e}", action=action)


def create_audit_sink(kind: str = "logging") -> AuditSink:
    """
    Factory function to create an audit sink.

    Raises:
        ValueError: If sink kind is not supported
    """
    if kind == "logging":
        return LoggingAuditSink()

    raise ValueError(f"Unsupported audit sink: {kind}")
