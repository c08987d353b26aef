"""
Audit sinks for orchestration events.

Every analysis emits exactly one OrchestrationEvent. The default sink writes
it to the log as JSON; the memory sink keeps events for inspection in tests.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List

from .models import OrchestrationEvent

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Destination for orchestration events."""

    @abstractmethod
    def emit(self, event: OrchestrationEvent) -> None:
        """Record one event. Must not raise."""


class LoggingAuditSink(AuditSink):
    """Writes each event to the ``ai_automod.audit`` logger."""

    def __init__(self, audit_logger: logging.Logger = None):
        self.logger = audit_logger or logging.getLogger("ai_automod.audit")

    def emit(self, event: OrchestrationEvent) -> None:
        level = logging.WARNING if event.disposition.degraded else logging.INFO
        self.logger.log(level, "orchestration %s", json.dumps(event.as_dict(), sort_keys=True))


class MemoryAuditSink(AuditSink):
    """Keeps events in a list."""

    def __init__(self):
        self.events: List[OrchestrationEvent] = []

    def emit(self, event: OrchestrationEvent) -> None:
        self.events.append(event)
