"""
Store Event Logger

DESIGN DECISION: Every mutation of the store is logged as a structured
event. This provides:
1. Traceability of every balance movement
2. Debugging capability for silent no-ops (stale ids)
3. Visibility into swallowed persistence failures

The logger:
- Is synchronous, like the store it serves
- Never raises into the caller (a broken log must not break a mutation)
"""

import logging
from typing import Optional

import structlog

from budgetblocks.models.events import (
    EventSeverity,
    StoreEvent,
    StoreEventBuilder,
)


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOGGER_NAME = "budgetblocks"


class StoreEventLogger:
    """
    Central structured logging for store events.

    Events go to the `budgetblocks` stdlib logger through structlog.
    Every event is also kept in `recent` (bounded) so callers can inspect
    what the last mutations did without scraping log output.
    """

    def __init__(self, level: Optional[str] = None, keep_recent: int = 100):
        """
        Initialize the event logger.

        Args:
            level: Minimum stdlib level name (e.g. "INFO"). None leaves the
                   logger's level untouched.
            keep_recent: How many recent events to keep in memory.
        """
        if level:
            logging.getLogger(LOGGER_NAME).setLevel(level)
        self._logger = structlog.get_logger(LOGGER_NAME)
        self._keep_recent = keep_recent
        self.recent: list[StoreEvent] = []

    def log(self, event: StoreEvent) -> None:
        """Log a store event. Failures are reported to stderr logging only."""
        self.recent.append(event)
        if len(self.recent) > self._keep_recent:
            del self.recent[: len(self.recent) - self._keep_recent]

        try:
            log_dict = event.to_log_dict()
            if event.severity == EventSeverity.ERROR:
                self._logger.error("store_event", **log_dict)
            elif event.severity == EventSeverity.WARNING:
                self._logger.warning("store_event", **log_dict)
            elif event.severity == EventSeverity.DEBUG:
                self._logger.debug("store_event", **log_dict)
            else:
                self._logger.info("store_event", **log_dict)
        except Exception as e:
            logging.getLogger(LOGGER_NAME).error("store_event_logging_failed: %s", e)

    def log_created(self, entity_type: str, entity_id: str, label: str) -> None:
        self.log(StoreEventBuilder.entity_created(entity_type, entity_id, label))

    def log_updated(self, entity_type: str, entity_id: str, fields: list[str]) -> None:
        self.log(StoreEventBuilder.entity_updated(entity_type, entity_id, fields))

    def log_deleted(self, entity_type: str, entity_id: str, history_id: str, label: str) -> None:
        self.log(StoreEventBuilder.entity_deleted(entity_type, entity_id, history_id, label))

    def log_missing(self, entity_type: str, entity_id: str, operation: str) -> None:
        """Log a referential miss (stale id from the caller)."""
        self.log(StoreEventBuilder.reference_missing(entity_type, entity_id, operation))

    def log_save_failed(self, error_message: str) -> None:
        self.log(StoreEventBuilder.save_failed(error_message))
