"""
Store Event Models

Every mutation of the store emits one structured event to the application
log. This provides:
1. Traceability of balance changes (which row moved which base)
2. Debugging information when a referential miss turns a call into a no-op
3. A record of persistence failures, which are otherwise swallowed

DESIGN DECISION: Events are log lines, not data. They are never stored in
the state document and never replayed; undo is handled by the undo history.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from budgetblocks.dates import utc_now


class StoreEventType(str, Enum):
    """Types of events the store emits."""
    # Entity lifecycle
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"
    REFERENCE_MISSING = "reference_missing"
    VALIDATION_FAILED = "validation_failed"
    VALIDATION_WARNING = "validation_warning"

    # Bands
    BLOCK_UNASSIGNED = "block_unassigned"
    BLOCKS_REASSIGNED = "blocks_reassigned"
    BANDS_GENERATED = "bands_generated"

    # Ledger
    ROW_EXECUTED = "row_executed"
    ROW_EXECUTION_UNDONE = "row_execution_undone"
    EXECUTED_AMOUNT_EDITED = "executed_amount_edited"

    # Undo
    UNDO_RESTORED = "undo_restored"
    UNDO_FAILED = "undo_failed"
    UNDO_HISTORY_CLEARED = "undo_history_cleared"

    # Data
    DATA_EXPORTED = "data_exported"
    DATA_IMPORTED = "data_imported"
    IMPORT_FAILED = "import_failed"
    STATE_LOADED = "state_loaded"
    STATE_CLEARED = "state_cleared"
    SAVE_FAILED = "save_failed"


class EventSeverity(str, Enum):
    """Severity level for store events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class StoreEvent(BaseModel):
    """A single store event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )
    event_type: StoreEventType = Field(
        ...,
        description="Type of event"
    )
    severity: EventSeverity = Field(
        default=EventSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Kind of entity (e.g., 'base', 'block', 'band')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class StoreEventBuilder:
    """
    Helper class to build store events with common patterns.

    Usage:
        event = StoreEventBuilder.entity_created("base", base.id, base.name)
        event = StoreEventBuilder.row_executed(block, row, deltas)
    """

    @staticmethod
    def entity_created(entity_type: str, entity_id: str, label: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.ENTITY_CREATED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} created: {label}",
        )

    @staticmethod
    def entity_updated(entity_type: str, entity_id: str, fields: list[str]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.ENTITY_UPDATED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} updated",
            details={"fields": sorted(fields)},
        )

    @staticmethod
    def entity_deleted(entity_type: str, entity_id: str, history_id: str, label: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.ENTITY_DELETED,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Deleted {label}",
            details={"history_id": history_id},
        )

    @staticmethod
    def reference_missing(entity_type: str, entity_id: str, operation: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.REFERENCE_MISSING,
            severity=EventSeverity.DEBUG,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{operation} ignored: {entity_type} not found",
            details={"operation": operation},
        )

    @staticmethod
    def validation_failed(subject: str, issues: list[dict]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.VALIDATION_FAILED,
            severity=EventSeverity.WARNING,
            entity_type=subject,
            description=f"{subject.capitalize()} rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def validation_warning(subject: str, entity_id: Optional[str], issues: list[dict]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.VALIDATION_WARNING,
            severity=EventSeverity.WARNING,
            entity_type=subject,
            entity_id=entity_id,
            description=f"{subject.capitalize()} accepted with {len(issues)} warnings",
            details={"issues": issues},
        )

    @staticmethod
    def block_unassigned(block_id: str, block_date: str, band_count: int) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.BLOCK_UNASSIGNED,
            severity=EventSeverity.WARNING,
            entity_type="block",
            entity_id=block_id,
            description=f"No band covers {block_date}",
            details={"date": block_date, "available_bands": band_count},
        )

    @staticmethod
    def blocks_reassigned(changed: int, total: int) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.BLOCKS_REASSIGNED,
            entity_type="block",
            description=f"{changed} of {total} blocks moved to a different band",
            details={"changed": changed, "total": total},
        )

    @staticmethod
    def bands_generated(source: str, count: int) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.BANDS_GENERATED,
            entity_type="band",
            description=f"Generated {count} bands from {source}",
            details={"source": source, "count": count},
        )

    @staticmethod
    def row_executed(block_id: str, row_id: str, deltas: dict[str, str]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.ROW_EXECUTED,
            entity_type="row",
            entity_id=row_id,
            description="Row executed",
            details={"block_id": block_id, "balance_deltas": deltas},
        )

    @staticmethod
    def row_execution_undone(block_id: str, row_id: str, deltas: dict[str, str]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.ROW_EXECUTION_UNDONE,
            entity_type="row",
            entity_id=row_id,
            description="Row execution undone",
            details={"block_id": block_id, "balance_deltas": deltas},
        )

    @staticmethod
    def executed_amount_edited(block_id: str, row_id: str, old: str, new: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.EXECUTED_AMOUNT_EDITED,
            severity=EventSeverity.WARNING,
            entity_type="row",
            entity_id=row_id,
            description="Amount edited on an executed row; undo will reverse the new amount",
            details={"block_id": block_id, "old_amount": old, "new_amount": new},
        )

    @staticmethod
    def undo_restored(history_id: str, entity_type: str, label: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.UNDO_RESTORED,
            entity_type=entity_type,
            entity_id=history_id,
            description=f"Restored {label}",
        )

    @staticmethod
    def undo_failed(history_id: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.UNDO_FAILED,
            severity=EventSeverity.WARNING,
            entity_id=history_id,
            description="Undo item not found (already used or never existed)",
        )

    @staticmethod
    def undo_history_cleared(count: int) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.UNDO_HISTORY_CLEARED,
            description=f"Cleared {count} undo items",
            details={"count": count},
        )

    @staticmethod
    def data_exported(counts: dict[str, int]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.DATA_EXPORTED,
            description="State exported",
            details={"counts": counts},
        )

    @staticmethod
    def data_imported(counts: dict[str, int]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.DATA_IMPORTED,
            description="State imported",
            details={"counts": counts},
        )

    @staticmethod
    def import_failed(error_message: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.IMPORT_FAILED,
            severity=EventSeverity.ERROR,
            description="Import rejected; state left unchanged",
            error_message=error_message,
        )

    @staticmethod
    def state_loaded(counts: dict[str, int]) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.STATE_LOADED,
            description="State loaded from storage",
            details={"counts": counts},
        )

    @staticmethod
    def state_cleared() -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.STATE_CLEARED,
            description="All data cleared",
        )

    @staticmethod
    def save_failed(error_message: str) -> StoreEvent:
        return StoreEvent(
            event_type=StoreEventType.SAVE_FAILED,
            severity=EventSeverity.ERROR,
            description="Write-through save failed; in-memory state kept",
            error_message=error_message,
        )
