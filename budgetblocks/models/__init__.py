"""
Data Models Package

This package contains all Pydantic models used by Budget Blocks.
All state owned by the entity store conforms to these schemas.
"""

from budgetblocks.models.entities import (
    CATEGORY_COLORS,
    DEFAULT_BASE_TYPES,
    DEFAULT_FLOW_TYPES,
    AttributionRule,
    Base,
    Block,
    BlockType,
    Category,
    FixedBill,
    FlowMode,
    Owner,
    PayPeriodBand,
    PaySchedule,
    RecurrenceFrequency,
    RecurrenceRule,
    Row,
    ScheduleFrequency,
    TemplatePreferences,
    new_id,
)
from budgetblocks.models.undo import (
    BandSnapshot,
    BaseSnapshot,
    BlockSnapshot,
    CategorySnapshot,
    FixedBillSnapshot,
    OwnerSnapshot,
    Reassignment,
    ScheduleSnapshot,
    TemplateSnapshot,
    UndoableEntity,
    UndoHistoryItem,
)
from budgetblocks.models.state import MASTER_LISTS, AppState
from budgetblocks.models.validation import ValidationIssue, ValidationResult
from budgetblocks.models.events import (
    EventSeverity,
    StoreEvent,
    StoreEventBuilder,
    StoreEventType,
)

__all__ = [
    # Entity models
    "CATEGORY_COLORS",
    "DEFAULT_BASE_TYPES",
    "DEFAULT_FLOW_TYPES",
    "AttributionRule",
    "Base",
    "Block",
    "BlockType",
    "Category",
    "FixedBill",
    "FlowMode",
    "Owner",
    "PayPeriodBand",
    "PaySchedule",
    "RecurrenceFrequency",
    "RecurrenceRule",
    "Row",
    "ScheduleFrequency",
    "TemplatePreferences",
    "new_id",
    # Undo models
    "BandSnapshot",
    "BaseSnapshot",
    "BlockSnapshot",
    "CategorySnapshot",
    "FixedBillSnapshot",
    "OwnerSnapshot",
    "Reassignment",
    "ScheduleSnapshot",
    "TemplateSnapshot",
    "UndoableEntity",
    "UndoHistoryItem",
    # State
    "MASTER_LISTS",
    "AppState",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Event models
    "EventSeverity",
    "StoreEvent",
    "StoreEventBuilder",
    "StoreEventType",
]
