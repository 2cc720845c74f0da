"""
Application State

The single value the entity store owns. Collections are id-keyed,
insertion-ordered maps; the persisted document stores them as lists.
"""

from pydantic import Field

from budgetblocks.models.entities import (
    DEFAULT_BASE_TYPES,
    DEFAULT_FLOW_TYPES,
    Base,
    Block,
    Category,
    EntityModel,
    FixedBill,
    Owner,
    PayPeriodBand,
    PaySchedule,
    TemplatePreferences,
)
from budgetblocks.models.undo import UndoHistoryItem


MASTER_LISTS = (
    "owners",
    "categories",
    "vendors",
    "institutions",
    "base_types",
    "flow_types",
)


class AppState(EntityModel):
    # Entity collections, keyed by id
    bases: dict[str, Base] = Field(default_factory=dict)
    blocks: dict[str, Block] = Field(default_factory=dict)
    bands: dict[str, PayPeriodBand] = Field(default_factory=dict)
    library: dict[str, Block] = Field(default_factory=dict)
    schedules: dict[str, PaySchedule] = Field(default_factory=dict)
    fixed_bills: dict[str, FixedBill] = Field(default_factory=dict)
    owner_entities: dict[str, Owner] = Field(default_factory=dict)
    category_entities: dict[str, Category] = Field(default_factory=dict)

    # Master lists (deduplicated, ordered)
    owners: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    vendors: list[str] = Field(default_factory=list)
    institutions: list[str] = Field(default_factory=list)
    base_types: list[str] = Field(default_factory=lambda: list(DEFAULT_BASE_TYPES))
    flow_types: list[str] = Field(default_factory=lambda: list(DEFAULT_FLOW_TYPES))

    # Preferences
    group_bases_by_type: bool = False
    template_preferences: TemplatePreferences = Field(default_factory=TemplatePreferences)

    undo_history: list[UndoHistoryItem] = Field(default_factory=list)

    def master_list(self, name: str) -> list[str]:
        if name not in MASTER_LISTS:
            raise KeyError(name)
        return getattr(self, name)
