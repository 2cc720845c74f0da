"""
Undo History Models

Every destructive delete stores one UndoHistoryItem holding a full-value
snapshot of what was removed. The snapshot is a tagged union with one case
per entity kind, so restore logic can match on `type` exhaustively.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import Field

from budgetblocks.dates import utc_now
from budgetblocks.models.entities import (
    Base,
    Block,
    Category,
    EntityModel,
    FixedBill,
    Owner,
    PayPeriodBand,
    PaySchedule,
    new_id,
)


class Reassignment(EntityModel):
    """A row whose owner/category was rewritten by a delete."""

    block_id: str
    row_id: str
    old_value: Optional[str] = None


class BlockSnapshot(EntityModel):
    type: Literal["block"] = "block"
    data: Block


class BaseSnapshot(EntityModel):
    type: Literal["base"] = "base"
    data: Base


class BandSnapshot(EntityModel):
    """A deleted band plus every block that was filed under it."""

    type: Literal["band"] = "band"
    data: PayPeriodBand
    blocks_snapshot: list[Block] = Field(default_factory=list)


class TemplateSnapshot(EntityModel):
    type: Literal["template"] = "template"
    data: Block


class ScheduleSnapshot(EntityModel):
    type: Literal["schedule"] = "schedule"
    data: PaySchedule


class FixedBillSnapshot(EntityModel):
    type: Literal["fixedBill"] = "fixedBill"
    data: FixedBill


class OwnerSnapshot(EntityModel):
    type: Literal["owner"] = "owner"
    data: Owner
    reassignments: list[Reassignment] = Field(default_factory=list)


class CategorySnapshot(EntityModel):
    type: Literal["category"] = "category"
    data: Category
    reassignments: list[Reassignment] = Field(default_factory=list)


UndoableEntity = Annotated[
    Union[
        BlockSnapshot,
        BaseSnapshot,
        BandSnapshot,
        TemplateSnapshot,
        ScheduleSnapshot,
        FixedBillSnapshot,
        OwnerSnapshot,
        CategorySnapshot,
    ],
    Field(discriminator="type"),
]


class UndoHistoryItem(EntityModel):
    """
    One undoable delete.

    Created exactly once per delete, consumed exactly once by undo.
    """

    id: str = Field(default_factory=new_id)
    entity: UndoableEntity
    timestamp: datetime = Field(default_factory=utc_now)
    label: str = ""
