"""
Undo History Manager

Keeps a bounded, append-only list of one-shot snapshots taken right before
each destructive delete. An item is single-use: `take` removes it whether
or not the caller manages to restore it.
"""

from typing import Optional

from budgetblocks.models.entities import Base, Block, Category, FixedBill, Owner, PayPeriodBand, PaySchedule
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


class UndoHistoryManager:
    """
    Records snapshots into a history list it does not own.

    The list lives in the application state so it survives a save/load
    round trip; the manager only enforces the bound and the single-use rule.
    """

    def __init__(self, history: list[UndoHistoryItem], limit: int = 50):
        self._history = history
        self._limit = limit

    @property
    def items(self) -> list[UndoHistoryItem]:
        return list(self._history)

    def __len__(self) -> int:
        return len(self._history)

    def record(self, entity: UndoableEntity, label: str) -> str:
        """
        Push a snapshot and return its history id.

        The snapshot is deep-copied so later edits to the live state cannot
        leak into it. The oldest items are dropped past the limit.
        """
        item = UndoHistoryItem(entity=entity.model_copy(deep=True), label=label)
        self._history.append(item)
        overflow = len(self._history) - self._limit
        if overflow > 0:
            del self._history[:overflow]
        return item.id

    def take(self, history_id: str) -> Optional[UndoHistoryItem]:
        """Remove and return an item, or None if it is gone."""
        for index, item in enumerate(self._history):
            if item.id == history_id:
                return self._history.pop(index)
        return None

    def clear(self) -> int:
        count = len(self._history)
        self._history.clear()
        return count

    # Snapshot factories, one per entity kind

    def record_block(self, block: Block) -> str:
        return self.record(BlockSnapshot(data=block), f"Block: {block.title}")

    def record_base(self, base: Base) -> str:
        return self.record(BaseSnapshot(data=base), f"Base: {base.name}")

    def record_band(self, band: PayPeriodBand, blocks: list[Block]) -> str:
        return self.record(
            BandSnapshot(data=band, blocks_snapshot=blocks),
            f"Band: {band.title}",
        )

    def record_template(self, template: Block) -> str:
        return self.record(TemplateSnapshot(data=template), f"Template: {template.title}")

    def record_schedule(self, schedule: PaySchedule) -> str:
        return self.record(ScheduleSnapshot(data=schedule), f"Schedule: {schedule.name}")

    def record_fixed_bill(self, bill: FixedBill) -> str:
        return self.record(FixedBillSnapshot(data=bill), f"Bill: {bill.vendor}")

    def record_owner(self, owner: Owner, reassignments: list[Reassignment]) -> str:
        return self.record(
            OwnerSnapshot(data=owner, reassignments=reassignments),
            f"Owner: {owner.name}",
        )

    def record_category(self, category: Category, reassignments: list[Reassignment]) -> str:
        return self.record(
            CategorySnapshot(data=category, reassignments=reassignments),
            f"Category: {category.name}",
        )
