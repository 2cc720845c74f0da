"""
Ledger Engine

Applies and reverses the balance effect of a single row.

The effect depends jointly on the owning block's type and on which base
ids the row carries:

    Income      execute: to_base   += amount
    Fixed Bill  execute: from_base -= amount
    Flow        execute: from_base -= amount, to_base += amount

Undo is the exact inverse. A leg whose base id is unset, or points at a
base that no longer exists, is skipped.

IMPORTANT: There is no record of past executions beyond `row.executed`.
Undo reverses the row's *current* amount, so editing the amount of an
executed row makes the later undo reverse the edited value.
"""

from collections.abc import MutableMapping
from decimal import Decimal, localcontext
from typing import Optional

from budgetblocks.dates import utc_now
from budgetblocks.models.entities import Base, Block, BlockType, Row


Deltas = dict[str, Decimal]


def row_effect(block_type: BlockType, row: Row) -> list[tuple[str, Decimal]]:
    """
    The (base_id, delta) legs executing this row would apply.

    Legs are listed in from/to order; a Flow row with both ids set
    yields two legs even if they point at the same base.
    """
    block_type = BlockType(block_type)
    amount = row.amount
    legs: list[tuple[str, Decimal]] = []

    if block_type == BlockType.INCOME:
        if row.to_base_id:
            legs.append((row.to_base_id, amount))
    elif block_type == BlockType.FIXED_BILL:
        if row.from_base_id:
            legs.append((row.from_base_id, -amount))
    elif block_type == BlockType.FLOW:
        if row.from_base_id:
            legs.append((row.from_base_id, -amount))
        if row.to_base_id:
            legs.append((row.to_base_id, amount))

    return legs


def _exact_precision(values: list[Decimal], floor: int) -> int:
    """Digits needed to add and subtract these values without rounding."""
    finite = [v for v in values if v.is_finite()]
    if not finite:
        return floor
    high = max(v.adjusted() for v in finite)
    low = min(v.as_tuple().exponent for v in finite)
    # One extra digit for a carry per leg
    return max(floor, high - low + 1 + len(finite))


def _apply(legs: list[tuple[str, Decimal]], bases: MutableMapping[str, Base], sign: int) -> Deltas:
    # Resolve every leg before touching any balance
    resolved = [(bases[base_id], delta) for base_id, delta in legs if base_id in bases]
    now = utc_now()
    applied: Deltas = {}
    operands = [v for base, delta in resolved for v in (base.balance, delta)]
    with localcontext() as ctx:
        ctx.prec = _exact_precision(operands, ctx.prec)
        for base, delta in resolved:
            base.balance = base.balance + sign * delta
            base.updated_at = now
            applied[base.id] = applied.get(base.id, Decimal("0")) + sign * delta
    return applied


def execute(block: Block, row: Row, bases: MutableMapping[str, Base]) -> Optional[Deltas]:
    """
    Apply a row's balance effect and mark it executed.

    Returns the per-base deltas applied, or None if the row was already
    executed (no-op).
    """
    if row.executed:
        return None
    applied = _apply(row_effect(block.type, row), bases, sign=1)
    row.executed = True
    block.updated_at = utc_now()
    return applied


def undo(block: Block, row: Row, bases: MutableMapping[str, Base]) -> Optional[Deltas]:
    """
    Reverse a row's balance effect and mark it not executed.

    Returns the per-base deltas applied, or None if the row was not
    executed (no-op).
    """
    if not row.executed:
        return None
    applied = _apply(row_effect(block.type, row), bases, sign=-1)
    row.executed = False
    block.updated_at = utc_now()
    return applied


def reverse_block(block: Block, bases: MutableMapping[str, Base]) -> int:
    """
    Reverse every executed row of a block (used before the block goes away).

    The rows are left marked executed: the block is a snapshot on its way
    out, and the snapshot must remember which rows were applied.
    Returns the number of rows reversed.
    """
    reversed_count = 0
    for row in block.rows:
        if row.executed:
            _apply(row_effect(block.type, row), bases, sign=-1)
            reversed_count += 1
    return reversed_count


def reapply_block(block: Block, bases: MutableMapping[str, Base]) -> int:
    """
    Re-apply every executed row of a block being restored from a snapshot.

    Counterpart of reverse_block; returns the number of rows re-applied.
    """
    reapplied = 0
    for row in block.rows:
        if row.executed:
            _apply(row_effect(block.type, row), bases, sign=1)
            reapplied += 1
    return reapplied


def format_deltas(deltas: Deltas) -> dict[str, str]:
    """Deltas as strings, for logging."""
    return {base_id: str(delta) for base_id, delta in deltas.items()}
