"""
Engine Package

The pure pieces of the store: band assignment, ledger effects, undo
history and band generation. None of them persist or log anything.
"""

from budgetblocks.engine import ledger
from budgetblocks.engine.bands import (
    assign_band,
    calculate_display_month,
    find_overlaps,
    reassign_all,
    refresh_display_month,
)
from budgetblocks.engine.paydays import (
    BandDraft,
    Payday,
    excluded_key,
    generate_biweekly_bands,
    generate_composite_bands,
    generate_monthly_bands,
    generate_paydays_for_schedule,
)
from budgetblocks.engine.undo import UndoHistoryManager

__all__ = [
    "ledger",
    # Band assigner
    "assign_band",
    "calculate_display_month",
    "find_overlaps",
    "reassign_all",
    "refresh_display_month",
    # Band generation
    "BandDraft",
    "Payday",
    "excluded_key",
    "generate_biweekly_bands",
    "generate_composite_bands",
    "generate_monthly_bands",
    "generate_paydays_for_schedule",
    # Undo
    "UndoHistoryManager",
]
