"""
Read-only Summaries

DESIGN DECISION: Summaries are DERIVED, never stored.
They are recomputed from the state on every call, so they can never drift
from the balances and rows they describe.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from budgetblocks.dates import end_of_month, start_of_month
from budgetblocks.models.entities import BlockType
from budgetblocks.models.state import AppState


CASH_TYPES = ("Checking", "Savings", "Vault")
CREDIT_TYPES = ("Credit",)
ASSET_TYPES = ("Checking", "Savings", "Vault", "Goal")
LIABILITY_TYPES = ("Credit", "Loan")


class KPIData(BaseModel):
    """Headline figures across all bases."""

    total_cash: Decimal = Decimal("0")
    total_credit_debt: Decimal = Field(
        default=Decimal("0"),
        description="Sum of absolute Credit balances"
    )
    net_worth: Decimal = Field(
        default=Decimal("0"),
        description="Assets plus liabilities (liabilities carry their own sign)"
    )


class BandSummary(BaseModel):
    """Expected money in and out of one band."""

    band_id: str
    title: str
    start_date: date
    end_date: date
    expected_income: Decimal = Decimal("0")
    expected_fixed: Decimal = Decimal("0")
    available_to_allocate: Decimal = Decimal("0")
    block_count: int = 0
    executed_count: int = 0
    archived: bool = False


def _sum_balances(state: AppState, types: tuple[str, ...], absolute: bool = False) -> Decimal:
    total = Decimal("0")
    for base in state.bases.values():
        if base.type in types:
            total += abs(base.balance) if absolute else base.balance
    return total


def select_kpis(state: AppState) -> KPIData:
    return KPIData(
        total_cash=_sum_balances(state, CASH_TYPES),
        total_credit_debt=_sum_balances(state, CREDIT_TYPES, absolute=True),
        net_worth=_sum_balances(state, ASSET_TYPES) + _sum_balances(state, LIABILITY_TYPES),
    )


def select_band_summaries(
    state: AppState,
    month: Optional[date] = None,
    include_archived: bool = True,
) -> list[BandSummary]:
    """
    One summary per band, sorted by start date.

    Args:
        state: State to summarize
        month: Only bands overlapping this date's calendar month
        include_archived: Whether archived bands are listed
    """
    bands = list(state.bands.values())
    if month is not None:
        month_start, month_end = start_of_month(month), end_of_month(month)
        bands = [b for b in bands if b.start_date <= month_end and b.end_date >= month_start]
    if not include_archived:
        bands = [b for b in bands if not b.archived]

    summaries = []
    for band in sorted(bands, key=lambda b: b.start_date):
        band_blocks = [b for b in state.blocks.values() if b.band_id == band.id]

        expected_income = sum(
            (b.total for b in band_blocks if b.type == BlockType.INCOME), Decimal("0")
        )
        expected_fixed = sum(
            (b.total for b in band_blocks if b.type == BlockType.FIXED_BILL), Decimal("0")
        )

        summaries.append(BandSummary(
            band_id=band.id,
            title=band.title,
            start_date=band.start_date,
            end_date=band.end_date,
            expected_income=expected_income,
            expected_fixed=expected_fixed,
            available_to_allocate=expected_income - expected_fixed,
            block_count=len(band_blocks),
            executed_count=sum(1 for b in band_blocks for r in b.rows if r.executed),
            archived=band.archived,
        ))

    return summaries
