"""Read-only summary queries."""

from budgetblocks.queries.summaries import (
    BandSummary,
    KPIData,
    select_band_summaries,
    select_kpis,
)

__all__ = ["BandSummary", "KPIData", "select_band_summaries", "select_kpis"]
