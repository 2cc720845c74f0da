"""
Band Assigner

Maps a calendar date to the pay period band whose inclusive interval
contains it, and re-files every block after band boundaries change.

Bands are expected not to overlap. When they do, the first band in
collection order wins, which keeps the result deterministic but not
necessarily meaningful.
"""

from collections.abc import Iterable, Mapping
from datetime import date, timedelta
from typing import Optional, Union

from budgetblocks.dates import month_key, utc_now
from budgetblocks.models.entities import AttributionRule, Block, PayPeriodBand


BandCollection = Union[Mapping[str, PayPeriodBand], Iterable[PayPeriodBand]]


def _iter_bands(bands: BandCollection) -> Iterable[PayPeriodBand]:
    if isinstance(bands, Mapping):
        return bands.values()
    return bands


def assign_band(value: date, bands: BandCollection) -> Optional[str]:
    """
    Return the id of the first band whose [start_date, end_date] contains
    the date, or None when no band covers it.
    """
    for band in _iter_bands(bands):
        if band.start_date <= value <= band.end_date:
            return band.id
    return None


def reassign_all(blocks: Iterable[Block], bands: BandCollection) -> int:
    """
    Recompute band_id for every block from its current date.

    Templates are skipped. Blocks whose band changes get a fresh
    updated_at. Returns how many blocks changed band.
    """
    band_list = list(_iter_bands(bands))
    changed = 0
    now = utc_now()

    for block in blocks:
        if block.is_template:
            continue
        new_band_id = assign_band(block.date, band_list)
        if new_band_id != block.band_id:
            block.band_id = new_band_id
            block.updated_at = now
            changed += 1

    return changed


def calculate_display_month(
    start_date: date,
    end_date: date,
    rule: AttributionRule = AttributionRule.END_MONTH,
) -> str:
    """
    Month ('YYYY-MM') a band is displayed under.

    start-month uses the start date, end-month the end date, and
    shift-plus-1 the end date pushed forward by 30 days.
    """
    rule = AttributionRule(rule)
    if rule == AttributionRule.START_MONTH:
        display_date = start_date
    elif rule == AttributionRule.END_MONTH:
        display_date = end_date
    else:
        display_date = end_date + timedelta(days=30)
    return month_key(display_date)


def refresh_display_month(band: PayPeriodBand) -> bool:
    """Recompute a band's display month in place. Returns True if it changed."""
    display_month = calculate_display_month(band.start_date, band.end_date, band.attribution_rule)
    if display_month != band.display_month:
        band.display_month = display_month
        return True
    return False


def find_overlaps(bands: BandCollection) -> list[tuple[str, str]]:
    """Pairs of band ids whose intervals overlap, sorted by start date."""
    ordered = sorted(_iter_bands(bands), key=lambda b: (b.start_date, b.end_date))
    overlaps = []
    for i, band in enumerate(ordered):
        for other in ordered[i + 1:]:
            if other.start_date > band.end_date:
                break
            overlaps.append((band.id, other.id))
    return overlaps
