"""
Payday and Band Generation

Turns pay schedules into concrete paydays and paydays into consecutive,
non-overlapping bands. Also provides the plain monthly and biweekly
generators used for quick setup.

All functions are pure: they return band drafts and leave it to the store
to insert them and re-file blocks.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from budgetblocks.dates import add_months, day_of_month, end_of_month, start_of_month
from budgetblocks.models.entities import PaySchedule, ScheduleFrequency


class Payday(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: date
    schedule_id: str
    schedule_name: str
    type: str


class BandDraft(BaseModel):
    """A band that has not been inserted into the store yet."""

    title: str
    start_date: date
    end_date: date
    source_paydays: list[Payday] = Field(default_factory=list)


LEAD_IN_SCHEDULE_ID = "lead-in"


def excluded_key(schedule_id: str, payday: date) -> str:
    """Key used to exclude a single payday from band generation."""
    return f"{schedule_id}:{payday.isoformat()}"


def _label_day(day) -> str:
    return "Last" if day == "Last" else str(day)


def _monthly_paydays(schedule: PaySchedule, days: list, kind: str, start: date, end: date) -> list[Payday]:
    paydays = []
    current = start_of_month(start)
    while current <= end:
        for day in days:
            payday = day_of_month(current.year, current.month, day)
            if start <= payday <= end:
                paydays.append(Payday(
                    date=payday,
                    schedule_id=schedule.id,
                    schedule_name=schedule.name,
                    type=f"{kind} ({_label_day(day)})",
                ))
        current = add_months(current, 1)
    return paydays


def _stepped_paydays(
    schedule: PaySchedule,
    step: timedelta,
    kind: str,
    start: date,
    end: date,
    reference: Optional[date],
) -> list[Payday]:
    current = schedule.anchor_date or reference or date.today()
    # Walk back so every payday in range is captured
    while current > start:
        current -= step
    paydays = []
    while current <= end:
        if current >= start:
            paydays.append(Payday(
                date=current,
                schedule_id=schedule.id,
                schedule_name=schedule.name,
                type=kind,
            ))
        current += step
    return paydays


def generate_paydays_for_schedule(
    schedule: PaySchedule,
    start: date,
    end: date,
    reference: Optional[date] = None,
) -> list[Payday]:
    """
    All paydays of a schedule within [start, end].

    Weekly and bi-weekly schedules step from `anchor_date`; without one
    they step from `reference` (default today).
    """
    frequency = ScheduleFrequency(schedule.frequency)

    if frequency == ScheduleFrequency.MONTHLY:
        return _monthly_paydays(schedule, [schedule.anchor_day or 1], "Monthly", start, end)
    if frequency == ScheduleFrequency.SEMI_MONTHLY:
        days = [schedule.semi_monthly_day1 or 1, schedule.semi_monthly_day2 or 15]
        return _monthly_paydays(schedule, days, "Semi-Monthly", start, end)
    if frequency == ScheduleFrequency.BI_WEEKLY:
        return _stepped_paydays(schedule, timedelta(weeks=2), "Bi-Weekly", start, end, reference)
    return _stepped_paydays(schedule, timedelta(weeks=1), "Weekly", start, end, reference)


def _band_title(start: date, end: date) -> str:
    if start.year == end.year:
        return f"{start:%b} {start.day} - {end:%b} {end.day}, {end.year}"
    return f"{start:%b} {start.day}, {start.year} - {end:%b} {end.day}, {end.year}"


def generate_composite_bands(
    schedules: Iterable[PaySchedule],
    start: date,
    end: date,
    excluded: Optional[set[str]] = None,
    include_lead_in: bool = True,
    reference: Optional[date] = None,
) -> list[BandDraft]:
    """
    Merge the paydays of several schedules into consecutive bands.

    - Paydays on the same day are merged into one band start.
    - An optional lead-in band covers [start, first payday - 1].
    - Each band runs from a payday to the day before the next one.
    - The last band runs from the last payday to `end`, if it is before `end`.
    """
    excluded = excluded or set()

    by_date: dict[date, list[Payday]] = {}
    for schedule in schedules:
        for payday in generate_paydays_for_schedule(schedule, start, end, reference):
            if excluded_key(payday.schedule_id, payday.date) in excluded:
                continue
            by_date.setdefault(payday.date, []).append(payday)

    if not by_date:
        return []

    dates = sorted(by_date)
    bands: list[BandDraft] = []

    if include_lead_in and dates[0] > start:
        lead_in_end = dates[0] - timedelta(days=1)
        bands.append(BandDraft(
            title=_band_title(start, lead_in_end),
            start_date=start,
            end_date=lead_in_end,
            source_paydays=[Payday(
                date=start,
                schedule_id=LEAD_IN_SCHEDULE_ID,
                schedule_name="Lead-in",
                type="Before first payday",
            )],
        ))

    for current, following in zip(dates, dates[1:]):
        band_end = following - timedelta(days=1)
        bands.append(BandDraft(
            title=_band_title(current, band_end),
            start_date=current,
            end_date=band_end,
            source_paydays=by_date[current],
        ))

    last = dates[-1]
    if last < end:
        bands.append(BandDraft(
            title=_band_title(last, end),
            start_date=last,
            end_date=end,
            source_paydays=by_date[last],
        ))

    return bands


def generate_monthly_bands(reference: date, months_before: int = 3, months_after: int = 3) -> list[BandDraft]:
    """One band per calendar month around the reference date."""
    bands = []
    for offset in range(-months_before, months_after + 1):
        month = add_months(start_of_month(reference), offset)
        bands.append(BandDraft(
            title=f"{month:%B %Y}",
            start_date=month,
            end_date=end_of_month(month),
        ))
    return bands


def generate_biweekly_bands(start: date, count: int = 6) -> list[BandDraft]:
    """Consecutive 14-day bands beginning on `start`."""
    bands = []
    current = start
    for _ in range(count):
        band_end = current + timedelta(days=13)
        bands.append(BandDraft(
            title=_band_title(current, band_end),
            start_date=current,
            end_date=band_end,
        ))
        current += timedelta(days=14)
    return bands
