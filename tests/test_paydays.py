"""
Tests for payday and band generation.
"""

import pytest
from datetime import date

from pydantic import ValidationError

from budgetblocks.engine.paydays import (
    LEAD_IN_SCHEDULE_ID,
    excluded_key,
    generate_biweekly_bands,
    generate_composite_bands,
    generate_monthly_bands,
    generate_paydays_for_schedule,
)
from budgetblocks.models import PaySchedule


def monthly(day, name="Salary"):
    return PaySchedule(name=name, frequency="Monthly", anchor_day=day)


class TestPaydays:
    """Tests for single-schedule payday generation."""

    def test_monthly_paydays(self):
        """Test a monthly schedule pays on its anchor day."""
        paydays = generate_paydays_for_schedule(monthly(15), date(2025, 1, 1), date(2025, 3, 31))
        assert [p.date for p in paydays] == [date(2025, 1, 15), date(2025, 2, 15), date(2025, 3, 15)]
        assert paydays[0].type == "Monthly (15)"

    def test_monthly_last_day(self):
        """Test 'Last' follows each month's length."""
        paydays = generate_paydays_for_schedule(monthly("Last"), date(2025, 1, 1), date(2025, 3, 31))
        assert [p.date for p in paydays] == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31)]

    def test_semi_monthly(self):
        """Test semi-monthly schedules pay twice a month."""
        schedule = PaySchedule(
            name="Semi",
            frequency="Semi-Monthly",
            semi_monthly_day1=1,
            semi_monthly_day2=15,
        )
        paydays = generate_paydays_for_schedule(schedule, date(2025, 1, 1), date(2025, 1, 31))
        assert [p.date for p in paydays] == [date(2025, 1, 1), date(2025, 1, 15)]

    def test_biweekly_steps_from_anchor(self):
        """Test bi-weekly paydays step both ways from the anchor date."""
        schedule = PaySchedule(name="Bi", frequency="Bi-Weekly", anchor_date=date(2025, 1, 3))
        paydays = generate_paydays_for_schedule(schedule, date(2025, 1, 1), date(2025, 1, 31))
        assert [p.date for p in paydays] == [date(2025, 1, 3), date(2025, 1, 17), date(2025, 1, 31)]

    def test_weekly_anchor_after_range(self):
        """Test an anchor after the range still finds earlier paydays."""
        schedule = PaySchedule(name="Wk", frequency="Weekly", anchor_date=date(2025, 3, 7))
        paydays = generate_paydays_for_schedule(schedule, date(2025, 1, 1), date(2025, 1, 15))
        assert [p.date for p in paydays] == [date(2025, 1, 3), date(2025, 1, 10)]


class TestCompositeBands:
    """Tests for merging paydays into consecutive bands."""

    def test_bands_between_paydays(self):
        """Test each band ends the day before the next payday."""
        schedule = PaySchedule(
            name="Semi",
            frequency="Semi-Monthly",
            semi_monthly_day1=1,
            semi_monthly_day2=15,
        )
        bands = generate_composite_bands([schedule], date(2025, 1, 1), date(2025, 1, 31))
        assert [(b.start_date, b.end_date) for b in bands] == [
            (date(2025, 1, 1), date(2025, 1, 14)),
            (date(2025, 1, 15), date(2025, 1, 31)),
        ]
        assert bands[0].title == "Jan 1 - Jan 14, 2025"

    def test_lead_in_band(self):
        """Test a lead-in band covers the days before the first payday."""
        bands = generate_composite_bands([monthly(10)], date(2025, 1, 1), date(2025, 2, 28))
        assert [(b.start_date, b.end_date) for b in bands] == [
            (date(2025, 1, 1), date(2025, 1, 9)),
            (date(2025, 1, 10), date(2025, 2, 9)),
            (date(2025, 2, 10), date(2025, 2, 28)),
        ]
        assert bands[0].source_paydays[0].schedule_id == LEAD_IN_SCHEDULE_ID

    def test_without_lead_in(self):
        """Test the lead-in band can be left out."""
        bands = generate_composite_bands(
            [monthly(10)], date(2025, 1, 1), date(2025, 2, 28), include_lead_in=False
        )
        assert bands[0].start_date == date(2025, 1, 10)

    def test_same_day_paydays_merge(self):
        """Test two schedules paying the same day share one band start."""
        bands = generate_composite_bands(
            [monthly(15, "One"), monthly(15, "Two")],
            date(2025, 1, 15),
            date(2025, 2, 14),
        )
        assert len(bands) == 1
        assert len(bands[0].source_paydays) == 2

    def test_excluded_payday(self):
        """Test excluded paydays do not start a band."""
        schedule = monthly(10)
        excluded = {excluded_key(schedule.id, date(2025, 2, 10))}
        bands = generate_composite_bands([schedule], date(2025, 1, 1), date(2025, 2, 28), excluded=excluded)
        assert [(b.start_date, b.end_date) for b in bands] == [
            (date(2025, 1, 1), date(2025, 1, 9)),
            (date(2025, 1, 10), date(2025, 2, 28)),
        ]

    def test_no_paydays(self):
        """Test no schedules means no bands."""
        assert generate_composite_bands([], date(2025, 1, 1), date(2025, 1, 31)) == []


class TestSimpleGenerators:
    """Tests for the monthly and biweekly generators."""

    def test_monthly_bands(self):
        """Test one band per calendar month around the reference."""
        bands = generate_monthly_bands(date(2025, 3, 15), months_before=1, months_after=1)
        assert [b.title for b in bands] == ["February 2025", "March 2025", "April 2025"]
        assert bands[0].end_date == date(2025, 2, 28)

    def test_biweekly_bands(self):
        """Test consecutive 14-day bands."""
        bands = generate_biweekly_bands(date(2025, 1, 1), count=2)
        assert [(b.start_date, b.end_date) for b in bands] == [
            (date(2025, 1, 1), date(2025, 1, 14)),
            (date(2025, 1, 15), date(2025, 1, 28)),
        ]


class TestDraftModels:
    """Tests for the payday and draft value types."""

    def test_paydays_are_frozen(self):
        """Test a generated payday cannot be changed in place."""
        payday = generate_paydays_for_schedule(monthly(15), date(2025, 1, 1), date(2025, 1, 31))[0]
        with pytest.raises(ValidationError):
            payday.date = date(2025, 1, 16)
        assert payday.date == date(2025, 1, 15)

    def test_drafts_dump_with_their_paydays(self):
        """Test a draft serializes along with the paydays that started it."""
        bands = generate_composite_bands([monthly(15)], date(2025, 1, 1), date(2025, 1, 31))
        dumped = bands[-1].model_dump()
        assert dumped["start_date"] == date(2025, 1, 15)
        assert dumped["source_paydays"][0]["schedule_name"] == "Salary"
        assert dumped["source_paydays"][0]["date"] == date(2025, 1, 15)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
