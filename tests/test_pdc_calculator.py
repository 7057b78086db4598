"""Tests for the PDC calculator."""

from datetime import date

import pytest
from pydantic import ValidationError

from ma_calculators.pdc_calculator import (
    DispenseRecord,
    FillRecord,
    MeasurementPeriod,
    PDCInput,
    calculate_pdc,
    calculate_pdc_from_dispenses,
    transform_dispenses_to_input,
)
from ma_calculators.pdc_calculator.calculator import (
    calculate_covered_days_from_fills,
    calculate_current_supply,
    calculate_days_to_runout,
    calculate_gap_days,
    calculate_pdc_perfect,
    calculate_pdc_status_quo,
    calculate_refills_needed,
    calculate_treatment_period,
)
from ma_calculators.pdc_calculator.dates import days_to_year_end, is_q4, parse_fill_date

YEAR_END_2025 = date(2025, 12, 31)


def _fill(year: int, month: int, day: int, days_supply: int) -> FillRecord:
    return FillRecord(fill_date=date(year, month, day), days_supply=days_supply)


class TestCoveredDays:
    """Tests for interval merging (HEDIS: each day counted at most once)."""

    def test_single_fill(self):
        """A single 30-day fill covers 30 days."""
        assert calculate_covered_days_from_fills([_fill(2025, 1, 1, 30)], YEAR_END_2025) == 30

    def test_overlapping_fills_not_double_counted(self):
        """Jan 1 + 30 and Jan 15 + 30 cover Jan 1 through Feb 13."""
        fills = [_fill(2025, 1, 1, 30), _fill(2025, 1, 15, 30)]
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == 44

    def test_adjacent_fills_coalesce(self):
        """A fill starting the day the previous one runs out adds its full supply."""
        fills = [_fill(2025, 1, 1, 30), _fill(2025, 1, 31, 30)]
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == 60

    def test_contained_fill_adds_nothing(self):
        """A fill entirely inside an earlier fill's span adds no days."""
        fills = [_fill(2025, 1, 1, 60), _fill(2025, 1, 15, 15)]
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == 60

    def test_clipped_at_treatment_end(self):
        """Dec 1 + 90 days only counts through Dec 31."""
        assert calculate_covered_days_from_fills([_fill(2025, 12, 1, 90)], YEAR_END_2025) == 31

    def test_fill_after_treatment_end_ignored(self):
        assert calculate_covered_days_from_fills([_fill(2026, 1, 5, 30)], YEAR_END_2025) == 0

    def test_clipped_at_treatment_start(self):
        """A carry-in fill only counts from the treatment start."""
        covered = calculate_covered_days_from_fills(
            [_fill(2024, 12, 20, 30)], YEAR_END_2025, treatment_start=date(2025, 1, 1)
        )
        assert covered == 18

    def test_order_independent(self):
        """Unsorted input gives the same answer as sorted input."""
        fills = [
            _fill(2025, 3, 1, 30),
            _fill(2025, 1, 1, 30),
            _fill(2025, 1, 20, 30),
            _fill(2025, 6, 1, 90),
        ]
        expected = calculate_covered_days_from_fills(
            sorted(fills, key=lambda f: f.fill_date), YEAR_END_2025
        )
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == expected
        assert calculate_covered_days_from_fills(list(reversed(fills)), YEAR_END_2025) == expected

    def test_multiple_merged_spans(self):
        """Three separate spans, the first built from two overlapping fills."""
        fills = [
            _fill(2025, 1, 1, 30),
            _fill(2025, 1, 20, 30),  # overlaps first -> Jan 1 .. Feb 18
            _fill(2025, 3, 1, 30),
            _fill(2025, 4, 15, 25),
        ]
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == 49 + 30 + 25

    def test_empty(self):
        assert calculate_covered_days_from_fills([], YEAR_END_2025) == 0

    def test_separate_fills_sum(self):
        """Jan 1 + 30 ends Jan 30; Feb 1 + 28 is a second span. Jan 31 is a gap."""
        fills = [_fill(2025, 1, 1, 30), _fill(2025, 2, 1, 28)]
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == 58

    def test_huge_days_supply_clipped_to_window(self):
        """A days supply far past date.max still only covers the window."""
        fills = [_fill(2025, 1, 1, 5_000_000), _fill(2025, 6, 1, 3_000_000)]
        assert calculate_covered_days_from_fills(fills, YEAR_END_2025) == 365

    @pytest.mark.parametrize(
        "extra",
        [
            _fill(2025, 1, 1, 30),
            _fill(2025, 1, 31, 1),
            _fill(2025, 2, 10, 5),
            _fill(2025, 5, 1, 120),
            _fill(2024, 12, 1, 45),
            _fill(2025, 12, 20, 90),
            _fill(2026, 1, 1, 30),
            _fill(2025, 3, 1, 5_000_000),
        ],
    )
    def test_adding_a_fill_never_lowers_covered_days(self, extra):
        base = [_fill(2025, 1, 1, 30), _fill(2025, 2, 1, 28), _fill(2025, 4, 1, 60)]
        start = date(2025, 1, 1)

        before = calculate_covered_days_from_fills(base, YEAR_END_2025, treatment_start=start)
        after = calculate_covered_days_from_fills(
            base + [extra], YEAR_END_2025, treatment_start=start
        )
        assert before == 30 + 28 + 60
        assert before <= after <= 365


class TestTreatmentPeriod:
    """Tests for treatment period length."""

    def test_mid_january_start(self):
        """Jan 15 through Dec 31 is 351 days."""
        assert calculate_treatment_period(date(2025, 1, 15), 2025) == 351

    def test_full_leap_year(self):
        assert calculate_treatment_period(date(2024, 1, 1), 2024) == 366

    def test_last_day_of_year(self):
        assert calculate_treatment_period(date(2025, 12, 31), 2025) == 1


class TestGapDays:
    """Tests for gap day accounting."""

    def test_within_allowance(self):
        result = calculate_gap_days(365, 305)
        assert result.gap_days_used == 60
        assert result.gap_days_allowed == 73
        assert result.gap_days_remaining == 13

    def test_allowance_exceeded_goes_negative(self):
        result = calculate_gap_days(365, 270)
        assert result.gap_days_used == 95
        assert result.gap_days_remaining == -22

    def test_allowance_is_floored(self):
        """20% of 351 is 70.2, floored to 70."""
        assert calculate_gap_days(351, 351).gap_days_allowed == 70


class TestProjections:
    """Tests for status-quo and perfect-refill projections."""

    def test_status_quo(self):
        assert calculate_pdc_status_quo(292, 30, 30, 365) == pytest.approx(88.22, abs=0.01)

    def test_status_quo_supply_capped_at_year_end(self):
        """Supply beyond year end does not count."""
        assert calculate_pdc_status_quo(292, 60, 30, 365) == calculate_pdc_status_quo(
            292, 30, 30, 365
        )

    def test_perfect_salvageable(self):
        assert calculate_pdc_perfect(250, 60, 365) == pytest.approx(84.93, abs=0.01)

    def test_perfect_unsalvageable(self):
        assert calculate_pdc_perfect(200, 30, 365) == pytest.approx(63.01, abs=0.01)

    def test_projections_capped_at_100(self):
        assert calculate_pdc_perfect(300, 100, 365) == 100.0
        assert calculate_pdc_status_quo(365, 30, 30, 365) == 100.0


class TestSupplyAndRunout:
    """Tests for runout, supply on hand and refills needed."""

    def test_days_to_runout(self):
        """Oct 1 + 90 days runs out Dec 30; from Dec 1 that is 29 days."""
        assert calculate_days_to_runout(date(2025, 10, 1), 90, date(2025, 12, 1)) == 29

    def test_runs_out_today(self):
        assert calculate_days_to_runout(date(2025, 12, 1), 24, date(2025, 12, 25)) == 0

    def test_already_out_is_negative(self):
        assert calculate_days_to_runout(date(2025, 1, 1), 30, date(2025, 2, 10)) == -10

    def test_current_supply_never_negative(self):
        assert calculate_current_supply(date(2025, 1, 1), 30, date(2025, 2, 10)) == 0
        assert calculate_current_supply(date(2025, 10, 1), 90, date(2025, 12, 1)) == 29

    def test_huge_days_supply_runout(self):
        """Jan 1 to Jun 1 is 151 days; no date past date.max is built."""
        assert calculate_days_to_runout(date(2025, 1, 1), 5_000_000, date(2025, 6, 1)) == (
            5_000_000 - 151
        )

    @pytest.mark.parametrize(
        ("days_left", "supply", "typical", "expected"),
        [
            (90, 30, 30, 2),
            (100, 0, 30, 4),
            (5, 0, 30, 1),
            (180, 0, 90, 2),
            (30, 45, 30, 0),
        ],
    )
    def test_refills_needed(self, days_left, supply, typical, expected):
        assert calculate_refills_needed(days_left, supply, typical) == expected


class TestDates:
    """Tests for calendar helpers."""

    def test_days_to_year_end_counts_today(self):
        assert days_to_year_end(date(2025, 12, 31), YEAR_END_2025) == 1
        assert days_to_year_end(date(2025, 8, 1), YEAR_END_2025) == 153

    def test_days_to_year_end_past_period(self):
        assert days_to_year_end(date(2026, 1, 5), YEAR_END_2025) == 0

    def test_is_q4(self):
        assert is_q4(date(2025, 10, 1))
        assert not is_q4(date(2025, 9, 30))

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("2025-03-15", date(2025, 3, 15)),
            ("2025-03-15T10:30:00Z", date(2025, 3, 15)),
            ("2025-03-15T10:30:00-05:00", date(2025, 3, 15)),
            ("not-a-date", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_fill_date(self, value, expected):
        assert parse_fill_date(value) == expected


class TestModels:
    """Tests for model validation."""

    def test_zero_days_supply_rejected(self):
        with pytest.raises(ValidationError):
            FillRecord(fill_date=date(2025, 1, 1), days_supply=0)

    def test_period_start_after_end_rejected(self):
        with pytest.raises(ValueError):
            MeasurementPeriod(start=date(2025, 12, 31), end=date(2025, 1, 1))


class TestCalculatePDC:
    """End-to-end tests for calculate_pdc."""

    @pytest.fixture
    def quarterly_input(self):
        """Three 90-day fills, measured on Aug 1."""
        return PDCInput(
            fills=[_fill(2025, 7, 1, 90), _fill(2025, 1, 1, 90), _fill(2025, 4, 1, 90)],
            measurement_period=MeasurementPeriod(start=date(2025, 1, 1), end=YEAR_END_2025),
            current_date=date(2025, 8, 1),
        )

    def test_quarterly_fills(self, quarterly_input):
        result = calculate_pdc(quarterly_input)

        assert result.covered_days == 270
        assert result.treatment_days == 365
        assert result.pdc == pytest.approx(73.97, abs=0.01)
        assert result.gap_days_used == 95
        assert result.gap_days_allowed == 73
        assert result.gap_days_remaining == -22
        assert result.days_to_year_end == 153
        assert result.days_until_runout == 59
        assert result.current_supply == 59
        assert result.pdc_status_quo == pytest.approx(90.14, abs=0.01)
        assert result.pdc_perfect == 100.0
        assert result.refills_needed == 4
        assert result.last_fill_date == date(2025, 7, 1)
        assert result.fill_count == 3

    def test_no_fills_is_valid(self):
        """A patient with no fills yields PDC 0 instead of an error."""
        result = calculate_pdc(
            PDCInput(
                fills=[],
                measurement_period=MeasurementPeriod(start=date(2025, 1, 1), end=YEAR_END_2025),
                current_date=date(2025, 12, 1),
            )
        )
        assert result.pdc == 0.0
        assert result.covered_days == 0
        assert result.pdc_status_quo == 0.0
        assert result.days_until_runout == 0
        assert result.current_supply == 0
        assert result.last_fill_date is None
        assert result.fill_count == 0
        assert result.days_to_year_end == 31
        assert result.refills_needed == 2

    def test_same_day_fills_last_wins(self):
        """Ties on fill date resolve to the later entry for runout."""
        result = calculate_pdc(
            PDCInput(
                fills=[_fill(2025, 3, 1, 30), _fill(2025, 3, 1, 90)],
                measurement_period=MeasurementPeriod(start=date(2025, 3, 1), end=YEAR_END_2025),
                current_date=date(2025, 3, 1),
            )
        )
        assert result.days_until_runout == 90
        assert result.covered_days == 90

    def test_deterministic(self, quarterly_input):
        assert calculate_pdc(quarterly_input) == calculate_pdc(quarterly_input)

    def test_huge_days_supply(self):
        result = calculate_pdc(
            PDCInput(
                fills=[_fill(2025, 1, 1, 5_000_000)],
                measurement_period=MeasurementPeriod(start=date(2025, 1, 1), end=YEAR_END_2025),
                current_date=date(2025, 6, 1),
            )
        )
        assert result.covered_days == 365
        assert result.pdc == 100.0
        assert result.days_until_runout == 5_000_000 - 151
        assert result.current_supply == 5_000_000 - 151
        assert result.refills_needed == 0
        assert result.pdc_status_quo == 100.0

    @pytest.mark.parametrize(
        "fills",
        [
            [],
            [_fill(2025, 1, 1, 30)],
            [_fill(2025, 1, 1, 30), _fill(2025, 2, 1, 28)],
            [_fill(2025, 1, 1, 90), _fill(2025, 4, 1, 90), _fill(2025, 7, 1, 90)],
            [_fill(2025, 3, 15, 30), _fill(2025, 3, 20, 30), _fill(2025, 9, 1, 10)],
            [_fill(2025, 11, 1, 90)],
            [_fill(2025, 2, 1, 5_000_000)],
        ],
    )
    @pytest.mark.parametrize(
        "current_date",
        [date(2025, 1, 1), date(2025, 5, 15), date(2025, 10, 1), date(2025, 12, 31), date(2026, 2, 1)],
    )
    def test_projection_bounds(self, fills, current_date):
        """0 <= pdc and status quo <= perfect <= 100 for any fills and date."""
        start = min((f.fill_date for f in fills), default=date(2025, 1, 1))
        result = calculate_pdc(
            PDCInput(
                fills=fills,
                measurement_period=MeasurementPeriod(start=start, end=YEAR_END_2025),
                current_date=current_date,
            )
        )

        assert 0 <= result.pdc <= 100
        assert 0 <= result.pdc_status_quo <= result.pdc_perfect <= 100
        assert result.pdc <= result.pdc_perfect


class TestTransformDispenses:
    """Tests for the dispense -> PDCInput adapter."""

    def test_fhir_dicts(self):
        dispenses = [
            {"whenHandedOver": "2025-02-01T09:00:00Z", "daysSupply": {"value": 30}},
            {"whenHandedOver": "2025-01-15", "daysSupply": {"value": 0}},
            {"whenHandedOver": None, "daysSupply": {"value": 30}},
            {"whenHandedOver": "garbage", "daysSupply": {"value": 30}},
        ]
        pdc_input = transform_dispenses_to_input(dispenses, 2025, date(2025, 6, 1))

        assert [f.fill_date for f in pdc_input.fills] == [date(2025, 1, 15), date(2025, 2, 1)]
        assert pdc_input.fills[0].days_supply == 30
        assert pdc_input.measurement_period.start == date(2025, 1, 15)
        assert pdc_input.measurement_period.end == YEAR_END_2025
        assert pdc_input.current_date == date(2025, 6, 1)

    def test_no_usable_dispenses_starts_jan_1(self):
        pdc_input = transform_dispenses_to_input(
            [DispenseRecord(fill_date=None)], 2025, date(2025, 6, 1)
        )
        assert pdc_input.fills == []
        assert pdc_input.measurement_period.start == date(2025, 1, 1)

    def test_from_dispenses(self):
        result = calculate_pdc_from_dispenses(
            [DispenseRecord(fill_date=date(2025, 1, 15), days_supply=30)],
            2025,
            date(2025, 6, 1),
        )
        assert result.treatment_days == 351
        assert result.covered_days == 30
