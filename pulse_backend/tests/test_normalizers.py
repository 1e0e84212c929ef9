"""
Normalizer Test Module

Tests for the scoring sub-factor normalizers in
pulse_backend/services/normalizers.py.

Test Coverage:
- Whole-day counting (floored, clamped at 0, naive datetimes as UTC)
- Amount normalization: piecewise boundaries and monotonicity
- Activity recency steps
- Stage ordinals, including accent-less aliases and unknown labels
- Time-in-stage decay against the per-stage budget
"""

from datetime import datetime, timedelta, timezone

import pytest

from pulse_backend.services.normalizers import (
    activity_score,
    as_utc,
    days_between,
    last_activity_score,
    normalize_amount,
    stage_ordinal,
    stage_score,
    time_in_stage_score,
)
from pulse_backend.tests.conftest import FIXED_NOW


# =============================================================================
# Day Counting
# =============================================================================

class TestDaysBetween:
    """Tests for days_between() and as_utc()."""

    def test_partial_days_are_floored(self):
        assert days_between(FIXED_NOW - timedelta(days=2, hours=23), FIXED_NOW) == 2

    def test_future_dates_clamp_to_zero(self):
        assert days_between(FIXED_NOW + timedelta(days=4), FIXED_NOW) == 0

    def test_naive_datetime_is_treated_as_utc(self):
        naive = datetime(2024, 1, 10, 10, 0, 0)
        assert days_between(naive, FIXED_NOW) == 5

    def test_aware_datetime_is_converted_to_utc(self):
        madrid = timezone(timedelta(hours=1))
        # 2024-01-14T11:00+01:00 == 2024-01-14T10:00Z, exactly one day before
        value = datetime(2024, 1, 14, 11, 0, 0, tzinfo=madrid)

        assert as_utc(value) == datetime(2024, 1, 14, 10, 0, 0, tzinfo=timezone.utc)
        assert days_between(value, FIXED_NOW) == 1


# =============================================================================
# Amount
# =============================================================================

class TestNormalizeAmount:
    """
    Tests for normalize_amount().

    Segments:
    - [0, 5k)      -> 0..20
    - [5k, 25k)    -> 20..50
    - [25k, 75k)   -> 50..75
    - [75k, ...)   -> 75..100 (capped)
    """

    @pytest.mark.parametrize('amount', [None, 0, -10])
    def test_missing_or_non_positive_amount_scores_zero(self, amount):
        assert normalize_amount(amount) == 0.0

    @pytest.mark.parametrize('amount, expected', [
        (2_500, 10.0),
        (5_000, 20.0),
        (15_000, 35.0),
        (25_000, 50.0),
        (50_000, 62.5),
        (75_000, 75.0),
        (112_500, 87.5),
        (150_000, 100.0),
        (1_000_000, 100.0),
    ])
    def test_segment_values(self, amount, expected):
        assert normalize_amount(amount) == pytest.approx(expected)

    def test_monotonically_non_decreasing(self):
        amounts = [0, 1, 999, 4_999, 5_000, 24_999, 25_000, 74_999, 75_000, 149_999, 150_000, 500_000]
        scores = [normalize_amount(amount) for amount in amounts]

        assert scores == sorted(scores)
        assert all(0.0 <= score <= 100.0 for score in scores)


# =============================================================================
# Activity
# =============================================================================

class TestActivityScore:

    @pytest.mark.parametrize('days, expected', [
        (0, 100.0),
        (1, 90.0),
        (2, 80.0),
        (3, 80.0),
        (4, 60.0),
        (7, 60.0),
        (8, 40.0),
        (14, 40.0),
        (15, 20.0),
        (30, 20.0),
        (31, 0.0),
    ])
    def test_steps(self, days, expected):
        assert activity_score(days) == expected

    def test_last_activity_score_loses_five_points_per_day(self):
        assert last_activity_score(0) == 100.0
        assert last_activity_score(4) == 80.0
        assert last_activity_score(25) == 0.0
        assert last_activity_score(40) == 0.0


# =============================================================================
# Stage
# =============================================================================

class TestStageScore:

    @pytest.mark.parametrize('stage, ordinal', [
        ('Prospección', 1),
        ('Calificación', 2),
        ('Propuesta', 3),
        ('Negociación', 4),
        ('Cierre', 5),
        ('Negociacion', 4),
        ('Calificacion', 2),
        ('  Cierre  ', 5),
    ])
    def test_known_stages(self, stage, ordinal):
        assert stage_ordinal(stage) == ordinal

    @pytest.mark.parametrize('stage', [None, '', 'Discovery'])
    def test_unknown_stages_rank_first(self, stage):
        assert stage_ordinal(stage) == 1
        assert stage_score(stage) == 20.0

    def test_stage_score_is_ordinal_over_five(self):
        assert stage_score('Propuesta') == 60.0
        assert stage_score('Cierre') == 100.0


class TestTimeInStageScore:
    """Propuesta has a 14-day budget: 100 up to 4.67 days, 70 up to 9.33, 40 up to 14."""

    @pytest.mark.parametrize('days, expected', [
        (0, 100.0),
        (4, 100.0),
        (5, 70.0),
        (9, 70.0),
        (10, 40.0),
        (14, 40.0),
        (15, 35.0),
        (20, 10.0),
        (30, 0.0),
    ])
    def test_propuesta_budget(self, days, expected):
        assert time_in_stage_score(days, 'Propuesta') == expected

    def test_early_stages_get_longer_budget(self):
        # 20 days is within two thirds of Prospección's 30-day budget
        assert time_in_stage_score(20, 'Prospección') == 70.0
        # ...but well past Cierre's 7-day budget
        assert time_in_stage_score(20, 'Cierre') == 0.0
