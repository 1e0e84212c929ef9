"""
Normalizer functions for the scoring engine.

Every function here maps one raw deal attribute onto a 0-100 sub-factor. They
are pure and total: absent or malformed input becomes 0 (or the first stage)
instead of raising, so the scoring engine can be called with partial records.

Scales:
- Amount: 0-5k -> 0-20, 5k-25k -> 20-50, 25k-75k -> 50-75, 75k+ -> 75-100 (capped)
- Activity: stepped by days since the last activity (today 100, >30 days 0)
- Stage: ordinal / 5 * 100
- Time in stage: compared against a per-stage budget (30/21/14/7/7 days)
- Last activity: linear decay of 5 points per day

Day counts are whole days, floored, and never negative: a timestamp in the
future counts as today.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from pulse_backend.models.enums import DealStage


# =============================================================================
# Pipeline Stage Configuration
# =============================================================================

STAGE_COUNT: int = 5

# Stage label -> ordinal. Accent-less spellings come from CSV imports.
PIPELINE_STAGES: Dict[str, int] = {
    DealStage.PROSPECCION.value: 1,
    DealStage.CALIFICACION.value: 2,
    DealStage.PROPUESTA.value: 3,
    DealStage.NEGOCIACION.value: 4,
    DealStage.CIERRE.value: 5,
    'Prospeccion': 1,
    'Calificacion': 2,
    'Negociacion': 4,
}

# Days a deal may sit in a stage before the time-in-stage factor decays.
# Early stages are allowed to take longer.
STAGE_TIME_BUDGET_DAYS: Dict[int, int] = {
    1: 30,
    2: 21,
    3: 14,
    4: 7,
    5: 7,
}

ONE_DAY = timedelta(days=1)


# =============================================================================
# Time Helpers
# =============================================================================

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, now: datetime) -> int:
    """
    Whole days elapsed from `earlier` to `now`, floored and clamped at 0.

    >>> days_between(datetime(2024, 1, 1), datetime(2024, 1, 3, 12))
    2
    """
    elapsed = as_utc(now) - as_utc(earlier)
    return max(0, elapsed // ONE_DAY)


# =============================================================================
# Sub-factor Normalizers
# =============================================================================

def normalize_amount(amount: Optional[float]) -> float:
    """
    Normalize a monetary amount onto 0-100.

    Piecewise linear and monotonically non-decreasing; absent, zero or
    negative amounts score 0.
    """
    if amount is None:
        return 0.0
    amount = float(amount)
    if amount <= 0:
        return 0.0
    if amount < 5_000:
        return min(amount / 5_000 * 20, 20.0)
    if amount < 25_000:
        return 20 + (amount - 5_000) / 20_000 * 30
    if amount < 75_000:
        return 50 + (amount - 25_000) / 50_000 * 25
    return min(75 + (amount - 75_000) / 75_000 * 25, 100.0)


def activity_score(days_since_activity: int) -> float:
    """Stepped recency score: today 100, yesterday 90, down to 0 after a month."""
    if days_since_activity <= 0:
        return 100.0
    if days_since_activity == 1:
        return 90.0
    if days_since_activity <= 3:
        return 80.0
    if days_since_activity <= 7:
        return 60.0
    if days_since_activity <= 14:
        return 40.0
    if days_since_activity <= 30:
        return 20.0
    return 0.0


def stage_ordinal(stage: Optional[str]) -> int:
    """Rank of a stage label (1-5). Unknown or missing stages rank 1."""
    if not stage:
        return 1
    return PIPELINE_STAGES.get(stage.strip(), 1)


def stage_score(stage: Optional[str]) -> float:
    return stage_ordinal(stage) / STAGE_COUNT * 100


def time_in_stage_score(days_in_stage: int, stage: Optional[str]) -> float:
    """
    Score how long a deal has been sitting in its current stage.

    100 within the first third of the stage budget, 70 within two thirds,
    40 up to the budget, then minus 5 points per extra day down to 0.
    """
    budget = STAGE_TIME_BUDGET_DAYS[stage_ordinal(stage)]

    if days_in_stage <= budget / 3:
        return 100.0
    if days_in_stage <= budget * 2 / 3:
        return 70.0
    if days_in_stage <= budget:
        return 40.0
    return float(max(0, 40 - (days_in_stage - budget) * 5))


def last_activity_score(days_since_activity: int) -> float:
    return float(max(0, 100 - days_since_activity * 5))


__all__ = [
    'STAGE_COUNT',
    'PIPELINE_STAGES',
    'STAGE_TIME_BUDGET_DAYS',
    'utc_now',
    'as_utc',
    'days_between',
    'normalize_amount',
    'activity_score',
    'stage_ordinal',
    'stage_score',
    'time_in_stage_score',
    'last_activity_score',
]
