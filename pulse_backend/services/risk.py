"""
Risk classifier for deals.

Accumulates risk points from independent signals and maps the total onto
Bajo/Medio/Alto:

    days since activity >= 14      +3
    days since activity >= 7       +2   (tiers are exclusive, highest wins)
    days since activity >= 3       +1
    target close date in the past  +3
    next step missing or blank     +2
    probability below 30           +1
    days since activity > 7        +1   (stacks with the tier above)

    total >= 7 -> Alto, total >= 3 -> Medio, otherwise Bajo

The last rule double-counts inactivity for deals idle more than a week. Risk
levels already stored in the database were computed this way, so it stays.
"""

from datetime import datetime
from typing import Optional

from pulse_backend.models.enums import RiskLevel
from pulse_backend.models.schemas import Deal
from pulse_backend.services.normalizers import as_utc, days_between, utc_now


RISK_THRESHOLDS = {
    RiskLevel.ALTO: 7,
    RiskLevel.MEDIO: 3,
    RiskLevel.BAJO: 0,
}

LOW_PROBABILITY_THRESHOLD = 30


def has_next_step(deal: Deal) -> bool:
    """True when the deal carries a non-blank next step."""
    return bool(deal.next_step and deal.next_step.strip())


def is_target_overdue(deal: Deal, now: datetime) -> bool:
    if deal.target_close_date is None:
        return False
    return as_utc(deal.target_close_date) < as_utc(now)


def calculate_risk_points(deal: Deal, now: Optional[datetime] = None) -> int:
    """Raw risk total for a deal (shown in the risk tooltip)."""
    now = now or utc_now()

    last_activity = deal.last_activity or deal.created_at or now
    days_since_activity = days_between(last_activity, now)

    points = 0

    if days_since_activity >= 14:
        points += 3
    elif days_since_activity >= 7:
        points += 2
    elif days_since_activity >= 3:
        points += 1

    if is_target_overdue(deal, now):
        points += 3

    if not has_next_step(deal):
        points += 2

    if (deal.probability or 0) < LOW_PROBABILITY_THRESHOLD:
        points += 1

    if days_since_activity > 7:
        points += 1

    return points


def risk_level_from_points(points: int) -> RiskLevel:
    if points >= RISK_THRESHOLDS[RiskLevel.ALTO]:
        return RiskLevel.ALTO
    if points >= RISK_THRESHOLDS[RiskLevel.MEDIO]:
        return RiskLevel.MEDIO
    return RiskLevel.BAJO


def calculate_risk_level(deal: Deal, now: Optional[datetime] = None) -> RiskLevel:
    """Classify a deal as Bajo, Medio or Alto risk."""
    return risk_level_from_points(calculate_risk_points(deal, now))


__all__ = [
    'RISK_THRESHOLDS',
    'LOW_PROBABILITY_THRESHOLD',
    'has_next_step',
    'is_target_overdue',
    'calculate_risk_points',
    'risk_level_from_points',
    'calculate_risk_level',
]
