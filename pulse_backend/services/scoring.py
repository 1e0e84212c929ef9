"""
Scoring Engine Service

Scores deals and contacts on a 0-100 scale and buckets them into Cold/Warm/Hot.

Weighted sum of sub-factors (see services.normalizers):
- probability: 35%
- amount: 25%
- activity: 25%
- stage: 10%
- time in stage: 5%

The `last_activity` sub-factor is computed and returned with the other factors
but carries no weight.

Scores are rounded half-up to an integer and the priority is derived from the
rounded value, so a returned score of 75 is always Hot. Reasoning strings are
informational and never feed back into a decision.

Contacts are scored from their own last activity plus the deals linked to them:
mean probability, normalized total amount, the most advanced stage, and the
time-in-stage of their oldest deal. A contact without deals scores 0 on those
four factors.
"""

import math
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from pulse_backend.models.enums import Priority
from pulse_backend.models.schemas import Contact, Deal, ScoringFactors, ScoringResult
from pulse_backend.services.normalizers import (
    STAGE_COUNT,
    activity_score,
    as_utc,
    days_between,
    last_activity_score,
    normalize_amount,
    stage_ordinal,
    stage_score,
    time_in_stage_score,
    utc_now,
)
from pulse_backend.services.risk import calculate_risk_level


# =============================================================================
# Configuration
# =============================================================================

SCORING_WEIGHTS: Dict[str, float] = {
    'probability': 0.35,
    'amount': 0.25,
    'activity': 0.25,
    'stage': 0.10,
    'time_in_stage': 0.05,
}

# Minimum score per priority bucket
PRIORITY_THRESHOLDS: Dict[Priority, int] = {
    Priority.HOT: 75,
    Priority.WARM: 45,
    Priority.COLD: 0,
}


# =============================================================================
# Factor Calculation
# =============================================================================

def _clamp_probability(value: Optional[float]) -> float:
    return min(max(float(value or 0), 0.0), 100.0)


def calculate_deal_factors(deal: Deal, now: Optional[datetime] = None) -> ScoringFactors:
    """
    Compute the six sub-factors for a deal.

    Recency is measured from `last_activity`, falling back to `created_at` and
    then to `now`. Time in stage is measured from `created_at`.
    """
    now = now or utc_now()

    created = deal.created_at or now
    last_activity = deal.last_activity or created
    days_since_activity = days_between(last_activity, now)

    return ScoringFactors(
        probability=_clamp_probability(deal.probability),
        amount=normalize_amount(deal.amount),
        activity=activity_score(days_since_activity),
        stage=stage_score(deal.stage),
        time_in_stage=time_in_stage_score(days_between(created, now), deal.stage),
        last_activity=last_activity_score(days_since_activity),
    )


def calculate_contact_factors(
    contact: Contact,
    deals: Sequence[Deal],
    now: Optional[datetime] = None,
) -> ScoringFactors:
    """Compute the six sub-factors for a contact from its linked deals."""
    now = now or utc_now()

    last_activity = contact.last_activity or contact.created_at or now
    days_since_activity = days_between(last_activity, now)

    if deals:
        probability = sum(_clamp_probability(d.probability) for d in deals) / len(deals)
        amount = normalize_amount(sum(float(d.amount or 0) for d in deals))
        stage = max(stage_ordinal(d.stage) for d in deals) / STAGE_COUNT * 100
        # min() keeps the first deal on ties
        oldest = min(deals, key=lambda d: as_utc(d.created_at or now))
        time_in_stage = time_in_stage_score(
            days_between(oldest.created_at or now, now),
            oldest.stage,
        )
    else:
        probability = amount = stage = time_in_stage = 0.0

    return ScoringFactors(
        probability=probability,
        amount=amount,
        activity=activity_score(days_since_activity),
        stage=stage,
        time_in_stage=time_in_stage,
        last_activity=last_activity_score(days_since_activity),
    )


# =============================================================================
# Score and Priority
# =============================================================================

def calculate_weighted_score(factors: ScoringFactors) -> float:
    """Weighted sum of the sub-factors (unrounded)."""
    return (
        factors.probability * SCORING_WEIGHTS['probability']
        + factors.amount * SCORING_WEIGHTS['amount']
        + factors.activity * SCORING_WEIGHTS['activity']
        + factors.stage * SCORING_WEIGHTS['stage']
        + factors.time_in_stage * SCORING_WEIGHTS['time_in_stage']
    )


def round_score(raw_score: float) -> int:
    """Round half-up and clamp into [0, 100]."""
    return min(100, max(0, int(math.floor(raw_score + 0.5))))


def determine_priority(score: float) -> Priority:
    """
    Map a score onto its priority bucket.

    Hot >= 75, Warm >= 45, Cold otherwise.
    """
    if score >= PRIORITY_THRESHOLDS[Priority.HOT]:
        return Priority.HOT
    if score >= PRIORITY_THRESHOLDS[Priority.WARM]:
        return Priority.WARM
    return Priority.COLD


# =============================================================================
# Reasoning
# =============================================================================

def build_deal_reasoning(factors: ScoringFactors, score: int) -> List[str]:
    reasoning: List[str] = []

    if factors.probability > 70:
        reasoning.append(f"Alta probabilidad de cierre ({factors.probability:g}%)")
    if factors.amount > 60:
        reasoning.append("Deal de alto valor")
    if factors.activity > 80:
        reasoning.append("Actividad reciente")
    if factors.stage > 60:
        reasoning.append("Etapa avanzada del pipeline")

    if score < 30:
        reasoning.append("Score bajo - requiere atención")
    if score > 80:
        reasoning.append("Deal prioritario - alta probabilidad de éxito")

    return reasoning


def build_contact_reasoning(factors: ScoringFactors, score: int) -> List[str]:
    reasoning: List[str] = []

    if factors.amount > 60:
        reasoning.append("Contacto de alto valor")
    if factors.activity > 80:
        reasoning.append("Actividad reciente")
    if factors.stage > 60:
        reasoning.append("Deals en etapas avanzadas")

    if score < 30:
        reasoning.append("Contacto frío - necesita reactivación")
    if score > 80:
        reasoning.append("Contacto caliente - alta prioridad")

    return reasoning


# =============================================================================
# Public Entry Points
# =============================================================================

def calculate_deal_score(deal: Deal, now: Optional[datetime] = None) -> ScoringResult:
    """
    Score a single deal.

    Example:
        >>> result = calculate_deal_score(deal)
        >>> result.score, result.priority
        (91, <Priority.HOT: 'Hot'>)
    """
    factors = calculate_deal_factors(deal, now)
    score = round_score(calculate_weighted_score(factors))

    return ScoringResult(
        score=score,
        priority=determine_priority(score),
        factors=factors,
        reasoning=build_deal_reasoning(factors, score),
    )


def calculate_contact_score(
    contact: Contact,
    deals: Sequence[Deal] = (),
    now: Optional[datetime] = None,
) -> ScoringResult:
    """Score a contact against the deals linked to it."""
    factors = calculate_contact_factors(contact, deals, now)
    score = round_score(calculate_weighted_score(factors))

    return ScoringResult(
        score=score,
        priority=determine_priority(score),
        factors=factors,
        reasoning=build_contact_reasoning(factors, score),
    )


def recalculate_all_scores(
    deals: Sequence[Deal],
    contacts: Sequence[Contact],
    now: Optional[datetime] = None,
) -> Tuple[List[Deal], List[Contact]]:
    """
    Refresh the cached score fields of every deal and contact.

    Returns new model instances; the inputs are not modified. Deals get
    score/priority/risk_level, contacts get score/priority computed against
    the deals sharing their `contact_id`.
    """
    now = now or utc_now()

    updated_deals: List[Deal] = []
    for deal in deals:
        result = calculate_deal_score(deal, now)
        updated_deals.append(deal.model_copy(update={
            'score': result.score,
            'priority': result.priority,
            'risk_level': calculate_risk_level(deal, now),
        }))

    deals_by_contact: Dict[str, List[Deal]] = {}
    for deal in deals:
        if deal.contact_id:
            deals_by_contact.setdefault(deal.contact_id, []).append(deal)

    updated_contacts: List[Contact] = []
    for contact in contacts:
        result = calculate_contact_score(contact, deals_by_contact.get(contact.id, []), now)
        updated_contacts.append(contact.model_copy(update={
            'score': result.score,
            'priority': result.priority,
        }))

    return updated_deals, updated_contacts


__all__ = [
    'SCORING_WEIGHTS',
    'PRIORITY_THRESHOLDS',
    'calculate_deal_factors',
    'calculate_contact_factors',
    'calculate_weighted_score',
    'round_score',
    'determine_priority',
    'build_deal_reasoning',
    'build_contact_reasoning',
    'calculate_deal_score',
    'calculate_contact_score',
    'recalculate_all_scores',
]
