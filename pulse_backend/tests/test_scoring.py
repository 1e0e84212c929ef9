"""
Scoring Engine Test Module

Tests for pulse_backend/services/scoring.py.

Test Coverage:
- Weighted score and half-up rounding
- Priority bands (Hot >= 75, Warm >= 45)
- Deal and contact reasoning strings
- Recency fallback to created_at
- Bulk recalculation of cached score fields
"""

from datetime import timedelta

import pytest

from pulse_backend.models.enums import Priority, RiskLevel
from pulse_backend.models.schemas import ScoringFactors
from pulse_backend.services.scoring import (
    SCORING_WEIGHTS,
    calculate_contact_score,
    calculate_deal_factors,
    calculate_deal_score,
    calculate_weighted_score,
    determine_priority,
    recalculate_all_scores,
    round_score,
)
from pulse_backend.tests.conftest import FIXED_NOW, make_contact, make_deal


# =============================================================================
# Weights, Rounding and Priority
# =============================================================================

class TestScoreBands:
    """Tests for the weighting, rounding and priority helpers."""

    def test_weights_sum_to_one(self):
        assert sum(SCORING_WEIGHTS.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize('raw, expected', [
        (74.5, 75),
        (74.49, 74),
        (44.5, 45),
        (0.4, 0),
        (-3.0, 0),
        (120.0, 100),
    ])
    def test_round_score_half_up_and_clamped(self, raw, expected):
        assert round_score(raw) == expected

    @pytest.mark.parametrize('score, priority', [
        (100, Priority.HOT),
        (75, Priority.HOT),
        (74, Priority.WARM),
        (45, Priority.WARM),
        (44, Priority.COLD),
        (0, Priority.COLD),
    ])
    def test_determine_priority(self, score, priority):
        assert determine_priority(score) == priority

    def test_last_activity_factor_carries_no_weight(self):
        base = dict(probability=50, amount=50, activity=50, stage=50, time_in_stage=50)
        low = ScoringFactors(last_activity=0, **base)
        high = ScoringFactors(last_activity=100, **base)

        assert calculate_weighted_score(low) == calculate_weighted_score(high)


# =============================================================================
# Deal Scoring
# =============================================================================

class TestCalculateDealScore:
    """Tests for calculate_deal_score()."""

    def test_closing_enterprise_deal_is_hot(self):
        """85k in Cierre at 90%, active today: 31.5 + 19.58 + 25 + 10 + 5 = 91."""
        deal = make_deal(amount=85000, stage='Cierre', probability=90)

        result = calculate_deal_score(deal, now=FIXED_NOW)

        assert result.score == 91
        assert result.priority == Priority.HOT
        assert result.factors.amount == pytest.approx(78.333, abs=0.01)
        assert result.reasoning == [
            'Alta probabilidad de cierre (90%)',
            'Deal de alto valor',
            'Actividad reciente',
            'Etapa avanzada del pipeline',
            'Deal prioritario - alta probabilidad de éxito',
        ]

    def test_default_proposal_deal_is_warm(self):
        """65% / 50k / Propuesta: 22.75 + 15.63 + 25 + 6 + 5 = 74.375 -> 74."""
        result = calculate_deal_score(make_deal(), now=FIXED_NOW)

        assert result.score == 74
        assert result.priority == Priority.WARM
        assert result.reasoning == ['Deal de alto valor', 'Actividad reciente']

    def test_abandoned_deal_is_cold(self):
        forty_days_ago = FIXED_NOW - timedelta(days=40)
        deal = make_deal(
            probability=0,
            amount=None,
            stage='Prospección',
            last_activity=forty_days_ago,
            created_at=forty_days_ago,
        )

        result = calculate_deal_score(deal, now=FIXED_NOW)

        # only the stage factor contributes: 20 * 0.10
        assert result.score == 2
        assert result.priority == Priority.COLD
        assert result.reasoning == ['Score bajo - requiere atención']

    def test_recency_falls_back_to_created_at(self):
        deal = make_deal(last_activity=None, created_at=FIXED_NOW - timedelta(days=10))

        factors = calculate_deal_factors(deal, now=FIXED_NOW)

        assert factors.activity == 40.0
        assert factors.last_activity == 50.0

    def test_recency_without_any_timestamp_counts_as_today(self):
        deal = make_deal(last_activity=None, created_at=None)

        factors = calculate_deal_factors(deal, now=FIXED_NOW)

        assert factors.activity == 100.0
        assert factors.time_in_stage == 100.0

    def test_probability_is_clamped(self):
        deal = make_deal().model_copy(update={'probability': 150})

        factors = calculate_deal_factors(deal, now=FIXED_NOW)

        assert factors.probability == 100.0

    def test_score_is_deterministic_for_fixed_now(self):
        deal = make_deal()

        first = calculate_deal_score(deal, now=FIXED_NOW)
        second = calculate_deal_score(deal, now=FIXED_NOW)

        assert first == second


# =============================================================================
# Contact Scoring
# =============================================================================

class TestCalculateContactScore:
    """Tests for calculate_contact_score()."""

    def test_contact_without_deals(self):
        result = calculate_contact_score(make_contact(), [], now=FIXED_NOW)

        # activity 100 * 0.25 is the only contribution
        assert result.score == 25
        assert result.priority == Priority.COLD
        assert result.factors.stage == 0.0
        assert result.reasoning == [
            'Actividad reciente',
            'Contacto frío - necesita reactivación',
        ]

    def test_contact_aggregates_linked_deals(self):
        """
        Mean probability 70, total 100k -> 83.33, best stage Cierre -> 100,
        oldest deal 10 days in Propuesta -> 40. Score 82.33 -> 82.
        """
        contact = make_contact(id='contact-1')
        deals = [
            make_deal(probability=90, amount=85000, stage='Cierre', contact_id='contact-1'),
            make_deal(
                probability=50,
                amount=15000,
                stage='Propuesta',
                contact_id='contact-1',
                created_at=FIXED_NOW - timedelta(days=10),
            ),
        ]

        result = calculate_contact_score(contact, deals, now=FIXED_NOW)

        assert result.factors.probability == pytest.approx(70.0)
        assert result.factors.amount == pytest.approx(83.333, abs=0.01)
        assert result.factors.stage == 100.0
        assert result.factors.time_in_stage == 40.0
        assert result.score == 82
        assert result.priority == Priority.HOT
        assert result.reasoning == [
            'Contacto de alto valor',
            'Actividad reciente',
            'Deals en etapas avanzadas',
            'Contacto caliente - alta prioridad',
        ]


# =============================================================================
# Bulk Recalculation
# =============================================================================

class TestRecalculateAllScores:
    """Tests for recalculate_all_scores()."""

    def test_refreshes_cached_fields(self):
        stale = make_deal(
            id='deal-stale',
            score=0,
            priority='Cold',
            risk_level='Bajo',
            next_step=None,
            last_activity=FIXED_NOW - timedelta(days=20),
            target_close_date=FIXED_NOW - timedelta(days=2),
            contact_id='contact-1',
        )
        contact = make_contact(id='contact-1', score=0)

        deals, contacts = recalculate_all_scores([stale], [contact], now=FIXED_NOW)

        expected = calculate_deal_score(stale, now=FIXED_NOW)
        assert deals[0].score == expected.score
        assert deals[0].priority == expected.priority
        # 3 (>=14 days) + 3 (overdue) + 2 (no next step) + 1 (>7 days)
        assert deals[0].risk_level == RiskLevel.ALTO

        expected_contact = calculate_contact_score(contact, [stale], now=FIXED_NOW)
        assert contacts[0].score == expected_contact.score
        assert contacts[0].priority == expected_contact.priority

    def test_inputs_are_not_modified(self):
        deal = make_deal(score=0, priority='Cold')

        recalculate_all_scores([deal], [], now=FIXED_NOW)

        assert deal.score == 0
        assert deal.priority == Priority.COLD

    def test_contacts_only_see_their_own_deals(self):
        contact = make_contact(id='contact-1')
        other = make_deal(contact_id='contact-2', probability=100)

        _, contacts = recalculate_all_scores([other], [contact], now=FIXED_NOW)

        assert contacts[0].score == 25
