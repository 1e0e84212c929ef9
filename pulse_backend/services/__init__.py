"""
Backend Services Module

Business logic for the Pulse CRM backend. The engine services are pure
functions over deal/contact/task snapshots; the store and AI gateway are the
only services that perform I/O.

Services:
- normalizers: factor normalizers (amount, activity, stage, time in stage)
- scoring: deal/contact scoring, priority bands, reasoning, bulk recalculation
- risk: risk points and Bajo/Medio/Alto classification
- pipeline_insights: attention list, alerts, Slack payloads, daily digest
- store: CrmStore interface with in-memory and PostgreSQL implementations
- ai_gateway: OpenAI-compatible digest, next-step and contact summaries

All services are consumed by the API layer (pulse_backend/api/) and the
Slack jobs (pulse_backend/jobs/).
"""

# =============================================================================
# Normalizer Exports
# =============================================================================

from pulse_backend.services.normalizers import (
    PIPELINE_STAGES,
    STAGE_TIME_BUDGET_DAYS,
    utc_now,
    as_utc,
    days_between,
    normalize_amount,
    activity_score,
    stage_ordinal,
    stage_score,
    time_in_stage_score,
    last_activity_score,
)

# =============================================================================
# Scoring Engine Exports
# =============================================================================

from pulse_backend.services.scoring import (
    SCORING_WEIGHTS,
    PRIORITY_THRESHOLDS,
    calculate_deal_factors,
    calculate_contact_factors,
    calculate_weighted_score,
    determine_priority,
    calculate_deal_score,
    calculate_contact_score,
    recalculate_all_scores,
)

# =============================================================================
# Risk Classifier Exports
# =============================================================================

from pulse_backend.services.risk import (
    RISK_THRESHOLDS,
    has_next_step,
    calculate_risk_points,
    calculate_risk_level,
)

# =============================================================================
# Pipeline Insights Exports
# =============================================================================

from pulse_backend.services.pipeline_insights import (
    compute_inactivity_days,
    compute_deal_attention,
    build_alert_recommendation,
    detect_deal_alerts,
    build_alerts_channel_payload,
    format_eur,
    build_digest_stats,
    generate_daily_digest,
)

# =============================================================================
# Store Exports
# =============================================================================

from pulse_backend.services.store import (
    EntityNotFoundError,
    DealValidationError,
    validate_deal_update,
    build_demo_dataset,
    CrmStore,
    InMemoryCrmStore,
    PostgresCrmStore,
)

# =============================================================================
# AI Gateway Exports
# =============================================================================

from pulse_backend.services.ai_gateway import (
    MissingAIKeyError,
    AIRequestError,
    AIGateway,
)


__all__ = [
    # ----- Normalizers -----
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
    # ----- Scoring -----
    'SCORING_WEIGHTS',
    'PRIORITY_THRESHOLDS',
    'calculate_deal_factors',
    'calculate_contact_factors',
    'calculate_weighted_score',
    'determine_priority',
    'calculate_deal_score',
    'calculate_contact_score',
    'recalculate_all_scores',
    # ----- Risk -----
    'RISK_THRESHOLDS',
    'has_next_step',
    'calculate_risk_points',
    'calculate_risk_level',
    # ----- Pipeline Insights -----
    'compute_inactivity_days',
    'compute_deal_attention',
    'build_alert_recommendation',
    'detect_deal_alerts',
    'build_alerts_channel_payload',
    'format_eur',
    'build_digest_stats',
    'generate_daily_digest',
    # ----- Store -----
    'EntityNotFoundError',
    'DealValidationError',
    'validate_deal_update',
    'build_demo_dataset',
    'CrmStore',
    'InMemoryCrmStore',
    'PostgresCrmStore',
    # ----- AI Gateway -----
    'MissingAIKeyError',
    'AIRequestError',
    'AIGateway',
]
