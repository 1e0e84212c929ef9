"""
Package initialization file for backend models.

Re-exports the enumerations from enums.py and the Pydantic schemas from
schemas.py so other modules can import them from pulse_backend.models directly:

    from pulse_backend.models import Deal, Priority, ScoringResult
"""

# =============================================================================
# Enums
# =============================================================================

from pulse_backend.models.enums import (
    DealStage,
    DealStatus,
    Priority,
    RiskLevel,
    TaskState,
    TaskPriority,
    LEGACY_TASK_STATES,
    AlertSeverity,
    DealAlertType,
    DigestTimeframe,
    AIInvocationStatus,
)

# =============================================================================
# Schemas
# =============================================================================

from pulse_backend.models.schemas import (
    # Entities
    Deal,
    Contact,
    Task,
    # Payloads
    DealCreate,
    DealUpdate,
    ContactCreate,
    ContactUpdate,
    TaskCreate,
    TaskUpdate,
    # Engine results
    ScoringFactors,
    ScoringResult,
    RiskResult,
    DealAttention,
    DealAlert,
    AlertAttachment,
    AlertsChannelPayload,
    QuickMetrics,
    DailyDigest,
    RecalculateResponse,
    # AI gateway
    DigestStats,
    DigestDealSnapshot,
    DigestAlertSnapshot,
    DigestRequest,
    DigestResponse,
    NextStepDealSnapshot,
    NextStepContext,
    NextStepRequest,
    NextStepResponse,
    ContactSummaryDealSnapshot,
    ContactSummarySnapshot,
    ContactSummaryRequest,
    ContactSummaryResponse,
)


__all__ = [
    # Enums
    'DealStage',
    'DealStatus',
    'Priority',
    'RiskLevel',
    'TaskState',
    'TaskPriority',
    'LEGACY_TASK_STATES',
    'AlertSeverity',
    'DealAlertType',
    'DigestTimeframe',
    'AIInvocationStatus',
    # Entities
    'Deal',
    'Contact',
    'Task',
    # Payloads
    'DealCreate',
    'DealUpdate',
    'ContactCreate',
    'ContactUpdate',
    'TaskCreate',
    'TaskUpdate',
    # Engine results
    'ScoringFactors',
    'ScoringResult',
    'RiskResult',
    'DealAttention',
    'DealAlert',
    'AlertAttachment',
    'AlertsChannelPayload',
    'QuickMetrics',
    'DailyDigest',
    'RecalculateResponse',
    # AI gateway
    'DigestStats',
    'DigestDealSnapshot',
    'DigestAlertSnapshot',
    'DigestRequest',
    'DigestResponse',
    'NextStepDealSnapshot',
    'NextStepContext',
    'NextStepRequest',
    'NextStepResponse',
    'ContactSummaryDealSnapshot',
    'ContactSummarySnapshot',
    'ContactSummaryRequest',
    'ContactSummaryResponse',
]
