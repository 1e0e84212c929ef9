"""
Pydantic schemas for the Pulse CRM backend.

Three groups of models live here:

- Entities (Deal, Contact, Task) and their create/update payloads. Field names
  match the database columns, so rows from asyncpg and JSON from the browser
  validate into the same models.
- Engine results (ScoringFactors, ScoringResult, DealAttention, DealAlert,
  AlertsChannelPayload) returned by the scoring, risk and pipeline-insight
  services.
- AI gateway payloads. These keep the camelCase keys the dashboard already
  sends (`topDeals`, `fallbackText`, `usedFallback`, ...).

Datetimes without tzinfo are read as UTC by every service; the models do not
rewrite them so that what was stored is what is returned.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pulse_backend.models.enums import (
    AlertSeverity,
    DealAlertType,
    DealStage,
    DealStatus,
    DigestTimeframe,
    Priority,
    RiskLevel,
    TaskPriority,
    TaskState,
)


# =============================================================================
# Entities
# =============================================================================

class Deal(BaseModel):
    """
    A sales opportunity moving through the pipeline toward Won/Lost.

    `score`, `priority` and `risk_level` are cached values written by the
    recalculation job; the engine always recomputes them from the raw fields.
    `stage` is kept as free text so rows with unknown stage labels still load
    (they rank as the first stage).
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "7c1e5a52-2b0e-4a53-9d0b-6b7a2b5f6d11",
                "title": "Software CRM Enterprise",
                "company": "DataFlow Systems",
                "amount": 85000,
                "stage": "Cierre",
                "probability": 90,
                "next_step": "Firmar contrato",
                "status": "Open",
                "score": 91,
                "priority": "Hot",
                "risk_level": "Bajo",
            }
        }
    )

    id: str = Field(..., description="Deal identifier")
    title: str = Field(..., description="Deal title")
    company: Optional[str] = Field(None, description="Company name")
    amount: Optional[float] = Field(None, description="Monetary value (EUR)")
    stage: str = Field(DealStage.PROSPECCION.value, description="Pipeline stage label")
    probability: float = Field(0, description="Declared close probability (0-100)")
    target_close_date: Optional[datetime] = Field(None, description="Target close date")
    next_step: Optional[str] = Field(None, description="Next concrete action")
    status: DealStatus = Field(DealStatus.OPEN, description="Lifecycle status")
    score: int = Field(0, ge=0, le=100, description="Cached score (0-100)")
    priority: Priority = Field(Priority.COLD, description="Cached priority")
    risk_level: RiskLevel = Field(RiskLevel.BAJO, description="Cached risk level")
    last_activity: Optional[datetime] = Field(None, description="Last recorded activity")
    inactivity_days: Optional[int] = Field(
        None,
        ge=0,
        description="Explicit inactivity in days; derived from last_activity when absent"
    )
    contact_id: Optional[str] = Field(None, description="Primary contact")
    owner_id: Optional[str] = Field(None, description="Owning sales rep")
    close_reason: Optional[str] = Field(None, description="Reason recorded when Won/Lost")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Contact(BaseModel):
    """A person the sales team works with."""
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Contact identifier")
    name: str = Field(..., description="Full name")
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    source: Optional[str] = Field(None, description="Acquisition channel")
    score: int = Field(0, ge=0, le=100, description="Cached score (0-100)")
    priority: Priority = Field(Priority.COLD, description="Cached priority")
    last_activity: Optional[datetime] = None
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _reject_null(value):
    if value is None:
        raise ValueError("field cannot be null")
    return value


def _coerce_task_state(value):
    if value is None or isinstance(value, TaskState):
        return value
    return TaskState.from_value(value)


class Task(BaseModel):
    """
    A to-do item, optionally linked to a deal or contact.

    Legacy state labels (Pending, InProgress, Overdue, Completed) are accepted
    and normalized to the current vocabulary.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Task identifier")
    title: str = Field(..., description="Task title")
    description: Optional[str] = None
    state: TaskState = Field(TaskState.TO_DO, description="Workflow state")
    priority: TaskPriority = Field(TaskPriority.MEDIA, description="Task priority")
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    deal_id: Optional[str] = None
    contact_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('state', mode='before')
    @classmethod
    def normalize_state(cls, value):
        return _coerce_task_state(value)


# =============================================================================
# Create / Update Payloads
# =============================================================================

class DealCreate(BaseModel):
    """Request body for POST /deals."""
    title: str = Field(..., min_length=1)
    company: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    stage: str = DealStage.PROSPECCION.value
    probability: float = Field(0, ge=0, le=100)
    target_close_date: Optional[datetime] = None
    next_step: Optional[str] = None
    status: DealStatus = DealStatus.OPEN
    last_activity: Optional[datetime] = None
    inactivity_days: Optional[int] = Field(None, ge=0)
    contact_id: Optional[str] = None
    owner_id: Optional[str] = None
    close_reason: Optional[str] = None


class DealUpdate(BaseModel):
    """
    Request body for PATCH /deals/{id}.

    Only fields present in the request are applied (`exclude_unset`).
    """
    title: Optional[str] = Field(None, min_length=1)
    company: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    stage: Optional[str] = None
    probability: Optional[float] = Field(None, ge=0, le=100)
    target_close_date: Optional[datetime] = None
    next_step: Optional[str] = None
    status: Optional[DealStatus] = None
    last_activity: Optional[datetime] = None
    inactivity_days: Optional[int] = Field(None, ge=0)
    contact_id: Optional[str] = None
    owner_id: Optional[str] = None
    close_reason: Optional[str] = None

    @field_validator('title', 'stage', 'probability', 'status', mode='before')
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class ContactCreate(BaseModel):
    """Request body for POST /contacts."""
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    source: Optional[str] = None
    last_activity: Optional[datetime] = None
    owner_id: Optional[str] = None


class ContactUpdate(BaseModel):
    """Request body for PATCH /contacts/{id}."""
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    company_id: Optional[str] = None
    position: Optional[str] = None
    source: Optional[str] = None
    last_activity: Optional[datetime] = None
    owner_id: Optional[str] = None

    @field_validator('name', mode='before')
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)


class TaskCreate(BaseModel):
    """Request body for POST /tasks."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    state: TaskState = TaskState.TO_DO
    priority: TaskPriority = TaskPriority.MEDIA
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    deal_id: Optional[str] = None
    contact_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('state', mode='before')
    @classmethod
    def normalize_state(cls, value):
        return _coerce_task_state(value)


class TaskUpdate(BaseModel):
    """Request body for PATCH /tasks/{id}."""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    state: Optional[TaskState] = None
    priority: Optional[TaskPriority] = None
    due_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    deal_id: Optional[str] = None
    contact_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('title', 'priority', mode='before')
    @classmethod
    def reject_null(cls, value):
        return _reject_null(value)

    @field_validator('state', mode='before')
    @classmethod
    def normalize_state(cls, value):
        return _coerce_task_state(_reject_null(value))


# =============================================================================
# Scoring Engine Results
# =============================================================================

class ScoringFactors(BaseModel):
    """
    Sub-factors (each 0-100) behind a score.

    `last_activity` is reported for tooltips but does not enter the weighted sum.
    """
    probability: float
    amount: float
    activity: float
    stage: float
    time_in_stage: float
    last_activity: float


class ScoringResult(BaseModel):
    """Score, derived priority and the human-readable reasons behind them."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "score": 91,
                "priority": "Hot",
                "factors": {
                    "probability": 90,
                    "amount": 78.33,
                    "activity": 100,
                    "stage": 100,
                    "time_in_stage": 100,
                    "last_activity": 100,
                },
                "reasoning": [
                    "Alta probabilidad de cierre (90%)",
                    "Deal de alto valor",
                    "Actividad reciente",
                    "Etapa avanzada del pipeline",
                    "Deal prioritario - alta probabilidad de éxito",
                ],
            }
        }
    )

    score: int = Field(..., ge=0, le=100)
    priority: Priority
    factors: ScoringFactors
    reasoning: List[str] = Field(default_factory=list)


class RiskResult(BaseModel):
    """Risk level of a deal together with the accumulated points."""
    deal_id: str
    risk_level: RiskLevel
    points: int


class DealAttention(BaseModel):
    """An open deal that needs attention, with every reason that flagged it."""
    deal: Deal
    priority: Priority
    risk: RiskLevel
    score: int
    inactivity: int = Field(..., ge=0, description="Days without activity")
    reasons: List[str]
    missing_next_step: bool = False
    overdue_days: Optional[int] = Field(
        None,
        description="Whole days past the target close date (None when not overdue)"
    )


class DealAlert(BaseModel):
    """Alert raised for a missing next step or an overdue target close date."""
    deal: Deal
    type: DealAlertType
    severity: AlertSeverity
    reasons: List[str]
    message: str
    recommended_action: str
    priority: Priority
    risk: RiskLevel
    score: int


class AlertAttachment(BaseModel):
    title: str
    body: str
    severity: AlertSeverity


class AlertsChannelPayload(BaseModel):
    """Message posted to the team alerts channel."""
    text: str
    attachments: List[AlertAttachment] = Field(default_factory=list)


class QuickMetrics(BaseModel):
    """Deal counts by status and the open pipeline value."""
    open: int
    won: int
    lost: int
    sum_open: float


class DailyDigest(BaseModel):
    """Plain-text daily digest plus the counters it was built from."""
    text: str
    hot_deals: int
    risk_deals: int
    overdue_tasks: int
    alerts: int


class RecalculateResponse(BaseModel):
    deals_updated: int
    contacts_updated: int


# =============================================================================
# AI Gateway Payloads
# =============================================================================

class DigestStats(BaseModel):
    hotDeals: int
    riskDeals: int
    overdueTasks: int


class DigestDealSnapshot(BaseModel):
    id: str
    title: str
    company: Optional[str] = None
    amount: Optional[float] = None
    stage: str
    priority: str
    risk: str
    nextStep: Optional[str] = None
    targetCloseDate: Optional[str] = None


class DigestAlertSnapshot(BaseModel):
    id: str
    message: str
    recommendedAction: str
    severity: str
    priority: str


class DigestRequest(BaseModel):
    """
    Request body for POST /ai/digest.

    `fallbackText` is returned verbatim whenever the provider is unavailable.
    """
    timeframe: DigestTimeframe
    stats: DigestStats
    topDeals: List[DigestDealSnapshot] = Field(default_factory=list)
    alerts: List[DigestAlertSnapshot] = Field(default_factory=list)
    fallbackText: str


class DigestResponse(BaseModel):
    headline: Optional[str] = None
    summary: Optional[List[str]] = None
    actions: Optional[List[str]] = None
    content: Optional[str] = None
    provider: str
    usedFallback: bool
    error: Optional[str] = None


class NextStepDealSnapshot(BaseModel):
    id: str
    title: str
    company: Optional[str] = None
    stage: str
    probability: Optional[float] = None
    priority: Optional[str] = None
    risk: Optional[str] = None
    amount: Optional[float] = None
    nextStep: Optional[str] = None
    lastActivity: Optional[str] = None
    targetCloseDate: Optional[str] = None


class NextStepContext(BaseModel):
    reasons: List[str] = Field(default_factory=list)
    inactivityDays: Optional[int] = None
    owner: Optional[str] = None


class NextStepRequest(BaseModel):
    """Request body for POST /ai/next-step."""
    deal: NextStepDealSnapshot
    context: Optional[NextStepContext] = None
    fallbackText: str = Field(..., min_length=1)


class NextStepResponse(BaseModel):
    nextStep: Optional[str] = None
    rationale: Optional[List[str]] = None
    provider: str
    usedFallback: bool
    error: Optional[str] = None


class ContactSummaryDealSnapshot(BaseModel):
    id: str
    title: str
    stage: str
    status: str
    amount: Optional[float] = None
    priority: Optional[str] = None
    lastActivity: Optional[str] = None


class ContactSummarySnapshot(BaseModel):
    id: str
    name: str
    company: Optional[str] = None
    role: Optional[str] = None
    lastActivity: Optional[str] = None
    owner: Optional[str] = None
    deals: List[ContactSummaryDealSnapshot] = Field(default_factory=list)


class ContactSummaryRequest(BaseModel):
    """Request body for POST /ai/contact-summary."""
    contact: ContactSummarySnapshot
    fallbackText: str = Field(..., min_length=1)


class ContactSummaryResponse(BaseModel):
    headline: Optional[str] = None
    highlights: Optional[List[str]] = None
    provider: str
    usedFallback: bool
    error: Optional[str] = None
