"""
Enumeration definitions for the Pulse CRM backend.

All enums inherit from both `str` and `Enum` so Pydantic models serialize them
as their plain values in API responses and the values match the labels stored
in the `deals`, `contacts` and `tasks` tables.

Pipeline stages, priorities and risk levels keep their Spanish labels because
those are the values the sales team sees and the database stores.
"""

from enum import Enum
from typing import Dict, Optional


class DealStage(str, Enum):
    """
    Ordered pipeline phases a deal moves through.

    Prospección < Calificación < Propuesta < Negociación < Cierre.
    Use `stage_ordinal()` in services.normalizers for the numeric rank; it also
    accepts the accent-less spellings that older imports produced.
    """
    PROSPECCION = "Prospección"
    CALIFICACION = "Calificación"
    PROPUESTA = "Propuesta"
    NEGOCIACION = "Negociación"
    CIERRE = "Cierre"


class DealStatus(str, Enum):
    """Lifecycle status of a deal. Won and Lost deals require a close reason."""
    OPEN = "Open"
    WON = "Won"
    LOST = "Lost"


class Priority(str, Enum):
    """
    Coarse bucket derived from a 0-100 score.

    - Hot: score >= 75
    - Warm: 45 <= score < 75
    - Cold: score < 45
    """
    COLD = "Cold"
    WARM = "Warm"
    HOT = "Hot"


class RiskLevel(str, Enum):
    """Deal-health classification from inactivity, overdue and next-step signals."""
    BAJO = "Bajo"
    MEDIO = "Medio"
    ALTO = "Alto"


class TaskState(str, Enum):
    """
    Workflow state of a task.

    This is the only stored vocabulary. Payloads written by older clients used
    Pending/InProgress/Overdue/Completed; `TaskState.from_value()` maps them.
    Overdue is never stored: it is derived from `due_at`.
    """
    TO_DO = "To Do"
    DOING = "Doing"
    WAITING = "Waiting"
    DONE = "Done"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "TaskState":
        """
        Resolve a current or legacy state label.

        Raises:
            ValueError: If the label belongs to neither vocabulary.
        """
        if value is None:
            return cls.TO_DO
        if isinstance(value, cls):
            return value
        legacy = LEGACY_TASK_STATES.get(value)
        if legacy is not None:
            return legacy
        return cls(value)


# Legacy task vocabulary -> TaskState
LEGACY_TASK_STATES: Dict[str, TaskState] = {
    "Pending": TaskState.TO_DO,
    "InProgress": TaskState.DOING,
    "Overdue": TaskState.TO_DO,
    "Completed": TaskState.DONE,
}


class TaskPriority(str, Enum):
    """Priority label attached to a task."""
    BAJA = "Baja"
    MEDIA = "Media"
    ALTA = "Alta"


class AlertSeverity(str, Enum):
    """
    Severity of a pipeline alert.

    - critical: the target close date is already in the past
    - warning: the deal has no next step defined
    """
    WARNING = "warning"
    CRITICAL = "critical"


class DealAlertType(str, Enum):
    """Signal that raised a pipeline alert."""
    MISSING_NEXT_STEP = "missing_next_step"
    TARGET_OVERDUE = "target_overdue"


class DigestTimeframe(str, Enum):
    """Period an AI digest summarizes."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


class AIInvocationStatus(str, Enum):
    """Outcome recorded for every AI gateway call."""
    SUCCESS = "success"
    FALLBACK = "fallback"
    ERROR = "error"
    CACHE_HIT = "cache-hit"
