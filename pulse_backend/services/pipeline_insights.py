"""
Pipeline Insights Service

Turns the current deal and task snapshot into the three things the sales team
looks at every morning:

1. Attention list (compute_deal_attention): every open deal with at least one
   problem, scored fresh and sorted by score so the most valuable deals come
   first. Problems are a missing next step, a missing or overdue target close
   date, inactivity beyond the priority SLA, and a high risk level.
2. Alerts (detect_deal_alerts): the subset of the attention list with a
   missing next step or an overdue target date, each with a severity and one
   recommended action. build_alerts_channel_payload() formats them for Slack.
3. Daily digest (generate_daily_digest): a short plain-text summary with the
   Hot and high-risk counts, overdue tasks, the top alerts and the largest
   open opportunity.

Inactivity SLA by priority (days without activity before a deal is flagged):
- Hot: 3
- Warm: 7
- Cold: 14

All functions are pure. They take an optional `now` and default to the
current UTC time; the same inputs and `now` always give the same output.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from pulse_backend.models.enums import (
    AlertSeverity,
    DealAlertType,
    DealStatus,
    Priority,
    RiskLevel,
    TaskState,
)
from pulse_backend.models.schemas import (
    AlertAttachment,
    AlertsChannelPayload,
    Deal,
    DealAlert,
    DealAttention,
    DigestStats,
    Task,
)
from pulse_backend.services.normalizers import as_utc, days_between, utc_now
from pulse_backend.services.risk import calculate_risk_level, has_next_step, is_target_overdue
from pulse_backend.services.scoring import calculate_deal_score


# =============================================================================
# Configuration
# =============================================================================

SLA_THRESHOLDS: Dict[Priority, int] = {
    Priority.HOT: 3,
    Priority.WARM: 7,
    Priority.COLD: 14,
}

REASON_MISSING_NEXT_STEP = "Sin próximo paso definido"
REASON_MISSING_TARGET_DATE = "Sin fecha objetivo"
REASON_HIGH_RISK = "Marcado como riesgo alto"
OVERDUE_REASON_PREFIX = "Fecha objetivo vencida"

ACTION_OVERDUE = "Contacta hoy, renegocia la fecha objetivo y deja registro del próximo paso."
ACTION_INACTIVE = "Agenda un follow-up y documenta el próximo paso para reactivar la cuenta."
ACTION_MISSING_STEP = (
    "Define un próximo paso concreto (llamada, demo o propuesta) y compártelo con el equipo."
)
ACTION_GENERIC = "Actualiza el deal con la información más reciente."

# Inactivity (days) from which alerts recommend a follow-up
FOLLOW_UP_INACTIVITY_DAYS = 7

NO_ALERTS_TEXT = "✅ Sin alertas críticas en el pipeline. Buen trabajo equipo."
NO_COMPANY_LABEL = "Sin empresa"

# Alerts listed individually in the daily digest
DIGEST_ALERT_LIMIT = 3


def _days_label(days: int) -> str:
    return f"{days} día" if days == 1 else f"{days} días"


# =============================================================================
# Attention List
# =============================================================================

def compute_inactivity_days(deal: Deal, now: Optional[datetime] = None) -> int:
    """
    Days since the deal's last activity.

    An explicit `inactivity_days` value wins. A deal that never recorded any
    activity counts as 0 days inactive.
    """
    if deal.inactivity_days is not None:
        return max(0, deal.inactivity_days)
    if deal.last_activity is None:
        return 0
    return days_between(deal.last_activity, now or utc_now())


def compute_deal_attention(
    deals: Sequence[Deal],
    now: Optional[datetime] = None,
) -> List[DealAttention]:
    """
    Build the attention list for the open deals in `deals`.

    Priority and risk are recomputed from the raw fields rather than read from
    the cached columns. Deals with no reason are left out.

    Returns:
        Attention items sorted by score descending (ties keep input order).
    """
    now = now or utc_now()
    items: List[DealAttention] = []

    for deal in deals:
        if deal.status != DealStatus.OPEN:
            continue

        scoring = calculate_deal_score(deal, now)
        risk = calculate_risk_level(deal, now)
        inactivity = compute_inactivity_days(deal, now)
        threshold = SLA_THRESHOLDS.get(scoring.priority, SLA_THRESHOLDS[Priority.COLD])

        reasons: List[str] = []
        missing_next_step = not has_next_step(deal)
        overdue_days: Optional[int] = None

        if missing_next_step:
            reasons.append(REASON_MISSING_NEXT_STEP)

        if deal.target_close_date is None:
            reasons.append(REASON_MISSING_TARGET_DATE)
        elif is_target_overdue(deal, now):
            overdue_days = max(1, days_between(deal.target_close_date, now))
            reasons.append(f"{OVERDUE_REASON_PREFIX} hace {_days_label(overdue_days)}")

        if inactivity > threshold:
            reasons.append(f"Sin actividad {_days_label(inactivity)} (SLA {threshold})")

        if risk == RiskLevel.ALTO and REASON_HIGH_RISK not in reasons:
            reasons.append(REASON_HIGH_RISK)

        if not reasons:
            continue

        items.append(DealAttention(
            deal=deal,
            priority=scoring.priority,
            risk=risk,
            score=scoring.score,
            inactivity=inactivity,
            reasons=reasons,
            missing_next_step=missing_next_step,
            overdue_days=overdue_days,
        ))

    # sorted() is stable
    return sorted(items, key=lambda item: -item.score)


# =============================================================================
# Alerts
# =============================================================================

def build_alert_recommendation(
    has_missing_step: bool,
    has_overdue_date: bool,
    inactivity: int,
) -> str:
    """Pick one recommended action: overdue > inactive > missing step > generic."""
    if has_overdue_date:
        return ACTION_OVERDUE
    if inactivity >= FOLLOW_UP_INACTIVITY_DAYS:
        return ACTION_INACTIVE
    if has_missing_step:
        return ACTION_MISSING_STEP
    return ACTION_GENERIC


def _is_alert_reason(reason: str) -> bool:
    return reason == REASON_MISSING_NEXT_STEP or reason.startswith(OVERDUE_REASON_PREFIX)


def detect_deal_alerts(
    deals: Sequence[Deal],
    now: Optional[datetime] = None,
) -> List[DealAlert]:
    """
    Raise alerts for open deals missing a next step or past their target date.

    An overdue target date makes the alert critical; a missing next step alone
    is a warning. A deal with no target date at all is on the attention list
    but does not alert.

    Returns:
        Alerts with critical ones first, then by score descending.
    """
    alerts: List[DealAlert] = []

    for item in compute_deal_attention(deals, now):
        overdue = item.overdue_days is not None
        if not overdue and not item.missing_next_step:
            continue

        title = item.deal.title
        if overdue:
            alert_type = DealAlertType.TARGET_OVERDUE
            severity = AlertSeverity.CRITICAL
            message = f"{title} tiene la fecha objetivo vencida"
        else:
            alert_type = DealAlertType.MISSING_NEXT_STEP
            severity = AlertSeverity.WARNING
            message = f"{title} no tiene próximo paso definido"

        alerts.append(DealAlert(
            deal=item.deal,
            type=alert_type,
            severity=severity,
            reasons=[reason for reason in item.reasons if _is_alert_reason(reason)],
            message=message,
            recommended_action=build_alert_recommendation(
                has_missing_step=item.missing_next_step,
                has_overdue_date=overdue,
                inactivity=item.inactivity,
            ),
            priority=item.priority,
            risk=item.risk,
            score=item.score,
        ))

    return sorted(
        alerts,
        key=lambda alert: (alert.severity != AlertSeverity.CRITICAL, -alert.score),
    )


def build_alerts_channel_payload(alerts: Sequence[DealAlert]) -> AlertsChannelPayload:
    """
    Format alerts for the team channel.

    Example output text:
        ⚠️ 2 deals requieren atención inmediata.
        • ERP InnovaCorp tiene la fecha objetivo vencida
        • Consultoría RetailMax no tiene próximo paso definido
    """
    if not alerts:
        return AlertsChannelPayload(text=NO_ALERTS_TEXT, attachments=[])

    count = len(alerts)
    headline = f"⚠️ {count} deal{'' if count == 1 else 's'} requieren atención inmediata."

    attachments = [
        AlertAttachment(
            title=alert.message,
            body=(
                f"{alert.deal.company or NO_COMPANY_LABEL} · "
                f"Prioridad {alert.priority.value} · Riesgo {alert.risk.value}. "
                f"{alert.recommended_action}"
            ),
            severity=alert.severity,
        )
        for alert in alerts
    ]

    lines = [headline] + [f"• {attachment.title}" for attachment in attachments]
    return AlertsChannelPayload(text="\n".join(lines), attachments=attachments)


# =============================================================================
# Daily Digest
# =============================================================================

def format_eur(amount: Optional[float]) -> str:
    """
    Format an amount the way es-ES locales print numbers.

    Thousands use '.', decimals use ',' (up to 3 digits), and four-digit
    integers are not grouped.

    >>> format_eur(85000)
    '85.000'
    >>> format_eur(5000)
    '5000'
    """
    value = float(amount or 0)
    sign = '-' if value < 0 else ''
    integer_part, _, fraction = f"{abs(value):.3f}".partition('.')
    fraction = fraction.rstrip('0')

    if len(integer_part) > 4:
        integer_part = f"{int(integer_part):,}".replace(',', '.')

    return f"{sign}{integer_part},{fraction}" if fraction else f"{sign}{integer_part}"


def is_task_overdue(task: Task, now: datetime) -> bool:
    if task.due_at is None or task.state == TaskState.DONE:
        return False
    return as_utc(task.due_at) < as_utc(now)


def build_digest_stats(
    deals: Sequence[Deal],
    tasks: Sequence[Task],
    now: Optional[datetime] = None,
) -> DigestStats:
    """
    Headline counters for the digest.

    Hot and high-risk counts read the cached priority/risk columns of open
    deals, so they match what the dashboard badges show.
    """
    now = now or utc_now()
    open_deals = [deal for deal in deals if deal.status == DealStatus.OPEN]

    return DigestStats(
        hotDeals=sum(1 for deal in open_deals if deal.priority == Priority.HOT),
        riskDeals=sum(1 for deal in open_deals if deal.risk_level == RiskLevel.ALTO),
        overdueTasks=sum(1 for task in tasks if is_task_overdue(task, now)),
    )


def find_top_open_deal(deals: Sequence[Deal]) -> Optional[Deal]:
    """Largest open deal by amount; the first one wins on ties."""
    open_deals = [deal for deal in deals if deal.status == DealStatus.OPEN]
    if not open_deals:
        return None
    return sorted(open_deals, key=lambda deal: -float(deal.amount or 0))[0]


def generate_daily_digest(
    deals: Sequence[Deal],
    tasks: Sequence[Task],
    alerts: Sequence[DealAlert],
    now: Optional[datetime] = None,
) -> str:
    """
    Render the plain-text daily digest.

    Example:
        Resumen IA · 15/1/2024
        • Deals Hot abiertos: 1
        • Deals en riesgo alto: 1
        • Tareas vencidas: 1
        • Alertas prioritarias:
           → ERP tiene la fecha objetivo vencida (Contacta hoy, ...)
        • Mayor oportunidad abierta: CRM Enterprise (DataFlow Systems) por €85.000
    """
    now = as_utc(now or utc_now())
    stats = build_digest_stats(deals, tasks, now)

    lines = [
        f"Resumen IA · {now.day}/{now.month}/{now.year}",
        f"• Deals Hot abiertos: {stats.hotDeals}",
        f"• Deals en riesgo alto: {stats.riskDeals}",
        f"• Tareas vencidas: {stats.overdueTasks}",
    ]

    if alerts:
        lines.append("• Alertas prioritarias:")
        for alert in alerts[:DIGEST_ALERT_LIMIT]:
            lines.append(f"   → {alert.message} ({alert.recommended_action})")
        if len(alerts) > DIGEST_ALERT_LIMIT:
            lines.append(f"   … y {len(alerts) - DIGEST_ALERT_LIMIT} alertas adicionales.")
    else:
        lines.append("• No hay alertas críticas registradas.")

    top_deal = find_top_open_deal(deals)
    if top_deal is not None:
        lines.append(
            f"• Mayor oportunidad abierta: {top_deal.title} "
            f"({top_deal.company or NO_COMPANY_LABEL}) por €{format_eur(top_deal.amount)}"
        )

    return "\n".join(lines)


__all__ = [
    'SLA_THRESHOLDS',
    'REASON_MISSING_NEXT_STEP',
    'REASON_MISSING_TARGET_DATE',
    'REASON_HIGH_RISK',
    'NO_ALERTS_TEXT',
    'compute_inactivity_days',
    'compute_deal_attention',
    'build_alert_recommendation',
    'detect_deal_alerts',
    'build_alerts_channel_payload',
    'format_eur',
    'is_task_overdue',
    'build_digest_stats',
    'find_top_open_deal',
    'generate_daily_digest',
]
