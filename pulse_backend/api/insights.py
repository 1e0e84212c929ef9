"""
FastAPI router module for pipeline insights.

Read-only views computed from the current store snapshot, plus the bulk score
refresh and the Slack job triggers:

- GET  /insights/attention        - Open deals needing attention, by score
- GET  /insights/alerts           - Overdue / missing-next-step alerts
- GET  /insights/alerts/payload   - Alerts formatted for the team channel
- GET  /insights/digest           - Plain-text daily digest with counters
- POST /insights/recalculate      - Recompute and persist score/priority/risk
- POST /insights/alerts/send      - Post alerts to Slack now
- POST /insights/digest/send      - Post the daily digest to Slack (idempotent)
- GET  /insights/digest/status    - Slack digest send history

Attention and alert views use a single reference time per request so every
deal in a response is measured against the same "now".
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query

from pulse_backend.core.dependencies import StoreDep
from pulse_backend.jobs.slack_digest import (
    get_digest_status,
    send_daily_digest,
    send_pipeline_alerts,
)
from pulse_backend.models.schemas import (
    AlertsChannelPayload,
    DailyDigest,
    DealAlert,
    DealAttention,
    RecalculateResponse,
)
from pulse_backend.services.normalizers import utc_now
from pulse_backend.services.pipeline_insights import (
    build_alerts_channel_payload,
    build_digest_stats,
    compute_deal_attention,
    detect_deal_alerts,
    generate_daily_digest,
)
from pulse_backend.services.scoring import recalculate_all_scores


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insights")


# =============================================================================
# Attention & Alerts
# =============================================================================

@router.get("/attention", response_model=List[DealAttention])
async def get_deal_attention(store: StoreDep) -> List[DealAttention]:
    """Open deals flagged by missing next step, target date or high risk."""
    try:
        return compute_deal_attention(await store.get_deals(), utc_now())
    except Exception as e:
        logger.error(f"Error computing deal attention: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to compute attention list: {str(e)}")


@router.get("/alerts", response_model=List[DealAlert])
async def get_deal_alerts(store: StoreDep) -> List[DealAlert]:
    """Critical (overdue) alerts first, then warnings, each group by score."""
    try:
        return detect_deal_alerts(await store.get_deals(), utc_now())
    except Exception as e:
        logger.error(f"Error detecting deal alerts: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to detect alerts: {str(e)}")


@router.get("/alerts/payload", response_model=AlertsChannelPayload)
async def get_alerts_payload(store: StoreDep) -> AlertsChannelPayload:
    try:
        alerts = detect_deal_alerts(await store.get_deals(), utc_now())
        return build_alerts_channel_payload(alerts)
    except Exception as e:
        logger.error(f"Error building alerts payload: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to build alerts payload: {str(e)}")


# =============================================================================
# Digest
# =============================================================================

@router.get("/digest", response_model=DailyDigest)
async def get_daily_digest(store: StoreDep) -> DailyDigest:
    try:
        now = utc_now()
        deals = await store.get_deals()
        tasks = await store.get_tasks()
        alerts = detect_deal_alerts(deals, now)
        stats = build_digest_stats(deals, tasks, now)

        return DailyDigest(
            text=generate_daily_digest(deals, tasks, alerts, now),
            hot_deals=stats.hotDeals,
            risk_deals=stats.riskDeals,
            overdue_tasks=stats.overdueTasks,
            alerts=len(alerts),
        )
    except Exception as e:
        logger.error(f"Error generating daily digest: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate digest: {str(e)}")


# =============================================================================
# Score Refresh
# =============================================================================

@router.post("/recalculate", response_model=RecalculateResponse)
async def recalculate_scores(store: StoreDep) -> RecalculateResponse:
    """
    Recompute score, priority and risk level for every deal and contact and
    persist the cached columns.
    """
    try:
        deals, contacts = recalculate_all_scores(
            await store.get_deals(), await store.get_contacts(), utc_now()
        )
        await store.save_scores(deals, contacts)
        logger.info(f"Recalculated scores for {len(deals)} deals and {len(contacts)} contacts")
        return RecalculateResponse(deals_updated=len(deals), contacts_updated=len(contacts))
    except Exception as e:
        logger.error(f"Error recalculating scores: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to recalculate scores: {str(e)}")


# =============================================================================
# Slack Jobs
# =============================================================================

@router.post("/alerts/send")
async def trigger_alerts(store: StoreDep) -> Dict[str, Any]:
    """Post the current alerts to Slack. Job errors are returned, not raised."""
    return await send_pipeline_alerts(store=store)


@router.post("/digest/send")
async def trigger_digest(
    store: StoreDep,
    digest_date: Optional[date] = Query(None, description="Defaults to today (UTC)"),
    force: bool = Query(False, description="Send even if already sent for the date"),
) -> Dict[str, Any]:
    return await send_daily_digest(digest_date=digest_date, force=force, store=store)


@router.get("/digest/status")
async def digest_status(store: StoreDep) -> Dict[str, Any]:
    return await get_digest_status(store=store)
