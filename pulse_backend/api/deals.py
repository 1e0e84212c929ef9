"""
FastAPI router module for deal management and per-deal scoring.

Key Endpoints:
- GET    /deals               - List deals (newest first)
- POST   /deals               - Create a deal
- GET    /deals/stalled       - Open deals without next step or past target date
- GET    /deals/metrics       - Open/won/lost counters and open pipeline value
- GET    /deals/{deal_id}     - Retrieve one deal
- PATCH  /deals/{deal_id}     - Partial update (pipeline rules enforced)
- DELETE /deals/{deal_id}     - Delete a deal
- GET    /deals/{deal_id}/score - Score, priority, factors and reasoning
- GET    /deals/{deal_id}/risk  - Risk level and raw risk points

Error Mapping:
- EntityNotFoundError  -> 404
- DealValidationError  -> 422 with {"code", "message"} (Spanish user message)
- anything else        -> 500, logged with traceback

Static paths (/stalled, /metrics) are declared before /{deal_id} so they are
not captured as ids.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query, status

from pulse_backend.core.dependencies import StoreDep
from pulse_backend.models.schemas import (
    Deal,
    DealCreate,
    DealUpdate,
    QuickMetrics,
    RiskResult,
    ScoringResult,
)
from pulse_backend.services.normalizers import utc_now
from pulse_backend.services.risk import calculate_risk_points, risk_level_from_points
from pulse_backend.services.scoring import calculate_deal_score
from pulse_backend.services.store import (
    STALLED_DEALS_LIMIT,
    DealValidationError,
    EntityNotFoundError,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def not_found(error: EntityNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))


# =============================================================================
# Collection Endpoints
# =============================================================================

@router.get("", response_model=List[Deal])
async def list_deals(store: StoreDep) -> List[Deal]:
    """List every deal, newest first."""
    try:
        return await store.get_deals()
    except Exception as e:
        logger.error(f"Error listing deals: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list deals: {str(e)}")


@router.post("", response_model=Deal, status_code=status.HTTP_201_CREATED)
async def create_deal(payload: DealCreate, store: StoreDep) -> Deal:
    try:
        deal = await store.add_deal(payload)
        logger.info(f"Created deal {deal.id}: {deal.title}")
        return deal
    except Exception as e:
        logger.error(f"Error creating deal: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create deal: {str(e)}")


@router.get("/stalled", response_model=List[Deal])
async def list_stalled_deals(
    store: StoreDep,
    limit: int = Query(STALLED_DEALS_LIMIT, ge=1, le=100),
) -> List[Deal]:
    """
    Open deals with no next step or a target date in the past.

    Sorted by days without activity, longest first.
    """
    try:
        return await store.get_stalled_deals(limit=limit)
    except Exception as e:
        logger.error(f"Error fetching stalled deals: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to fetch stalled deals: {str(e)}")


@router.get("/metrics", response_model=QuickMetrics)
async def get_quick_metrics(store: StoreDep) -> QuickMetrics:
    try:
        return await store.get_quick_metrics()
    except Exception as e:
        logger.error(f"Error computing quick metrics: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to compute metrics: {str(e)}")


# =============================================================================
# Item Endpoints
# =============================================================================

@router.get("/{deal_id}", response_model=Deal)
async def get_deal(deal_id: str, store: StoreDep) -> Deal:
    try:
        return await store.get_deal(deal_id)
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error fetching deal {deal_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to fetch deal: {str(e)}")


@router.patch("/{deal_id}", response_model=Deal)
async def update_deal(deal_id: str, patch: DealUpdate, store: StoreDep) -> Deal:
    """
    Partially update a deal.

    Closing (Won/Lost) needs a close_reason. Moving an open deal to another
    stage needs a non-blank next_step and a target_close_date.
    """
    try:
        return await store.update_deal(deal_id, patch)
    except EntityNotFoundError as e:
        raise not_found(e)
    except DealValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={'code': e.code, 'message': e.message},
        )
    except Exception as e:
        logger.error(f"Error updating deal {deal_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to update deal: {str(e)}")


@router.delete("/{deal_id}")
async def delete_deal(deal_id: str, store: StoreDep) -> Dict[str, Any]:
    try:
        await store.delete_deal(deal_id)
        logger.info(f"Deleted deal {deal_id}")
        return {'success': True, 'id': deal_id}
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error deleting deal {deal_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete deal: {str(e)}")


# =============================================================================
# Scoring Endpoints
# =============================================================================

@router.get("/{deal_id}/score", response_model=ScoringResult)
async def get_deal_score(deal_id: str, store: StoreDep) -> ScoringResult:
    """Live score for a deal (not the cached column)."""
    try:
        deal = await store.get_deal(deal_id)
        return calculate_deal_score(deal, utc_now())
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error scoring deal {deal_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to score deal: {str(e)}")


@router.get("/{deal_id}/risk", response_model=RiskResult)
async def get_deal_risk(deal_id: str, store: StoreDep) -> RiskResult:
    try:
        deal = await store.get_deal(deal_id)
        points = calculate_risk_points(deal, utc_now())
        return RiskResult(deal_id=deal.id, risk_level=risk_level_from_points(points), points=points)
    except EntityNotFoundError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error classifying risk for deal {deal_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to classify risk: {str(e)}")
