"""
FastAPI router module for AI-assisted texts.

Key Endpoints:
- POST /ai/digest           - {success, digest}      pipeline digest for a timeframe
- POST /ai/next-step        - {success, suggestion}  next step for one deal
- POST /ai/contact-summary  - {success, summary}     headline + highlights for a contact

The caller sends the snapshot to summarize and a fallbackText. The gateway
never fails a request because of the provider: without OPENAI_API_KEY, or
when the provider errors, the response carries the fallback text with
usedFallback=true. Malformed request bodies are rejected with 422.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from pulse_backend.core.dependencies import AIGatewayDep
from pulse_backend.models.schemas import (
    ContactSummaryRequest,
    DigestRequest,
    NextStepRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/digest")
async def create_ai_digest(payload: DigestRequest, gateway: AIGatewayDep) -> Dict[str, Any]:
    try:
        digest = await gateway.generate_digest(payload)
        return {'success': True, 'digest': digest.model_dump()}
    except Exception as e:
        logger.error(f"Error generating AI digest: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate digest: {str(e)}")


@router.post("/next-step")
async def create_next_step(payload: NextStepRequest, gateway: AIGatewayDep) -> Dict[str, Any]:
    try:
        suggestion = await gateway.generate_next_step(payload)
        return {'success': True, 'suggestion': suggestion.model_dump()}
    except Exception as e:
        logger.error(f"Error generating next step for deal {payload.deal.id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to generate next step: {str(e)}")


@router.post("/contact-summary")
async def create_contact_summary(payload: ContactSummaryRequest, gateway: AIGatewayDep) -> Dict[str, Any]:
    try:
        summary = await gateway.generate_contact_summary(payload)
        return {'success': True, 'summary': summary.model_dump()}
    except Exception as e:
        logger.error(
            f"Error generating summary for contact {payload.contact.id}: {str(e)}", exc_info=True
        )
        raise HTTPException(status_code=500, detail=f"Failed to generate contact summary: {str(e)}")
