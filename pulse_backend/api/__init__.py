"""
Backend API package initialization.

FastAPI router modules for the Pulse CRM backend:
- deals: deal CRUD, stalled deals, quick metrics, per-deal score and risk
- contacts: contact CRUD and per-contact score
- tasks: task CRUD and completion toggle
- insights: attention list, alerts, digest, score refresh, Slack triggers
- ai: AI digest, next-step suggestion and contact summary
"""

from fastapi import APIRouter

# Import router modules
from pulse_backend.api.deals import router as deals_router
from pulse_backend.api.contacts import router as contacts_router
from pulse_backend.api.tasks import router as tasks_router
from pulse_backend.api.insights import router as insights_router
from pulse_backend.api.ai import router as ai_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(deals_router, prefix="/deals", tags=["deals"])
api_router.include_router(contacts_router, prefix="/contacts", tags=["contacts"])
api_router.include_router(tasks_router, prefix="/tasks", tags=["tasks"])
api_router.include_router(insights_router, tags=["insights"])  # insights router has its own prefix
api_router.include_router(ai_router, prefix="/ai", tags=["ai"])

# Export all routers for selective imports
__all__ = [
    "api_router",
    "deals_router",
    "contacts_router",
    "tasks_router",
    "insights_router",
    "ai_router",
]
