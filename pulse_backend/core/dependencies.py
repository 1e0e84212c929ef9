"""
FastAPI dependency injection module for the Pulse CRM backend.

Provides the reusable dependencies injected into endpoint handlers and jobs:

- get_settings_dependency / SettingsDep: the cached Settings singleton
- get_store / StoreDep: the CrmStore selected from settings
- get_ai_gateway / AIGatewayDep: the shared AIGateway (keeps the digest cache)

Store selection:
    DATABASE_URL set      -> PostgresCrmStore (asyncpg pool from core.database)
    DATABASE_URL missing  -> InMemoryCrmStore (demo mode)

The selected store is created once per process, mirroring the module-level
pool in core.database. Tests replace it through FastAPI's override mechanism:

    app.dependency_overrides[get_store] = lambda: InMemoryCrmStore()

Usage Examples:
    @router.get("/deals")
    async def list_deals(store: StoreDep) -> List[Deal]:
        return await store.get_deals()
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends

from pulse_backend.core.config import Settings, get_settings
from pulse_backend.services.ai_gateway import AIGateway
from pulse_backend.services.store import CrmStore, InMemoryCrmStore, PostgresCrmStore


logger = logging.getLogger(__name__)

_store: Optional[CrmStore] = None
_ai_gateway: Optional[AIGateway] = None


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can swap settings with
    app.dependency_overrides[get_settings_dependency].
    """
    return get_settings()


# =============================================================================
# Store Dependency
# =============================================================================

def get_store() -> CrmStore:
    """
    Return the process-wide CRM store, creating it on first use.

    Returns:
        PostgresCrmStore when DATABASE_URL is configured, otherwise an
        InMemoryCrmStore.
    """
    global _store

    if _store is None:
        settings = get_settings()
        if settings.database_url:
            _store = PostgresCrmStore()
            logger.info("Using PostgreSQL CRM store")
        else:
            _store = InMemoryCrmStore()
            logger.info("DATABASE_URL not set, using in-memory demo store")

    return _store


def reset_store() -> None:
    """Forget the cached store (next get_store() call re-reads settings)."""
    global _store
    _store = None


# =============================================================================
# AI Gateway Dependency
# =============================================================================

def get_ai_gateway() -> AIGateway:
    """Return the shared AIGateway so the digest cache survives across requests."""
    global _ai_gateway

    if _ai_gateway is None:
        _ai_gateway = AIGateway(get_settings())

    return _ai_gateway


def reset_ai_gateway() -> None:
    global _ai_gateway
    _ai_gateway = None


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

# Usage: async def endpoint(store: StoreDep)
StoreDep = Annotated[CrmStore, Depends(get_store)]

# Usage: async def endpoint(gateway: AIGatewayDep)
AIGatewayDep = Annotated[AIGateway, Depends(get_ai_gateway)]


__all__ = [
    'get_settings_dependency',
    'get_store',
    'reset_store',
    'get_ai_gateway',
    'reset_ai_gateway',
    'SettingsDep',
    'StoreDep',
    'AIGatewayDep',
]
