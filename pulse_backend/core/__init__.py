"""
Core infrastructure package for the Pulse CRM backend.

Provides:
- Configuration management via pydantic-settings (config)
- Async PostgreSQL connectivity via asyncpg (database)
- FastAPI dependency injection for settings, CRM store and AI gateway
  (dependencies)

config and database are re-exported here:

    from pulse_backend.core import get_settings, get_db_pool

dependencies builds on the services package, which itself imports
core.database, so it is imported from its own module:

    from pulse_backend.core.dependencies import StoreDep
"""

# =============================================================================
# Re-exports from pulse_backend.core.config
# =============================================================================
from pulse_backend.core.config import Settings, get_settings

# =============================================================================
# Re-exports from pulse_backend.core.database
# =============================================================================
from pulse_backend.core.database import (
    DatabaseNotConfiguredError,
    init_db,
    close_db,
    get_db_pool,
)


__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'DatabaseNotConfiguredError',
    'init_db',
    'close_db',
    'get_db_pool',
]
