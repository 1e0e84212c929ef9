"""
SQL Query Module for Pulse CRM Backend.

Provides the parameterized PostgreSQL statements used by the PostgreSQL CRM
store (crm_queries). Keeping SQL here leaves services/store.py free of query
text.

Example usage:
    from pulse_backend.sql import SELECT_DEALS, get_update_query

    sql = get_update_query('deals', ['stage', 'next_step', 'updated_at'])
"""

from pulse_backend.sql.crm_queries import (
    CRM_SCHEMA_DDL,
    WRITABLE_COLUMNS,
    UUID_COLUMNS,
    SELECT_DEALS,
    SELECT_CONTACTS,
    SELECT_TASKS,
    SELECT_BY_ID,
    DELETE_BY_ID,
    SELECT_STALLED_DEALS,
    SELECT_QUICK_METRICS,
    UPDATE_DEAL_SCORES,
    UPDATE_CONTACT_SCORES,
    SELECT_DIGEST_SENT,
    UPSERT_DIGEST_SENT,
    SELECT_DIGEST_HISTORY,
    get_insert_query,
    get_update_query,
)


__all__ = [
    'CRM_SCHEMA_DDL',
    'WRITABLE_COLUMNS',
    'UUID_COLUMNS',
    'SELECT_DEALS',
    'SELECT_CONTACTS',
    'SELECT_TASKS',
    'SELECT_BY_ID',
    'DELETE_BY_ID',
    'SELECT_STALLED_DEALS',
    'SELECT_QUICK_METRICS',
    'UPDATE_DEAL_SCORES',
    'UPDATE_CONTACT_SCORES',
    'SELECT_DIGEST_SENT',
    'UPSERT_DIGEST_SENT',
    'SELECT_DIGEST_HISTORY',
    'get_insert_query',
    'get_update_query',
]
