"""
CRM Queries Module for Pulse CRM Backend.

Parameterized PostgreSQL statements used by PostgresCrmStore for the deals,
contacts and tasks tables, plus the job_digest_state table that keeps the
Slack jobs idempotent.

Static statements are module constants. Inserts and partial updates are
generated by get_insert_query()/get_update_query() from a whitelisted column
list; values are always passed as $n parameters, never interpolated.
"""

from typing import Dict, Sequence, Tuple


# =============================================================================
# SCHEMA
# =============================================================================

CRM_SCHEMA_DDL: str = """
CREATE TABLE IF NOT EXISTS contacts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    company TEXT,
    company_id UUID,
    position TEXT,
    source TEXT,
    score INTEGER DEFAULT 0,
    priority TEXT DEFAULT 'Cold',
    last_activity TIMESTAMPTZ,
    owner_id UUID,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS deals (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL,
    company TEXT,
    amount NUMERIC(15, 2),
    stage TEXT NOT NULL DEFAULT 'Prospección',
    probability NUMERIC(5, 2) DEFAULT 0,
    target_close_date TIMESTAMPTZ,
    next_step TEXT,
    status TEXT DEFAULT 'Open',
    score INTEGER DEFAULT 0,
    priority TEXT DEFAULT 'Cold',
    risk_level TEXT DEFAULT 'Bajo',
    last_activity TIMESTAMPTZ,
    inactivity_days INTEGER,
    contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
    owner_id UUID,
    close_reason TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS tasks (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL,
    description TEXT,
    state TEXT DEFAULT 'To Do',
    priority TEXT DEFAULT 'Media',
    due_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    assigned_to UUID,
    deal_id UUID REFERENCES deals(id) ON DELETE SET NULL,
    contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
    notes TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS job_digest_state (
    job_type TEXT NOT NULL,
    digest_date DATE NOT NULL,
    sent_at TIMESTAMPTZ DEFAULT NOW(),
    digest_count INTEGER DEFAULT 1,
    PRIMARY KEY (job_type, digest_date)
);
"""


# =============================================================================
# WRITABLE COLUMNS
# =============================================================================

# Columns a client may set. id/created_at are owned by the database.
WRITABLE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    'deals': (
        'title', 'company', 'amount', 'stage', 'probability', 'target_close_date',
        'next_step', 'status', 'score', 'priority', 'risk_level', 'last_activity',
        'inactivity_days', 'contact_id', 'owner_id', 'close_reason', 'updated_at',
    ),
    'contacts': (
        'name', 'email', 'phone', 'company', 'company_id', 'position', 'source',
        'score', 'priority', 'last_activity', 'owner_id', 'updated_at',
    ),
    'tasks': (
        'title', 'description', 'state', 'priority', 'due_at', 'completed_at',
        'assigned_to', 'deal_id', 'contact_id', 'notes', 'updated_at',
    ),
}

# Columns cast from text in generated statements
UUID_COLUMNS = frozenset({
    'contact_id', 'owner_id', 'company_id', 'assigned_to', 'deal_id',
})


# =============================================================================
# SELECTS
# =============================================================================

SELECT_DEALS: str = "SELECT * FROM deals ORDER BY updated_at DESC NULLS LAST"
SELECT_CONTACTS: str = "SELECT * FROM contacts ORDER BY created_at DESC NULLS LAST"
SELECT_TASKS: str = "SELECT * FROM tasks ORDER BY created_at DESC NULLS LAST"

SELECT_BY_ID: Dict[str, str] = {
    table: f"SELECT * FROM {table} WHERE id = $1::uuid"
    for table in WRITABLE_COLUMNS
}

DELETE_BY_ID: Dict[str, str] = {
    table: f"DELETE FROM {table} WHERE id = $1::uuid"
    for table in WRITABLE_COLUMNS
}

# Open deals with no next step or a past target date, longest idle first.
# $1: reference timestamp, $2: limit
SELECT_STALLED_DEALS: str = """
SELECT *
FROM deals
WHERE status = 'Open'
  AND (
        next_step IS NULL
     OR btrim(next_step) = ''
     OR (target_close_date IS NOT NULL AND target_close_date < $1)
  )
ORDER BY COALESCE(
    inactivity_days,
    GREATEST(0, FLOOR(EXTRACT(EPOCH FROM ($1 - last_activity)) / 86400))::int,
    0
) DESC
LIMIT $2
"""

SELECT_QUICK_METRICS: str = """
SELECT
    COUNT(*) FILTER (WHERE status = 'Open') AS open,
    COUNT(*) FILTER (WHERE status = 'Won') AS won,
    COUNT(*) FILTER (WHERE status = 'Lost') AS lost,
    COALESCE(SUM(amount) FILTER (WHERE status = 'Open'), 0) AS sum_open
FROM deals
"""

UPDATE_DEAL_SCORES: str = """
UPDATE deals
SET score = $2, priority = $3, risk_level = $4
WHERE id = $1::uuid
"""

UPDATE_CONTACT_SCORES: str = """
UPDATE contacts
SET score = $2, priority = $3
WHERE id = $1::uuid
"""


# =============================================================================
# DIGEST STATE (Slack job idempotency)
# =============================================================================

SELECT_DIGEST_SENT: str = """
SELECT digest_date, sent_at
FROM job_digest_state
WHERE job_type = $1
  AND digest_date = $2
"""

UPSERT_DIGEST_SENT: str = """
INSERT INTO job_digest_state (job_type, digest_date, sent_at, digest_count)
VALUES ($1, $2, NOW(), 1)
ON CONFLICT (job_type, digest_date)
DO UPDATE SET sent_at = NOW(), digest_count = job_digest_state.digest_count + 1
"""

SELECT_DIGEST_HISTORY: str = """
SELECT digest_date, sent_at, digest_count
FROM job_digest_state
WHERE job_type = $1
ORDER BY digest_date DESC
LIMIT $2
"""


# =============================================================================
# GENERATED STATEMENTS
# =============================================================================

def _placeholder(column: str, index: int) -> str:
    return f"${index}::uuid" if column in UUID_COLUMNS else f"${index}"


def _check_columns(table: str, columns: Sequence[str]) -> None:
    allowed = WRITABLE_COLUMNS[table]
    unknown = [column for column in columns if column not in allowed]
    if unknown:
        raise ValueError(f"Columns not writable on {table}: {', '.join(unknown)}")


def get_insert_query(table: str, columns: Sequence[str]) -> str:
    """
    Generate an INSERT ... RETURNING * statement.

    Example:
        >>> get_insert_query('tasks', ['title', 'deal_id'])
        'INSERT INTO tasks (title, deal_id) VALUES ($1, $2::uuid) RETURNING *'
    """
    _check_columns(table, columns)
    placeholders = ", ".join(_placeholder(column, i) for i, column in enumerate(columns, 1))
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"


def get_update_query(table: str, columns: Sequence[str]) -> str:
    """
    Generate a partial UPDATE ... RETURNING * statement keyed by $1 (id).

    Example:
        >>> get_update_query('deals', ['stage', 'updated_at'])
        'UPDATE deals SET stage = $2, updated_at = $3 WHERE id = $1::uuid RETURNING *'
    """
    _check_columns(table, columns)
    assignments = ", ".join(
        f"{column} = {_placeholder(column, i)}" for i, column in enumerate(columns, 2)
    )
    return f"UPDATE {table} SET {assignments} WHERE id = $1::uuid RETURNING *"


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
