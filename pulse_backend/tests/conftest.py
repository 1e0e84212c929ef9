"""
Pytest Configuration and Shared Fixtures for Pulse CRM Backend Tests.

Provides:
- A fixed reference time (FIXED_NOW = 2024-01-15T10:00Z) so day counts are
  deterministic
- make_deal / make_contact / make_task factories with realistic defaults
- Mock asyncpg pool for PostgresCrmStore tests
- Mock settings and mock Slack WebhookClient for the notification jobs
- A fresh InMemoryCrmStore per test

Dependencies:
- pytest
- pytest-asyncio (async tests declare pytestmark = pytest.mark.asyncio)
- unittest.mock (Mock, AsyncMock, patch)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Generator
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import pytest

from pulse_backend.models.schemas import Contact, Deal, Task
from pulse_backend.services.store import InMemoryCrmStore


FIXED_NOW = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - integration: tests that need a real PostgreSQL or Slack endpoint
    """
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring external service connectivity'
    )


# ============================================================
# ENTITY FACTORIES
# ============================================================

def make_deal(**overrides: Any) -> Deal:
    """
    Build an open, healthy deal: Propuesta stage, 65% probability, next step
    set, target date 3 days after FIXED_NOW, active today.
    """
    values = {
        'id': str(uuid4()),
        'title': 'Demo Deal',
        'company': 'Acme Inc',
        'amount': 50000,
        'stage': 'Propuesta',
        'probability': 65,
        'target_close_date': FIXED_NOW + timedelta(days=3),
        'next_step': 'Enviar propuesta final',
        'status': 'Open',
        'score': 70,
        'priority': 'Warm',
        'risk_level': 'Medio',
        'last_activity': FIXED_NOW,
        'inactivity_days': 2,
        'owner_id': 'owner-1',
        'created_at': FIXED_NOW,
        'updated_at': FIXED_NOW,
    }
    values.update(overrides)
    return Deal(**values)


def make_contact(**overrides: Any) -> Contact:
    values = {
        'id': str(uuid4()),
        'name': 'Laura Gómez',
        'email': 'laura@acme.test',
        'company': 'Acme Inc',
        'last_activity': FIXED_NOW,
        'created_at': FIXED_NOW,
        'updated_at': FIXED_NOW,
    }
    values.update(overrides)
    return Contact(**values)


def make_task(**overrides: Any) -> Task:
    values = {
        'id': str(uuid4()),
        'title': 'Follow up call',
        'state': 'To Do',
        'priority': 'Media',
        'due_at': FIXED_NOW,
        'created_at': FIXED_NOW,
        'updated_at': FIXED_NOW,
    }
    values.update(overrides)
    return Task(**values)


# ============================================================
# STORE FIXTURES
# ============================================================

@pytest.fixture
def memory_store() -> InMemoryCrmStore:
    """Empty in-memory CRM store."""
    return InMemoryCrmStore()


@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool.

    pool.acquire() returns an async context manager yielding a connection whose
    execute/executemany/fetch/fetchrow/fetchval are AsyncMocks. conn.transaction()
    is a context manager that does nothing.

    Usage:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetch.return_value = [{'id': ..., 'title': ...}]
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value='DELETE 1')
    conn.executemany = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)

    transaction_context = AsyncMock()
    transaction_context.__aenter__ = AsyncMock(return_value=None)
    transaction_context.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = Mock(return_value=transaction_context)

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)

    pool.close = AsyncMock(return_value=None)

    return pool


@pytest.fixture
def mock_connection(mock_db_pool: AsyncMock) -> AsyncMock:
    """The connection handed out by mock_db_pool."""
    return mock_db_pool.acquire.return_value.__aenter__.return_value


@pytest.fixture
def patched_pool(mock_db_pool: AsyncMock) -> Generator[AsyncMock, None, None]:
    """Route PostgresCrmStore's get_db_pool() to mock_db_pool."""
    with patch(
        'pulse_backend.services.store.get_db_pool',
        new=AsyncMock(return_value=mock_db_pool),
    ):
        yield mock_db_pool


# ============================================================
# SETTINGS & EXTERNAL SERVICE MOCKS
# ============================================================

@pytest.fixture
def mock_settings() -> Generator[Mock, None, None]:
    """
    Mock application settings patched into the Slack job module.

    Usage:
        def test_without_webhook(mock_settings):
            mock_settings.slack_webhook_url = None
    """
    settings = Mock()
    settings.database_url = None
    settings.fastapi_url = 'http://localhost:8000'
    settings.slack_webhook_url = 'https://hooks.slack.com/services/TEST/WEBHOOK/URL'
    settings.openai_api_key = 'test-openai-key'
    settings.openai_api_model = 'gpt-4o-mini'
    settings.openai_api_base = 'https://api.openai.test/v1'
    settings.openai_max_tokens = 700
    settings.openai_timeout_seconds = 5.0
    settings.ai_digest_cache_ttl_seconds = 300

    with patch('pulse_backend.jobs.slack_digest.get_settings', return_value=settings):
        yield settings


@pytest.fixture
def mock_slack_client() -> Generator[Mock, None, None]:
    """
    Mock Slack WebhookClient.

    client.send(...) returns a response with status_code=200 and body='ok'.
    Patched at 'pulse_backend.jobs.slack_digest.WebhookClient' so every
    instantiation inside the jobs gets this client.
    """
    client = Mock()

    response = Mock()
    response.status_code = 200
    response.body = 'ok'

    client.send = Mock(return_value=response)

    with patch('pulse_backend.jobs.slack_digest.WebhookClient', return_value=client):
        yield client


__all__ = [
    'FIXED_NOW',
    'make_deal',
    'make_contact',
    'make_task',
]
