'''
Pulse CRM Backend Test Suite

Test Modules:
-------------
- test_normalizers.py: factor normalizers and day counting
- test_scoring.py: deal/contact scores, priority bands, reasoning, bulk refresh
- test_risk.py: risk points and level thresholds
- test_pipeline_insights.py: attention list, alerts, channel payload, digest
- test_store.py: in-memory and PostgreSQL stores, deal update rules, demo data
- test_ai_gateway.py: prompts, tolerant parsing, cache and fallbacks
- test_jobs.py: Slack alerts and digest idempotency
- test_api.py: HTTP contract of the FastAPI routers

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

Configuration:
--------------
See conftest.py for shared fixtures, FIXED_NOW and the entity factories.
'''

__all__ = []
