"""
Pulse CRM Backend Package.

FastAPI service layer for Pulse CRM: deal and contact scoring, risk
classification, pipeline attention and alerts, daily digests, Slack
notifications and AI-assisted suggestions.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, and dependencies
    - models: Pydantic schemas and enums
    - services: Scoring engine, insights, CRM store and AI gateway
    - jobs: Slack notification jobs
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
