"""
Notification Jobs for Pulse CRM.

Scheduled job functions that push pipeline information to Slack
(slack_digest.py):

- send_pipeline_alerts: deals with overdue target dates or no next step
- send_daily_digest: daily pipeline digest, never duplicated for a date
  unless force=True
- get_digest_status: send history for monitoring

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL in format
  https://hooks.slack.com/services/xxx/yyy/zzz

Usage Examples:
    from pulse_backend.jobs import send_daily_digest, get_digest_status

    result = await send_daily_digest()
    status = await get_digest_status()
"""

from pulse_backend.jobs.slack_digest import (
    send_pipeline_alerts,
    send_daily_digest,
    get_digest_status,
)


__all__ = [
    'send_pipeline_alerts',  # Post current deal alerts
    'send_daily_digest',     # Post daily digest (idempotent per date)
    'get_digest_status',     # Query digest send history
]
