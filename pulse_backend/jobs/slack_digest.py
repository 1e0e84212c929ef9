"""
Slack notification jobs for Pulse CRM.

Posts pipeline information to the team channel through an incoming webhook
(WebhookClient from slack-sdk):

- send_pipeline_alerts(): the current deal alerts (overdue target dates and
  missing next steps), one coloured attachment per alert
- send_daily_digest(): the plain-text daily digest, at most once per date
- get_digest_status(): send history for monitoring

Idempotency:
- The daily digest is never sent twice for the same date. Successful sends
  are recorded through CrmStore.mark_digest_sent() (job_digest_state table
  in PostgreSQL, process memory in demo mode).
- force=True bypasses the check for manual re-sends.
- Alerts are not deduplicated; they describe the pipeline at call time.

WebhookClient is synchronous, so each send runs in a worker thread
(asyncio.to_thread) and the event loop keeps serving requests meanwhile.

Every entry point returns a result dict and never raises:
    {'success': bool, 'skipped': bool?, 'reason': str?, 'date': str?, 'error': str?}

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL
  Format: https://hooks.slack.com/services/xxx/yyy/zzz

Usage:
    result = await send_daily_digest()
    result = await send_daily_digest(digest_date=date(2024, 1, 15), force=True)
    result = await send_pipeline_alerts()
    status = await get_digest_status()
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from pulse_backend.core.config import get_settings
from pulse_backend.core.dependencies import get_store
from pulse_backend.models.enums import AlertSeverity
from pulse_backend.models.schemas import AlertsChannelPayload
from pulse_backend.services.normalizers import utc_now
from pulse_backend.services.pipeline_insights import (
    build_alerts_channel_payload,
    detect_deal_alerts,
    generate_daily_digest,
)
from pulse_backend.services.store import SLACK_DIGEST_JOB, CrmStore


logger = logging.getLogger(__name__)


WEBHOOK_NOT_CONFIGURED = (
    'SLACK_WEBHOOK_URL not configured. Set this environment variable to enable Slack notifications.'
)

# Slack attachment colours per alert severity
SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: 'danger',
    AlertSeverity.WARNING: 'warning',
}

RECENT_HISTORY_LIMIT = 7


# =============================================================================
# Slack Message Formatting
# =============================================================================

def format_alert_attachments(payload: AlertsChannelPayload) -> List[Dict[str, Any]]:
    """Convert alert attachments into Slack legacy attachments."""
    return [
        {
            'color': SEVERITY_COLORS[attachment.severity],
            'title': attachment.title,
            'text': attachment.body,
            'fallback': attachment.title,
        }
        for attachment in payload.attachments
    ]


def format_digest_blocks(digest_text: str, generated_at: datetime) -> List[Dict[str, Any]]:
    """Wrap the digest text in Block Kit: body section plus a timestamp footer."""
    return [
        {
            'type': 'section',
            'text': {'type': 'mrkdwn', 'text': digest_text},
        },
        {'type': 'divider'},
        {
            'type': 'context',
            'elements': [
                {
                    'type': 'mrkdwn',
                    'text': f"Generado {generated_at.strftime('%Y-%m-%d %H:%M UTC')} · Pulse CRM",
                }
            ],
        },
    ]


# =============================================================================
# Main Entry Points
# =============================================================================

async def send_pipeline_alerts(store: Optional[CrmStore] = None) -> Dict[str, Any]:
    """
    Post the current pipeline alerts to Slack.

    When there are no alerts the all-clear message is still posted so the
    channel shows the check ran.

    Returns:
        Dict with success, alerts (number posted) or error.
    """
    settings = get_settings()
    if not settings.slack_webhook_url:
        return {'success': False, 'error': WEBHOOK_NOT_CONFIGURED}

    store = store or get_store()

    try:
        deals = await store.get_deals()
    except Exception as e:
        logger.error(f"Failed to load deals for Slack alerts: {e}", exc_info=True)
        return {'success': False, 'error': f'Failed to load deals: {str(e)}'}

    alerts = detect_deal_alerts(deals, utc_now())
    payload = build_alerts_channel_payload(alerts)

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = await asyncio.to_thread(
            client.send,
            text=payload.text,
            attachments=format_alert_attachments(payload),
        )
    except Exception as e:
        logger.error(f"Failed to send Slack alerts: {e}", exc_info=True)
        return {'success': False, 'error': f'Failed to send Slack message: {str(e)}'}

    if response.status_code != 200:
        logger.warning(f"Slack alerts rejected: {response.status_code} {response.body}")
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
        }

    logger.info(f"Posted {len(alerts)} pipeline alerts to Slack")
    return {'success': True, 'alerts': len(alerts)}


async def send_daily_digest(
    digest_date: Optional[date] = None,
    force: bool = False,
    store: Optional[CrmStore] = None,
) -> Dict[str, Any]:
    """
    Send the daily pipeline digest to Slack.

    Steps:
    1. Validate that SLACK_WEBHOOK_URL is configured
    2. Check idempotency (unless force=True)
    3. Load deals and tasks and build the digest text
    4. Send via Slack webhook
    5. Record the send for idempotency

    Args:
        digest_date: Date being reported (default: today, UTC).
        force: Send even if a digest already went out for this date.
        store: CRM store to read from (default: the application store).

    Returns:
        Dict with success, skipped, reason, date, error and the digest counters.
    """
    settings = get_settings()
    if not settings.slack_webhook_url:
        return {'success': False, 'error': WEBHOOK_NOT_CONFIGURED}

    store = store or get_store()
    now = utc_now()
    target_date = digest_date or now.date()

    if not force:
        try:
            if await store.check_digest_sent(target_date, SLACK_DIGEST_JOB):
                return {
                    'success': True,
                    'skipped': True,
                    'reason': f'Digest already sent for {target_date}',
                    'date': str(target_date),
                }
        except Exception as e:
            # First run against a fresh database: state table may be missing
            logger.warning(f"Could not check digest state for {target_date}: {e}")

    try:
        deals = await store.get_deals()
        tasks = await store.get_tasks()
    except Exception as e:
        logger.error(f"Failed to load pipeline for digest: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Failed to load pipeline data: {str(e)}',
            'date': str(target_date),
        }

    if not deals and not tasks:
        return {
            'success': True,
            'skipped': True,
            'reason': f'No pipeline data for {target_date}',
            'date': str(target_date),
        }

    alerts = detect_deal_alerts(deals, now)
    digest_text = generate_daily_digest(deals, tasks, alerts, now)

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = await asyncio.to_thread(
            client.send,
            text=digest_text,
            blocks=format_digest_blocks(digest_text, now),
        )
    except Exception as e:
        logger.error(f"Failed to send Slack digest: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Failed to send Slack message: {str(e)}',
            'date': str(target_date),
        }

    if response.status_code != 200:
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
            'date': str(target_date),
        }

    try:
        await store.mark_digest_sent(target_date, SLACK_DIGEST_JOB)
    except Exception as e:
        # Message is out; a retry may duplicate it
        logger.warning(f"Digest sent but state not recorded for {target_date}: {e}")

    logger.info(f"Sent Slack digest for {target_date} ({len(alerts)} alerts)")
    return {
        'success': True,
        'date': str(target_date),
        'alerts': len(alerts),
        'deals': len(deals),
        'tasks': len(tasks),
    }


async def get_digest_status(store: Optional[CrmStore] = None) -> Dict[str, Any]:
    """
    Current status of the Slack digest job.

    Returns:
        Dict with:
        - last_successful_date: Most recent digest date (or None)
        - total_digest_count: Total number of digests sent
        - recent_dates: Up to 7 recent sends as {'date', 'sent_at'}
        - configured: Whether SLACK_WEBHOOK_URL is configured
    """
    settings = get_settings()
    configured = bool(settings.slack_webhook_url)
    store = store or get_store()

    try:
        history = await store.get_digest_history(SLACK_DIGEST_JOB, limit=None)
    except Exception as e:
        logger.warning(f"Could not read digest history: {e}")
        return {
            'last_successful_date': None,
            'total_digest_count': 0,
            'recent_dates': [],
            'configured': configured,
            'note': 'Digest state table may not be initialized yet',
        }

    return {
        'last_successful_date': str(history[0]['date']) if history else None,
        'total_digest_count': sum(entry['count'] for entry in history),
        'recent_dates': [
            {
                'date': str(entry['date']),
                'sent_at': entry['sent_at'].isoformat() if entry['sent_at'] else None,
            }
            for entry in history[:RECENT_HISTORY_LIMIT]
        ],
        'configured': configured,
    }


__all__ = [
    'format_alert_attachments',
    'format_digest_blocks',
    'send_pipeline_alerts',
    'send_daily_digest',
    'get_digest_status',
]
