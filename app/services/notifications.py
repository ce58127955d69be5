"""
Notifications — Slack webhook posts for scan events.

Notification failure never blocks a scan.
"""
import logging
import requests

from app.config import SLACK_WEBHOOK_URL, REPORT_BASE_URL

logger = logging.getLogger('services.notifications')


def _post(blocks):
    requests.post(SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)


def notify_scan_complete(run, report=None, company_name=None, cost=None):
    """Post a completed scan's headline scores to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        name = company_name or run.domain
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"Employer Scan Completed — {name}"},
            },
        ]

        if report is not None:
            blocks.append({
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Desirability:* {report.visibility_score}"},
                    {"type": "mrkdwn", "text": f"*Awareness:* {report.researchability_score}"},
                    {"type": "mrkdwn", "text": f"*Differentiation:* {report.differentiation_score}"},
                    {"type": "mrkdwn", "text": f"*Domain:* {run.domain}"},
                ]
            })
            if report.summary:
                blocks.append({
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"_{report.summary}_"}
                })
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"<{REPORT_BASE_URL}/{report.url_token}|View report>"}
            })

        if cost:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"Cost: ~${cost:.2f}"}]
            })

        _post(blocks)
        logger.info("Scan %s completion notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send notification for scan %s", run.id[:8], exc_info=True)


def notify_scan_failed(run, error_message=None):
    """Post a scan failure alert to Slack."""
    if not SLACK_WEBHOOK_URL:
        return

    try:
        error = error_message or run.error_message or ''
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"Employer Scan FAILED — {run.domain}"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Run:* {run.id[:8]}"},
                    {"type": "mrkdwn", "text": f"*Attempts:* {run.attempts or 0}"},
                    {"type": "mrkdwn", "text": f"*Completed steps:* {len(run.completed_steps or [])}"},
                ]
            },
        ]

        if error:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Error:* ```{error[:500]}```"}
            })

        _post(blocks)
        logger.info("Scan %s failure notification sent", run.id[:8])

    except Exception:
        logger.error("Failed to send failure notification for scan %s", run.id[:8], exc_info=True)
