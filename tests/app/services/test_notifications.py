"""Tests for app.services.notifications — Slack posts are best-effort."""
import pytest
from types import SimpleNamespace
from unittest.mock import patch

import requests

from app.services import notifications


RUN = SimpleNamespace(id='abcdef123456', domain='acme.com', attempts=3,
                      completed_steps=['setup', 'crawl'], error_message='stored error')
REPORT = SimpleNamespace(visibility_score=71, researchability_score=52, differentiation_score=60,
                         summary='Acme has strong AI employer reputation.', url_token='tok123')


@pytest.fixture
def webhook():
    with patch.object(notifications, 'SLACK_WEBHOOK_URL', 'https://hooks.slack.test/x'), \
            patch('app.services.notifications.requests.post') as post:
        yield post


def _texts(post):
    blocks = post.call_args.kwargs['json']['blocks']
    out = []
    for block in blocks:
        if 'text' in block:
            out.append(block['text']['text'])
        for f in block.get('fields', []) + block.get('elements', []):
            out.append(f['text'])
    return out


class TestNotifyScanComplete:

    def test_scores_and_link(self, webhook):
        notifications.notify_scan_complete(RUN, REPORT, company_name='Acme', cost=0.4321)
        texts = _texts(webhook)
        assert texts[0] == 'Employer Scan Completed — Acme'
        assert '*Desirability:* 71' in texts
        assert '*Awareness:* 52' in texts
        assert any('tok123|View report' in t for t in texts)
        assert 'Cost: ~$0.43' in texts

    def test_without_report(self, webhook):
        notifications.notify_scan_complete(RUN)
        assert _texts(webhook) == ['Employer Scan Completed — acme.com']

    def test_post_failure_swallowed(self, webhook):
        webhook.side_effect = requests.ConnectionError('down')
        notifications.notify_scan_complete(RUN, REPORT)

    def test_no_webhook_configured(self):
        with patch.object(notifications, 'SLACK_WEBHOOK_URL', None), \
                patch('app.services.notifications.requests.post') as post:
            notifications.notify_scan_complete(RUN, REPORT)
        post.assert_not_called()


class TestNotifyScanFailed:

    def test_error_details(self, webhook):
        notifications.notify_scan_failed(RUN, 'Failed after 3 attempts: boom')
        texts = _texts(webhook)
        assert texts[0] == 'Employer Scan FAILED — acme.com'
        assert '*Run:* abcdef12' in texts
        assert '*Attempts:* 3' in texts
        assert '*Completed steps:* 2' in texts
        assert '*Error:* ```Failed after 3 attempts: boom```' in texts

    def test_falls_back_to_stored_error(self, webhook):
        notifications.notify_scan_failed(RUN)
        assert '*Error:* ```stored error```' in _texts(webhook)
