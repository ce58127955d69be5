"""Tests for app.pipeline.manager — scan workflow end to end with fake providers, launch, resume."""
import pytest
from unittest.mock import patch, MagicMock

from app.config import SCAN_STEPS, SCAN_TIMEOUT_SECONDS
from app.errors import ProviderError
from app.models.frozen import FrozenQuestion
from app.models.platform_response import PlatformResponse
from app.models.report import Report
from app.models.scan_prompt import ScanPrompt
from app.models.score_history import CompetitorHistory, ScoreHistory
from app.models.web_mention import WebMention
from app.pipeline.manager import (
    ScanWorkflow, get_scan_status, launch_scan, normalize_domain, resume_scan, run_scan,
)
from app.pipeline.providers import Providers
from app.pipeline.report import write_report
from app.pipeline.scoring import NEUTRAL_PLATFORM_SCORE
from app.services import db
from app.services.crawler import CrawledPage, CrawlResult


SITE_TEXT = (
    'Acme builds software for logistics teams. We are hiring: Software Engineer, Sales. '
    'Our culture is collaborative and flexible. Headquarters: Sydney, Australia.'
)


@pytest.fixture(autouse=True)
def patch_externals():
    """No network: canned crawl, Slack notifications captured."""
    crawl = CrawlResult(domain='acme.com', pages=[
        CrawledPage(url='https://acme.com/', path='/', title='Home | Acme', body_text=SITE_TEXT),
    ])
    with patch('app.pipeline.manager.crawl_site', return_value=crawl) as crawl_mock, \
            patch('app.pipeline.manager.notify_scan_complete') as complete, \
            patch('app.pipeline.manager.notify_scan_failed') as failed:
        yield {'crawl': crawl_mock, 'complete': complete, 'failed': failed}


@pytest.fixture
def redis_conn():
    mock = MagicMock()
    mock.get.return_value = None
    return mock


def _workflow(llm, search, redis_conn, clock=None):
    kwargs = {'clock': clock} if clock else {}
    return ScanWorkflow(Providers(llm=llm, search=search), redis=redis_conn, **kwargs)


def _count(session, model, run_id):
    return session.query(model).filter_by(run_id=run_id).count()


# ── Helpers ──────────────────────────────────────────────────────────────────

class TestNormalizeDomain:

    @pytest.mark.parametrize('raw,expected', [
        ('acme.com', 'acme.com'),
        ('https://www.Acme.com/careers', 'acme.com'),
        ('  WWW.ACME.COM  ', 'acme.com'),
        ('', ''),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_domain(raw) == expected


# ── Full run ─────────────────────────────────────────────────────────────────

class TestScanWorkflowRun:
    """Every step against fake providers and in-memory SQLite."""

    def test_completes_with_report(self, fake_llm, fake_search, redis_conn, make_run, db_session,
                                   patch_externals):
        run_id = make_run()
        status = _workflow(fake_llm, fake_search, redis_conn).run(run_id)

        assert status == 'complete'
        run = db.get_scan_run(run_id)
        assert run.status == 'complete'
        assert run.progress == 100
        assert run.attempts == 1
        assert run.completed_steps == SCAN_STEPS
        assert run.completed_at is not None

        report = db_session.query(Report).filter_by(run_id=run_id).one()
        for score in (report.visibility_score, report.researchability_score, report.differentiation_score):
            assert 0 <= score <= 100
        assert set(report.platform_scores) == {'chatgpt', 'claude', 'gemini', 'perplexity'}
        assert report.summary.startswith('Acme has')
        assert [e['name'] for e in report.competitor_analysis['employers']] == ['Acme', 'Globex', 'Initech']
        assert report.competitor_analysis['employers'][1]['domain'] == 'globex.com'
        assert report.strategic_summary['top_talent_competitor'] == 'Globex'
        assert report.mention_stats['total'] == 2
        assert len(report.mention_stats['insights']) == 3
        assert set(report.role_action_plans) == {'engineering', 'business'}

        assert db_session.query(ScoreHistory).filter_by(report_id=report.id).count() == 1
        assert db_session.query(CompetitorHistory).filter_by(report_id=report.id).count() == 3
        assert _count(db_session, WebMention, run_id) == 2
        patch_externals['complete'].assert_called_once()
        patch_externals['failed'].assert_not_called()

    def test_one_response_per_prompt_and_platform(self, fake_llm, fake_search, redis_conn, make_run, db_session):
        run_id = make_run()
        _workflow(fake_llm, fake_search, redis_conn).run(run_id)

        prompts = _count(db_session, ScanPrompt, run_id)
        assert prompts > 0
        assert _count(db_session, PlatformResponse, run_id) == prompts * 4
        responses = db_session.query(PlatformResponse).filter_by(run_id=run_id).all()
        assert all(r.sentiment_score == 7 for r in responses)
        assert all(r.tier == 'primary' for r in responses)

    def test_company_name_from_monitored_domain(self, fake_llm, fake_search, redis_conn, make_run,
                                                make_monitored_domain, db_session):
        md_id = make_monitored_domain(company_name='Acme Logistics')
        redis_conn.get.return_value = 'run-scoped'
        run_id = make_run('run-scoped', organization_id='org-1', monitored_domain_id=md_id)
        _workflow(fake_llm, fake_search, redis_conn).run(run_id)

        run = db.get_scan_run(run_id)
        assert run.step_outputs['analyze-employer']['company_name'] == 'Acme Logistics'
        assert db_session.query(FrozenQuestion).filter_by(monitored_domain_id=md_id, is_active=True).count() > 0
        redis_conn.delete.assert_called_once_with(f'scan:active:{md_id}')

    def test_second_scoped_scan_reuses_questions(self, fake_llm, make_llm, fake_search, redis_conn, make_run,
                                                 make_monitored_domain):
        md_id = make_monitored_domain()
        redis_conn.get.return_value = None
        _workflow(fake_llm, fake_search, redis_conn).run(
            make_run('run-a', organization_id='org-1', monitored_domain_id=md_id))
        _workflow(make_llm(), fake_search, redis_conn).run(
            make_run('run-b', organization_id='org-1', monitored_domain_id=md_id))

        first = [p.prompt_text for p in db.get_prompts('run-a')]
        second = [p.prompt_text for p in db.get_prompts('run-b')]
        assert first == second
        assert db.get_scan_run('run-b').step_outputs['research']['research']['used_frozen_data'] is True

    def test_dead_platforms_do_not_block_sentiment(self, make_llm, fake_search, redis_conn, make_run, db_session):
        llm = make_llm(fail={'search_gemini', 'generate_text'})
        run_id = make_run()
        assert _workflow(llm, fake_search, redis_conn).run(run_id) == 'complete'

        by_platform = {}
        for r in db_session.query(PlatformResponse).filter_by(run_id=run_id):
            by_platform.setdefault(r.platform, []).append(r)
        for platform in ('gemini', 'claude'):
            assert all(r.tier == 'error' and r.sentiment_score is None for r in by_platform[platform])
        for platform in ('chatgpt', 'perplexity'):
            assert all(r.sentiment_score == 7 for r in by_platform[platform])

        report = db_session.query(Report).filter_by(run_id=run_id).one()
        assert report.platform_scores['chatgpt'] == report.platform_scores['perplexity'] == 67
        assert report.platform_scores['gemini'] == report.platform_scores['claude'] == NEUTRAL_PLATFORM_SCORE

    def test_differentiation_checkpointed_with_sentiment(self, fake_llm, fake_search, redis_conn, make_run,
                                                         db_session):
        run_id = make_run()
        _workflow(fake_llm, fake_search, redis_conn).run(run_id)

        differentiation = db.get_scan_run(run_id).step_outputs['sentiment']['differentiation']
        assert differentiation['unique_positioning'] == 7
        assert differentiation['unique_attributes'] == ['remote work']
        report = db_session.query(Report).filter_by(run_id=run_id).one()
        assert report.unique_attributes == ['remote work']
        assert report.generic_phrases == []
        assert report.to_dict()['unique_attributes'] == ['remote work']


# ── Resume + retry ───────────────────────────────────────────────────────────

class TestResume:

    def test_resume_after_query_makes_no_platform_calls(self, fake_llm, make_llm, fake_search, redis_conn,
                                                        make_run, db_session, patch_externals):
        run_id = make_run()
        with patch.object(ScanWorkflow, '_step_sentiment', side_effect=RuntimeError('worker died')):
            status = _workflow(fake_llm, fake_search, redis_conn).run(run_id)

        assert status == 'failed'
        run = db.get_scan_run(run_id)
        assert run.attempts == 3
        assert run.error_message == 'Failed after 3 attempts: worker died'
        assert run.completed_steps == SCAN_STEPS[:SCAN_STEPS.index('query') + 1]
        patch_externals['failed'].assert_called_once()
        responses_before = _count(db_session, PlatformResponse, run_id)

        llm = make_llm()
        assert _workflow(llm, fake_search, redis_conn).run(run_id) == 'complete'
        assert llm.platform_calls == []
        assert _count(db_session, PlatformResponse, run_id) == responses_before
        run = db.get_scan_run(run_id)
        assert run.status == 'complete'
        assert run.error_message == ''

    def test_partial_query_step_fills_only_missing_answers(self, fake_llm, make_llm, fake_search, redis_conn,
                                                           make_run, db_session):
        run_id = make_run()
        with patch.object(ScanWorkflow, '_step_sentiment', side_effect=RuntimeError('stop')):
            _workflow(fake_llm, fake_search, redis_conn).run(run_id)

        # Forget the query checkpoint and one stored answer, as if the worker died mid-step
        victim = db_session.query(PlatformResponse).filter_by(run_id=run_id, platform='gemini').first()
        db_session.delete(victim)
        db_session.commit()
        with db.session_scope() as session:
            from app.models.scan_run import ScanRun
            row = session.get(ScanRun, run_id)
            row.completed_steps = SCAN_STEPS[:SCAN_STEPS.index('query')]

        llm = make_llm()
        _workflow(llm, fake_search, redis_conn).run(run_id)
        assert len(llm.calls_of('search_gemini')) == 1
        assert llm.calls_of('search_openai') == []
        prompts = _count(db_session, ScanPrompt, run_id)
        assert _count(db_session, PlatformResponse, run_id) == prompts * 4

    def test_resume_does_not_duplicate_prompts(self, fake_llm, fake_search, redis_conn, make_run, db_session):
        run_id = make_run()
        with patch.object(ScanWorkflow, '_step_query', side_effect=RuntimeError('stop')):
            _workflow(fake_llm, fake_search, redis_conn).run(run_id)
        prompts = _count(db_session, ScanPrompt, run_id)

        _workflow(fake_llm, fake_search, redis_conn).run(run_id)
        assert _count(db_session, ScanPrompt, run_id) == prompts

    def test_finalize_retry_reuses_differentiation(self, make_llm, fake_search, redis_conn, make_run, db_session):
        llm = make_llm()
        run_id = make_run()
        writes = []

        def flaky_write_report(*args):
            writes.append(args[0])
            if len(writes) == 1:
                raise RuntimeError('connection reset')
            return write_report(*args)

        with patch('app.pipeline.manager.write_report', side_effect=flaky_write_report):
            assert _workflow(llm, fake_search, redis_conn).run(run_id) == 'complete'

        assert writes == [run_id, run_id]
        assert db.get_scan_run(run_id).attempts == 2
        assert [c['schema'] for c in llm.calls_of('generate_object')].count('DifferentiationOutput') == 1
        assert _count(db_session, Report, run_id) == 1

    def test_unknown_run(self, fake_llm, fake_search, redis_conn):
        assert _workflow(fake_llm, fake_search, redis_conn).run('missing') is None


# ── Cancellation, timeout, enrichment ───────────────────────────────────────

class TestStopConditions:

    def test_superseded_run_fails_without_report(self, fake_llm, fake_search, redis_conn, make_run,
                                                 make_monitored_domain, db_session):
        md_id = make_monitored_domain()
        run_id = make_run('run-old', organization_id='org-1', monitored_domain_id=md_id)
        redis_conn.get.return_value = 'run-new'

        assert _workflow(fake_llm, fake_search, redis_conn).run(run_id) == 'failed'
        run = db.get_scan_run(run_id)
        assert run.attempts == 1
        assert 'superseded by run-new' in run.error_message
        assert _count(db_session, Report, run_id) == 0
        assert fake_llm.calls == []

    def test_superseded_after_report_stays_complete(self, fake_llm, fake_search, redis_conn, make_run,
                                                    make_monitored_domain, db_session):
        md_id = make_monitored_domain()
        run_id = make_run('run-old', organization_id='org-1', monitored_domain_id=md_id)
        finalize_at = SCAN_STEPS.index('finalize') + 1
        redis_conn.get.side_effect = ['run-old'] * finalize_at + ['run-new'] * 10

        assert _workflow(fake_llm, fake_search, redis_conn).run(run_id) == 'complete'
        run = db.get_scan_run(run_id)
        assert run.status == 'complete'
        assert run.completed_steps[-1] == 'finalize'
        assert _count(db_session, Report, run_id) == 1
        redis_conn.delete.assert_not_called()

    def test_timeout_fails_without_retry(self, fake_llm, fake_search, redis_conn, make_run, patch_externals):
        run_id = make_run()
        ticks = iter([0.0, 1.0, 1.0, SCAN_TIMEOUT_SECONDS + 5.0])
        status = _workflow(fake_llm, fake_search, redis_conn, clock=lambda: next(ticks)).run(run_id)

        assert status == 'failed'
        run = db.get_scan_run(run_id)
        assert run.attempts == 1
        assert run.completed_steps == ['setup', 'crawl']
        assert "exceeded" in run.error_message
        assert "'analyze-employer'" in run.error_message
        patch_externals['failed'].assert_called_once()

    def test_timeout_after_report_keeps_run_complete(self, fake_llm, fake_search, redis_conn, make_run, db_session,
                                                     patch_externals):
        run_id = make_run()

        def clock():
            done = db.get_scan_run(run_id).completed_steps or []
            return SCAN_TIMEOUT_SECONDS + 5.0 if 'finalize' in done else 0.0

        assert _workflow(fake_llm, fake_search, redis_conn, clock=clock).run(run_id) == 'complete'
        run = db.get_scan_run(run_id)
        assert run.status == 'complete'
        assert run.attempts == 1
        assert not run.error_message
        assert run.completed_steps == SCAN_STEPS[:SCAN_STEPS.index('finalize') + 1]
        assert _count(db_session, Report, run_id) == 1
        patch_externals['failed'].assert_not_called()

        # The enrichment steps can still be finished by a later resume
        assert _workflow(fake_llm, fake_search, redis_conn).run(run_id) == 'complete'
        assert db.get_scan_run(run_id).completed_steps == SCAN_STEPS

    def test_enrichment_failure_keeps_run_complete(self, make_llm, fake_search, redis_conn, make_run, db_session):
        llm = make_llm(objects={'EmployerComparisonOutput': ProviderError('anthropic', 'down')})
        run_id = make_run()
        assert _workflow(llm, fake_search, redis_conn).run(run_id) == 'complete'

        run = db.get_scan_run(run_id)
        assert run.status == 'complete'
        assert run.step_outputs['compare-employers'] == {'error': 'anthropic: down'}
        assert run.step_outputs['strategic-summary'] == {'skipped': True}
        report = db_session.query(Report).filter_by(run_id=run_id).one()
        assert report.competitor_analysis is None
        assert db_session.query(ScoreHistory).filter_by(report_id=report.id).count() == 1

    def test_failed_crawl_continues_domain_only(self, fake_llm, fake_search, redis_conn, make_run,
                                                patch_externals):
        patch_externals['crawl'].return_value = CrawlResult(domain='acme.com')
        run_id = make_run()
        assert _workflow(fake_llm, fake_search, redis_conn).run(run_id) == 'complete'
        assert db.get_scan_run(run_id).step_outputs['analyze-employer']['company_name'] == 'Acme'


# ── Public API ───────────────────────────────────────────────────────────────

class TestLaunchScan:

    def test_enqueues_and_marks_active(self, mock_redis, make_monitored_domain):
        md_id = make_monitored_domain()
        queue = MagicMock()
        with patch('app.pipeline.manager._get_queue', return_value=queue):
            run = launch_scan('https://www.Acme.com/careers', 'org-1', md_id)

        assert run.domain == 'acme.com'
        assert run.status == 'crawling'
        mock_redis.set.assert_called_once_with(f'scan:active:{md_id}', run.id, ex=24 * 3600)
        queue.enqueue.assert_called_once_with(run_scan, run.id, job_timeout=SCAN_TIMEOUT_SECONDS)

    def test_unscoped_scan_skips_redis(self, mock_redis):
        with patch('app.pipeline.manager._get_queue', return_value=MagicMock()):
            launch_scan('acme.com')
        mock_redis.set.assert_not_called()

    def test_domain_required(self, mock_redis):
        with pytest.raises(ValueError):
            launch_scan('   ')


class TestResumeScan:

    def test_unknown(self):
        assert resume_scan('missing') is None

    def test_complete_run_rejected(self, make_run):
        run_id = make_run(status='complete', completed_steps=list(SCAN_STEPS))
        with pytest.raises(ValueError, match='already complete'):
            resume_scan(run_id)

    def test_complete_run_without_mark_complete_requeued(self, make_run):
        run_id = make_run(status='complete', completed_steps=SCAN_STEPS[:SCAN_STEPS.index('finalize') + 1])
        queue = MagicMock()
        with patch('app.pipeline.manager._get_queue', return_value=queue):
            assert resume_scan(run_id).id == run_id
        queue.enqueue.assert_called_once_with(run_scan, run_id, job_timeout=SCAN_TIMEOUT_SECONDS)

    def test_failed_run_requeued(self, mock_redis, make_run, make_monitored_domain):
        md_id = make_monitored_domain()
        run_id = make_run(organization_id='org-1', monitored_domain_id=md_id, status='failed')
        queue = MagicMock()
        with patch('app.pipeline.manager._get_queue', return_value=queue):
            assert resume_scan(run_id).id == run_id
        mock_redis.set.assert_called_once_with(f'scan:active:{md_id}', run_id, ex=24 * 3600)
        queue.enqueue.assert_called_once_with(run_scan, run_id, job_timeout=SCAN_TIMEOUT_SECONDS)


class TestGetScanStatus:

    def test_status_dict(self, make_run):
        run_id = make_run(progress=45, status='querying')
        status = get_scan_status(run_id)
        assert status['status'] == 'querying'
        assert status['progress'] == 45
        assert status['completed_steps'] == []

    def test_unknown(self):
        assert get_scan_status('missing') is None
