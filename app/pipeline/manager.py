"""
Scan Manager — durable, resumable orchestration of one employer-brand scan.

A scan walks SCAN_STEPS in order:
  setup → crawl → analyze-employer → research → query → sentiment → finalize
  → compare-employers → discover-web-mentions → strategic-summary
  → role-action-plans → record-score-history → mark-complete

Every step checkpoints a JSON output into scan_runs.step_outputs and appends
itself to completed_steps, so resume(run_id) skips finished work. finalize
writes the report and marks the run complete; the enrichment steps after it
are best-effort and never move the run back to failed.
"""
import logging
import time
import uuid
from urllib.parse import urlparse

from app.config import (
    ENRICHMENT_STEPS, PLATFORMS, SCAN_MAX_ATTEMPTS, SCAN_STEPS, SCAN_TIMEOUT_SECONDS, STEP_PROGRESS,
)
from app.errors import ScanCancelledError, ScanTimeoutError
from app.logging_config import scan_context
from app.pipeline import enrichment, web_mentions
from app.pipeline.analyzers import analyze_response, batch_analyze_differentiation, batch_analyze_sentiment
from app.pipeline.base import QueryContext, get_adapter
from app.pipeline.employer import EmployerAnalysis, classify_job_families, extract_employer_analysis
from app.pipeline.platforms import ADAPTERS, detect_user_location, fan_out, query_platform
from app.pipeline.providers import Providers
from app.pipeline.report import generate_employer_summary, write_report
from app.pipeline.research import ResearchResult, run_research
from app.pipeline.scoring import build_scores, role_family_scores, top_competitors
from app.services import db
from app.services.costs import get_run_cost
from app.services.crawler import CrawledPage, CrawlResult, combine_crawled_content, crawl_site
from app.services.notifications import notify_scan_complete, notify_scan_failed

logger = logging.getLogger('pipeline.manager')

ACTIVE_SCAN_KEY = 'scan:active:{}'
ACTIVE_SCAN_TTL = 24 * 3600
MAX_RAW_CONTENT = 50000


# ── Lazy RQ queue (avoids import-time Redis connection) ─────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from app.extensions import rq_connection
        from rq import Queue
        _queue = Queue(connection=rq_connection)
    return _queue


def _redis():
    from app.extensions import redis_client
    return redis_client


def normalize_domain(domain: str) -> str:
    """'https://www.Acme.com/careers' → 'acme.com'"""
    value = (domain or '').strip().lower()
    if '://' not in value:
        value = 'http://' + value
    host = urlparse(value).hostname or ''
    return host[4:] if host.startswith('www.') else host


def _response_dict(row, question=None):
    return {
        'id': row.id,
        'platform': row.platform,
        'prompt_id': row.prompt_id,
        'question': question,
        'response_text': row.response_text,
        'job_family': row.job_family,
        'competitors_mentioned': row.competitors_mentioned or [],
        'specificity_score': row.specificity_score,
        'confidence_score': row.confidence_score,
        'topics_mentioned': row.topics_mentioned or [],
        'sentiment_score': row.sentiment_score,
        'sentiment_category': row.sentiment_category,
        'error_message': row.error_message,
    }


# ── Workflow ─────────────────────────────────────────────────────────────────

class ScanWorkflow:
    """
    Explicit state machine over SCAN_STEPS.

    providers: Providers (llm + search); tests pass fakes.
    redis: connection holding the scan:active:{monitored_domain_id} keys.
    """

    def __init__(self, providers: Providers = None, redis=None, clock=time.monotonic):
        self.providers = providers or Providers.from_config()
        self._redis_client = redis
        self.clock = clock

    @property
    def llm(self):
        return self.providers.llm

    @property
    def search(self):
        return self.providers.search

    @property
    def redis(self):
        if self._redis_client is None:
            self._redis_client = _redis()
        return self._redis_client

    # ── Entry points ──

    def run(self, run_id: str) -> str:
        """
        Drive a run to completion, retrying failed steps up to SCAN_MAX_ATTEMPTS
        times. Timeouts and supersession before finalize fail the run without
        retry; after it they leave the run complete.
        Returns the final status.
        """
        run = db.get_scan_run(run_id)
        if run is None:
            logger.error("Scan run %s not found", run_id)
            return None
        if run.status == 'failed':
            db.update_scan_status(run_id, error_message='')

        deadline = self.clock() + SCAN_TIMEOUT_SECONDS
        last_error = None
        for attempt in range(1, SCAN_MAX_ATTEMPTS + 1):
            db.start_attempt(run_id)
            try:
                return self.resume(run_id, deadline=deadline)
            except (ScanTimeoutError, ScanCancelledError) as e:
                logger.warning("Scan %s stopped: %s", run_id, e)
                self._fail(run_id, str(e))
                return 'failed'
            except Exception as e:
                last_error = e
                logger.error("Scan %s attempt %d/%d failed: %s",
                             run_id, attempt, SCAN_MAX_ATTEMPTS, e, exc_info=True)

        self._fail(run_id, f"Failed after {SCAN_MAX_ATTEMPTS} attempts: {last_error}")
        return 'failed'

    def resume(self, run_id: str, deadline: float = None) -> str:
        """Run every step not yet in completed_steps, in order. Raises on step failure."""
        run = db.get_scan_run(run_id)
        if run is None:
            raise LookupError(f"Scan run {run_id} not found")

        completed = set(run.completed_steps or [])
        state = dict(run.step_outputs or {})
        if completed:
            logger.info("Resuming scan %s after %d completed steps", run_id, len(completed))

        for step in SCAN_STEPS:
            if step in completed:
                continue
            if deadline is not None and self.clock() > deadline:
                if 'finalize' in completed:
                    logger.warning("Scan %s ran out of time after its report was written; skipping '%s' onwards",
                                   run_id, step)
                    return 'complete'
                raise ScanTimeoutError(f"Scan {run_id} exceeded {SCAN_TIMEOUT_SECONDS}s before '{step}'")
            if self._superseded(run):
                if 'finalize' in completed:
                    logger.info("Scan %s superseded after its report was written; skipping '%s' onwards",
                                run_id, step)
                    return 'complete'
                raise ScanCancelledError(run_id, self._active_run(run))

            if step in STEP_PROGRESS:
                status, progress = STEP_PROGRESS[step]
                db.update_scan_status(run_id, status=status, progress=progress)

            handler = getattr(self, '_step_' + step.replace('-', '_'))
            with scan_context(run_id=run_id, step=step):
                logger.info("Scan %s step '%s'", run_id[:8], step)
                if step in ENRICHMENT_STEPS:
                    try:
                        output = handler(run, state)
                    except Exception as e:
                        logger.error("Enrichment step '%s' failed for scan %s: %s", step, run_id, e, exc_info=True)
                        output = {'error': str(e)}
                else:
                    output = handler(run, state)

            state[step] = output
            db.checkpoint_step(run_id, step, output)
            completed.add(step)

        return 'complete'

    # ── Cancellation ──

    def _active_run(self, run):
        if run.monitored_domain_id is None:
            return None
        return self.redis.get(ACTIVE_SCAN_KEY.format(run.monitored_domain_id))

    def _superseded(self, run) -> bool:
        active = self._active_run(run)
        return active is not None and active != run.id

    def _fail(self, run_id, message):
        db.update_scan_status(run_id, status='failed', error_message=message)
        notify_scan_failed(db.get_scan_run(run_id), message)

    # ── Helpers over checkpoints ──

    @staticmethod
    def _analysis(state) -> EmployerAnalysis:
        return EmployerAnalysis.from_dict(state['analyze-employer'])

    @staticmethod
    def _research(state) -> ResearchResult:
        data = state['research']['research']
        return ResearchResult(**data)

    @staticmethod
    def _report_id(state):
        return state['finalize']['report_id']

    def _scored_responses(self, run_id):
        questions = {p.id: p for p in db.get_prompts(run_id)}
        rows = []
        for r in db.get_responses(run_id):
            prompt = questions.get(r.prompt_id)
            d = _response_dict(r, prompt.prompt_text if prompt else '')
            if prompt is not None and d['job_family'] is None:
                d['job_family'] = prompt.job_family
            rows.append(d)
        return rows

    # ── Core steps ──

    def _step_setup(self, run, state):
        monitored = db.get_monitored_domain(run.monitored_domain_id)
        return {
            'domain': normalize_domain(run.domain),
            'organization_id': run.organization_id,
            'monitored_domain_id': run.monitored_domain_id,
            'company_name': monitored.company_name if monitored is not None else None,
        }

    def _step_crawl(self, run, state):
        domain = state['setup']['domain']
        result = crawl_site(domain)
        content = combine_crawled_content(result) if result.pages else ''
        if not result.pages:
            logger.warning("Crawl of %s returned no pages, continuing with domain-only analysis", domain)
        return {
            'content': content[:MAX_RAW_CONTENT],
            'pages': [{'url': p.url, 'path': p.path, 'title': p.title} for p in result.pages],
        }

    def _step_analyze_employer(self, run, state):
        setup, crawl = state['setup'], state['crawl']
        crawl_result = CrawlResult(
            domain=setup['domain'],
            pages=[CrawledPage(**p) for p in crawl['pages']],
        )
        analysis = extract_employer_analysis(crawl['content'], setup['domain'], crawl_result)
        if setup.get('company_name'):
            analysis.company_name = setup['company_name']
        analysis.job_families = classify_job_families(
            self.llm, analysis.common_roles, analysis.industry, run_id=run.id,
        )
        data = analysis.to_dict()
        db.save_site_analysis(run.id, data, crawl['content'])
        logger.info("Employer %s: industry=%s roles=%d families=%s",
                    analysis.company_name, analysis.industry, len(analysis.common_roles),
                    ','.join(analysis.family_codes) or '-')
        return data

    def _step_research(self, run, state):
        result, prompts = run_research(
            self.llm, run.id, self._analysis(state),
            organization_id=run.organization_id,
            monitored_domain_id=run.monitored_domain_id,
        )
        return {'research': result.to_dict(), 'prompt_ids': [p.id for p in prompts]}

    def _step_query(self, run, state):
        analysis = self._analysis(state)
        prompts = db.get_prompts(run.id)
        answered = {
            platform: {r.prompt_id for r in db.get_responses(run.id, platform)}
            for platform in PLATFORMS
        }
        pending = [p for p in PLATFORMS if len(answered[p]) < len(prompts)]
        if not pending:
            logger.info("All platforms already answered for scan %s", run.id)
            return {p: len(answered[p]) for p in PLATFORMS}

        location = detect_user_location(analysis.location, QueryContext(domain='')) or {}
        context = QueryContext(
            domain=state['setup']['domain'],
            company_name=analysis.company_name,
            run_id=run.id,
            country_code=location.get('country'),
            city=location.get('city'),
        )
        adapters = {p: get_adapter(ADAPTERS, p, self.llm, self.search) for p in pending}

        def worker(platform, idx, question):
            prompt = prompts[idx]
            if prompt.id in answered[platform]:
                return None
            result = query_platform(adapters[platform], question, context)
            analyzed = analyze_response(self.llm, result.response, analysis.company_name, run.id) \
                if result.ok else {}
            return {
                'prompt_id': prompt.id,
                'response_text': result.response,
                'domain_mentioned': result.domain_mentioned,
                'mention_position': result.mention_position,
                'competitors_mentioned': result.competitors_mentioned,
                'response_time_ms': result.response_time_ms,
                'error_message': result.error,
                'search_enabled': result.search_enabled,
                'sources': result.sources,
                'job_family': prompt.job_family,
                'tier': result.tier,
                'specificity_score': analyzed.get('specificity'),
                'confidence_score': analyzed.get('confidence'),
                'topics_mentioned': analyzed.get('topics', []),
                'positive_highlights': analyzed.get('positive_highlights', []),
                'negative_highlights': analyzed.get('negative_highlights', []),
                'red_flags': analyzed.get('red_flags', []),
                'green_flags': analyzed.get('green_flags', []),
                'recommendation_score': analyzed.get('recommendation_score'),
                'recommendation_summary': analyzed.get('recommendation_summary'),
                'hedging_level': analyzed.get('hedging_level'),
                'source_quality': analyzed.get('source_quality'),
                'response_recency': analyzed.get('response_recency'),
            }

        def on_error(platform, idx, question, exc):
            prompt = prompts[idx]
            if prompt.id in answered[platform]:
                return None
            return {
                'prompt_id': prompt.id,
                'response_text': '',
                'error_message': str(exc),
                'job_family': prompt.job_family,
                'tier': 'error',
                'search_enabled': False,
            }

        _, start = STEP_PROGRESS['query']
        end = STEP_PROGRESS['sentiment'][1]
        counts = {p: len(answered[p]) for p in PLATFORMS}
        questions = [p.prompt_text for p in prompts]
        for done, (platform, results) in enumerate(fan_out(questions, worker, on_error, platforms=pending), 1):
            rows = [r for r in results if r]
            counts[platform] += db.insert_responses(run.id, platform, rows)
            failed = sum(1 for r in rows if r.get('error_message'))
            logger.info("%s: stored %d responses (%d failed) for scan %s", platform, len(rows), failed, run.id[:8])
            db.update_scan_status(run.id, progress=start + (end - start) * done // (len(pending) + 1))
        return counts

    def _step_sentiment(self, run, state):
        analysis = self._analysis(state)
        research = self._research(state)
        responses = self._scored_responses(run.id)
        items = [
            {'id': r['id'], 'platform': r['platform'], 'question': r['question'], 'response': r['response_text']}
            for r in responses
            if r['sentiment_score'] is None and r['response_text']
        ]
        scored = batch_analyze_sentiment(self.llm, items, analysis.company_name, run_id=run.id)
        db.update_response_sentiments({int(k): v for k, v in scored.items()})
        logger.info("Sentiment scored for %d/%d responses", len(scored), len(items))

        differentiation = batch_analyze_differentiation(
            self.llm,
            [{'platform': r['platform'], 'question': r['question'], 'response': r['response_text']}
             for r in responses if r['response_text']],
            analysis.company_name,
            [c['name'] for c in research.competitors],
            run_id=run.id,
        )
        return {'scored': len(scored), 'differentiation': differentiation}

    def _step_finalize(self, run, state):
        analysis = self._analysis(state)
        research = self._research(state)
        responses = self._scored_responses(run.id)

        scores = build_scores(responses, state['sentiment']['differentiation'])
        mentioned = top_competitors(responses)
        summary = generate_employer_summary(
            analysis.company_name, analysis.industry, scores, mentioned, research.competitors,
        )
        report = write_report(run.id, scores, mentioned, summary)
        db.update_scan_status(run.id, status='complete', progress=100)

        return {
            'report_id': report.id,
            'url_token': report.url_token,
            'overall_score': scores['overall_score'],
            'researchability_score': scores['researchability_score'],
            'differentiation_score': scores['differentiation_score'],
            'platform_scores': scores['platform_scores'],
        }

    # ── Enrichment steps ──

    def _step_compare_employers(self, run, state):
        analysis = self._analysis(state)
        competitors = self._research(state).competitors
        if not competitors:
            logger.info("No researched competitors for scan %s, skipping comparison", run.id[:8])
            return {'skipped': True}

        comparison = enrichment.compare_employers(
            self.llm, analysis.company_name, analysis.industry, competitors, run_id=run.id,
        )
        if comparison is None:
            return {'skipped': True}

        domains = {c['name']: c.get('domain') for c in competitors}
        for employer in comparison['employers']:
            employer['domain'] = state['setup']['domain'] if employer['is_target'] else domains.get(employer['name'])

        target = enrichment.target_entry(comparison)
        score = target.get('differentiation_score', enrichment.NEUTRAL_DIFFERENTIATION)
        db.update_report(self._report_id(state), competitor_analysis=comparison, differentiation_score=score)
        return {'compared': len(comparison['employers']), 'differentiation_score': score}

    def _step_discover_web_mentions(self, run, state):
        analysis = self._analysis(state)
        domain = state['setup']['domain']
        mentions = web_mentions.discover_web_mentions(self.search, analysis.company_name, domain, run_id=run.id)
        classified = web_mentions.classify_mentions(
            self.llm, mentions, analysis.company_name, domain, location=analysis.location or None, run_id=run.id,
        )
        stats = web_mentions.compute_mention_stats(classified)
        stats['insights'] = web_mentions.generate_coverage_briefing(
            self.llm, classified, analysis.company_name, run_id=run.id,
        )

        report_id = self._report_id(state)
        inserted = db.insert_web_mentions(run.id, web_mentions.mention_rows(
            classified, run.organization_id, run.monitored_domain_id, report_id,
        ))
        db.update_report(report_id, mention_stats=stats)
        return {'total': stats['total'], 'inserted': inserted}

    def _step_strategic_summary(self, run, state):
        report = db.get_report_for_run(run.id)
        if report is None or not report.competitor_analysis:
            return {'skipped': True}

        analysis = self._analysis(state)
        summary = enrichment.generate_strategic_summary(
            self.llm, analysis.company_name, analysis.industry,
            {
                'desirability': report.visibility_score,
                'awareness': report.researchability_score or 0,
                'differentiation': report.differentiation_score or enrichment.NEUTRAL_DIFFERENTIATION,
            },
            report.competitor_analysis,
            run_id=run.id,
        )
        db.update_report(report.id, strategic_summary=summary)
        return {'overall_health': summary['score_interpretation']['overall_health']}

    def _step_role_action_plans(self, run, state):
        analysis = self._analysis(state)
        families = self._research(state).active_families
        responses = [r for r in self._scored_responses(run.id) if r['sentiment_score'] is not None]
        scores = role_family_scores(responses, families)

        plans = {}
        for family in families:
            family_responses = [r for r in responses if r['job_family'] == family]
            if not family_responses:
                continue
            try:
                plans[family] = enrichment.generate_role_action_plan(
                    self.llm, analysis.company_name, analysis.industry, family,
                    scores[family], family_responses, run_id=run.id,
                )
            except Exception as e:
                logger.error("Role action plan for %s failed: %s", family, e, exc_info=True)

        if plans:
            db.update_report(self._report_id(state), role_action_plans=plans)
        return {'families': sorted(plans)}

    def _step_record_score_history(self, run, state):
        report = db.get_report_for_run(run.id)
        if report is None:
            return {'skipped': True}
        if db.has_score_history(report.id):
            logger.info("Score history for report %s already recorded", report.id)
            return {'skipped': True}

        families = self._research(state).active_families
        responses = [r for r in self._scored_responses(run.id) if r['sentiment_score'] is not None]
        scores = {
            'desirability_score': report.visibility_score,
            'awareness_score': report.researchability_score,
            'differentiation_score': report.differentiation_score,
            'platform_scores': report.platform_scores or {},
            'role_family_scores': role_family_scores(responses, families) if families else None,
        }

        competitor_rows = []
        if report.competitor_analysis:
            competitor_rows = enrichment.competitor_history_rows(report.competitor_analysis)
            target = next((r for r in competitor_rows if r['is_target']), None)
            if target is not None:
                scores['competitor_rank'] = target['rank_by_composite']
                scores['competitor_count'] = len(competitor_rows)
                scores['dimension_scores'] = target['dimension_scores']

        db.insert_score_history(
            report.id, run.organization_id, run.monitored_domain_id,
            competitor_rows=competitor_rows, **scores,
        )
        return {'competitor_rows': len(competitor_rows), 'competitor_rank': scores.get('competitor_rank')}

    def _step_mark_complete(self, run, state):
        report = db.get_report_for_run(run.id)
        notify_scan_complete(
            db.get_scan_run(run.id), report,
            company_name=self._analysis(state).company_name,
            cost=get_run_cost(run.id),
        )
        if run.monitored_domain_id is not None and not self._superseded(run):
            self.redis.delete(ACTIVE_SCAN_KEY.format(run.monitored_domain_id))
        logger.info("Scan %s complete — report %s", run.id, report.url_token if report else '-')
        return {'report_id': report.id if report else None}


# ── Public API ────────────────────────────────────────────────────────────────

def launch_scan(domain: str, organization_id: str = None, monitored_domain_id: int = None):
    """
    Create a ScanRun and enqueue run_scan as a background RQ job.

    For a monitored domain, the new run becomes the active scan; any earlier
    run still in flight stops before its next step.
    """
    domain = normalize_domain(domain)
    if not domain:
        raise ValueError("A domain is required")

    run_id = str(uuid.uuid4())
    run = db.create_scan_run(run_id, domain, organization_id, monitored_domain_id)
    if monitored_domain_id is not None:
        _redis().set(ACTIVE_SCAN_KEY.format(monitored_domain_id), run_id, ex=ACTIVE_SCAN_TTL)

    _get_queue().enqueue(run_scan, run_id, job_timeout=SCAN_TIMEOUT_SECONDS)
    logger.info("Launched scan %s for %s", run_id, domain)
    return run


def run_scan(run_id: str):
    """RQ job entry point."""
    return ScanWorkflow().run(run_id)


def resume_scan(run_id: str):
    """Re-enqueue a run whose steps are not all done. Returns the run, or None if unknown."""
    run = db.get_scan_run(run_id)
    if run is None:
        return None
    if 'mark-complete' in (run.completed_steps or []):
        raise ValueError(f"Scan {run_id} is already complete")
    if run.monitored_domain_id is not None:
        _redis().set(ACTIVE_SCAN_KEY.format(run.monitored_domain_id), run_id, ex=ACTIVE_SCAN_TTL)
    _get_queue().enqueue(run_scan, run_id, job_timeout=SCAN_TIMEOUT_SECONDS)
    logger.info("Re-enqueued scan %s from step %d/%d", run_id, len(run.completed_steps or []), len(SCAN_STEPS))
    return run


def get_scan_status(run_id: str) -> dict:
    run = db.get_scan_run(run_id)
    if run is None:
        return None
    return run.to_dict()
