"""
Postgres persistence helpers — called from the scan workflow.

Helpers on the step path (run state, prompts, responses, reports) roll back and
re-raise so the failing step is retried. Enrichment helpers follow the same
rule; the workflow decides which steps are best-effort.

Every insert helper is idempotent per run: it checks for existing rows before
writing, so a retried step never produces duplicates.
"""
import logging
import secrets
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from app.config import REPORT_EXPIRY_DAYS, SCAN_STATUSES
from app.database import get_session
from app.models.frozen import FrozenQuestion, FrozenCompetitor, FrozenRoleFamily
from app.models.monitored_domain import MonitoredDomain
from app.models.platform_response import PlatformResponse
from app.models.report import Report
from app.models.scan_prompt import ScanPrompt
from app.models.scan_run import ScanRun
from app.models.score_history import ScoreHistory, CompetitorHistory
from app.models.site_analysis import SiteAnalysis
from app.models.web_mention import WebMention

logger = logging.getLogger('services.db')


@contextmanager
def session_scope():
    """Commit on success, roll back + re-raise on error, always close."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.error("DB transaction failed", exc_info=True)
        raise
    finally:
        session.close()


def _now():
    return datetime.now(timezone.utc)


# ── Scan runs ────────────────────────────────────────────────────────────────

def create_scan_run(run_id, domain, organization_id=None, monitored_domain_id=None):
    with session_scope() as session:
        run = ScanRun(
            id=run_id,
            domain=domain,
            organization_id=organization_id,
            monitored_domain_id=monitored_domain_id,
            status='crawling',
            progress=0,
            attempts=0,
            completed_steps=[],
            step_outputs={},
        )
        session.add(run)
        session.flush()
        session.refresh(run)
    return run


def get_scan_run(run_id):
    session = get_session()
    try:
        return session.get(ScanRun, run_id)
    finally:
        session.close()


def update_scan_status(run_id, status=None, progress=None, error_message=None):
    """Persist status/progress. Progress never moves backwards."""
    if status and status not in SCAN_STATUSES:
        raise ValueError(f"Unknown scan status: {status}")
    with session_scope() as session:
        run = session.get(ScanRun, run_id)
        if run is None:
            raise LookupError(f"Scan run {run_id} not found")
        if status:
            run.status = status
        if progress is not None:
            run.progress = max(run.progress or 0, progress)
        if error_message is not None:
            run.error_message = error_message
        if status == 'complete' and run.completed_at is None:
            run.completed_at = _now()
        if status == 'failed':
            run.completed_at = _now()


def start_attempt(run_id):
    """Bump the attempt counter; returns the new count."""
    with session_scope() as session:
        run = session.get(ScanRun, run_id)
        run.attempts = (run.attempts or 0) + 1
        if run.started_at is None:
            run.started_at = _now()
        return run.attempts


def checkpoint_step(run_id, step, output):
    """Record a completed step and its JSON-serialisable output."""
    with session_scope() as session:
        run = session.get(ScanRun, run_id)
        steps = list(run.completed_steps or [])
        if step not in steps:
            steps.append(step)
        outputs = dict(run.step_outputs or {})
        outputs[step] = output
        # Reassign so SQLAlchemy sees the JSON change
        run.completed_steps = steps
        run.step_outputs = outputs


def get_monitored_domain(monitored_domain_id):
    if monitored_domain_id is None:
        return None
    session = get_session()
    try:
        return session.get(MonitoredDomain, monitored_domain_id)
    finally:
        session.close()


# ── Site analysis ────────────────────────────────────────────────────────────

def save_site_analysis(run_id, analysis, raw_content):
    with session_scope() as session:
        row = session.query(SiteAnalysis).filter_by(run_id=run_id).first()
        if row is None:
            row = SiteAnalysis(run_id=run_id)
            session.add(row)
        row.business_name = analysis['company_name']
        row.business_type = 'Employer'
        row.industry = analysis.get('industry')
        row.location = analysis.get('location')
        row.roles = analysis.get('common_roles', [])
        row.culture_keywords = analysis.get('culture_keywords', [])
        row.detected_job_families = analysis.get('job_families', [])
        row.raw_content = (raw_content or '')[:50000]


# ── Prompts ──────────────────────────────────────────────────────────────────

def get_prompts(run_id):
    session = get_session()
    try:
        return (
            session.query(ScanPrompt)
            .filter_by(run_id=run_id)
            .order_by(ScanPrompt.sort_order, ScanPrompt.id)
            .all()
        )
    finally:
        session.close()


def insert_prompts(run_id, questions, source):
    """
    Insert the run's prompts unless the run already has some.

    Returns the run's prompt rows either way.
    """
    with session_scope() as session:
        existing = session.query(func.count(ScanPrompt.id)).filter_by(run_id=run_id).scalar()
        if not existing:
            for i, q in enumerate(questions):
                session.add(ScanPrompt(
                    run_id=run_id,
                    prompt_text=q['text'],
                    category=q.get('category') or 'reputation',
                    job_family=q.get('job_family'),
                    source=q.get('source') or source,
                    sort_order=i,
                ))
        else:
            logger.info("Run %s already has %d prompts — reusing", run_id, existing)
    return get_prompts(run_id)


# ── Platform responses ───────────────────────────────────────────────────────

def get_responses(run_id, platform=None):
    session = get_session()
    try:
        q = session.query(PlatformResponse).filter_by(run_id=run_id)
        if platform:
            q = q.filter_by(platform=platform)
        return q.order_by(PlatformResponse.id).all()
    finally:
        session.close()


def insert_responses(run_id, platform, rows):
    """Insert response rows for one platform, skipping prompts already answered."""
    with session_scope() as session:
        answered = {
            pid for (pid,) in session.query(PlatformResponse.prompt_id)
            .filter_by(run_id=run_id, platform=platform)
        }
        inserted = 0
        for row in rows:
            if row['prompt_id'] in answered:
                continue
            session.add(PlatformResponse(run_id=run_id, platform=platform, **row))
            answered.add(row['prompt_id'])
            inserted += 1
    return inserted


def update_response_sentiments(updates):
    """updates: {response_id: {score, category, positive_phrases, negative_phrases}}"""
    if not updates:
        return
    with session_scope() as session:
        for response_id, s in updates.items():
            row = session.get(PlatformResponse, response_id)
            if row is None:
                continue
            row.sentiment_score = s['score']
            row.sentiment_category = s['category']
            row.sentiment_positive_phrases = s.get('positive_phrases', [])
            row.sentiment_negative_phrases = s.get('negative_phrases', [])


# ── Frozen research sets ─────────────────────────────────────────────────────

def _frozen_query(session, model, organization_id, monitored_domain_id):
    return (
        session.query(model)
        .filter_by(organization_id=organization_id, monitored_domain_id=monitored_domain_id, is_active=True)
        .order_by(model.sort_order, model.id)
    )


def get_frozen_set(organization_id, monitored_domain_id):
    """Active frozen questions / competitors / role families as plain dicts."""
    session = get_session()
    try:
        questions = [
            {'text': q.prompt_text, 'category': q.category, 'job_family': q.job_family}
            for q in _frozen_query(session, FrozenQuestion, organization_id, monitored_domain_id)
        ]
        competitors = [
            {'name': c.name, 'domain': c.domain, 'reason': c.reason}
            for c in _frozen_query(session, FrozenCompetitor, organization_id, monitored_domain_id)
        ]
        role_families = [
            {'family': f.family, 'display_name': f.display_name, 'description': f.description}
            for f in _frozen_query(session, FrozenRoleFamily, organization_id, monitored_domain_id)
        ]
        return {'questions': questions, 'competitors': competitors, 'role_families': role_families}
    finally:
        session.close()


def _active_count(session, model, organization_id, monitored_domain_id):
    return (
        session.query(func.count(model.id))
        .filter_by(organization_id=organization_id, monitored_domain_id=monitored_domain_id, is_active=True)
        .scalar()
    )


def freeze_questions(organization_id, monitored_domain_id, questions, source):
    """Freeze questions only when the entity has no active frozen questions."""
    with session_scope() as session:
        if _active_count(session, FrozenQuestion, organization_id, monitored_domain_id):
            return 0
        for i, q in enumerate(questions):
            session.add(FrozenQuestion(
                organization_id=organization_id,
                monitored_domain_id=monitored_domain_id,
                prompt_text=q['text'],
                category=q.get('category') or 'reputation',
                job_family=q.get('job_family'),
                source=source,
                sort_order=i,
            ))
        return len(questions)


def freeze_competitors(organization_id, monitored_domain_id, competitors):
    with session_scope() as session:
        if _active_count(session, FrozenCompetitor, organization_id, monitored_domain_id):
            return 0
        for i, c in enumerate(competitors):
            session.add(FrozenCompetitor(
                organization_id=organization_id,
                monitored_domain_id=monitored_domain_id,
                name=c['name'],
                domain=c.get('domain'),
                reason=c.get('reason'),
                sort_order=i,
            ))
        return len(competitors)


def freeze_role_families(organization_id, monitored_domain_id, families):
    with session_scope() as session:
        if _active_count(session, FrozenRoleFamily, organization_id, monitored_domain_id):
            return 0
        for i, f in enumerate(families):
            session.add(FrozenRoleFamily(
                organization_id=organization_id,
                monitored_domain_id=monitored_domain_id,
                family=f['family'],
                display_name=f['display_name'],
                description=f.get('description'),
                source='auto',
                sort_order=i,
            ))
        return len(families)


def unfreeze_entity(organization_id, monitored_domain_id):
    """Deactivate every frozen row for the entity. Returns counts per kind."""
    counts = {}
    with session_scope() as session:
        for key, model in (('questions', FrozenQuestion),
                           ('competitors', FrozenCompetitor),
                           ('role_families', FrozenRoleFamily)):
            counts[key] = (
                session.query(model)
                .filter_by(organization_id=organization_id, monitored_domain_id=monitored_domain_id, is_active=True)
                .update({'is_active': False}, synchronize_session=False)
            )
    logger.info("Unfroze org=%s domain=%s: %s", organization_id, monitored_domain_id, counts)
    return counts


def upsert_competitor_domains(organization_id, competitors):
    """Track researched competitors as non-primary monitored domains."""
    with session_scope() as session:
        added = 0
        for c in competitors:
            domain = (c.get('domain') or f"{c['name'].lower().replace(' ', '')}.com").lower()
            exists = session.query(MonitoredDomain.id).filter_by(
                organization_id=organization_id, domain=domain,
            ).first()
            if exists:
                continue
            session.add(MonitoredDomain(
                organization_id=organization_id,
                domain=domain,
                company_name=c['name'],
                is_primary=False,
            ))
            added += 1
        return added


# ── Reports ──────────────────────────────────────────────────────────────────

def create_report(run_id, **fields):
    """Insert the run's report; returns the existing one if already written."""
    with session_scope() as session:
        report = session.query(Report).filter_by(run_id=run_id).first()
        if report is not None:
            return report
        report = Report(
            run_id=run_id,
            url_token=secrets.token_hex(8),
            expires_at=_now() + timedelta(days=REPORT_EXPIRY_DAYS),
            **fields,
        )
        session.add(report)
        session.flush()
        session.refresh(report)
        return report


def get_report_for_run(run_id):
    session = get_session()
    try:
        return session.query(Report).filter_by(run_id=run_id).first()
    finally:
        session.close()


def get_report_by_token(url_token):
    session = get_session()
    try:
        return session.query(Report).filter_by(url_token=url_token).first()
    finally:
        session.close()


def update_report(report_id, **fields):
    with session_scope() as session:
        report = session.get(Report, report_id)
        if report is None:
            raise LookupError(f"Report {report_id} not found")
        for key, value in fields.items():
            setattr(report, key, value)


# ── Score history ────────────────────────────────────────────────────────────

def has_score_history(report_id):
    session = get_session()
    try:
        return session.query(ScoreHistory.id).filter_by(report_id=report_id).first() is not None
    finally:
        session.close()


def insert_score_history(report_id, organization_id, monitored_domain_id, competitor_rows=None, **scores):
    """One ScoreHistory row plus optional CompetitorHistory rows, in one transaction."""
    with session_scope() as session:
        session.add(ScoreHistory(
            report_id=report_id,
            organization_id=organization_id,
            monitored_domain_id=monitored_domain_id,
            **scores,
        ))
        for row in competitor_rows or []:
            session.add(CompetitorHistory(
                report_id=report_id,
                organization_id=organization_id,
                monitored_domain_id=monitored_domain_id,
                **row,
            ))


# ── Web mentions ─────────────────────────────────────────────────────────────

def insert_web_mentions(run_id, rows):
    """Insert mentions, skipping url_hashes already stored for the run."""
    with session_scope() as session:
        known = {h for (h,) in session.query(WebMention.url_hash).filter_by(run_id=run_id)}
        inserted = 0
        for row in rows:
            if row['url_hash'] in known:
                continue
            session.add(WebMention(run_id=run_id, **row))
            known.add(row['url_hash'])
            inserted += 1
        return inserted
