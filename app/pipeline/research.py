"""
Question / competitor research for a scan.

Three sources, in order of preference:
  frozen            the entity's frozen set, reused verbatim so repeated scans compare like for like
  employer_research fresh LLM research (Claude, OpenAI as fallback) + role-family questions
  fallback          fixed templates; never raises

run_research also owns the step's side effects: prompt rows for the run,
freezing a first set for the entity, and tracking researched competitors as
non-primary monitored domains.
"""
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from pydantic import BaseModel, Field

from app.config import MODEL_ANALYSIS, MODEL_CLAUDE, QUESTION_CATEGORIES
from app.pipeline.employer import JOB_FAMILIES, EmployerAnalysis, default_families_for_industry
from app.services import db

logger = logging.getLogger('pipeline.research')

SIMILARITY_THRESHOLD = 0.5


@dataclass
class ResearchResult:
    questions: List[dict] = field(default_factory=list)     # [{text, category, job_family}]
    competitors: List[dict] = field(default_factory=list)   # [{name, domain, reason}]
    used_frozen_data: bool = False
    source: str = 'employer_research'
    active_families: List[str] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


# ── Templates ─────────────────────────────────────────────────────────────────

ROLE_QUESTION_TEMPLATES = {
    'engineering': (
        ('What is it like to work as a software engineer at {company}?', 'culture'),
        ('How does {company} compare to {competitor} for engineering careers?', 'comparison'),
    ),
    'business': (
        ('What is it like to work in sales or marketing at {company}?', 'culture'),
        ('What are the career growth opportunities for business roles at {company}?', 'growth'),
    ),
    'operations': (
        ('What is it like to work in operations at {company}?', 'culture'),
        ('How does {company} treat its operations and supply chain staff?', 'reputation'),
    ),
    'creative': (
        ('What is it like to work as a designer at {company}?', 'culture'),
        ('Is {company} a good place for creative careers in {industry}?', 'industry'),
    ),
    'corporate': (
        ('What is it like to work in finance, HR or legal at {company}?', 'culture'),
        ('How is the work-life balance for corporate roles at {company}?', 'balance'),
    ),
}


def _template_values(analysis: EmployerAnalysis, competitors):
    first = next((c['name'] for c in competitors or [] if c.get('name')), None)
    return {
        'company': analysis.company_name,
        'industry': analysis.industry or 'its industry',
        'location': analysis.location,
        'competitor': first or 'other employers',
    }


def generate_role_family_questions(analysis: EmployerAnalysis, families: List[str],
                                   competitors: List[dict] = None) -> List[dict]:
    """Two templated questions per job family, tagged with the family."""
    values = _template_values(analysis, competitors)
    questions = []
    for family in families:
        for template, category in ROLE_QUESTION_TEMPLATES.get(family, ()):
            questions.append({
                'text': template.format(**values),
                'category': category,
                'job_family': family,
            })
    return questions


def generate_fallback_questions(analysis: EmployerAnalysis, competitors: List[dict] = None) -> List[dict]:
    """Generic employer questions used when research fails. Pure; never raises."""
    values = _template_values(analysis, competitors)
    company, industry = values['company'], values['industry']
    where = f" in {values['location']}" if values['location'] else ''
    has_competitor = any(c.get('name') for c in competitors or [])

    questions = [
        (f'What is it like to work at {company}?', 'reputation'),
        (f'Is {company} a good place to work{where}?', 'reputation'),
        (f'What is the company culture like at {company}?', 'culture'),
        (f'How much does {company} pay compared to other {industry} companies?', 'compensation'),
        (f'What benefits does {company} offer employees?', 'compensation'),
        (f'What are the career growth opportunities at {company}?', 'growth'),
        (f'How is the work-life balance at {company}?', 'balance'),
        (f'What do employees say about the leadership at {company}?', 'leadership'),
        (f'What are the best {industry} companies to work for{where}?', 'industry'),
        (f"Should I work at {company} or {values['competitor']}?" if has_competitor
         else f'How does {company} compare to other {industry} employers?', 'comparison'),
    ]
    return [{'text': text, 'category': category, 'job_family': None} for text, category in questions]


# ── Dedup ─────────────────────────────────────────────────────────────────────

def _words(text):
    return set(re.findall(r'[a-z0-9]+', (text or '').lower()))


def question_similarity(a: str, b: str) -> float:
    """Word-level Jaccard similarity."""
    wa, wb = _words(a), _words(b)
    if not wa or not wb:
        return 0.0
    return len(wa & wb) / len(wa | wb)


def dedupe_questions(questions: List[dict], threshold: float = SIMILARITY_THRESHOLD) -> List[dict]:
    """Drop near-duplicates; the first of each similar group wins."""
    kept = []
    for q in questions:
        if any(question_similarity(q['text'], k['text']) >= threshold for k in kept):
            continue
        kept.append(q)
    return kept


def normalize_category(category: Optional[str]) -> str:
    value = (category or '').strip().lower()
    return value if value in QUESTION_CATEGORIES else 'reputation'


# ── Fresh research ────────────────────────────────────────────────────────────

class ResearchQuestion(BaseModel):
    question: str
    category: str = Field(description=' | '.join(QUESTION_CATEGORIES))


class ResearchCompetitor(BaseModel):
    name: str
    domain: Optional[str] = None
    reason: str = ''


class EmployerResearchOutput(BaseModel):
    questions: List[ResearchQuestion]
    competitors: List[ResearchCompetitor] = Field(default_factory=list)


RESEARCH_PROMPT = '''You are researching how job seekers ask AI assistants about an employer.

EMPLOYER: {company}
INDUSTRY: {industry}
LOCATION: {location}
ROLES THEY HIRE FOR: {roles}
CULTURE SIGNALS FROM THEIR SITE: {culture}

1. Write 8-12 natural questions a job seeker would ask ChatGPT or Claude when deciding whether to
   work at {company}. Spread them across these categories: {categories}.
   Use the company name in most questions. Include at least one question comparing {company}
   with a named competitor employer.

2. List 3-6 companies that compete with {company} for the same talent (similar roles, industry
   and location). Give each one's website domain if you know it and a one-line reason.'''


def research_employer(llm, analysis: EmployerAnalysis, run_id: str = None) -> ResearchResult:
    """LLM research. Claude first, then OpenAI. Raises if both fail or return no questions."""
    prompt = RESEARCH_PROMPT.format(
        company=analysis.company_name,
        industry=analysis.industry or 'Unknown',
        location=analysis.location or 'Unknown',
        roles=', '.join(analysis.common_roles) or 'Unknown',
        culture=', '.join(analysis.culture_keywords) or 'None found',
        categories=', '.join(QUESTION_CATEGORIES),
    )

    last_error = None
    for provider, model in (('anthropic', MODEL_CLAUDE), ('openai', MODEL_ANALYSIS)):
        try:
            parsed, _ = llm.generate_object(
                provider, model, EmployerResearchOutput, prompt,
                max_tokens=3000, run_id=run_id, step='employer_research',
            )
        except Exception as e:
            last_error = e
            logger.warning("Employer research via %s failed: %s", provider, e)
            continue

        questions = [
            {'text': q.question.strip(), 'category': normalize_category(q.category), 'job_family': None}
            for q in parsed.questions if q.question.strip()
        ]
        competitors = [
            {'name': c.name.strip(), 'domain': (c.domain or '').strip().lower() or None, 'reason': c.reason}
            for c in parsed.competitors if c.name.strip()
        ]
        if questions:
            return ResearchResult(questions=questions, competitors=competitors[:6])
        last_error = ValueError(f'{provider} returned no questions')

    raise last_error


# ── Research step ─────────────────────────────────────────────────────────────

def resolve_active_families(frozen_families: List[str], analysis: EmployerAnalysis,
                            use_industry_defaults: bool = True) -> List[str]:
    """Frozen role families, else detected ones, else industry defaults."""
    if frozen_families:
        return list(frozen_families)
    if analysis.family_codes:
        return analysis.family_codes
    return default_families_for_industry(analysis.industry) if use_industry_defaults else []


def _from_frozen(frozen, analysis):
    questions = [dict(q) for q in frozen['questions']]
    competitors = [dict(c) for c in frozen['competitors']]
    frozen_families = [f['family'] for f in frozen['role_families']]
    families = resolve_active_families(frozen_families, analysis)

    # Questions frozen before role tagging carry no job_family. The role-family
    # supplement is rebuilt per run from the templates; the frozen rows stay as they are.
    if any(not q.get('job_family') for q in questions):
        known = {q['text'] for q in questions}
        supplemental = [
            q for q in generate_role_family_questions(analysis, families, competitors)
            if q['text'] not in known
        ]
        if supplemental:
            logger.info("Legacy frozen set: adding %d role-family questions for %s",
                        len(supplemental), ', '.join(families))
            questions.extend(supplemental)

    return ResearchResult(
        questions=questions,
        competitors=competitors,
        used_frozen_data=True,
        source='frozen',
        active_families=families,
    )


def _freeze(result, analysis, organization_id, monitored_domain_id):
    """Freeze a first set for the entity. Each freeze_* helper is a no-op if one already exists."""
    try:
        db.freeze_questions(organization_id, monitored_domain_id, result.questions, source=result.source)
        if result.competitors:
            db.freeze_competitors(organization_id, monitored_domain_id, result.competitors)
        families = [f for f in analysis.job_families if f['family'] in result.active_families]
        if families:
            db.freeze_role_families(organization_id, monitored_domain_id, [
                {
                    'family': f['family'],
                    'display_name': JOB_FAMILIES[f['family']]['label'],
                    'description': JOB_FAMILIES[f['family']]['description'],
                }
                for f in families
            ])
    except Exception as e:
        logger.error("Freezing research for domain %s failed: %s", monitored_domain_id, e, exc_info=True)


def run_research(llm, run_id: str, analysis: EmployerAnalysis,
                 organization_id: str = None, monitored_domain_id: int = None):
    """
    Research step. Returns (ResearchResult, prompt rows for the run).

    Prompt rows are inserted only if the run has none yet, so a retried step
    reuses the rows from the earlier attempt.
    """
    scoped = organization_id is not None and monitored_domain_id is not None
    frozen = db.get_frozen_set(organization_id, monitored_domain_id) if scoped else None

    if frozen and (frozen['questions'] or frozen['competitors'] or frozen['role_families']):
        logger.info("Using frozen data: %d questions, %d competitors, %d role families",
                    len(frozen['questions']), len(frozen['competitors']), len(frozen['role_families']))
        result = _from_frozen(frozen, analysis)
        if not result.questions:
            result.questions = generate_fallback_questions(analysis, result.competitors)
        prompts = db.insert_prompts(run_id, result.questions, source='frozen')
        return result, prompts

    families = resolve_active_families([], analysis, use_industry_defaults=False)
    try:
        result = research_employer(llm, analysis, run_id=run_id)
        result.questions = dedupe_questions(
            result.questions + generate_role_family_questions(analysis, families, result.competitors)
        )
    except Exception as e:
        logger.error("Employer research failed, using fallback questions: %s", e)
        result = ResearchResult(
            questions=generate_fallback_questions(analysis),
            source='fallback',
        )
    result.active_families = families

    prompts = db.insert_prompts(run_id, result.questions, source=result.source)

    if scoped:
        _freeze(result, analysis, organization_id, monitored_domain_id)
        if result.competitors:
            try:
                db.upsert_competitor_domains(organization_id, result.competitors)
            except Exception as e:
                logger.error("Competitor domain upsert failed: %s", e, exc_info=True)

    logger.info("Research (%s): %d questions, %d competitors",
                result.source, len(result.questions), len(result.competitors))
    return result, prompts
