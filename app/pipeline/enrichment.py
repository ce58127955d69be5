"""
Post-report enrichment: employer comparison, strategic summary, role action
plans and score-history snapshots.

These run after the report is written. Callers log and swallow failures;
nothing here may move a complete run back to failed.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.config import MODEL_CLAUDE
from app.pipeline.employer import JOB_FAMILIES

logger = logging.getLogger('pipeline.enrichment')

DIMENSIONS = ('compensation', 'culture', 'growth', 'balance', 'leadership', 'tech', 'mission')

DIMENSION_LABELS = {
    'compensation': 'Compensation & benefits',
    'culture': 'Culture & values',
    'growth': 'Career growth',
    'balance': 'Work-life balance',
    'leadership': 'Leadership',
    'tech': 'Technology & innovation',
    'mission': 'Mission & impact',
}

INSIGHT_THRESHOLD = 0.5
NEUTRAL_DIFFERENTIATION = 50
DEFAULT_DIMENSION_SCORE = 5


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _mean(values, default=0.0):
    values = list(values)
    return sum(values) / len(values) if values else default


# ── Employer comparison ───────────────────────────────────────────────────────

class DimensionScores(BaseModel):
    compensation: float = Field(ge=1, le=10)
    culture: float = Field(ge=1, le=10)
    growth: float = Field(ge=1, le=10)
    balance: float = Field(ge=1, le=10)
    leadership: float = Field(ge=1, le=10)
    tech: float = Field(ge=1, le=10)
    mission: float = Field(ge=1, le=10)


class EmployerProfile(BaseModel):
    name: str
    scores: DimensionScores
    highlights: List[str] = Field(default_factory=list, description='2-3 short phrases on what stands out')


class EmployerComparisonOutput(BaseModel):
    employers: List[EmployerProfile]
    recommendations: List[str] = Field(default_factory=list)


COMPARE_PROMPT = '''You are an employer brand analyst comparing employers the way a job seeker would.

TARGET EMPLOYER: {company} ({industry})
COMPETITOR EMPLOYERS: {competitors}

Score every employer above, the target included, from 1 to 10 on each dimension:
- compensation: pay and benefits relative to the market
- culture: values, inclusion, how people describe working there
- growth: career progression, learning, promotion
- balance: work-life balance, flexibility, remote options
- leadership: quality and reputation of management
- tech: technology, tooling and innovation
- mission: purpose and impact of the work

Use what is publicly known about each employer. Score relative to each other, not in isolation,
so real differences show. Give 2-3 highlights per employer and up to 3 recommendations for how
{company} could strengthen its position against these competitors.

Use the employer names exactly as written above.'''


def employer_differentiation(scores: Dict[str, float], peers: List[Dict[str, float]]) -> dict:
    """
    How distinct one employer's dimension profile is from its peers (0-100).

    Profile distance from the peer average 40%, share of dimensions at least
    0.5 above the peer average 30%, spread of the employer's own scores 30%.
    No peers scores 50.
    """
    if not peers:
        return {'differentiation_score': NEUTRAL_DIFFERENTIATION, 'strength_count': 0, 'weakness_count': 0}

    averages = {d: _mean(p.get(d, DEFAULT_DIMENSION_SCORE) for p in peers) for d in DIMENSIONS}
    gaps = {d: scores.get(d, DEFAULT_DIMENSION_SCORE) - averages[d] for d in DIMENSIONS}

    distance = math.sqrt(sum(g * g for g in gaps.values()))
    max_distance = math.sqrt(len(DIMENSIONS)) * 9
    distance_part = distance / max_distance * 40

    strength_count = sum(1 for g in gaps.values() if g >= INSIGHT_THRESHOLD)
    weakness_count = sum(1 for g in gaps.values() if g <= -INSIGHT_THRESHOLD)
    strength_part = strength_count / len(DIMENSIONS) * 30

    own = [scores.get(d, DEFAULT_DIMENSION_SCORE) for d in DIMENSIONS]
    avg = _mean(own)
    variance = _mean((s - avg) ** 2 for s in own)
    variance_part = min(variance / 10 * 30, 30)

    return {
        'differentiation_score': int(max(0, min(100, round(distance_part + strength_part + variance_part)))),
        'strength_count': strength_count,
        'weakness_count': weakness_count,
    }


def _match_profile(profiles, name):
    wanted = name.strip().lower()
    for profile in profiles:
        if profile.name.strip().lower() == wanted:
            return profile
    return None


def compare_employers(llm, company_name: str, industry: str, competitors: List[dict],
                      run_id: str = None) -> Optional[dict]:
    """
    Dimension comparison of the target against researched competitors.

    Returns None when there is nothing to compare. Raises when the model call
    fails or omits the target.
    """
    names = [c['name'] for c in competitors if c.get('name')]
    if not names:
        logger.info("No competitors to compare %s against, skipping", company_name)
        return None

    prompt = COMPARE_PROMPT.format(
        company=company_name,
        industry=industry or 'Unknown industry',
        competitors=', '.join(names),
    )
    parsed, _ = llm.generate_object(
        'anthropic', MODEL_CLAUDE, EmployerComparisonOutput, prompt,
        max_tokens=4000, run_id=run_id, step='compare_employers',
    )

    target = _match_profile(parsed.employers, company_name)
    if target is None:
        raise ValueError(f"Comparison did not score the target employer {company_name}")

    rows = [(company_name, True, target)]
    for name in names:
        profile = _match_profile(parsed.employers, name)
        if profile is not None:
            rows.append((name, False, profile))

    employers = []
    all_scores = [p.scores.model_dump() for _, _, p in rows]
    for idx, (name, is_target, profile) in enumerate(rows):
        scores = all_scores[idx]
        peers = all_scores[:idx] + all_scores[idx + 1:]
        diff = employer_differentiation(scores, peers)
        employers.append({
            'name': name,
            'is_target': is_target,
            'scores': {d: round(scores[d], 1) for d in DIMENSIONS},
            'highlights': profile.highlights[:3],
            **diff,
        })

    target_scores = employers[0]['scores']
    peer_scores = [e['scores'] for e in employers[1:]]
    strengths, weaknesses = [], []
    if peer_scores:
        for d in DIMENSIONS:
            gap = target_scores[d] - _mean(p[d] for p in peer_scores)
            if gap >= INSIGHT_THRESHOLD:
                strengths.append(d)
            elif gap <= -INSIGHT_THRESHOLD:
                weaknesses.append(d)

    logger.info("Compared %s with %d competitors: %d strengths, %d weaknesses",
                company_name, len(employers) - 1, len(strengths), len(weaknesses))
    return {
        'dimensions': list(DIMENSIONS),
        'employers': employers,
        'insights': {
            'strengths': strengths,
            'weaknesses': weaknesses,
            'recommendations': parsed.recommendations[:3],
        },
        'generated_at': _now_iso(),
    }


def target_entry(competitor_analysis: dict) -> Optional[dict]:
    return next((e for e in (competitor_analysis or {}).get('employers', []) if e.get('is_target')), None)


def competitor_averages(competitor_analysis: dict) -> Dict[str, float]:
    """Per-dimension competitor average, one decimal. 5 where no competitor was scored."""
    peers = [e for e in competitor_analysis.get('employers', []) if not e.get('is_target')]
    return {
        d: round(_mean((e['scores'].get(d, DEFAULT_DIMENSION_SCORE) for e in peers),
                       default=DEFAULT_DIMENSION_SCORE), 1)
        for d in DIMENSIONS
    }


# ── Strategic summary ─────────────────────────────────────────────────────────

Dimension = Literal['compensation', 'culture', 'growth', 'balance', 'leadership', 'tech', 'mission']


class ScoreInterpretation(BaseModel):
    desirability: str
    awareness: str
    differentiation: str
    overall_health: Literal['strong', 'moderate', 'needs_attention', 'critical']


class StrengthInsight(BaseModel):
    dimension: Dimension
    headline: str
    leverage_strategy: str


class GapInsight(BaseModel):
    dimension: Dimension
    headline: str
    business_impact: str
    top_competitor: str


class Recommendation(BaseModel):
    title: str
    description: str
    effort: Literal['quick_win', 'moderate', 'significant']
    impact: Literal['high', 'medium', 'low']
    priority: Literal['immediate', 'short_term', 'long_term']
    related_dimension: Optional[Dimension] = None


class StrategicSummaryOutput(BaseModel):
    executive_summary: str
    competitive_positioning: str
    score_interpretation: ScoreInterpretation
    strengths: List[StrengthInsight]
    gaps: List[GapInsight]
    recommendations: List[Recommendation]
    industry_context: str
    top_talent_competitor: str


STRATEGY_PROMPT = '''You are a senior employer brand strategist writing for a recruitment agency's client.

EMPLOYER: {company}
INDUSTRY: {industry}

AI PERCEPTION SCORES (0-100):
- Desirability: {desirability} (how favourably AI assistants describe {company} as an employer)
- Awareness: {awareness} (how much AI assistants actually know about it)
- Differentiation: {differentiation} (how distinct its profile is from competitors)

DIMENSION COMPARISON (1-10, {company} vs competitor average):
{dimension_table}

COMPETITORS: {competitors}

Write:
- an executive summary of 2-3 sentences for stakeholders
- a one-line competitive positioning statement
- a short interpretation of each score and an overall health rating
- 2-3 strengths (prefer dimensions marked STRENGTH) with how to leverage each in employer branding
- 2-3 gaps (prefer dimensions marked GAP) with the business impact and the competitor to learn from
- 5-7 prioritised, concrete recommendations
- one sentence of industry context and the single biggest competitor for talent'''


def _dimension_table(target_scores, averages):
    lines = []
    for d in DIMENSIONS:
        diff = target_scores.get(d, DEFAULT_DIMENSION_SCORE) - averages[d]
        status = 'STRENGTH' if diff >= 1.5 else 'GAP' if diff <= -1.5 else 'PARITY'
        lines.append(f'- {DIMENSION_LABELS[d]}: {target_scores.get(d, DEFAULT_DIMENSION_SCORE)} '
                     f'vs {averages[d]} ({diff:+.1f}, {status})')
    return '\n'.join(lines)


def overall_health(desirability: int, awareness: int, differentiation: int) -> str:
    avg = (desirability + awareness + differentiation) / 3
    if avg >= 70:
        return 'strong'
    if avg >= 40:
        return 'moderate'
    if avg >= 15:
        return 'needs_attention'
    return 'critical'


def _top_competitor_for(competitor_analysis, dimension):
    peers = [e for e in competitor_analysis.get('employers', []) if not e.get('is_target')]
    if not peers:
        return 'Industry leaders'
    return max(peers, key=lambda e: e['scores'].get(dimension, 0))['name']


def fallback_strategic_summary(company_name: str, industry: str, scores: dict,
                               competitor_analysis: dict) -> dict:
    """Deterministic summary used when the model call fails."""
    desirability = scores['desirability']
    awareness = scores['awareness']
    differentiation = scores['differentiation']
    target = target_entry(competitor_analysis) or {'scores': {}}
    averages = competitor_averages(competitor_analysis)
    insights = competitor_analysis.get('insights', {})
    peers = [e['name'] for e in competitor_analysis.get('employers', []) if not e.get('is_target')]

    strengths = [
        {
            'dimension': d,
            'score': target['scores'].get(d, DEFAULT_DIMENSION_SCORE),
            'competitor_avg': averages[d],
            'headline': f'Strong {DIMENSION_LABELS[d].lower()}',
            'leverage_strategy': f'Highlight {DIMENSION_LABELS[d].lower()} in careers content and job ads.',
        }
        for d in insights.get('strengths', [])[:2]
    ]
    gaps = [
        {
            'dimension': d,
            'score': target['scores'].get(d, DEFAULT_DIMENSION_SCORE),
            'competitor_avg': averages[d],
            'headline': f'{DIMENSION_LABELS[d]} trails competitors',
            'business_impact': f'Candidates comparing offers may favour employers stronger on '
                               f'{DIMENSION_LABELS[d].lower()}.',
            'top_competitor': _top_competitor_for(competitor_analysis, d),
        }
        for d in insights.get('weaknesses', [])[:2]
    ]

    return {
        'executive_summary': (
            f'{company_name} scores {desirability} on desirability, {awareness} on awareness and '
            f'{differentiation} on differentiation in AI assistant responses. '
            f'The scores show where careers content can shift how AI describes {company_name} to candidates.'
        ),
        'competitive_positioning': f'{company_name} competes for {industry or "industry"} talent '
                                   f'against {", ".join(peers[:3]) or "established employers"}.',
        'score_interpretation': {
            'desirability': f'{desirability}/100: how favourably AI describes {company_name} as an employer.',
            'awareness': f'{awareness}/100: how much specific information AI has about {company_name}.',
            'differentiation': f'{differentiation}/100: how distinct {company_name} appears from competitors.',
            'overall_health': overall_health(desirability, awareness, differentiation),
        },
        'strengths': strengths,
        'gaps': gaps,
        'recommendations': [
            {
                'title': 'Audit careers page content',
                'description': 'Make sure the careers site covers pay, benefits, growth paths and culture '
                               'in specific, crawlable text.',
                'effort': 'quick_win',
                'impact': 'high',
                'priority': 'immediate',
            },
            {
                'title': 'Develop employee stories',
                'description': 'Publish first-hand employee stories that AI assistants can cite when '
                               'candidates ask what it is like to work here.',
                'effort': 'moderate',
                'impact': 'medium',
                'priority': 'short_term',
            },
        ],
        'industry_context': f'AI assistants compare {company_name} with other {industry or "industry"} employers '
                            f'when candidates research their options.',
        'top_talent_competitor': peers[0] if peers else 'Unknown',
        'generated_at': _now_iso(),
    }


def generate_strategic_summary(llm, company_name: str, industry: str, scores: dict,
                               competitor_analysis: dict, run_id: str = None) -> dict:
    """
    Executive summary, strengths/gaps and recommendations for the report.

    scores: {desirability, awareness, differentiation}. Falls back to a
    deterministic summary when the model call fails.
    """
    target = target_entry(competitor_analysis)
    if target is None:
        raise ValueError('Competitor analysis has no target employer')

    averages = competitor_averages(competitor_analysis)
    peers = [e['name'] for e in competitor_analysis['employers'] if not e.get('is_target')]
    prompt = STRATEGY_PROMPT.format(
        company=company_name,
        industry=industry or 'Unknown',
        desirability=scores['desirability'],
        awareness=scores['awareness'],
        differentiation=scores['differentiation'],
        dimension_table=_dimension_table(target['scores'], averages),
        competitors=', '.join(peers) or 'None identified',
    )

    try:
        parsed, _ = llm.generate_object(
            'anthropic', MODEL_CLAUDE, StrategicSummaryOutput, prompt,
            max_tokens=4000, run_id=run_id, step='strategic_summary',
        )
    except Exception as e:
        logger.warning("Strategic summary generation failed, using fallback: %s", e)
        return fallback_strategic_summary(company_name, industry, scores, competitor_analysis)

    summary = parsed.model_dump()
    for item in summary['strengths'] + summary['gaps']:
        item['score'] = target['scores'].get(item['dimension'], DEFAULT_DIMENSION_SCORE)
        item['competitor_avg'] = averages.get(item['dimension'], DEFAULT_DIMENSION_SCORE)
    summary['strengths'] = summary['strengths'][:3]
    summary['gaps'] = summary['gaps'][:3]
    summary['recommendations'] = summary['recommendations'][:7]
    summary['generated_at'] = _now_iso()
    return summary


# ── Role action plans ─────────────────────────────────────────────────────────

class RoleRecommendation(BaseModel):
    title: str
    description: str
    effort: Literal['quick_win', 'moderate', 'significant']
    impact: Literal['high', 'medium', 'low']


class RoleActionPlanOutput(BaseModel):
    headline: str
    summary: str
    recommendations: List[RoleRecommendation] = Field(min_length=1)


ROLE_PLAN_PROMPT = '''You are advising {company} ({industry}) on attracting {label} talent.

Roles in this family: {description}

How AI assistants currently describe {company} to {label} candidates:
- Desirability: {desirability}/100
- Awareness: {awareness}/100

Sample AI responses to questions from these candidates:
{samples}

Write a headline (one sentence), a 2-3 sentence summary of how {company} is perceived by
{label} candidates, and 3-5 concrete recommendations specific to hiring these roles.'''


def generate_role_action_plan(llm, company_name: str, industry: str, family: str,
                              family_scores: dict, responses: List[dict], run_id: str = None) -> dict:
    """Headline, summary and 3-5 recommendations for one job family. Raises on failure."""
    definition = JOB_FAMILIES[family]
    samples = '\n'.join(
        f"- Q: {r['question']}\n  A: {(r.get('response_text') or '')[:400]}"
        for r in responses[:5]
    ) or '- None'

    prompt = ROLE_PLAN_PROMPT.format(
        company=company_name,
        industry=industry or 'Unknown',
        label=definition['label'],
        description=definition['description'],
        desirability=family_scores['desirability'],
        awareness=family_scores['awareness'],
        samples=samples,
    )
    parsed, _ = llm.generate_object(
        'anthropic', MODEL_CLAUDE, RoleActionPlanOutput, prompt,
        max_tokens=2000, run_id=run_id, step='role_action_plan',
    )
    return {
        'family': family,
        'label': definition['label'],
        'desirability': family_scores['desirability'],
        'awareness': family_scores['awareness'],
        'headline': parsed.headline,
        'summary': parsed.summary,
        'recommendations': [r.model_dump() for r in parsed.recommendations[:5]],
        'generated_at': _now_iso(),
    }


# ── Score history ─────────────────────────────────────────────────────────────

def competitor_history_rows(competitor_analysis: dict) -> List[dict]:
    """
    One row per compared employer, ranked by composite (mean dimension score)
    and by differentiation, both descending.
    """
    employers = competitor_analysis.get('employers', [])
    rows = []
    for e in employers:
        dims = [e['scores'].get(d, DEFAULT_DIMENSION_SCORE) for d in DIMENSIONS]
        rows.append({
            'employer_name': e['name'],
            'employer_domain': e.get('domain'),
            'is_target': bool(e.get('is_target')),
            'composite_score': round(_mean(dims, default=DEFAULT_DIMENSION_SCORE), 2),
            'differentiation_score': e.get('differentiation_score', NEUTRAL_DIFFERENTIATION),
            'dimension_scores': dict(e['scores']),
        })

    by_composite = sorted(rows, key=lambda r: r['composite_score'], reverse=True)
    for rank, row in enumerate(by_composite, start=1):
        row['rank_by_composite'] = rank
    by_diff = sorted(rows, key=lambda r: r['differentiation_score'], reverse=True)
    for rank, row in enumerate(by_diff, start=1):
        row['rank_by_differentiation'] = rank
    return rows
