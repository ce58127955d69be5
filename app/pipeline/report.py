"""
Report builder — summary text and the report row for a finished scan.
"""
import logging
from typing import List

from app.services import db

logger = logging.getLogger('pipeline.report')


def _pct(part, total):
    return round(part / total * 100) if total else 0


def _desirability_label(score):
    if score >= 70:
        return 'strong'
    if score >= 40:
        return 'moderate'
    if score >= 20:
        return 'emerging'
    return 'limited'


def _researchability_label(score):
    if score >= 70:
        return 'well-informed'
    if score >= 40:
        return 'moderately informed'
    return 'limited knowledge'


def generate_employer_summary(company_name: str, industry: str, scores: dict,
                              top_competitors: List[dict], researched_competitors: List[dict]) -> str:
    """Plain-English summary of the headline scores. No API calls."""
    overall = scores['overall_score']
    researchability = scores['researchability_score']
    counts = scores['sentiment_counts']
    total = scores['total_responses']

    favorable = _pct(counts['strong'] + counts['positive'], total)
    negative = _pct(counts['negative'], total)
    strong = _pct(counts['strong'], total)

    parts = [
        f'{company_name} has {_desirability_label(overall)} AI employer reputation ({overall}% desirability).',
        f'AI assistants are {_researchability_label(researchability)} about {company_name} '
        f'({researchability}% researchability).',
    ]

    if strong >= 40:
        parts.append(f'AI strongly recommends {company_name} ({strong}% highly favorable).')
    elif favorable >= 60:
        parts.append(f'Responses are generally positive ({favorable}% favorable).')
    elif negative >= 30:
        parts.append(f'Some concerns emerged ({negative}% cautionary responses).')
    else:
        parts.append(f'Responses are mixed ({favorable}% favorable, {negative}% negative).')

    missing = scores.get('topics_missing') or []
    if 0 < len(missing) <= 5:
        gaps = ', '.join(t.replace('_', ' ') for t in missing[:3])
        parts.append(f'AI lacks information about: {gaps}.')

    if top_competitors:
        parts.append(f"Competitor employers mentioned: {', '.join(c['name'] for c in top_competitors[:3])}.")

    if researched_competitors:
        names = ', '.join(c['name'] for c in researched_competitors[:3])
        parts.append(f'Talent competitors in {industry}: {names}.')

    if overall < 50 and researchability >= 50:
        parts.append('Focus on addressing negative perceptions - AI knows about you but perception needs work.')
    elif overall >= 50 and researchability < 50:
        parts.append('Focus on content visibility - AI likes what it knows, but needs more information.')
    elif overall < 50 and researchability < 50:
        parts.append('Opportunity to improve both visibility and perception through careers content.')

    return ' '.join(parts)


def write_report(run_id: str, scores: dict, top_competitors: List[dict], summary: str):
    """Create the run's report row (idempotent per run). Returns the Report."""
    report = db.create_report(
        run_id,
        visibility_score=scores['overall_score'],
        platform_scores=scores['platform_scores'],
        top_competitors=top_competitors,
        summary=summary,
        researchability_score=scores['researchability_score'],
        topics_covered=scores['topics_covered'],
        topics_missing=scores['topics_missing'],
        topics_with_confidence=scores['topics_with_confidence'],
        differentiation_score=scores['differentiation_score'],
        unique_attributes=scores.get('unique_attributes', []),
        generic_phrases=scores.get('generic_phrases', []),
    )
    logger.info("Report %s for run %s: desirability=%d awareness=%d differentiation=%d",
                report.url_token, run_id, scores['overall_score'],
                scores['researchability_score'], scores['differentiation_score'])
    return report
