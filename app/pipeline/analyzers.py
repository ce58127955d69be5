"""
Response analyzers.

Per response:
  analyze_researchability   — specificity / confidence / topic coverage
  analyze_response_enhanced — highlights, flags, recommendation, hedging

Per run (all responses in one call, so scores are comparable):
  batch_analyze_sentiment       — 1–10 score, category and driving quotes per response
  batch_analyze_differentiation — competitor confusion / positioning / generic language

Per-response analyzers try structured output first and fall back to the
KEY: value line format (app.pipeline.parsing). Every analyzer returns neutral
defaults on failure; none of them raise.
"""
import logging
from typing import Dict, List

from pydantic import BaseModel, Field

from app.config import EMPLOYER_TOPICS, MODEL_ANALYSIS, MODEL_CLAUDE
from app.pipeline.parsing import (
    HEDGING_LEVELS, RECENCY_VALUES, SOURCE_QUALITIES,
    clamp, filter_topics, parse_choice, parse_enhanced, parse_researchability,
)

logger = logging.getLogger('pipeline.analyzers')

DEFAULT_RESEARCHABILITY = {'specificity': 5, 'confidence': 5, 'topics': []}
SHORT_RESEARCHABILITY = {'specificity': 3, 'confidence': 3, 'topics': []}

DEFAULT_ENHANCED = {
    'positive_highlights': [],
    'negative_highlights': [],
    'red_flags': [],
    'green_flags': [],
    'recommendation_score': 5,
    'recommendation_summary': '',
    'hedging_level': 'medium',
    'source_quality': 'none',
    'response_recency': 'unknown',
}

DEFAULT_DIFFERENTIATION = {
    'competitor_confusion': 5,
    'unique_positioning': 5,
    'generic_language': 5,
    'unique_attributes': [],
    'generic_phrases': [],
}


# ── Structured output schemas ─────────────────────────────────────────────────

class ResearchabilityOutput(BaseModel):
    specificity: int = Field(description='1=vague generics, 10=concrete details')
    confidence: int = Field(description='1=many hedges, 10=authoritative with sources')
    topics: List[str] = Field(default_factory=list, description='Employer topics covered')


class EnhancedOutput(BaseModel):
    positive_highlights: List[str] = Field(default_factory=list)
    negative_highlights: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    green_flags: List[str] = Field(default_factory=list)
    recommendation_score: int = 5
    recommendation_summary: str = ''
    hedging_level: str = 'medium'
    source_quality: str = 'none'
    response_recency: str = 'unknown'


class SentimentScore(BaseModel):
    id: str
    score: float
    positive_phrases: List[str] = Field(
        default_factory=list,
        description='2-4 exact quotes from the response that are positive about the employer',
    )
    negative_phrases: List[str] = Field(
        default_factory=list,
        description='2-4 exact quotes from the response that are negative or concerning',
    )


class BatchSentimentOutput(BaseModel):
    scores: List[SentimentScore]


class DifferentiationOutput(BaseModel):
    competitor_confusion: float
    unique_positioning: float
    generic_language: float
    unique_attributes: List[str] = Field(default_factory=list)
    generic_phrases: List[str] = Field(default_factory=list)


# ── Researchability ───────────────────────────────────────────────────────────

def _researchability_prompt(response, company_name):
    topics = '\n'.join(f'- {t}' for t in EMPLOYER_TOPICS)
    return f'''Analyze this AI response about "{company_name}" as an employer.

Response:
"""
{response[:2000]}
"""

Rate on a scale of 1-10:
1. SPECIFICITY: How detailed and specific is the information? (1=vague generics, 10=concrete details like "$150k salary, 4 weeks PTO")
2. CONFIDENCE: How certain does the AI sound? (1=many hedges/uncertainty, 10=authoritative with sources)

Also identify which employer topics are covered:
{topics}'''


RESEARCHABILITY_LINE_FORMAT = '''

Respond in this EXACT format (one line per item):
SPECIFICITY: [1-10]
CONFIDENCE: [1-10]
TOPICS: [comma-separated list from above, or "none"]'''


def analyze_researchability(llm, response: str, company_name: str, run_id: str = None) -> dict:
    """Returns {specificity, confidence, topics}."""
    if not response or len(response) < 50:
        return dict(SHORT_RESEARCHABILITY)

    prompt = _researchability_prompt(response, company_name)
    try:
        parsed, _ = llm.generate_object(
            'openai', MODEL_ANALYSIS, ResearchabilityOutput, prompt,
            max_tokens=200, run_id=run_id, step='researchability_analysis',
        )
        return {
            'specificity': int(clamp(round(parsed.specificity), 1, 10)),
            'confidence': int(clamp(round(parsed.confidence), 1, 10)),
            'topics': filter_topics(parsed.topics),
        }
    except Exception as e:
        logger.warning("Structured researchability failed, using line format: %s", e)

    try:
        result = llm.generate_text(
            'openai', MODEL_ANALYSIS, prompt + RESEARCHABILITY_LINE_FORMAT,
            max_tokens=100, run_id=run_id, step='researchability_analysis',
        )
        return parse_researchability(result.text)
    except Exception as e:
        logger.error("Researchability analysis failed: %s", e, exc_info=True)
        return dict(DEFAULT_RESEARCHABILITY)


# ── Enhanced analysis ─────────────────────────────────────────────────────────

ENHANCED_LINE_FORMAT = '''

Analyze and respond with EXACTLY this format (one item per line):

POSITIVE_HIGHLIGHTS: [list 2-4 specific positive facts/phrases, comma-separated, or "none"]
NEGATIVE_HIGHLIGHTS: [list 2-4 specific concerns/issues mentioned, comma-separated, or "none"]
RED_FLAGS: [serious warnings like layoffs, toxic culture, discrimination - comma-separated, or "none"]
GREEN_FLAGS: [strong positives like rapid growth, innovation, great benefits - comma-separated, or "none"]
RECOMMENDATION_SCORE: [1-10, would AI recommend this employer to job seekers?]
RECOMMENDATION_SUMMARY: [one sentence: who is this employer good/bad for?]
HEDGING_LEVEL: [low/medium/high - how much uncertain language like "might", "possibly", "some say"?]
SOURCE_QUALITY: [none/weak/moderate/strong - does it cite specific sources, reviews, or data?]
RESPONSE_RECENCY: [current/recent/dated/unknown - does info seem current or outdated?]'''


def _enhanced_prompt(response, company_name):
    return f'''Analyze this AI response about "{company_name}" as an employer. Extract insights about it.

RESPONSE:
"""
{response[:2500]}
"""

Extract 2-4 specific positive highlights and concerns, serious red flags (layoffs, toxic
culture, discrimination), strong green flags (rapid growth, innovation, great benefits), a
1-10 recommendation score with a one-sentence summary of who this employer suits, the
hedging level (low/medium/high), source quality (none/weak/moderate/strong) and response
recency (current/recent/dated/unknown).'''


def _clean_list(values, limit=4):
    return [str(v).strip() for v in (values or []) if str(v).strip()][:limit]


def analyze_response_enhanced(llm, response: str, company_name: str, run_id: str = None) -> dict:
    """Returns the enhanced analysis dict (see DEFAULT_ENHANCED for keys)."""
    if not response or len(response) < 100:
        return dict(DEFAULT_ENHANCED)

    prompt = _enhanced_prompt(response, company_name)
    try:
        parsed, _ = llm.generate_object(
            'openai', MODEL_ANALYSIS, EnhancedOutput, prompt,
            max_tokens=500, run_id=run_id, step='enhanced_analysis',
        )
        return {
            'positive_highlights': _clean_list(parsed.positive_highlights),
            'negative_highlights': _clean_list(parsed.negative_highlights),
            'red_flags': _clean_list(parsed.red_flags),
            'green_flags': _clean_list(parsed.green_flags),
            'recommendation_score': int(clamp(round(parsed.recommendation_score), 1, 10)),
            'recommendation_summary': parsed.recommendation_summary.strip(),
            'hedging_level': parse_choice(parsed.hedging_level, HEDGING_LEVELS, 'medium'),
            'source_quality': parse_choice(parsed.source_quality, SOURCE_QUALITIES, 'none'),
            'response_recency': parse_choice(parsed.response_recency, RECENCY_VALUES, 'unknown'),
        }
    except Exception as e:
        logger.warning("Structured enhanced analysis failed, using line format: %s", e)

    try:
        result = llm.generate_text(
            'openai', MODEL_ANALYSIS, prompt + ENHANCED_LINE_FORMAT,
            max_tokens=500, run_id=run_id, step='enhanced_analysis',
        )
        return parse_enhanced(result.text)
    except Exception as e:
        logger.error("Enhanced analysis failed: %s", e, exc_info=True)
        return dict(DEFAULT_ENHANCED)


def analyze_response(llm, response: str, company_name: str, run_id: str = None) -> dict:
    """Researchability and enhanced analysis merged into one dict."""
    analysis = analyze_researchability(llm, response, company_name, run_id)
    analysis.update(analyze_response_enhanced(llm, response, company_name, run_id))
    return analysis


# ── Batch sentiment ───────────────────────────────────────────────────────────

def sentiment_category(score: int) -> str:
    if score >= 9:
        return 'strong'
    if score >= 6:
        return 'positive'
    if score >= 4:
        return 'mixed'
    return 'negative'


def _neutral_sentiment():
    return {'score': 5, 'category': 'mixed', 'positive_phrases': [], 'negative_phrases': []}


SENTIMENT_SYSTEM_PROMPT = '''You are an expert at evaluating employer reputation content. You will analyze multiple AI responses about "{company}" as an employer and score each one on how positively it portrays the company to job seekers.

SCORING GUIDE (1-10):
- 9-10 STRONG: Enthusiastic, unqualified recommendation. Language like "excellent", "highly recommend", "great place to work", "top employer". Multiple strengths highlighted with strong conviction, no significant caveats.
- 6-8 POSITIVE: Clearly favorable overall. Recommends the company, mentions good culture/benefits/growth. May have minor caveats but overall impression is positive. Score 8 for strong positives with small caveats, 6-7 for good but more hedged.
- 4-5 MIXED: Balanced or unclear. Equal positives and negatives, or generic information without clear recommendation. Score 5 for true neutral, 4 for leaning slightly negative.
- 1-3 NEGATIVE: Warns about issues, mentions problems like turnover, burnout, poor management, or actively discourages. Score 3 for notable concerns, 2 for significant problems, 1 for strongly negative.

IMPORTANT SCORING PRINCIPLES:
1. Compare responses RELATIVE to each other - if one is clearly more positive than another, the scores should reflect that
2. Look at TONE and LANGUAGE, not just facts. Enthusiastic language = higher score
3. Do NOT default to 5. True neutrality is rare - most responses lean positive or negative
4. Consider the OVERALL impression a job seeker would get
5. Hedging and caveats lower the score even if facts are positive

PHRASE EXTRACTION:
For each response, extract 2-4 EXACT QUOTES (word-for-word from the text) that drove your score:
- positive_phrases: Quotes that improve the score (praise, benefits, recommendations)
- negative_phrases: Quotes that lower the score (concerns, warnings, negatives)
Keep quotes SHORT (5-15 words each) and EXACT from the response text.'''


def _truncate(text, limit):
    return text[:limit] + ('...' if len(text) > limit else '')


def batch_analyze_sentiment(llm, items: List[dict], company_name: str, run_id: str = None) -> Dict[str, dict]:
    """
    Score many responses in one Claude call.

    items: [{id, platform, question, response}]. Only responses of 50+ chars
    are sent. Returns {str(id): {score, category, positive_phrases,
    negative_phrases}} for every sent item; anything the model skipped, or
    everything on failure, gets 5/mixed with no quotes.
    """
    valid = [i for i in items if i.get('response') and len(i['response']) >= 50]
    if not valid:
        return {}

    formatted = '\n\n---\n\n'.join(
        f"[{item['id']}] Platform: {str(item.get('platform', '')).upper()}\n"
        f"Question: \"{item.get('question', '')}\"\n"
        f"Response (truncated): \"{_truncate(item['response'], 800)}\""
        for item in valid
    )
    prompt = (
        f'Analyze these {len(valid)} AI responses about {company_name} and score each one from 1-10.\n\n'
        'For each response, extract the EXACT phrases (word-for-word quotes) that drove your score decision.\n\n'
        f'{formatted}\n\n'
        'Return a score and driving phrases for each response ID. Be sure to differentiate between responses.'
    )

    results = {}
    try:
        parsed, _ = llm.generate_object(
            'anthropic', MODEL_CLAUDE, BatchSentimentOutput, prompt,
            system=SENTIMENT_SYSTEM_PROMPT.format(company=company_name),
            max_tokens=8000, run_id=run_id, step='batch_sentiment_analysis',
        )
        wanted = {str(item['id']) for item in valid}
        for entry in parsed.scores:
            key = str(entry.id).strip('[] ')
            if key not in wanted:
                continue
            score = int(clamp(round(entry.score), 1, 10))
            results[key] = {
                'score': score,
                'category': sentiment_category(score),
                'positive_phrases': _clean_list(entry.positive_phrases),
                'negative_phrases': _clean_list(entry.negative_phrases),
            }
        logger.info("Batch sentiment scored %d/%d responses", len(results), len(valid))
    except Exception as e:
        logger.error("Batch sentiment analysis failed: %s", e, exc_info=True)

    for item in valid:
        results.setdefault(str(item['id']), _neutral_sentiment())
    return results


# ── Batch differentiation ─────────────────────────────────────────────────────

DIFFERENTIATION_SYSTEM_PROMPT = '''You are an expert at analyzing employer brand differentiation. You will evaluate how well AI assistants distinguish "{company}" from other employers.

KNOWN COMPETITORS: {competitors}

SCORING CRITERIA:

1. competitor_confusion (1-10):
   - 1-3: AI clearly distinguishes {company}, rarely mentions competitors unless specifically comparing
   - 4-6: AI sometimes conflates or brings up competitors when not asked
   - 7-10: AI frequently confuses {company} with competitors or can't distinguish them

2. unique_positioning (1-10):
   - 1-3: Generic descriptions that could apply to any company in the industry
   - 4-6: Some unique elements but mixed with generic content
   - 7-10: Clear, specific positioning with unique employer value proposition elements

3. generic_language (1-10):
   - 1-3: Specific, distinctive descriptions with concrete details
   - 4-6: Mix of specific and generic language
   - 7-10: Heavy use of cookie-cutter phrases like "great culture", "competitive salary", "work-life balance" without specifics

Also identify:
- unique_attributes: Specific things AI knows about {company} that wouldn't apply to competitors
- generic_phrases: Cookie-cutter employer descriptions detected in responses'''


def batch_analyze_differentiation(llm, items: List[dict], company_name: str,
                                  competitor_names: List[str], run_id: str = None) -> dict:
    """Returns {competitor_confusion, unique_positioning, generic_language, unique_attributes, generic_phrases}."""
    if not items:
        return dict(DEFAULT_DIFFERENTIATION)

    sample = items[:20]
    formatted = '\n\n---\n\n'.join(
        f"[{str(item.get('platform', '')).upper()}] Q: \"{item.get('question', '')}\"\n"
        f"A: \"{_truncate(item.get('response') or '', 600)}\""
        for item in sample
    )
    competitors = ', '.join(competitor_names[:10]) if competitor_names else 'unknown competitors'
    prompt = (
        f'Analyze these {len(sample)} AI responses about {company_name} as an employer:\n\n'
        f'{formatted}\n\n'
        f'Evaluate the overall differentiation across all responses. '
        f'How well does AI distinguish {company_name} from competitors?'
    )

    try:
        parsed, _ = llm.generate_object(
            'anthropic', MODEL_CLAUDE, DifferentiationOutput, prompt,
            system=DIFFERENTIATION_SYSTEM_PROMPT.format(company=company_name, competitors=competitors),
            max_tokens=2000, run_id=run_id, step='batch_differentiation_analysis',
        )
    except Exception as e:
        logger.error("Batch differentiation analysis failed: %s", e, exc_info=True)
        return dict(DEFAULT_DIFFERENTIATION)

    return {
        'competitor_confusion': int(clamp(round(parsed.competitor_confusion), 1, 10)),
        'unique_positioning': int(clamp(round(parsed.unique_positioning), 1, 10)),
        'generic_language': int(clamp(round(parsed.generic_language), 1, 10)),
        'unique_attributes': _clean_list(parsed.unique_attributes, limit=10),
        'generic_phrases': _clean_list(parsed.generic_phrases, limit=10),
    }
