"""
Scorer — pure arithmetic, no I/O.

Three headline scores, all integers clamped to 0–100:
  desirability     platform-weighted sentiment (overall_score)
  researchability  topic coverage 40% / specificity 35% / confidence 25%
  differentiation  inverted confusion 40% / positioning 35% / inverted generic language 25%

1–10 model scores are normalised to 0–100 with (x − 1) / 9 × 100.
"""
from collections import Counter
from typing import Dict, Iterable, List

from app.config import EMPLOYER_TOPICS, PLATFORM_WEIGHTS, PLATFORMS

SENTIMENT_CATEGORIES = ('strong', 'positive', 'mixed', 'negative')

NEUTRAL_PLATFORM_SCORE = 50
NO_DATA_RESEARCHABILITY = 30
STRONG_BONUS = 15
NEGATIVE_PENALTY = 25


def clamp_score(value) -> int:
    return int(max(0, min(100, round(value))))


def normalize(value) -> float:
    """1–10 → 0–100."""
    return (value - 1) / 9 * 100


def _mean(values, default=None):
    values = [v for v in values if v is not None]
    return sum(values) / len(values) if values else default


def count_categories(categories: Iterable[str]) -> Dict[str, int]:
    counts = Counter(categories)
    return {c: counts.get(c, 0) for c in SENTIMENT_CATEGORIES}


# ── Desirability ──────────────────────────────────────────────────────────────

def platform_sentiment_score(scores: List[float], categories: List[str]) -> int:
    """
    Normalised average sentiment, plus up to 15 for the share of strong
    answers, minus up to 25 for the share of negative ones.
    """
    if not scores:
        return NEUTRAL_PLATFORM_SCORE

    base = normalize(sum(scores) / len(scores))
    counts = count_categories(categories)
    total = len(categories)
    strong_bonus = counts['strong'] / total * STRONG_BONUS if total else 0
    negative_penalty = counts['negative'] / total * NEGATIVE_PENALTY if total else 0
    return clamp_score(base + strong_bonus - negative_penalty)


def overall_score(platform_scores: Dict[str, int], weights: Dict[str, int] = None) -> int:
    """Weighted average of platform scores. A platform missing from the dict counts as neutral."""
    weights = weights or PLATFORM_WEIGHTS
    total_weight = sum(weights.values())
    if not total_weight:
        return NEUTRAL_PLATFORM_SCORE
    weighted = sum(
        platform_scores.get(platform, NEUTRAL_PLATFORM_SCORE) * weight / 100
        for platform, weight in weights.items()
    )
    return clamp_score(weighted / total_weight * 100)


# ── Researchability ───────────────────────────────────────────────────────────

def researchability_score(specificity: List[float], confidence: List[float], topics_covered: int) -> int:
    if not specificity:
        return NO_DATA_RESEARCHABILITY

    coverage = topics_covered / len(EMPLOYER_TOPICS) * 100
    spec_factor = normalize(_mean(specificity))
    conf_factor = normalize(_mean(confidence, default=5))
    return clamp_score(coverage * 0.4 + spec_factor * 0.35 + conf_factor * 0.25)


def topics_with_confidence(topic_counts: Dict[str, int], total_responses: int) -> List[dict]:
    """Per-topic mention rate → high (≥50%) / medium (≥25%) / low (any) / none."""
    out = []
    for topic in EMPLOYER_TOPICS:
        mentions = topic_counts.get(topic, 0)
        rate = mentions / total_responses if total_responses else 0
        if rate >= 0.5:
            confidence = 'high'
        elif rate >= 0.25:
            confidence = 'medium'
        elif mentions > 0:
            confidence = 'low'
        else:
            confidence = 'none'
        out.append({'topic': topic, 'confidence': confidence, 'mentions': mentions})
    return out


# ── Differentiation ───────────────────────────────────────────────────────────

def differentiation_score(confusion: float, positioning: float, generic: float) -> int:
    confusion_factor = (10 - confusion) / 9 * 100
    positioning_factor = normalize(positioning)
    generic_factor = (10 - generic) / 9 * 100
    return clamp_score(confusion_factor * 0.4 + positioning_factor * 0.35 + generic_factor * 0.25)


# ── Competitors ───────────────────────────────────────────────────────────────

def top_competitors(results: Iterable, limit: int = 10) -> List[dict]:
    """
    Count competitor mentions across platform results, most-mentioned first.

    Accepts PlatformResult objects or dicts with 'competitors_mentioned'.
    Ties keep first-seen order.
    """
    counts = Counter()
    for result in results:
        mentioned = result.get('competitors_mentioned') if isinstance(result, dict) \
            else getattr(result, 'competitors_mentioned', None)
        for comp in mentioned or []:
            name = comp.get('name') if isinstance(comp, dict) else comp
            if name:
                counts[name] += 1
    return [{'name': name, 'count': count} for name, count in counts.most_common(limit)]


# ── Role families ─────────────────────────────────────────────────────────────

def role_family_scores(responses: List[dict], families: List[str]) -> Dict[str, dict]:
    """
    Desirability and awareness per job family.

    responses: dicts with job_family, sentiment_score, specificity_score,
    confidence_score. Missing values default to 5; a family with no responses
    scores 0/0.
    """
    scores = {}
    for family in families:
        rows = [r for r in responses if r.get('job_family') == family]
        if not rows:
            scores[family] = {'desirability': 0, 'awareness': 0}
            continue

        sentiment = _mean((r.get('sentiment_score') for r in rows), default=5)
        specificity = _mean((r.get('specificity_score') for r in rows), default=5)
        confidence = _mean((r.get('confidence_score') for r in rows), default=5)
        scores[family] = {
            'desirability': clamp_score(normalize(sentiment)),
            'awareness': clamp_score(normalize((specificity + confidence) / 2)),
        }
    return scores


# ── Aggregation ───────────────────────────────────────────────────────────────

def build_scores(responses: List[dict], differentiation: dict, platforms=PLATFORMS) -> dict:
    """
    Headline scores for a run from its persisted responses.

    responses: dicts with platform, sentiment_score, sentiment_category,
    specificity_score, confidence_score, topics_mentioned.
    differentiation: batch_analyze_differentiation output.
    """
    by_platform = {p: {'scores': [], 'categories': []} for p in platforms}
    for r in responses:
        bucket = by_platform.get(r.get('platform'))
        if bucket is not None and r.get('sentiment_score') is not None:
            bucket['scores'].append(r['sentiment_score'])
            bucket['categories'].append(r.get('sentiment_category') or 'mixed')

    platform_scores = {
        p: platform_sentiment_score(b['scores'], b['categories'])
        for p, b in by_platform.items()
    }
    all_categories = [c for b in by_platform.values() for c in b['categories']]

    specificity = [r['specificity_score'] for r in responses if r.get('specificity_score') is not None]
    confidence = [r['confidence_score'] for r in responses if r.get('confidence_score') is not None]
    topic_counts = Counter(t for r in responses for t in (r.get('topics_mentioned') or []))
    covered = [t for t in EMPLOYER_TOPICS if topic_counts.get(t)]
    missing = [t for t in EMPLOYER_TOPICS if not topic_counts.get(t)]

    return {
        'overall_score': overall_score(platform_scores),
        'platform_scores': platform_scores,
        'platform_sentiments': {p: count_categories(b['categories']) for p, b in by_platform.items()},
        'sentiment_counts': count_categories(all_categories),
        'total_responses': len(all_categories),
        'researchability_score': researchability_score(specificity, confidence, len(covered)),
        'topics_covered': covered,
        'topics_missing': missing,
        'topics_with_confidence': topics_with_confidence(topic_counts, len(responses)),
        'differentiation_score': differentiation_score(
            differentiation.get('competitor_confusion', 5),
            differentiation.get('unique_positioning', 5),
            differentiation.get('generic_language', 5),
        ),
        'unique_attributes': list(differentiation.get('unique_attributes') or []),
        'generic_phrases': list(differentiation.get('generic_phrases') or []),
    }
