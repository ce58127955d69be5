"""
Line-format parsers for analyzer output.

Structured output (LLMClient.generate_object) is the primary path; these parse
the `KEY: value` line format used when a provider returns free text instead.
Every field has an explicit default and every numeric value is clamped, so a
malformed response degrades to neutral values and never raises.
"""
import json
import re
from typing import Iterable, List, Optional

from app.config import EMPLOYER_TOPICS

HEDGING_LEVELS = ('low', 'medium', 'high')
SOURCE_QUALITIES = ('none', 'weak', 'moderate', 'strong')
RECENCY_VALUES = ('current', 'recent', 'dated', 'unknown')

_LINE_RE = re.compile(r'^\s*\**([A-Z][A-Z_ ]+?)\**\s*:\s*(.*?)\s*$')


def clamp(value, low, high):
    return max(low, min(high, value))


def parse_score(raw, default=5, low=1, high=10) -> int:
    """First integer in `raw`, clamped; `default` if none."""
    if raw is None:
        return default
    match = re.search(r'-?\d+(?:\.\d+)?', str(raw))
    if not match:
        return default
    return int(clamp(round(float(match.group())), low, high))


def parse_list(raw) -> List[str]:
    """Comma-separated list; 'none' / empty → []."""
    if raw is None:
        return []
    text = str(raw).strip()
    if not text or text.lower() in ('none', 'n/a', '-', '[]'):
        return []
    return [item.strip().strip('"\'') for item in text.split(',') if item.strip().strip('"\'')]


def parse_choice(raw, allowed: Iterable[str], default: str) -> str:
    value = (raw or '').strip().lower()
    return value if value in allowed else default


def filter_topics(topics: Iterable[str]) -> List[str]:
    """Normalise topic labels and keep only the employer taxonomy, order-preserving."""
    out = []
    for topic in topics:
        key = str(topic).strip().lower().replace(' ', '_').replace('-', '_')
        if key in EMPLOYER_TOPICS and key not in out:
            out.append(key)
    return out


def parse_fields(text: str) -> dict:
    """Collect `KEY: value` lines into {KEY: value}. Later duplicates are ignored."""
    fields = {}
    for line in (text or '').splitlines():
        match = _LINE_RE.match(line)
        if match:
            key = match.group(1).strip().replace(' ', '_')
            fields.setdefault(key, match.group(2))
    return fields


def parse_researchability(text: str) -> dict:
    """SPECIFICITY / CONFIDENCE / TOPICS lines → {specificity, confidence, topics}."""
    fields = parse_fields(text)
    return {
        'specificity': parse_score(fields.get('SPECIFICITY')),
        'confidence': parse_score(fields.get('CONFIDENCE')),
        'topics': filter_topics(parse_list(fields.get('TOPICS'))),
    }


def parse_enhanced(text: str) -> dict:
    """Enhanced-analysis line format → the enhanced analysis dict."""
    fields = parse_fields(text)
    return {
        'positive_highlights': parse_list(fields.get('POSITIVE_HIGHLIGHTS')),
        'negative_highlights': parse_list(fields.get('NEGATIVE_HIGHLIGHTS')),
        'red_flags': parse_list(fields.get('RED_FLAGS')),
        'green_flags': parse_list(fields.get('GREEN_FLAGS')),
        'recommendation_score': parse_score(fields.get('RECOMMENDATION_SCORE')),
        'recommendation_summary': (fields.get('RECOMMENDATION_SUMMARY') or '').strip(),
        'hedging_level': parse_choice(fields.get('HEDGING_LEVEL'), HEDGING_LEVELS, 'medium'),
        'source_quality': parse_choice(fields.get('SOURCE_QUALITY'), SOURCE_QUALITIES, 'none'),
        'response_recency': parse_choice(fields.get('RESPONSE_RECENCY'), RECENCY_VALUES, 'unknown'),
    }


def extract_json_array(text: str) -> Optional[list]:
    """First `[...]` block in text parsed as JSON, or None."""
    match = re.search(r'\[[\s\S]*\]', text or '')
    if not match:
        return None
    try:
        value = json.loads(match.group())
    except ValueError:
        return None
    return value if isinstance(value, list) else None
