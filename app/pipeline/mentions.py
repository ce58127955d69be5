"""
Domain-mention detection and competitor extraction for platform answers.
"""
import logging
import re
from typing import Dict, List, Optional, Tuple

from app.config import MODEL_ANALYSIS
from app.pipeline.parsing import extract_json_array

logger = logging.getLogger('pipeline.mentions')

COMMON_ENDINGS = [
    'lovers', 'works', 'labs', 'hub', 'hq', 'studio', 'studios',
    'shop', 'store', 'market', 'place', 'space', 'box', 'bay',
    'cloud', 'tech', 'soft', 'ware', 'app', 'apps', 'io', 'ly',
    'ify', 'able', 'er', 'ers', 'ing', 'tion', 'sion', 'ment',
    'ness', 'ful', 'less', 'ous', 'ive', 'al', 'ical', 'ology',
    'house', 'home', 'land', 'world', 'zone', 'spot', 'point',
    'direct', 'online', 'digital', 'media', 'group', 'team',
    'company', 'solutions', 'services', 'partners', 'consulting',
    'auto', 'motors', 'finance',
]

COMMON_BEGINNINGS = [
    'the', 'my', 'our', 'your', 'get', 'go', 'pro', 'super',
    'mega', 'ultra', 'smart', 'easy', 'fast', 'quick', 'best',
    'top', 'prime', 'first', 'new', 'big', 'little', 'red',
    'blue', 'green', 'black', 'white', 'gold', 'silver',
]

COMPETITOR_EXTRACTION_PROMPT = """Extract company/business names mentioned in this AI response. Only extract actual company names, NOT:
- Generic terms (e.g., "AI consulting firms", "marketing agencies")
- Locations (cities, countries, regions)
- Common nouns or phrases
- The target domain being searched for

Target domain to EXCLUDE: {domain}

AI Response:
{response}

Return a JSON array of company names found. If no specific companies are mentioned, return an empty array.
Example: ["Accenture", "Deloitte", "PwC"]
Return ONLY the JSON array, nothing else."""


def _split_on_endings(word: str) -> List[str]:
    out = []
    for ending in COMMON_ENDINGS:
        if word.endswith(ending) and len(word) > len(ending) + 2:
            prefix = word[:-len(ending)]
            if len(prefix) >= 2:
                out.append((prefix, ending))
    return out


def generate_spaced_versions(domain_without_tld: str) -> List[str]:
    """
    Guess how a run-together brand might be written with spaces.

    "loungelovers" → "lounge lovers"; "therecruitmentcompany" →
    "the recruitmentcompany", "the recruitment company".
    """
    lower = domain_without_tld.lower()
    versions = [f'{prefix} {ending}' for prefix, ending in _split_on_endings(lower)]

    for beginning in COMMON_BEGINNINGS:
        if lower.startswith(beginning) and len(lower) > len(beginning) + 2:
            rest = lower[len(beginning):]
            if len(rest) >= 2:
                versions.append(f'{beginning} {rest}')
                versions.extend(f'{beginning} {middle} {ending}' for middle, ending in _split_on_endings(rest))

    return versions


def check_domain_mention(response: str, domain: str) -> Tuple[bool, Optional[int]]:
    """
    Was the domain (or its brand) mentioned, and in which third of the answer?

    Returns (mentioned, position) with position 1, 2 or 3 for the third holding
    the first match, or (False, None).
    """
    if not response:
        return False, None

    lower_response = response.lower()
    lower_domain = domain.lower()
    bare = lower_domain.split('.')[0]
    brand_spaced = re.sub(r'([a-zA-Z])(\d)', r'\1 \2', bare)
    brand_spaced = re.sub(r'(\d)([a-zA-Z])', r'\1 \2', brand_spaced)

    candidates = [lower_domain, bare]
    if brand_spaced != bare:
        candidates.append(brand_spaced)
    candidates.extend(generate_spaced_versions(bare))

    first_index = -1
    for candidate in candidates:
        idx = lower_response.find(candidate)
        if idx != -1:
            first_index = idx
            break
    if first_index == -1:
        return False, None

    relative = first_index / len(response)
    if relative < 0.33:
        return True, 1
    if relative < 0.66:
        return True, 2
    return True, 3


def extract_competitors(llm, response: str, domain: str, run_id: str = None) -> List[Dict[str, str]]:
    """Company names in an answer (excluding the target), with ±30 chars of context."""
    if not response or len(response) < 50:
        return []

    try:
        result = llm.generate_text(
            'openai', MODEL_ANALYSIS,
            COMPETITOR_EXTRACTION_PROMPT.format(domain=domain, response=response[:2000]),
            max_tokens=200,
            run_id=run_id,
            step='competitor_extraction',
        )
        names = extract_json_array(result.text)
        if not names:
            return []

        domain_base = domain.lower().split('.')[0]
        lower_response = response.lower()
        competitors = []
        for name in names:
            if not isinstance(name, str) or not name.strip() or domain_base in name.lower():
                continue
            idx = lower_response.find(name.lower())
            if idx != -1:
                start = max(0, idx - 30)
                end = min(len(response), idx + len(name) + 30)
                context = f'...{response[start:end].strip()}...'
            else:
                context = ''
            competitors.append({'name': name.strip(), 'context': context})
            if len(competitors) == 5:
                break
        return competitors
    except Exception as e:
        logger.warning("Competitor extraction failed for %s: %s", domain, e)
        return []
