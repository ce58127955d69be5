"""
Web mention discovery — what the wider web says about the employer.

discover_web_mentions runs a fixed set of Tavily queries, dedupes results by
URL, classify_mentions tags source type (rules) and sentiment/relevance
(gpt-4o-mini), compute_mention_stats aggregates for the report.
"""
import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from app.config import MODEL_ANALYSIS

logger = logging.getLogger('pipeline.web_mentions')

SEARCH_BATCH_SIZE = 3
RESULTS_PER_QUERY = 8
SNIPPET_CHARS = 500

SENTIMENTS = ('positive', 'negative', 'neutral', 'mixed')
SOURCE_TYPES = ('press', 'review_site', 'blog', 'news', 'social', 'jobs_board', 'careers_page', 'other')

REVIEW_SITE_DOMAINS = (
    'glassdoor.com', 'glassdoor.com.au', 'glassdoor.co.uk', 'indeed.com', 'indeed.com.au',
    'indeed.co.uk', 'comparably.com', 'teamblind.com', 'blind.com', 'kununu.com',
    'fairygodboss.com', 'inhersight.com', 'levels.fyi',
)
SOCIAL_DOMAINS = (
    'linkedin.com', 'reddit.com', 'twitter.com', 'x.com', 'facebook.com', 'quora.com', 'threads.net',
)
PRESS_DOMAINS = (
    'reuters.com', 'bloomberg.com', 'techcrunch.com', 'forbes.com', 'wsj.com', 'nytimes.com',
    'theguardian.com', 'bbc.com', 'bbc.co.uk', 'cnbc.com', 'businessinsider.com', 'insider.com',
    'fortune.com', 'wired.com', 'theverge.com', 'arstechnica.com', 'venturebeat.com', 'afr.com',
    'smh.com.au', 'theaustralian.com.au',
)
JOBS_BOARD_DOMAINS = (
    'seek.com.au', 'seek.com', 'monster.com', 'ziprecruiter.com', 'dice.com', 'angel.co',
    'wellfound.com', 'hired.com', 'simplyhired.com', 'careerbuilder.com', 'jora.com',
)
BLOG_DOMAINS = (
    'medium.com', 'substack.com', 'dev.to', 'hashnode.dev', 'wordpress.com', 'blogger.com', 'hubspot.com',
)


# ── URLs ──────────────────────────────────────────────────────────────────────

def normalize_url(url: str) -> str:
    """host + path, lowercased, no scheme, query or trailing slash."""
    parsed = urlparse(url)
    if parsed.netloc:
        return (parsed.netloc + parsed.path).rstrip('/').lower()
    return url.lower().split('://', 1)[-1].rstrip('/')


def hash_url(url: str) -> str:
    return hashlib.sha256(normalize_url(url).encode('utf-8')).hexdigest()


def extract_domain(url: str) -> Optional[str]:
    host = urlparse(url).hostname
    if not host:
        return None
    return host[4:] if host.startswith('www.') else host


def _matches(domain, candidates):
    return any(domain == d or domain.endswith('.' + d) for d in candidates)


def classify_source_type(url: str, company_domain: str) -> str:
    domain = extract_domain(url)
    if not domain:
        return 'other'
    domain = domain.lower()
    company = company_domain.lower()
    if company.startswith('www.'):
        company = company[4:]
    path = urlparse(url).path.lower()

    if domain == company or domain.endswith('.' + company):
        return 'careers_page'
    if _matches(domain, REVIEW_SITE_DOMAINS):
        return 'review_site'
    if _matches(domain, SOCIAL_DOMAINS):
        return 'social'
    if _matches(domain, PRESS_DOMAINS):
        return 'press'
    if _matches(domain, JOBS_BOARD_DOMAINS):
        return 'jobs_board'
    if _matches(domain, BLOG_DOMAINS) or '/blog' in path:
        return 'blog'
    if 'news' in domain or path.startswith('/news'):
        return 'news'
    return 'other'


# ── Discovery ─────────────────────────────────────────────────────────────────

def build_search_queries(company_name: str, domain: str) -> List[str]:
    return [
        f'"{company_name}" employer reviews',
        f'"working at {company_name}" experience',
        f'"{company_name}" company culture employees',
        f'"{company_name}" glassdoor indeed reviews',
        f'"{company_name}" employer hiring news 2025 2026',
        f'"{company_name}" layoffs OR restructuring OR workplace',
        f'"{company_name}" best employer award OR workplace recognition',
        f'"{company_name}" careers jobs salary benefits',
        f'site:{domain} careers OR "join us" OR "we\'re hiring"',
        f'"{company_name}" employer reddit OR linkedin',
    ]


def discover_web_mentions(search, company_name: str, domain: str, run_id: str = None) -> List[dict]:
    """Run the mention queries in batches of three; first occurrence of a URL wins."""
    queries = build_search_queries(company_name, domain)
    seen = set()
    mentions = []

    with ThreadPoolExecutor(max_workers=SEARCH_BATCH_SIZE) as pool:
        for start in range(0, len(queries), SEARCH_BATCH_SIZE):
            batch = queries[start:start + SEARCH_BATCH_SIZE]
            batch_results = list(pool.map(
                lambda q: search.search(q, max_results=RESULTS_PER_QUERY, run_id=run_id,
                                        step='discover_web_mentions'),
                batch,
            ))
            for query, results in zip(batch, batch_results):
                for r in results:
                    url_hash = hash_url(r.url)
                    if url_hash in seen:
                        continue
                    seen.add(url_hash)
                    mentions.append({
                        'url': r.url,
                        'title': r.title or None,
                        'snippet': (r.snippet or '')[:SNIPPET_CHARS] or None,
                        'published_date': r.published_date,
                        'search_query': query,
                        'domain_name': extract_domain(r.url),
                        'url_hash': url_hash,
                    })

    logger.info("Found %d unique web mentions for %s from %d queries", len(mentions), company_name, len(queries))
    return mentions


# ── Classification ────────────────────────────────────────────────────────────

class MentionClassification(BaseModel):
    index: int
    sentiment: Literal['positive', 'negative', 'neutral', 'mixed']
    sentiment_score: float = Field(ge=1, le=10)
    relevance_score: float = Field(ge=1, le=10, description='How relevant to employer brand, vs product or unrelated content')
    key_quote: str = Field(description='Verbatim sentence from the snippet that justifies the sentiment')


class MentionClassificationOutput(BaseModel):
    classifications: List[MentionClassification]


CLASSIFY_SYSTEM = '''You are classifying web mentions of "{company}" as an employer.{location_note}
For each mention give:
- sentiment: positive, negative, neutral or mixed about {company} as an employer
- sentiment_score: 1-10 (1 = very negative about the employer, 10 = very positive)
- relevance_score: 1-10 (1 = not about the employer brand, or about a different company with the same name;
  10 = directly about working at {company})
- key_quote: the single most telling sentence from the snippet, copied verbatim. If the snippet is mostly
  navigation or boilerplate, write a brief factual summary instead.
Job listings are neutral (5-6). News about layoffs is negative. Awards are positive.'''


def classify_mentions(llm, mentions: List[dict], company_name: str, company_domain: str,
                      location: str = None, run_id: str = None) -> List[dict]:
    """Add source_type, sentiment, sentiment_score, relevance_score and key_quote. Never raises."""
    if not mentions:
        return []

    classified = [
        {**m, 'source_type': classify_source_type(m['url'], company_domain),
         'sentiment': 'neutral', 'sentiment_score': None, 'relevance_score': None, 'key_quote': None}
        for m in mentions
    ]

    location_note = (
        f' {company_name} is based in {location}; mentions clearly about a different "{company_name}" '
        f'elsewhere get relevance 1-3.' if location else ''
    )
    listing = '\n'.join(
        f"[{i}] Title: \"{m['title'] or 'N/A'}\" | Source: {m['domain_name'] or 'unknown'} | "
        f"Snippet: \"{(m['snippet'] or '')[:400]}\""
        for i, m in enumerate(classified)
    )

    try:
        parsed, _ = llm.generate_object(
            'openai', MODEL_ANALYSIS, MentionClassificationOutput,
            f'Classify these {len(classified)} web mentions of {company_name}:\n\n{listing}',
            system=CLASSIFY_SYSTEM.format(company=company_name, location_note=location_note),
            max_tokens=4000, run_id=run_id, step='mention_classification',
        )
    except Exception as e:
        logger.error("Mention classification failed, defaulting to neutral: %s", e)
        return classified

    for c in parsed.classifications:
        if 0 <= c.index < len(classified):
            m = classified[c.index]
            m['sentiment'] = c.sentiment
            m['sentiment_score'] = c.sentiment_score
            m['relevance_score'] = c.relevance_score
            m['key_quote'] = c.key_quote or None
            if c.key_quote:
                m['snippet'] = c.key_quote
    return classified


# ── Stats ─────────────────────────────────────────────────────────────────────

def _avg(values, default=5):
    values = [v for v in values if v]
    return round(sum(values) / len(values), 1) if values else default


def compute_mention_stats(mentions: List[dict]) -> dict:
    by_sentiment = {s: 0 for s in SENTIMENTS}
    by_source = {t: 0 for t in SOURCE_TYPES}
    domains = {}

    for m in mentions:
        by_sentiment[m.get('sentiment') or 'neutral'] += 1
        by_source[m.get('source_type') or 'other'] += 1
        if m.get('domain_name'):
            entry = domains.setdefault(m['domain_name'], {'count': 0, 'scores': []})
            entry['count'] += 1
            entry['scores'].append(m.get('sentiment_score'))

    top_domains = sorted(
        (
            {'domain': d, 'count': e['count'],
             'avg_sentiment': round(sum(s for s in e['scores'] if s) / e['count'], 1)
             if any(e['scores']) else 5}
            for d, e in domains.items()
        ),
        key=lambda x: x['count'], reverse=True,
    )[:10]

    return {
        'total': len(mentions),
        'by_sentiment': by_sentiment,
        'by_source_type': by_source,
        'top_domains': top_domains,
        'avg_sentiment_score': _avg(m.get('sentiment_score') for m in mentions),
        'avg_relevance_score': _avg(m.get('relevance_score') for m in mentions),
    }


# ── Coverage briefing ─────────────────────────────────────────────────────────

class MentionInsight(BaseModel):
    type: Literal['positive', 'negative', 'opportunity']
    text: str = Field(description='One specific sentence for a VP of People; name sources and topics')


class CoverageBriefing(BaseModel):
    insights: List[MentionInsight] = Field(min_length=3, max_length=3)


BRIEFING_SYSTEM = '''You write a 3-point coverage briefing for an employer brand report:
1. type=positive: the strongest positive signal, naming specific sources
2. type=negative: the main concern or negative signal, naming specific sources
3. type=opportunity: an actionable gap or opportunity
One concise sentence each, written for a VP of People or Head of Talent Acquisition. Avoid generic advice.'''


def _briefing_lines(mentions):
    lines = [f"- \"{m.get('title')}\" ({m.get('domain_name')}, {m.get('source_type')}, "
             f"sentiment: {m.get('sentiment_score')}/10)" for m in mentions[:15]]
    return '\n'.join(lines) or '- None'


def generate_coverage_briefing(llm, mentions: List[dict], company_name: str, run_id: str = None) -> List[dict]:
    """Three insights [{type, text}], or [] on failure or no mentions."""
    if not mentions:
        return []

    positive = [m for m in mentions if m.get('sentiment') == 'positive']
    negative = [m for m in mentions if m.get('sentiment') in ('negative', 'mixed')]
    sources = {m.get('domain_name') for m in mentions if m.get('domain_name')}
    breakdown = ', '.join(
        f'{t}: {n}' for t, n in compute_mention_stats(mentions)['by_source_type'].items() if n
    )
    summary = (
        f'Company: {company_name}\n'
        f'Total mentions found: {len(mentions)} across {len(sources)} unique sources\n\n'
        f'Positive mentions ({len(positive)}):\n{_briefing_lines(positive)}\n\n'
        f'Negative/Mixed mentions ({len(negative)}):\n{_briefing_lines(negative)}\n\n'
        f'Source breakdown: {breakdown}'
    )

    try:
        parsed, _ = llm.generate_object(
            'openai', MODEL_ANALYSIS, CoverageBriefing,
            f'Generate 3 coverage briefing insights for {company_name}:\n\n{summary}',
            system=BRIEFING_SYSTEM, max_tokens=800, run_id=run_id, step='coverage_briefing',
        )
    except Exception as e:
        logger.warning("Coverage briefing failed: %s", e)
        return []
    return [i.model_dump() for i in parsed.insights]


def mention_rows(mentions: List[dict], organization_id=None, monitored_domain_id=None, report_id=None) -> List[dict]:
    """Classified mentions → hb_web_mentions column dicts."""
    columns = ('url', 'url_hash', 'title', 'snippet', 'published_date', 'source_type', 'sentiment',
               'sentiment_score', 'relevance_score', 'key_quote', 'search_query', 'domain_name')
    return [
        {
            **{c: m.get(c) for c in columns},
            'organization_id': organization_id,
            'monitored_domain_id': monitored_domain_id,
            'report_id': report_id,
        }
        for m in mentions
    ]
