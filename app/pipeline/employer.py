"""
Employer analysis — what the crawled site says about the company as an employer.

extract_employer_analysis is rule-based (no API calls). classify_job_families
asks Claude to bucket the advertised roles into the five standard job families
and falls back to keyword matching when the call fails.
"""
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from pydantic import BaseModel, Field

from app.config import MAX_ROLE_FAMILIES, MODEL_CLAUDE

logger = logging.getLogger('pipeline.employer')


JOB_FAMILIES = {
    'engineering': {
        'label': 'Engineering & Tech',
        'description': 'Software engineers, data scientists, DevOps, IT, technical roles',
        'keywords': ['engineer', 'developer', 'data scientist', 'devops', 'sre', 'architect',
                     'programmer', 'software', 'tech'],
    },
    'business': {
        'label': 'Sales & Business',
        'description': 'Sales, marketing, product management, customer success, business development',
        'keywords': ['sales', 'marketing', 'product', 'account', 'customer success',
                     'business development', 'growth'],
    },
    'operations': {
        'label': 'Operations & Supply Chain',
        'description': 'Operations, logistics, supply chain, procurement, warehouse',
        'keywords': ['operations', 'logistics', 'supply', 'procurement', 'warehouse',
                     'fulfillment', 'inventory'],
    },
    'creative': {
        'label': 'Creative & Design',
        'description': 'Designers, content creators, UX/UI, brand, visual/graphic',
        'keywords': ['design', 'creative', 'ux', 'ui', 'content', 'brand', 'graphic', 'visual', 'writer'],
    },
    'corporate': {
        'label': 'Corporate Functions',
        'description': 'Finance, HR, legal, administration, compliance',
        'keywords': ['finance', 'hr', 'legal', 'admin', 'accounting', 'compliance', 'people', 'talent'],
    },
}

INDUSTRY_KEYWORDS = [
    ('Technology / Software', ['software', 'saas', 'tech', 'engineering', 'developer']),
    ('Financial Services', ['bank', 'finance', 'insurance', 'fintech', 'investment']),
    ('Healthcare', ['health', 'medical', 'hospital', 'pharma', 'biotech']),
    ('Retail / E-commerce', ['retail', 'ecommerce', 'shop', 'store', 'consumer']),
    ('Professional Services', ['consulting', 'legal', 'accounting', 'advisory']),
    ('Media / Entertainment', ['media', 'entertainment', 'content', 'streaming']),
    ('Manufacturing', ['manufacturing', 'industrial', 'production', 'factory']),
]
DEFAULT_INDUSTRY = 'Technology'

ROLE_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'software engineer', r'product manager', r'designer', r'data scientist',
        r'marketing', r'sales', r'customer success', r'operations', r'finance',
        r'hr|human resources',
    )
]

CULTURE_KEYWORDS = [
    'innovative', 'collaborative', 'flexible', 'remote', 'hybrid', 'inclusive', 'diverse',
    'fast-paced', 'mission-driven', 'customer-focused', 'growth', 'learning', 'impact',
]

LOCATION_PATTERNS = [
    re.compile(r'headquarters?:?\s*([A-Za-z\s,]+)', re.IGNORECASE),
    re.compile(r'based in\s*([A-Za-z\s,]+)', re.IGNORECASE),
    re.compile(r'located in\s*([A-Za-z\s,]+)', re.IGNORECASE),
]

_TAGLINE_WORDS = re.compile(
    r'\b(grow|your|revenue|best|leading|world|platform|solution|infrastructure|build|create|make|the|for|with|and)\b',
    re.IGNORECASE,
)


@dataclass
class EmployerAnalysis:
    company_name: str
    industry: str = DEFAULT_INDUSTRY
    location: str = ''
    common_roles: List[str] = field(default_factory=list)
    culture_keywords: List[str] = field(default_factory=list)
    job_families: List[dict] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(**{k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__})

    @property
    def family_codes(self) -> List[str]:
        return [f['family'] for f in self.job_families]


def _is_tagline(candidate: str) -> bool:
    return len(candidate) > 30 or bool(_TAGLINE_WORDS.search(candidate))


def _name_from_titles(pages) -> Optional[str]:
    for page in pages:
        title = getattr(page, 'title', '') or ''
        if not title or 'careers' in title.lower():
            continue
        parts = re.split(r'[|\-–]', title)
        if len(parts) > 1:
            candidate = parts[-1].strip()
            if len(candidate) > 1 and not _is_tagline(candidate):
                return candidate
    return None


def extract_employer_analysis(content: str, domain: str, crawl_result=None) -> EmployerAnalysis:
    """Company name, industry, roles, culture keywords and location from crawled text."""
    content = content or ''
    lower = content.lower()

    base = re.sub(r'^www\.', '', domain.lower()).split('.')[0]
    company_name = base[:1].upper() + base[1:]
    if crawl_result is not None:
        company_name = _name_from_titles(crawl_result.pages) or company_name

    industry = DEFAULT_INDUSTRY
    for name, keywords in INDUSTRY_KEYWORDS:
        if any(kw in lower for kw in keywords):
            industry = name
            break

    roles = []
    for pattern in ROLE_PATTERNS:
        match = pattern.search(content)
        if match:
            role = ' '.join(w[:1].upper() + w[1:].lower() for w in match.group(0).split(' '))
            if role not in roles:
                roles.append(role)

    culture = [kw for kw in CULTURE_KEYWORDS if kw in lower]

    location = ''
    for pattern in LOCATION_PATTERNS:
        match = pattern.search(content)
        if match:
            location = match.group(1).strip()[:50]
            break

    return EmployerAnalysis(
        company_name=company_name,
        industry=industry,
        location=location,
        common_roles=roles[:5],
        culture_keywords=culture[:5],
    )


# ── Job family classification ─────────────────────────────────────────────────

class DetectedFamily(BaseModel):
    family: str = Field(description='engineering | business | operations | creative | corporate')
    roles: List[str] = Field(default_factory=list, description='Job roles from the input in this family')
    relevance: float = Field(description='0-1: how critical this family is for this employer')
    reasoning: Optional[str] = None


class FamilyClassification(BaseModel):
    families: List[DetectedFamily]
    industry_context: str = ''


CLASSIFY_PROMPT = '''You are analyzing job roles for an employer brand study.

EMPLOYER CONTEXT:
Industry: {industry}
Common job roles advertised: {roles}

TASK:
Classify these roles into our 5 standard job families:

1. engineering - Software engineers, data scientists, DevOps, IT, technical roles
2. business - Sales, marketing, product management, customer success, business development
3. operations - Operations, logistics, supply chain, procurement, warehouse
4. creative - Designers, content creators, UX/UI, brand, visual/graphic
5. corporate - Finance, HR, legal, administration, compliance

GUIDELINES:
- A family is relevant if the employer actively hires for those roles
- Relevance score (0-1):
  - 1.0 = Core strategic hiring (e.g., Engineering for a tech company)
  - 0.8 = Strong demand, multiple senior roles
  - 0.6 = Regular hiring, important but not strategic
  - 0.4 = Occasional hiring, supporting roles
  - 0.2 = Minimal hiring activity
- If a role doesn't clearly fit, use the closest family or omit if truly unclear
- Sort by relevance (highest first)

Now classify the roles for this employer.'''


def _family_entry(family, roles, relevance):
    return {
        'family': family,
        'label': JOB_FAMILIES[family]['label'],
        'roles': list(roles),
        'relevance': round(float(relevance), 3),
    }


def fallback_classification(roles: List[str], max_families: int = MAX_ROLE_FAMILIES) -> List[dict]:
    """Keyword match; each role counts toward its first matching family only."""
    matched = {family: [] for family in JOB_FAMILIES}
    for role in roles:
        role_lower = role.lower()
        for family, definition in JOB_FAMILIES.items():
            if any(kw in role_lower for kw in definition['keywords']):
                matched[family].append(role)
                break

    detected = [
        _family_entry(family, family_roles, min(1.0, len(family_roles) / len(roles)))
        for family, family_roles in matched.items() if family_roles
    ]
    detected.sort(key=lambda f: f['relevance'], reverse=True)
    return detected[:max_families]


def classify_job_families(llm, roles: List[str], industry: str = None,
                          max_families: int = MAX_ROLE_FAMILIES, run_id: str = None) -> List[dict]:
    """[{family, label, roles, relevance}] sorted by relevance, at most max_families."""
    if not roles:
        logger.warning("No roles to classify, returning no job families")
        return []

    prompt = CLASSIFY_PROMPT.format(industry=industry or 'Unknown', roles=', '.join(roles))
    try:
        parsed, _ = llm.generate_object(
            'anthropic', MODEL_CLAUDE, FamilyClassification, prompt,
            max_tokens=1500, temperature=0.3, run_id=run_id, step='classify_job_families',
        )
        families = {}
        for f in parsed.families:
            code = f.family.strip().lower()
            if code not in JOB_FAMILIES or code in families:
                continue
            families[code] = _family_entry(code, f.roles, max(0.0, min(1.0, f.relevance)))
        detected = sorted(families.values(), key=lambda f: f['relevance'], reverse=True)[:max_families]
        logger.info("Detected job families: %s",
                    ', '.join(f"{f['family']}:{f['relevance']:.2f}" for f in detected))
        return detected
    except Exception as e:
        logger.warning("Job family classification failed, using keyword fallback: %s", e)
        return fallback_classification(roles, max_families)


def default_families_for_industry(industry: str) -> List[str]:
    """Families to use when none were detected or frozen."""
    lower = (industry or '').lower()
    if 'tech' in lower or 'software' in lower:
        return ['engineering', 'business']
    if 'retail' in lower or 'consumer' in lower:
        return ['operations', 'business']
    return ['business', 'operations']
