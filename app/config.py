"""
Centralized configuration — env vars, provider credentials, scan constants.
"""
import os
from dataclasses import dataclass


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── OpenAI ────────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')

# ── Anthropic ─────────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')

# ── Google (Gemini) ───────────────────────────────────────────────────────────
GOOGLE_AI_API_KEY = os.getenv('GOOGLE_AI_API_KEY')

# ── Perplexity ────────────────────────────────────────────────────────────────
PERPLEXITY_API_KEY = os.getenv('PERPLEXITY_API_KEY')
PERPLEXITY_API_URL = 'https://api.perplexity.ai'

# ── Tavily web search ─────────────────────────────────────────────────────────
TAVILY_API_KEY = os.getenv('TAVILY_API_KEY')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Public report links ──────────────────────────────────────────────────────
REPORT_BASE_URL = os.getenv('REPORT_BASE_URL', 'http://localhost:8080/report')

# ── Scan execution ───────────────────────────────────────────────────────────
SCAN_MAX_ATTEMPTS = int(os.getenv('SCAN_MAX_ATTEMPTS', '3'))
SCAN_TIMEOUT_SECONDS = int(os.getenv('SCAN_TIMEOUT_SECONDS', '720'))  # 12 minutes
QUERY_BATCH_SIZE = 3
REPORT_EXPIRY_DAYS = 30
MAX_ROLE_FAMILIES = 5
CRAWL_MAX_PAGES = 15
CRAWL_TIMEOUT_SECONDS = 15

# ── Model ids ─────────────────────────────────────────────────────────────────
MODEL_CHATGPT_SEARCH = 'o4-mini'
MODEL_CHATGPT = 'gpt-4o'
MODEL_ANALYSIS = 'gpt-4o-mini'
MODEL_CLAUDE = 'claude-sonnet-4-20250514'
MODEL_GEMINI = 'gemini-2.5-flash'
MODEL_PERPLEXITY = 'sonar-pro'
MODEL_PERPLEXITY_BASIC = 'sonar'

# ── Platforms + desirability weights ─────────────────────────────────────────
PLATFORMS = ['chatgpt', 'claude', 'gemini', 'perplexity']

PLATFORM_WEIGHTS = {
    'chatgpt': 10,
    'perplexity': 4,
    'gemini': 2,
    'claude': 1,
}

# ── Employer topic taxonomy ──────────────────────────────────────────────────
EMPLOYER_TOPICS = [
    'compensation',
    'benefits',
    'work_life_balance',
    'remote_policy',
    'growth',
    'culture',
    'leadership',
    'diversity',
    'perks',
    'interview_process',
]

QUESTION_CATEGORIES = [
    'reputation',
    'culture',
    'compensation',
    'growth',
    'comparison',
    'industry',
    'balance',
    'leadership',
]

# ── Scan status values ───────────────────────────────────────────────────────
SCAN_STATUSES = [
    'crawling',
    'analyzing',
    'researching',
    'querying',
    'complete',
    'failed',
]

# ── Workflow steps → (status, progress) ─────────────────────────────────────
# Steps missing from STEP_PROGRESS leave status + progress untouched.
SCAN_STEPS = [
    'setup',
    'crawl',
    'analyze-employer',
    'research',
    'query',
    'sentiment',
    'finalize',
    'compare-employers',
    'discover-web-mentions',
    'strategic-summary',
    'role-action-plans',
    'record-score-history',
    'mark-complete',
]

STEP_PROGRESS = {
    'setup': ('crawling', 5),
    'crawl': ('crawling', 10),
    'analyze-employer': ('analyzing', 25),
    'research': ('researching', 35),
    'query': ('querying', 45),
    'sentiment': ('analyzing', 60),
    'finalize': ('analyzing', 70),
    'mark-complete': ('complete', 100),
}

ENRICHMENT_STEPS = [
    'compare-employers',
    'discover-web-mentions',
    'strategic-summary',
    'role-action-plans',
    'record-score-history',
]


# ── Provider credentials (injected into the workflow) ────────────────────────

@dataclass(frozen=True)
class ProviderConfig:
    """Credentials + endpoints handed to LLMClient / TavilySearch."""
    openai_api_key: str = None
    anthropic_api_key: str = None
    google_api_key: str = None
    perplexity_api_key: str = None
    tavily_api_key: str = None
    perplexity_api_url: str = PERPLEXITY_API_URL

    @classmethod
    def from_env(cls):
        return cls(
            openai_api_key=OPENAI_API_KEY,
            anthropic_api_key=ANTHROPIC_API_KEY,
            google_api_key=GOOGLE_AI_API_KEY,
            perplexity_api_key=PERPLEXITY_API_KEY,
            tavily_api_key=TAVILY_API_KEY,
        )
