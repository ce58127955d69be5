"""
Platform adapter contract.

Every AI platform (ChatGPT, Claude, Gemini, Perplexity) implements
PlatformAdapter and returns LLMResult objects from three tiers of call. The
retry ladder in app.pipeline.platforms.query_platform drives those tiers and
turns the outcome into a PlatformResult; the scan workflow only sees that
uniform result.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

SEARCH_SYSTEM_PROMPT = (
    "You are a helpful assistant providing information based on current web search results. "
    "When users ask for recommendations or information about businesses and services:\n"
    "- Be specific and mention actual company/business names when your search results include them\n"
    "- Include location context when relevant\n"
    "- Cite your sources when possible\n"
    "- Be objective and balanced in your recommendations"
)


def build_context_prompt(query: str, search_context: str) -> str:
    return (
        "Based on these search results, answer the user's question.\n\n"
        f"SEARCH RESULTS:\n{search_context}\n\n"
        f"USER QUESTION: {query}\n\n"
        "Provide a helpful answer based on the search results. "
        "Mention specific businesses and sources when relevant."
    )


@dataclass
class QueryContext:
    """What an adapter knows about the scan it is answering for."""
    domain: str
    company_name: str = ''
    run_id: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None


@dataclass
class PlatformResult:
    """Uniform output for one (platform, question) pair. Never raised, only returned."""
    platform: str
    query: str
    response: str = ''
    domain_mentioned: bool = False
    mention_position: Optional[int] = None
    competitors_mentioned: List[Dict[str, str]] = field(default_factory=list)
    response_time_ms: int = 0
    sources: List[Dict[str, Any]] = field(default_factory=list)
    search_enabled: bool = True
    error: Optional[str] = None
    tier: str = 'primary'

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.response)


class PlatformAdapter(ABC):
    """
    Base class for the per-vendor adapters.

    query_primary is the vendor's own search-grounded call. The default
    query_with_context / query_ungrounded use generate_text with the adapter's
    provider + fallback_model; override where the vendor needs something else.
    """
    platform: str = ''
    provider: str = ''              # LLMClient provider + circuit breaker name
    fallback_model: str = ''

    # Metadata for GET /api/platforms
    description: str = ''
    apis: List[str] = []

    def __init__(self, llm, search):
        self.llm = llm
        self.search = search

    @abstractmethod
    def query_primary(self, query: str, context: QueryContext):
        """Search-grounded answer. Returns an LLMResult."""
        ...

    def query_with_context(self, query: str, search_context: str, context: QueryContext):
        return self.llm.generate_text(
            self.provider, self.fallback_model,
            build_context_prompt(query, search_context),
            system=SEARCH_SYSTEM_PROMPT,
            max_tokens=1500,
            run_id=context.run_id,
            step=f'{self.platform}_context',
        )

    def query_ungrounded(self, query: str, context: QueryContext):
        return self.llm.generate_text(
            self.provider, self.fallback_model, query,
            system=SEARCH_SYSTEM_PROMPT,
            max_tokens=1500,
            run_id=context.run_id,
            step=f'{self.platform}_ungrounded',
        )


# ── Platform registry ─────────────────────────────────────────────────────────
# app.pipeline.platforms populates ADAPTERS = {'chatgpt': ChatGPTAdapter, ...}


def get_adapter(adapters: Dict[str, Type[PlatformAdapter]], platform: str, llm, search) -> PlatformAdapter:
    """Look up and instantiate the adapter for a platform."""
    adapter_cls = adapters.get(platform)
    if not adapter_cls:
        raise ValueError(f"No adapter registered for platform '{platform}'")
    return adapter_cls(llm, search)


def get_platform_info(adapters: Dict[str, Type[PlatformAdapter]]) -> Dict[str, Any]:
    """Serialize the registry into a JSON-friendly dict."""
    return {
        platform: {
            'description': cls.description or '',
            'apis': cls.apis if isinstance(cls.apis, list) else [],
            'provider': cls.provider,
        }
        for platform, cls in adapters.items()
    }
