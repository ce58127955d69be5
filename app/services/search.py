"""
Web search — Tavily.

Used for grounding context (platform retry ladder, Claude's native path) and
for web-mention discovery. Search failures return [] rather than raising.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from app.config import ProviderConfig
from app.services.circuit_breaker import get_breaker
from app.services.costs import track_search_cost

logger = logging.getLogger('services.search')


@dataclass
class SearchResult:
    url: str
    title: str
    snippet: str
    published_date: Optional[str] = None

    def to_dict(self):
        return {'url': self.url, 'title': self.title, 'snippet': self.snippet}


class TavilySearch:
    """Thin wrapper over TavilyClient.search()."""

    def __init__(self, config: ProviderConfig = None):
        self.config = config or ProviderConfig.from_env()
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from tavily import TavilyClient
            self._client = TavilyClient(api_key=self.config.tavily_api_key)
        return self._client

    @property
    def available(self) -> bool:
        return bool(self.config.tavily_api_key)

    def search(self, query: str, max_results: int = 5, search_depth: str = 'advanced',
               run_id: str = None, step: str = None) -> List[SearchResult]:
        if not self.available:
            logger.warning("TAVILY_API_KEY not set — skipping search for %r", query[:60])
            return []

        try:
            data = get_breaker('tavily').call(
                self.client.search,
                query,
                search_depth=search_depth,
                max_results=max_results,
                include_answer=False,
            )
        except Exception as e:
            logger.warning("Tavily search failed for %r: %s", query[:60], e)
            return []

        if step:
            track_search_cost(run_id, step, search_depth)

        results = []
        for item in (data or {}).get('results', []):
            if not isinstance(item, dict) or not item.get('url'):
                continue
            results.append(SearchResult(
                url=item['url'],
                title=item.get('title') or '',
                snippet=item.get('content') or '',
                published_date=item.get('published_date'),
            ))
        return results


def format_search_context(results: List[SearchResult]) -> str:
    """Render results as a numbered context block for a grounding prompt."""
    return '\n\n'.join(
        f'[{i}] {r.title}\n{r.snippet}\nSource: {r.url}'
        for i, r in enumerate(results, start=1)
    )
