"""
Platform adapters and query fan-out.

One adapter per AI platform, registered in ADAPTERS. query_platform runs the
uniform retry ladder for a single question:

  primary (search-grounded) → primary retry → web-search context → ungrounded

and always returns a PlatformResult; an exhausted ladder comes back with
error set and an empty response. fan_out runs every platform concurrently and
each platform's questions in batches of QUERY_BATCH_SIZE.
"""
import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterator, List, Tuple, Type

from app.config import (
    MODEL_CHATGPT, MODEL_CHATGPT_SEARCH, MODEL_CLAUDE, MODEL_GEMINI,
    MODEL_PERPLEXITY, MODEL_PERPLEXITY_BASIC, PLATFORMS, QUERY_BATCH_SIZE,
)
from app.errors import ProviderError
from app.pipeline.base import (
    SEARCH_SYSTEM_PROMPT, PlatformAdapter, PlatformResult, QueryContext,
    build_context_prompt,
)
from app.pipeline.mentions import check_domain_mention, extract_competitors
from app.services.search import format_search_context

logger = logging.getLogger('pipeline.platforms')

MIN_RESPONSE_CHARS = 100
CONTEXT_SEARCH_RESULTS = 5

# city/country keyword → OpenAI approximate user_location
LOCATION_MAP = {
    'sydney': {'country': 'AU', 'city': 'Sydney', 'region': 'New South Wales'},
    'melbourne': {'country': 'AU', 'city': 'Melbourne', 'region': 'Victoria'},
    'brisbane': {'country': 'AU', 'city': 'Brisbane', 'region': 'Queensland'},
    'perth': {'country': 'AU', 'city': 'Perth', 'region': 'Western Australia'},
    'adelaide': {'country': 'AU', 'city': 'Adelaide', 'region': 'South Australia'},
    'gold coast': {'country': 'AU', 'city': 'Gold Coast', 'region': 'Queensland'},
    'canberra': {'country': 'AU', 'city': 'Canberra', 'region': 'Australian Capital Territory'},
    'australia': {'country': 'AU'},
    'new york': {'country': 'US', 'city': 'New York', 'region': 'New York'},
    'los angeles': {'country': 'US', 'city': 'Los Angeles', 'region': 'California'},
    'london': {'country': 'GB', 'city': 'London', 'region': 'England'},
}


def detect_user_location(query: str, context: QueryContext):
    """Location hint for ChatGPT web search: query text first, then the scan context."""
    lower = (query or '').lower()
    for keyword, location in LOCATION_MAP.items():
        if keyword in lower:
            return dict(location)
    if context.country_code:
        location = {'country': context.country_code.upper()}
        if context.city:
            location['city'] = context.city
        return location
    return None


# ── Adapters ──────────────────────────────────────────────────────────────────

class ChatGPTAdapter(PlatformAdapter):
    platform = 'chatgpt'
    provider = 'openai'
    fallback_model = MODEL_CHATGPT
    description = 'OpenAI Responses API with web_search'
    apis = ['openai']

    def query_primary(self, query, context):
        return self.llm.search_openai(
            MODEL_CHATGPT_SEARCH, query,
            system=SEARCH_SYSTEM_PROMPT,
            user_location=detect_user_location(query, context),
            max_output_tokens=4000,
            run_id=context.run_id,
            step='chatgpt_search',
        )


class ClaudeAdapter(PlatformAdapter):
    """Claude has no native web search here; Tavily results are its grounding."""
    platform = 'claude'
    provider = 'anthropic'
    fallback_model = MODEL_CLAUDE
    description = 'Anthropic Claude grounded on Tavily search results'
    apis = ['anthropic', 'tavily']

    def query_primary(self, query, context):
        results = self.search.search(
            query, max_results=CONTEXT_SEARCH_RESULTS,
            run_id=context.run_id, step='claude_tavily_search',
        )
        if not results:
            raise ProviderError('tavily', 'no search results')
        result = self.llm.generate_text(
            self.provider, self.fallback_model,
            build_context_prompt(query, format_search_context(results)),
            system=SEARCH_SYSTEM_PROMPT,
            max_tokens=1500,
            run_id=context.run_id,
            step='claude_search',
        )
        result.sources = [r.to_dict() for r in results]
        return result


class GeminiAdapter(PlatformAdapter):
    platform = 'gemini'
    provider = 'google'
    fallback_model = MODEL_GEMINI
    description = 'Gemini with google_search grounding'
    apis = ['google']

    def query_primary(self, query, context):
        return self.llm.search_gemini(
            MODEL_GEMINI, query,
            system=SEARCH_SYSTEM_PROMPT,
            run_id=context.run_id,
            step='gemini_search',
        )


class PerplexityAdapter(PlatformAdapter):
    platform = 'perplexity'
    provider = 'perplexity'
    fallback_model = MODEL_PERPLEXITY
    description = 'Perplexity sonar (search native)'
    apis = ['perplexity']

    def query_primary(self, query, context):
        return self.llm.perplexity_chat(
            MODEL_PERPLEXITY, query,
            system=SEARCH_SYSTEM_PROMPT,
            max_tokens=1500,
            timeout=60,
            run_id=context.run_id,
            step='perplexity_search',
        )

    def query_ungrounded(self, query, context):
        return self.llm.generate_text(
            self.provider, MODEL_PERPLEXITY_BASIC, query,
            system=SEARCH_SYSTEM_PROMPT,
            max_tokens=1500,
            run_id=context.run_id,
            step='perplexity_ungrounded',
        )


ADAPTERS: Dict[str, Type[PlatformAdapter]] = {
    'chatgpt': ChatGPTAdapter,
    'claude': ClaudeAdapter,
    'gemini': GeminiAdapter,
    'perplexity': PerplexityAdapter,
}


# ── Retry ladder ──────────────────────────────────────────────────────────────

def _query_with_search_context(adapter: PlatformAdapter, query: str, context: QueryContext):
    results = adapter.search.search(
        query, max_results=CONTEXT_SEARCH_RESULTS,
        run_id=context.run_id, step='tavily_search',
    )
    if not results:
        raise ProviderError('tavily', 'no search results for context fallback')
    result = adapter.query_with_context(query, format_search_context(results), context)
    if not result.sources:
        result.sources = [r.to_dict() for r in results]
    return result


def query_platform(adapter: PlatformAdapter, query: str, context: QueryContext) -> PlatformResult:
    """
    Ask one platform one question. Never raises.

    A tier is adequate when it returns at least MIN_RESPONSE_CHARS characters.
    If no tier is adequate but one produced some text, the last such answer is
    kept rather than reporting an error.
    """
    started = time.time()
    tiers = (
        ('primary', lambda: adapter.query_primary(query, context)),
        ('retry', lambda: adapter.query_primary(query, context)),
        ('search_context', lambda: _query_with_search_context(adapter, query, context)),
        ('ungrounded', lambda: adapter.query_ungrounded(query, context)),
    )

    errors = []
    chosen, chosen_tier = None, None
    for tier, call in tiers:
        try:
            llm_result = call()
        except Exception as e:
            errors.append(f'{tier}: {e}')
            logger.warning("%s %s tier failed for %s: %s", adapter.platform, tier, context.domain, e)
            continue

        text = (llm_result.text or '').strip()
        if len(text) >= MIN_RESPONSE_CHARS:
            chosen, chosen_tier = llm_result, tier
            break
        errors.append(f'{tier}: response too short ({len(text)} chars)')
        if text:
            chosen, chosen_tier = llm_result, tier

    elapsed_ms = int((time.time() - started) * 1000)

    if chosen is None:
        logger.error("%s exhausted every tier for %s", adapter.platform, context.domain)
        return PlatformResult(
            platform=adapter.platform,
            query=query,
            response_time_ms=elapsed_ms,
            error='; '.join(errors) or 'no response',
            tier='error',
        )

    if chosen_tier != 'primary':
        logger.info("%s answered from %s tier for %s", adapter.platform, chosen_tier, context.domain)

    response = chosen.text.strip()
    mentioned, position = check_domain_mention(response, context.domain)
    competitors = extract_competitors(adapter.llm, response, context.domain, run_id=context.run_id)

    return PlatformResult(
        platform=adapter.platform,
        query=query,
        response=response,
        domain_mentioned=mentioned,
        mention_position=position,
        competitors_mentioned=competitors,
        response_time_ms=int((time.time() - started) * 1000),
        sources=list(chosen.sources or []),
        search_enabled=chosen_tier != 'ungrounded',
        tier=chosen_tier,
    )


# ── Fan-out ───────────────────────────────────────────────────────────────────

def _run_platform(platform: str, questions: List[str], worker: Callable, on_error: Callable,
                  batch_size: int) -> list:
    results = [None] * len(questions)
    for start in range(0, len(questions), batch_size):
        batch = list(enumerate(questions))[start:start + batch_size]
        with ThreadPoolExecutor(max_workers=batch_size) as pool:
            futures = {
                pool.submit(contextvars.copy_context().run, worker, platform, idx, q): (idx, q)
                for idx, q in batch
            }
            for future in as_completed(futures):
                idx, q = futures[future]
                try:
                    results[idx] = future.result()
                except Exception as e:
                    logger.error("%s question %d failed: %s", platform, idx, e, exc_info=True)
                    results[idx] = on_error(platform, idx, q, e)
        logger.info("%s: %d/%d questions answered", platform, min(start + batch_size, len(questions)),
                    len(questions))
    return results


def fan_out(questions: List[str], worker: Callable, on_error: Callable,
            platforms=PLATFORMS, batch_size: int = QUERY_BATCH_SIZE) -> Iterator[Tuple[str, list]]:
    """
    Run worker(platform, index, question) for every platform × question.

    Platforms run concurrently; within a platform, questions run in batches of
    batch_size. Yields (platform, results) on the calling thread as each
    platform finishes, results in question order. A worker exception becomes
    on_error(platform, index, question, exc) for that slot. Workers run in a
    copy of the caller's context, so scan log context follows them.
    """
    if not questions or not platforms:
        return
    with ThreadPoolExecutor(max_workers=len(platforms)) as pool:
        futures = {
            pool.submit(contextvars.copy_context().run,
                        _run_platform, platform, questions, worker, on_error, batch_size): platform
            for platform in platforms
        }
        for future in as_completed(futures):
            yield futures[future], future.result()
