"""Tests for app.pipeline.platforms + base — adapters, retry ladder, fan-out."""
import threading
import time

import pytest

from app.config import MODEL_PERPLEXITY_BASIC, PLATFORMS
from app.errors import ProviderError
from app.pipeline.base import (
    PlatformAdapter, PlatformResult, QueryContext, build_context_prompt, get_adapter, get_platform_info,
)
from app.pipeline.platforms import (
    ADAPTERS, ClaudeAdapter, PerplexityAdapter, detect_user_location, fan_out, query_platform,
)
from app.services.llm import LLMResult


class ScriptedAdapter(PlatformAdapter):
    """query_primary plays back a script of answers / exceptions."""
    platform = 'chatgpt'
    provider = 'openai'
    fallback_model = 'gpt-4o'

    def __init__(self, llm, search, primary=()):
        super().__init__(llm, search)
        self.primary = list(primary)

    def query_primary(self, query, context):
        outcome = self.primary.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return LLMResult(text=outcome, model='o4-mini', sources=[{'url': 'https://example.com'}])


@pytest.fixture
def context():
    return QueryContext(domain='acme.com', company_name='Acme', run_id='run-1')


def _down():
    return ProviderError('openai', 'unavailable')


# ── Contract ─────────────────────────────────────────────────────────────────

class TestAdapterRegistry:

    def test_every_platform_registered(self):
        assert set(ADAPTERS) == set(PLATFORMS)

    def test_get_adapter_instantiates(self, fake_llm, fake_search):
        adapter = get_adapter(ADAPTERS, 'claude', fake_llm, fake_search)
        assert isinstance(adapter, ClaudeAdapter)
        assert adapter.llm is fake_llm
        assert adapter.search is fake_search

    def test_get_adapter_unknown_platform(self, fake_llm, fake_search):
        with pytest.raises(ValueError, match='copilot'):
            get_adapter(ADAPTERS, 'copilot', fake_llm, fake_search)

    def test_platform_info(self):
        info = get_platform_info(ADAPTERS)
        assert info['claude']['provider'] == 'anthropic'
        assert 'tavily' in info['claude']['apis']
        assert info['perplexity']['description']

    def test_abstract_adapter_cannot_be_built(self, fake_llm, fake_search):
        with pytest.raises(TypeError):
            PlatformAdapter(fake_llm, fake_search)


class TestPlatformResult:

    def test_ok_requires_response_and_no_error(self):
        assert PlatformResult(platform='claude', query='q', response='text').ok
        assert not PlatformResult(platform='claude', query='q', response='').ok
        assert not PlatformResult(platform='claude', query='q', response='text', error='boom').ok

    def test_context_prompt_includes_both_parts(self):
        prompt = build_context_prompt('Is Acme good?', '[1] Acme reviews')
        assert 'USER QUESTION: Is Acme good?' in prompt
        assert '[1] Acme reviews' in prompt


class TestDetectUserLocation:

    def test_city_in_query(self):
        ctx = QueryContext(domain='acme.com')
        assert detect_user_location('Best tech employers in Sydney', ctx) == {
            'country': 'AU', 'city': 'Sydney', 'region': 'New South Wales',
        }

    def test_falls_back_to_context(self):
        ctx = QueryContext(domain='acme.com', country_code='gb', city='Leeds')
        assert detect_user_location('Is Acme a good employer?', ctx) == {'country': 'GB', 'city': 'Leeds'}

    def test_nothing_known(self):
        assert detect_user_location('Is Acme a good employer?', QueryContext(domain='acme.com')) is None


# ── Retry ladder ─────────────────────────────────────────────────────────────

class TestQueryPlatform:
    """primary → retry → search context → ungrounded; never raises."""

    def test_primary_answer(self, fake_llm, fake_search, context):
        adapter = ScriptedAdapter(fake_llm, fake_search, primary=[fake_llm.text])
        result = query_platform(adapter, 'Is Acme a good employer?', context)
        assert result.ok
        assert result.tier == 'primary'
        assert result.search_enabled is True
        assert result.domain_mentioned is True
        assert result.mention_position == 1
        assert [c['name'] for c in result.competitors_mentioned] == ['Globex']
        assert result.sources == [{'url': 'https://example.com'}]

    def test_retry_after_primary_failure(self, fake_llm, fake_search, context):
        adapter = ScriptedAdapter(fake_llm, fake_search, primary=[_down(), fake_llm.text])
        result = query_platform(adapter, 'q', context)
        assert result.tier == 'retry'
        assert result.error is None

    def test_search_context_tier(self, fake_llm, fake_search, context):
        adapter = ScriptedAdapter(fake_llm, fake_search, primary=[_down(), _down()])
        result = query_platform(adapter, 'Is Acme a good employer?', context)
        assert result.tier == 'search_context'
        assert result.search_enabled is True
        assert fake_search.queries == ['Is Acme a good employer?']
        assert result.sources[0]['url'] == 'https://www.glassdoor.com/Reviews/Acme'
        steps = [c['step'] for c in fake_llm.calls_of('generate_text')]
        assert 'chatgpt_context' in steps

    def test_ungrounded_tier_when_search_empty(self, fake_llm, make_search, context):
        adapter = ScriptedAdapter(fake_llm, make_search(results=[]), primary=[_down(), _down()])
        result = query_platform(adapter, 'q', context)
        assert result.tier == 'ungrounded'
        assert result.search_enabled is False
        assert result.ok

    def test_exhausted_ladder_returns_error(self, make_llm, make_search, context):
        llm = make_llm(fail={'generate_text'})
        adapter = ScriptedAdapter(llm, make_search(results=[]), primary=[_down(), _down()])
        result = query_platform(adapter, 'q', context)
        assert not result.ok
        assert result.tier == 'error'
        assert result.response == ''
        assert 'primary' in result.error and 'ungrounded' in result.error

    def test_short_answers_keep_last_text(self, make_llm, make_search, context):
        llm = make_llm(text='Acme is fine.')
        adapter = ScriptedAdapter(llm, make_search(results=[]), primary=['Meh.', 'Hmm.'])
        result = query_platform(adapter, 'q', context)
        assert result.error is None
        assert result.response == 'Acme is fine.'
        assert result.tier == 'ungrounded'


class TestVendorAdapters:

    def test_claude_grounds_on_search(self, fake_llm, fake_search, context):
        adapter = ClaudeAdapter(fake_llm, fake_search)
        result = query_platform(adapter, 'Is Acme a good employer?', context)
        assert result.tier == 'primary'
        call = fake_llm.calls_of('generate_text')[0]
        assert call['step'] == 'claude_search'
        assert 'SEARCH RESULTS' in call['prompt']
        assert len(result.sources) == 2

    def test_claude_without_search_results_ends_ungrounded(self, fake_llm, make_search, context):
        result = query_platform(ClaudeAdapter(fake_llm, make_search(results=[])), 'q', context)
        assert result.tier == 'ungrounded'
        assert fake_llm.calls_of('generate_text')[0]['step'] == 'claude_ungrounded'

    def test_perplexity_ungrounded_uses_basic_model(self, make_llm, make_search, context):
        llm = make_llm(fail={'perplexity_chat'})
        result = query_platform(PerplexityAdapter(llm, make_search(results=[])), 'q', context)
        assert result.tier == 'ungrounded'
        assert llm.calls_of('generate_text')[0]['model'] == MODEL_PERPLEXITY_BASIC

    def test_chatgpt_passes_location(self, fake_llm, fake_search):
        ctx = QueryContext(domain='acme.com', country_code='AU')
        query_platform(get_adapter(ADAPTERS, 'chatgpt', fake_llm, fake_search), 'q', ctx)
        assert fake_llm.calls_of('search_openai')[0]['user_location'] == {'country': 'AU'}


# ── Fan-out ──────────────────────────────────────────────────────────────────

class TestFanOut:

    def test_results_in_question_order_per_platform(self):
        questions = ['q0', 'q1', 'q2', 'q3', 'q4']

        def worker(platform, idx, question):
            time.sleep(0.001 * (5 - idx))
            return f'{platform}:{question}'

        out = dict(fan_out(questions, worker, lambda *a: None))
        assert set(out) == set(PLATFORMS)
        for platform, results in out.items():
            assert results == [f'{platform}:{q}' for q in questions]

    def test_worker_exception_becomes_on_error(self):
        def worker(platform, idx, question):
            if idx == 1:
                raise RuntimeError('boom')
            return 'ok'

        def on_error(platform, idx, question, exc):
            return f'error:{exc}'

        out = dict(fan_out(['a', 'b', 'c'], worker, on_error, platforms=['claude']))
        assert out['claude'] == ['ok', 'error:boom', 'ok']

    def test_batch_size_bounds_concurrency(self):
        lock = threading.Lock()
        active = {'now': 0, 'peak': 0}

        def worker(platform, idx, question):
            with lock:
                active['now'] += 1
                active['peak'] = max(active['peak'], active['now'])
            time.sleep(0.01)
            with lock:
                active['now'] -= 1
            return idx

        list(fan_out(list('abcdefg'), worker, lambda *a: None, platforms=['gemini'], batch_size=3))
        assert active['peak'] <= 3

    def test_no_questions_yields_nothing(self):
        assert list(fan_out([], lambda *a: 'x', lambda *a: None)) == []
