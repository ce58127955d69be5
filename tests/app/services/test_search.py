"""Tests for app.services.search — Tavily wrapper."""
import pytest
from unittest.mock import MagicMock, patch

from app.config import ProviderConfig
from app.services.search import SearchResult, TavilySearch, format_search_context


class PassThroughBreaker:
    def call(self, func, *args, **kwargs):
        return func(*args, **kwargs)


@pytest.fixture
def search():
    tavily = TavilySearch(ProviderConfig(tavily_api_key='tv-test'))
    tavily._client = MagicMock()
    with patch('app.services.search.get_breaker', return_value=PassThroughBreaker()):
        yield tavily


class TestTavilySearch:

    def test_results_mapped(self, search):
        search._client.search.return_value = {'results': [
            {'url': 'https://glassdoor.com/acme', 'title': 'Acme', 'content': '4.2 stars',
             'published_date': '2026-01-02'},
            {'title': 'no url'},
            'garbage',
            {'url': 'https://reddit.com/r/acme'},
        ]}
        with patch('app.services.search.track_search_cost') as track:
            results = search.search('Acme reviews', max_results=3, run_id='run-1', step='claude_search')

        assert results == [
            SearchResult(url='https://glassdoor.com/acme', title='Acme', snippet='4.2 stars',
                         published_date='2026-01-02'),
            SearchResult(url='https://reddit.com/r/acme', title='', snippet=''),
        ]
        search._client.search.assert_called_once_with(
            'Acme reviews', search_depth='advanced', max_results=3, include_answer=False,
        )
        track.assert_called_once_with('run-1', 'claude_search', 'advanced')

    def test_failure_returns_empty(self, search):
        search._client.search.side_effect = RuntimeError('quota exceeded')
        assert search.search('Acme') == []

    def test_no_key_skips_call(self):
        tavily = TavilySearch(ProviderConfig())
        tavily._client = MagicMock()
        assert tavily.available is False
        assert tavily.search('Acme') == []
        tavily._client.search.assert_not_called()


class TestFormatSearchContext:

    def test_numbered_blocks(self):
        text = format_search_context([
            SearchResult(url='https://a.com', title='A', snippet='first'),
            SearchResult(url='https://b.com', title='B', snippet='second'),
        ])
        assert text == '[1] A\nfirst\nSource: https://a.com\n\n[2] B\nsecond\nSource: https://b.com'

    def test_to_dict(self):
        assert SearchResult(url='u', title='t', snippet='s', published_date='d').to_dict() == {
            'url': 'u', 'title': 't', 'snippet': 's',
        }
