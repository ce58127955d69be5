"""Tests for app.pipeline.web_mentions."""
import pytest

from app.errors import ProviderError
from app.pipeline.web_mentions import (
    MentionClassificationOutput,
    build_search_queries,
    classify_mentions,
    classify_source_type,
    compute_mention_stats,
    discover_web_mentions,
    extract_domain,
    generate_coverage_briefing,
    hash_url,
    mention_rows,
    normalize_url,
)
from app.services.search import SearchResult


def _mention(url, sentiment='neutral', score=None, source_type='other', domain=None):
    return {'url': url, 'title': 'T', 'snippet': 'S', 'sentiment': sentiment, 'sentiment_score': score,
            'relevance_score': None, 'source_type': source_type, 'domain_name': domain or extract_domain(url)}


class TestUrls:

    def test_normalize(self):
        assert normalize_url('https://www.Acme.com/careers/?utm=1') == 'www.acme.com/careers'

    def test_hash_ignores_scheme_query_and_slash(self):
        assert hash_url('https://acme.com/a/') == hash_url('http://acme.com/a?ref=1')
        assert hash_url('https://acme.com/a') != hash_url('https://acme.com/b')

    def test_extract_domain(self):
        assert extract_domain('https://www.glassdoor.com/Reviews/x') == 'glassdoor.com'
        assert extract_domain('not a url') is None


class TestClassifySourceType:

    @pytest.mark.parametrize('url,expected', [
        ('https://careers.acme.com/jobs', 'careers_page'),
        ('https://www.acme.com/', 'careers_page'),
        ('https://www.glassdoor.com/Reviews/Acme', 'review_site'),
        ('https://www.reddit.com/r/cscareers', 'social'),
        ('https://techcrunch.com/2026/acme', 'press'),
        ('https://www.seek.com.au/acme-jobs', 'jobs_board'),
        ('https://someone.medium.com/life-at-acme', 'blog'),
        ('https://example.org/blog/acme', 'blog'),
        ('https://news.example.com/acme', 'news'),
        ('https://example.org/acme', 'other'),
        ('acme', 'other'),
    ])
    def test_rules(self, url, expected):
        assert classify_source_type(url, 'www.acme.com') == expected


class TestDiscoverWebMentions:

    def test_queries_mention_company_and_site(self):
        queries = build_search_queries('Acme', 'acme.com')
        assert len(queries) == 10
        assert queries[0] == '"Acme" employer reviews'
        assert any(q.startswith('site:acme.com') for q in queries)

    def test_dedupes_by_url(self, fake_search):
        mentions = discover_web_mentions(fake_search, 'Acme', 'acme.com', run_id='run-1')
        assert len(fake_search.queries) == 10
        assert [m['domain_name'] for m in mentions] == ['glassdoor.com', 'news.example.com']
        assert mentions[0]['search_query'] == '"Acme" employer reviews'
        assert mentions[0]['url_hash'] == hash_url(mentions[0]['url'])

    def test_snippet_truncated(self, make_search):
        search = make_search(results=[SearchResult(url='https://a.com/x', title='', snippet='y' * 900)])
        mention = discover_web_mentions(search, 'Acme', 'acme.com')[0]
        assert len(mention['snippet']) == 500
        assert mention['title'] is None


class TestClassifyMentions:

    def _mentions(self, fake_search):
        return discover_web_mentions(fake_search, 'Acme', 'acme.com')

    def test_nothing_to_classify(self, fake_llm):
        assert classify_mentions(fake_llm, [], 'Acme', 'acme.com') == []
        assert fake_llm.calls == []

    def test_model_classification_applied(self, fake_llm, fake_search):
        classified = classify_mentions(fake_llm, self._mentions(fake_search), 'Acme', 'acme.com', location='Sydney')
        assert [m['source_type'] for m in classified] == ['review_site', 'news']
        assert {m['sentiment'] for m in classified} == {'positive'}
        assert classified[0]['sentiment_score'] == 7
        assert classified[0]['snippet'] == 'Great place to work.'
        assert fake_llm.calls_of('generate_object')[0]['step'] == 'mention_classification'

    def test_out_of_range_index_ignored(self, make_llm, fake_search):
        llm = make_llm(objects={'MentionClassificationOutput': MentionClassificationOutput(classifications=[
            {'index': 1, 'sentiment': 'negative', 'sentiment_score': 2, 'relevance_score': 9, 'key_quote': ''},
            {'index': 7, 'sentiment': 'positive', 'sentiment_score': 9, 'relevance_score': 9, 'key_quote': 'x'},
        ])})
        classified = classify_mentions(llm, self._mentions(fake_search), 'Acme', 'acme.com')
        assert [m['sentiment'] for m in classified] == ['neutral', 'negative']
        assert classified[1]['key_quote'] is None
        assert classified[1]['snippet'] == 'Acme named a best place to work.'

    def test_failure_defaults_to_neutral(self, make_llm, fake_search):
        llm = make_llm(objects={'MentionClassificationOutput': ProviderError('openai', 'down')})
        classified = classify_mentions(llm, self._mentions(fake_search), 'Acme', 'acme.com')
        assert {m['sentiment'] for m in classified} == {'neutral'}
        assert classified[0]['sentiment_score'] is None
        assert classified[0]['source_type'] == 'review_site'


class TestComputeMentionStats:

    def test_aggregates(self):
        mentions = [
            _mention('https://glassdoor.com/a', 'positive', 8, 'review_site'),
            _mention('https://glassdoor.com/b', 'negative', 2, 'review_site'),
            _mention('https://reddit.com/c', 'mixed', 5, 'social'),
            _mention('https://example.org/d'),
        ]
        stats = compute_mention_stats(mentions)
        assert stats['total'] == 4
        assert stats['by_sentiment'] == {'positive': 1, 'negative': 1, 'neutral': 1, 'mixed': 1}
        assert stats['by_source_type']['review_site'] == 2
        assert stats['by_source_type']['press'] == 0
        assert stats['top_domains'][0] == {'domain': 'glassdoor.com', 'count': 2, 'avg_sentiment': 5.0}
        assert stats['avg_sentiment_score'] == 5.0
        assert stats['avg_relevance_score'] == 5

    def test_empty(self):
        stats = compute_mention_stats([])
        assert stats['total'] == 0
        assert stats['top_domains'] == []


class TestCoverageBriefing:

    MENTIONS = [_mention('https://glassdoor.com/a', 'positive', 8, 'review_site')]

    def test_three_insights(self, fake_llm):
        insights = generate_coverage_briefing(fake_llm, self.MENTIONS, 'Acme')
        assert [i['type'] for i in insights] == ['positive', 'negative', 'opportunity']
        assert 'Positive mentions (1)' in fake_llm.calls_of('generate_object')[0]['prompt']

    def test_no_mentions(self, fake_llm):
        assert generate_coverage_briefing(fake_llm, [], 'Acme') == []

    def test_failure_returns_empty(self, make_llm):
        llm = make_llm(objects={'CoverageBriefing': ProviderError('openai', 'down')})
        assert generate_coverage_briefing(llm, self.MENTIONS, 'Acme') == []


class TestMentionRows:

    def test_scope_columns_added(self):
        rows = mention_rows([_mention('https://glassdoor.com/a')], 'org-1', 4, 9)
        assert rows[0]['organization_id'] == 'org-1'
        assert rows[0]['monitored_domain_id'] == 4
        assert rows[0]['report_id'] == 9
        assert rows[0]['url'] == 'https://glassdoor.com/a'
        assert rows[0]['url_hash'] is None
