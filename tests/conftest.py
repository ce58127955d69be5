"""Shared test fixtures."""
import re
import threading

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.errors import ProviderError
from app.services.llm import LLMResult, Usage
from app.services.search import SearchResult


LONG_ANSWER = (
    'Acme is widely regarded as a good place to work. Employees mention competitive salary and '
    'benefits, a collaborative culture and real career growth. Some reviews flag long hours during '
    'launches. Compared with Globex, Acme offers more flexible remote work.'
)


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created. One shared connection across threads."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import app.models.scan_run
    import app.models.monitored_domain
    import app.models.site_analysis
    import app.models.scan_prompt
    import app.models.platform_response
    import app.models.report
    import app.models.frozen
    import app.models.score_history
    import app.models.web_mention
    import app.models.cost_entry
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """Session for test assertions. Rolls back after each test."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(session_factory):
    """Route every get_session() call to a fresh session on the in-memory engine."""
    with patch('app.database.get_session', side_effect=session_factory), \
            patch('app.services.db.get_session', side_effect=session_factory), \
            patch('app.services.costs.get_session', side_effect=session_factory):
        yield session_factory


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.set.return_value = True
    mock.hgetall.return_value = {}
    with patch('app.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app(mock_redis):
    """Flask test app."""
    from app import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_run():
    """Factory fixture — creates a ScanRun row and returns the run id."""
    from app.services import db

    def _make(run_id='run-test-001', domain='acme.com', organization_id=None, monitored_domain_id=None,
              **overrides):
        db.create_scan_run(run_id, domain, organization_id, monitored_domain_id)
        if overrides:
            from app.models.scan_run import ScanRun
            with db.session_scope() as session:
                run = session.get(ScanRun, run_id)
                for key, value in overrides.items():
                    setattr(run, key, value)
        return run_id
    return _make


@pytest.fixture
def make_monitored_domain():
    from app.models.monitored_domain import MonitoredDomain
    from app.services import db

    def _make(domain='acme.com', organization_id='org-1', company_name='Acme'):
        with db.session_scope() as session:
            row = MonitoredDomain(organization_id=organization_id, domain=domain,
                                  company_name=company_name, is_primary=True)
            session.add(row)
            session.flush()
            return row.id
    return _make


# ── Provider fakes ───────────────────────────────────────────────────────────

def _ids_in(prompt):
    return re.findall(r'^\[(\d+)\]', prompt, flags=re.MULTILINE)


def _names_in(prompt):
    target = re.search(r'TARGET EMPLOYER: (.+?) \(', prompt)
    others = re.search(r'COMPETITOR EMPLOYERS: (.+)', prompt)
    names = [target.group(1)] if target else []
    if others:
        names += [n.strip() for n in others.group(1).split(',') if n.strip()]
    return names


def _default_object(schema, prompt):
    """Plausible structured output for the schemas the scan pipeline asks for."""
    name = schema.__name__
    if name == 'ResearchabilityOutput':
        return schema(specificity=7, confidence=6, topics=['compensation', 'culture', 'growth'])
    if name == 'EnhancedOutput':
        return schema(positive_highlights=['good pay'], recommendation_score=7,
                      recommendation_summary='Recommended', hedging_level='low',
                      source_quality='moderate', response_recency='recent')
    if name == 'BatchSentimentOutput':
        return schema(scores=[{'id': i, 'score': 7, 'positive_phrases': ['good place to work']}
                              for i in _ids_in(prompt)])
    if name == 'DifferentiationOutput':
        return schema(competitor_confusion=3, unique_positioning=7, generic_language=4,
                      unique_attributes=['remote work'])
    if name == 'FamilyClassification':
        return schema(families=[{'family': 'engineering', 'roles': ['Software Engineer'], 'relevance': 0.9},
                                {'family': 'business', 'roles': ['Sales'], 'relevance': 0.6}])
    if name == 'EmployerResearchOutput':
        return schema(
            questions=[
                {'question': 'What is it like to work at Acme?', 'category': 'reputation'},
                {'question': 'How much does Acme pay software engineers?', 'category': 'compensation'},
                {'question': 'Is Acme or Globex better for career growth?', 'category': 'comparison'},
            ],
            competitors=[{'name': 'Globex', 'domain': 'globex.com', 'reason': 'Same talent pool'},
                         {'name': 'Initech', 'domain': 'initech.com', 'reason': 'Same city'}],
        )
    if name == 'EmployerComparisonOutput':
        employers = []
        for i, employer in enumerate(_names_in(prompt)):
            base = 8 - i
            employers.append({
                'name': employer,
                'scores': {'compensation': base, 'culture': base, 'growth': 6, 'balance': 5 + i,
                           'leadership': 6, 'tech': base, 'mission': 6},
                'highlights': [f'{employer} highlight'],
            })
        return schema(employers=employers, recommendations=['Publish salary bands'])
    if name == 'StrategicSummaryOutput':
        return schema(
            executive_summary='Acme is well regarded but little known.',
            competitive_positioning='A flexible alternative to Globex.',
            score_interpretation={'desirability': 'Good', 'awareness': 'Low', 'differentiation': 'Fair',
                                  'overall_health': 'moderate'},
            strengths=[{'dimension': 'compensation', 'headline': 'Pays well', 'leverage_strategy': 'Say so'}],
            gaps=[{'dimension': 'balance', 'headline': 'Long hours', 'business_impact': 'Attrition',
                   'top_competitor': 'Globex'}],
            recommendations=[{'title': 'Publish salary bands', 'description': 'On every job ad',
                              'effort': 'quick_win', 'impact': 'high', 'priority': 'immediate'}],
            industry_context='Competitive market.',
            top_talent_competitor='Globex',
        )
    if name == 'RoleActionPlanOutput':
        return schema(
            headline='Engineers know Acme pays well',
            summary='AI assistants describe Acme as a solid engineering employer.',
            recommendations=[
                {'title': 'Publish an engineering blog', 'description': 'Show the stack',
                 'effort': 'moderate', 'impact': 'high'},
                {'title': 'List salary bands', 'description': 'On every engineering ad',
                 'effort': 'quick_win', 'impact': 'medium'},
                {'title': 'Run meetups', 'description': 'Host local events',
                 'effort': 'significant', 'impact': 'low'},
            ],
        )
    if name == 'MentionClassificationOutput':
        return schema(classifications=[
            {'index': int(i), 'sentiment': 'positive', 'sentiment_score': 7, 'relevance_score': 8,
             'key_quote': 'Great place to work.'}
            for i in _ids_in(prompt)
        ])
    if name == 'CoverageBriefing':
        return schema(insights=[
            {'type': 'positive', 'text': 'Glassdoor reviewers praise pay.'},
            {'type': 'negative', 'text': 'Reddit threads mention long hours.'},
            {'type': 'opportunity', 'text': 'No press coverage of awards.'},
        ])
    raise ProviderError('fake', f'no canned output for {name}')


class FakeLLM:
    """
    Stands in for LLMClient. Records every call; answers from canned text.

    objects maps schema name → instance, callable(prompt) or Exception.
    fail lists call kinds ('search_openai', 'generate_text', ...) that raise.
    """

    def __init__(self, text=LONG_ANSWER, objects=None, fail=(), competitors='["Globex"]'):
        self.text = text
        self.objects = objects or {}
        self.fail = set(fail)
        self.competitors = competitors
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, kind, **kwargs):
        with self._lock:
            self.calls.append((kind, kwargs))
        if kind in self.fail:
            raise ProviderError('fake', f'{kind} failed')

    def calls_of(self, kind):
        return [kw for k, kw in self.calls if k == kind]

    def _result(self, text, model):
        return LLMResult(text=text, model=model, usage=Usage(10, 20))

    def generate_text(self, provider, model, prompt, system=None, max_tokens=1000, temperature=None,
                      run_id=None, step=None):
        self._record('generate_text', provider=provider, model=model, prompt=prompt, step=step)
        if prompt.startswith('Extract company'):
            return self._result(self.competitors, model)
        return self._result(self.text, model)

    def generate_object(self, provider, model, schema, prompt, system=None, max_tokens=2000,
                        temperature=None, run_id=None, step=None):
        self._record('generate_object', provider=provider, model=model, schema=schema.__name__,
                     prompt=prompt, step=step)
        entry = self.objects.get(schema.__name__)
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            value = entry(prompt)
        elif entry is not None:
            value = entry
        else:
            value = _default_object(schema, prompt)
        return value, self._result('', model)

    def search_openai(self, model, prompt, system=None, user_location=None, max_output_tokens=4000,
                      run_id=None, step=None):
        self._record('search_openai', prompt=prompt, user_location=user_location)
        return self._result(self.text, model)

    def search_gemini(self, model, prompt, system=None, run_id=None, step=None):
        self._record('search_gemini', prompt=prompt)
        return self._result(self.text, model)

    def perplexity_chat(self, model, prompt, system=None, max_tokens=1500, timeout=60, run_id=None, step=None):
        self._record('perplexity_chat', prompt=prompt)
        return self._result(self.text, model)

    @property
    def platform_calls(self):
        """Calls that only the query step makes."""
        return [c for c in self.calls
                if c[0] in ('search_openai', 'search_gemini', 'perplexity_chat')
                or (c[0] == 'generate_text' and (c[1].get('step') or '').endswith('_search'))]


class FakeSearch:
    """Stands in for TavilySearch."""

    def __init__(self, results=None):
        self.results = results if results is not None else [
            SearchResult(url='https://www.glassdoor.com/Reviews/Acme', title='Acme reviews',
                         snippet='Employees rate Acme 4.2 out of 5.'),
            SearchResult(url='https://news.example.com/acme-award', title='Acme wins award',
                         snippet='Acme named a best place to work.'),
        ]
        self.queries = []
        self._lock = threading.Lock()

    def search(self, query, max_results=5, search_depth='advanced', run_id=None, step=None):
        with self._lock:
            self.queries.append(query)
        return list(self.results)


@pytest.fixture
def make_llm():
    """The FakeLLM class, for tests that need custom canned output."""
    return FakeLLM


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def make_search():
    return FakeSearch


@pytest.fixture
def providers(fake_llm, fake_search):
    from app.pipeline.providers import Providers
    return Providers(llm=fake_llm, search=fake_search)
