"""Shared fixtures: fake clock, file-backed SQLite store, fake AI provider."""
import pytest

from db.connection import init_db, make_engine, make_session_factory
from db.store import QueryStore
from querygen.ai_enhancement import QueryEnhancer
from querygen.template_engine import TemplateEngine
from tests.helpers import FakeClock, FakeProvider, no_retry_config


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return QueryStore(session_factory)


@pytest.fixture
async def seeded_store(store):
    await TemplateEngine(store).seed_default_templates()
    return store


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def enhancer(provider):
    return QueryEnhancer(provider, optimizer_config=no_retry_config())
