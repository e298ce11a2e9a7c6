"""
Shared fixtures: the bundled extraction vocabulary, a store in a temp directory, and a
fake page surface standing in for Playwright.
"""

import pytest

from src.adaptive_config import AdaptiveConfigProvider
from src.company_profiles import get_company_profile
from src.extraction.page_surface import PageSurface
from src.extraction.session import ExtractionSession
from src.extraction.validator import CandidateValidator
from src.extraction_config import load_vocabulary
from src.learning.pattern_learner import PatternLearner
from src.learning.pattern_store import PatternStore
from src.models import BaselinePatterns, ExtractionGoal

from tests.fakes import FakeSurface


@pytest.fixture
def vocabulary():
    return load_vocabulary()


@pytest.fixture
def store(tmp_path, vocabulary):
    network = vocabulary.network_patterns
    store = PatternStore(
        tmp_path / "api_patterns_database.json",
        baseline=BaselinePatterns(
            api_endpoints=list(network.static_api_patterns),
            content_patterns=list(network.content_patterns),
        ),
        environments=vocabulary.environments,
    )
    store.initialize()
    return store


@pytest.fixture
def learner(store, vocabulary):
    return PatternLearner(
        store,
        target_domains=vocabulary.target_domains,
        target_indicators=vocabulary.target_indicators,
        auto_save_every=1000,
    )


@pytest.fixture
def provider(store, vocabulary):
    return AdaptiveConfigProvider(store, vocabulary, vocabulary.environment("development"))


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def make_session(vocabulary):
    def _make(surface: PageSurface, goal: ExtractionGoal = ExtractionGoal.BANNER) -> ExtractionSession:
        profile = get_company_profile(surface.url, vocabulary.base_url, vocabulary.entity_path_pattern)
        return ExtractionSession(profile, surface, CandidateValidator(vocabulary, goal), goal=goal)
    return _make
