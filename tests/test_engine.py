"""
Integration tests for the engine wiring, with a fake page surface and stubbed strategies.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.engine import ExtractionEngine
from src.models import CascadeState, ExtractionGoal
from src.settings import EngineSettings

from tests.fakes import BANNER_URL, COMPANY_URL, LOGO_URL, FakeSurface


def pool_strategy(urls):
    """Offers every URL to the pool; the session validator keeps the ones matching its goal."""
    strategy = MagicMock()
    strategy.state = CascadeState.OBSERVING
    strategy.name = "observing"
    strategy.pooled = True
    strategy.timeout = 1.0

    async def run(session, context):
        return session.pool.add_all(urls, "observing")

    strategy.run = AsyncMock(side_effect=run)
    return strategy


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        environment="production",
        pattern_db_path=tmp_path / "api_patterns_database.json",
        export_dir=tmp_path / "exports",
        auto_save_every=1000,
    )


@pytest.fixture
def engine(settings):
    return ExtractionEngine(
        settings=settings,
        cloud_logger=MagicMock(),
        http_session=MagicMock(),
        strategies=[pool_strategy([BANNER_URL, LOGO_URL])],
    )


class TestEngine:
    def test_wiring(self, engine, settings):
        assert engine.environment.name == "production"
        assert engine.store.is_available
        assert engine.cascade.learner is engine.learner
        assert engine.cascade.context.rate_limiter is engine.rate_limiter
        assert engine.scheduler.store is engine.store
        assert settings.pattern_db_path.exists()

    @pytest.mark.asyncio
    async def test_extract_company(self, engine):
        html = "<html><head><meta property=\"og:title\" content=\"Acme | LinkedIn\"></head><body></body></html>"
        result = await engine.extract_company(COMPANY_URL, FakeSurface(html=html))

        assert result["company_id"] == "acme"
        assert result["status"] == "success"
        assert result["metadata"]["banner_url"] == BANNER_URL
        assert result["metadata"]["logo_url"] == LOGO_URL
        assert result["metadata"]["name"] == "Acme"
        assert [r["goal"] for r in result["results"]] == ["banner", "logo"]
        assert engine.cloud_logger.log_extraction_result.call_count == 2

    @pytest.mark.asyncio
    async def test_extract_records_entity_page(self, engine):
        session = engine.new_session(COMPANY_URL, FakeSurface(), ExtractionGoal.BANNER)
        await engine.extract(session)
        assert engine.store.get("path:/company/acme/").successful_attempts == 1

    def test_record_observation_and_config(self, engine):
        url = "https://www.linkedin.com/voyager/api/organization/companies?universalName=acme"
        for _ in range(3):
            engine.record_observation(url, "GET", True, {"backgroundImage": BANNER_URL})
        engine.provider.refresh()
        assert "/api/organization/" in engine.get_config("networkPatterns")["staticApiPatterns"]

    @pytest.mark.asyncio
    async def test_shutdown_persists_and_closes(self, engine, settings):
        engine.record_observation("https://www.linkedin.com/voyager/api/me", "GET", True)
        engine.start()
        await engine.shutdown()
        assert "path:/voyager/api/" in settings.pattern_db_path.read_text()
        engine.http_session.close.assert_called_once()


class TestSettings:
    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("EXTRACTION_ENV", "production")
        monkeypatch.setenv("ADAPTIVE_MODE", "false")
        monkeypatch.setenv("PATTERN_DB_PATH", str(tmp_path / "db.json"))
        monkeypatch.setenv("GCS_BUCKET_NAME", "")

        settings = EngineSettings.from_env()

        assert settings.environment == "production"
        assert settings.adaptive_mode is False
        assert settings.backup_path == tmp_path / "db_backup.json"
        assert settings.gcs_bucket is None
