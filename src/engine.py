"""
Extraction engine wiring.

Builds the pattern store, learner, configuration provider, shared rate limiter,
cascade and maintenance scheduler from EngineSettings and hands each component its
collaborators explicitly. One engine per process.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .adaptive_config import AdaptiveConfigProvider
from .cloud_logging import CloudLoggingClient
from .company_profiles import get_company_profile
from .extraction.cascade import ExtractionCascade
from .extraction.page_surface import PageSurface
from .extraction.profile_extractor import extract_company_metadata
from .extraction.rate_limiter import SlidingWindowRateLimiter
from .extraction.session import ExtractionSession
from .extraction.validator import CandidateValidator
from .extraction_config import ExtractionVocabulary, load_vocabulary
from .learning.pattern_learner import PatternLearner
from .learning.pattern_store import PatternStore
from .maintenance import MaintenanceScheduler
from .models import BaselinePatterns, ExtractionGoal, ExtractionResult
from .settings import EngineSettings

logger = logging.getLogger(__name__)


class ExtractionEngine:
    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        vocabulary: Optional[ExtractionVocabulary] = None,
        cloud_logger: Optional[CloudLoggingClient] = None,
        http_session: Optional[requests.Session] = None,
        strategies=None,
    ):
        self.settings = settings or EngineSettings.from_env()
        self.vocabulary = vocabulary or load_vocabulary(self.settings.vocabulary_path)
        self.environment = self.vocabulary.environment(self.settings.environment)

        network = self.vocabulary.network_patterns
        self.store = PatternStore(
            db_path=self.settings.pattern_db_path,
            backup_path=self.settings.backup_path,
            baseline=BaselinePatterns(
                api_endpoints=list(network.static_api_patterns),
                content_patterns=list(network.content_patterns),
            ),
            environments=self.vocabulary.environments,
            tie_band=self.settings.tie_band,
            cleanup_min_success_rate=self.settings.cleanup_min_success_rate,
            cleanup_min_attempts=self.settings.cleanup_min_attempts,
            cleanup_retention_days=self.settings.cleanup_retention_days,
        )
        self.store.initialize()

        self.learner = PatternLearner(
            self.store,
            target_domains=self.vocabulary.target_domains,
            target_indicators=self.vocabulary.target_indicators,
            auto_save_every=self.settings.auto_save_every,
            max_samples=self.settings.max_samples,
            queue_size=self.settings.observation_queue_size,
        )
        self.provider = AdaptiveConfigProvider(
            self.store,
            self.vocabulary,
            self.environment,
            adaptive_mode=self.settings.adaptive_mode,
            cache_ttl=self.settings.config_cache_ttl,
            best_limit=self.settings.best_pattern_limit,
        )
        self.rate_limiter = SlidingWindowRateLimiter.from_timing(self.vocabulary.timing.get("rateLimiting", {}))
        self.http_session = http_session or requests.Session()
        self.cascade = ExtractionCascade(
            self.learner,
            self.provider,
            self.vocabulary,
            self.rate_limiter,
            strategies=strategies,
            http_session=self.http_session,
        )
        self.cloud_logger = cloud_logger or CloudLoggingClient()
        self.scheduler = MaintenanceScheduler(
            self.store,
            self.provider,
            export_dir=self.settings.export_dir,
            gcs_bucket=self.settings.gcs_bucket,
            gcs_prefix=self.settings.gcs_export_prefix,
            cloud_logger=self.cloud_logger,
        )
        logger.info(
            f"✅ [Engine] Ready: env={self.environment.name}, adaptive={self.settings.adaptive_mode}, "
            f"patterns={len(self.store.patterns)}"
        )

    # Exposed operations
    def record_observation(self, url: str, method: str = "GET", succeeded: bool = False,
                           response_sample: Any = None) -> None:
        self.learner.record_observation(url, method, succeeded, response_sample)

    def get_config(self, component: str) -> Dict[str, Any]:
        return self.provider.get_config(component)

    def new_session(self, url: str, surface: PageSurface,
                    goal: ExtractionGoal = ExtractionGoal.BANNER) -> ExtractionSession:
        profile = get_company_profile(url, self.vocabulary.base_url, self.vocabulary.entity_path_pattern)
        return ExtractionSession(
            profile,
            surface,
            CandidateValidator(self.vocabulary, goal),
            goal=goal,
            event_queue_size=int(self.vocabulary.timing_value("observation", "eventQueueSize", 1000)),
        )

    async def extract(self, session: ExtractionSession) -> ExtractionResult:
        result = await self.cascade.extract(session)
        self.cloud_logger.log_extraction_result(result, session.get_summary())
        return result

    async def extract_company(self, url: str, surface: PageSurface,
                              banner_session: Optional[ExtractionSession] = None) -> Dict[str, Any]:
        """Banner, logo and profile metadata for one company page already loaded in surface.

        Pass a banner_session attached before navigation to observe the initial page traffic.
        """
        banner_session = banner_session or self.new_session(url, surface, ExtractionGoal.BANNER)
        banner = await self.extract(banner_session)

        logo_session = self.new_session(url, surface, ExtractionGoal.LOGO)
        logo = await self.extract(logo_session)

        html = ""
        try:
            html = await surface.content()
        except Exception as e:
            logger.warning(f"⚠️  [Engine] Could not read page content for metadata: {e}")
        metadata = extract_company_metadata(html, url, banner_session.company_id)
        metadata.banner_url = banner.result_url
        metadata.logo_url = logo.result_url or metadata.logo_url

        return {
            "company_id": banner_session.company_id,
            "status": "success" if banner.result_url else "exhausted",
            "metadata": metadata.model_dump(mode="json"),
            "results": [banner.model_dump(mode="json"), logo.model_dump(mode="json")],
            "summaries": [
                banner_session.get_summary().model_dump(mode="json"),
                logo_session.get_summary().model_dump(mode="json"),
            ],
        }

    async def run_maintenance(self) -> Dict[str, Any]:
        return await self.scheduler.run_maintenance()

    def start(self) -> None:
        self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        self.http_session.close()
