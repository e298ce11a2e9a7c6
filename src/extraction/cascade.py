"""
Extraction Strategy Cascade

NOT_STARTED -> OBSERVING -> DIRECT_CALLS -> STRUCTURAL_ANALYSIS -> DIRECT_LOOKUP -> DONE

States run strictly in sequence. After each state the pool is scored; the first state
that yields an acceptable winner jumps straight to DONE(success). A state that times
out or fails degrades to the next one. Running out of states is DONE(exhausted).
Calls a state answered are reported to the learner as successes only when that state
produced the winner.
"""

import asyncio
import logging
import time
from typing import List, Optional

import requests

from ..adaptive_config import AdaptiveConfigProvider
from ..extraction_config import ExtractionVocabulary
from ..learning.pattern_learner import PatternLearner
from ..models import CascadeState, ExtractionCandidate, ExtractionResult
from .rate_limiter import SlidingWindowRateLimiter
from .scorer import CandidateScorer
from .session import ExtractionSession
from .strategies import ExtractionStrategy, StrategyContext, default_strategies

logger = logging.getLogger(__name__)


class ExtractionCascade:
    def __init__(
        self,
        learner: PatternLearner,
        provider: AdaptiveConfigProvider,
        vocabulary: ExtractionVocabulary,
        rate_limiter: SlidingWindowRateLimiter,
        strategies: Optional[List[ExtractionStrategy]] = None,
        http_session: Optional[requests.Session] = None,
        check_health: bool = True,
        dismiss_popups: bool = True,
    ):
        self.learner = learner
        self.provider = provider
        self.vocabulary = vocabulary
        self.strategies = strategies if strategies is not None else default_strategies()
        self.context = StrategyContext(
            learner=learner,
            provider=provider,
            vocabulary=vocabulary,
            rate_limiter=rate_limiter,
            http_session=http_session,
        )
        self.check_health = check_health
        self.dismiss_popups = dismiss_popups

    async def _prepare(self, session: ExtractionSession) -> None:
        if self.dismiss_popups:
            await session.dismiss_popups(self.vocabulary.interaction.get("popupCloseSelectors", []))
        if self.check_health:
            health = self.vocabulary.session_health
            await session.check_health(health.get("positive", []), health.get("negative", []))

    async def _run_state(self, strategy: ExtractionStrategy, session: ExtractionSession) -> List[ExtractionCandidate]:
        try:
            return await asyncio.wait_for(strategy.run(session, self.context), timeout=strategy.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⏱️  [Cascade] {strategy.name} timed out for {session.company_id}")
        except Exception as e:
            logger.warning(f"⚠️  [Cascade] {strategy.name} failed for {session.company_id}: {e}")
        return []

    async def extract(self, session: ExtractionSession) -> ExtractionResult:
        """Run the cascade for one session. Never raises for expected failures."""
        start = time.monotonic()
        scorer = CandidateScorer(self.vocabulary.scoring[session.goal.value])
        states_visited: List[CascadeState] = []
        winner: Optional[ExtractionCandidate] = None

        logger.info(f"🚀 [Cascade] {session.company_id}: extracting {session.goal.value}")
        await self._prepare(session)

        for strategy in self.strategies:
            session.state = strategy.state
            states_visited.append(strategy.state)
            produced = await self._run_state(strategy, session)

            if strategy.pooled:
                winner = scorer.select(session.pool.candidates)
            elif produced:
                winner = produced[0]
                winner.raw_score = scorer.score(winner.url)
            self.context.settle(session, succeeded=winner is not None)

            if winner is not None:
                logger.info(f"✅ [Cascade] {session.company_id}: {session.goal.value} found by {strategy.name}")
                break
            logger.info(f"➡️  [Cascade] {session.company_id}: {strategy.name} yielded no winner")

        session.state = CascadeState.DONE
        states_visited.append(CascadeState.DONE)
        if winner is None:
            logger.warning(f"❌ [Cascade] {session.company_id}: all strategies exhausted for {session.goal.value}")

        self.learner.record_observation(session.profile.url, "GET", succeeded=winner is not None)

        return ExtractionResult(
            company_id=session.company_id,
            goal=session.goal,
            result_url=winner.url if winner else None,
            outcome="success" if winner else "exhausted",
            winning_strategy=winner.origin_strategy if winner else None,
            states_visited=states_visited,
            candidates_considered=len(session.pool),
            elapsed_ms=int((time.monotonic() - start) * 1000),
            session_valid=session.session_valid,
        )
