"""
Per-company extraction session.

Holds everything that lives for one cascade run: the page surface, the candidate pool,
the bounded event queue fed by the surface, counters and the session trust flag.
"""

import logging
import time
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ..company_profiles import CompanyProfile
from ..models import CascadeState, ExtractionCandidate, ExtractionGoal, ExtractionSummary, utc_now
from .page_surface import ObservedRequest, ObservedResponse, PageSurface
from .validator import CandidateValidator

logger = logging.getLogger(__name__)

_HEALTH_SCRIPT = """
([positive, negative]) => {
    const found = positive.filter((s) => { try { return !!document.querySelector(s); } catch (e) { return false; } });
    const text = (document.body && document.body.innerText) || '';
    const blocked = negative.filter((t) => text.includes(t));
    return {positive: found, negative: blocked};
}
"""


class CandidatePool:
    """Insertion-ordered, URL-deduplicated candidates that passed validation."""

    def __init__(self, validator: CandidateValidator):
        self.validator = validator
        self._items: "OrderedDict[str, ExtractionCandidate]" = OrderedDict()
        self.rejected = 0

    def add(self, url: Optional[str], origin_strategy: str, source: Optional[str] = None) -> Optional[ExtractionCandidate]:
        """Validate and add one URL. Returns the new candidate, or None if rejected or duplicate."""
        normalized = self.validator.normalize(url)
        if normalized is None or not self.validator.is_valid(normalized):
            self.rejected += 1
            return None
        if normalized in self._items:
            return None
        candidate = ExtractionCandidate(url=normalized, origin_strategy=origin_strategy, source=source)
        self._items[normalized] = candidate
        logger.debug(f"➕ [Candidate Pool] {origin_strategy}: {normalized[:100]}")
        return candidate

    def add_all(self, urls: List[str], origin_strategy: str, source: Optional[str] = None) -> List[ExtractionCandidate]:
        added = []
        for url in urls:
            candidate = self.add(url, origin_strategy, source)
            if candidate is not None:
                added.append(candidate)
        return added

    @property
    def candidates(self) -> List[ExtractionCandidate]:
        return list(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, url: str) -> bool:
        return url in self._items

    def clear(self) -> None:
        self._items.clear()


class ExtractionSession:
    def __init__(
        self,
        profile: CompanyProfile,
        surface: PageSurface,
        validator: CandidateValidator,
        goal: ExtractionGoal = ExtractionGoal.BANNER,
        event_queue_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.profile = profile
        self.surface = surface
        self.goal = goal
        self.pool = CandidatePool(validator)
        self.events: Deque[ObservedResponse] = deque(maxlen=event_queue_size)
        self.clock = clock
        self.state = CascadeState.NOT_STARTED

        self.intercepted_requests = 0
        self.observed_responses = 0
        self.dropped_events = 0
        self.attempted = 0
        self.succeeded = 0
        self.discovered_patterns: List[str] = []
        self.pending_requests: Dict[str, ObservedRequest] = {}
        self.deferred_attempts: List[Tuple[str, str, Any]] = []
        self.last_event_at: Optional[float] = None

        self.session_valid = True
        self.last_health_check: Optional[datetime] = None
        self.rate_limiter_requests = 0
        self._attached = False

    @property
    def company_id(self) -> str:
        return self.profile.company_id

    # region events
    def attach(self) -> None:
        """Subscribe to the surface's request/response events once."""
        if self._attached:
            return
        self.surface.on_request(self._on_request)
        self.surface.on_response(self._on_response)
        self._attached = True

    def _on_request(self, request: ObservedRequest) -> None:
        self.intercepted_requests += 1
        self.pending_requests[request.url] = request
        self.last_event_at = self.clock()

    def _on_response(self, response: ObservedResponse) -> None:
        if self.events.maxlen is not None and len(self.events) >= self.events.maxlen:
            self.dropped_events += 1
        self.events.append(response)
        self.pending_requests.pop(response.url, None)
        self.last_event_at = self.clock()

    def next_event(self) -> Optional[ObservedResponse]:
        if not self.events:
            return None
        self.observed_responses += 1
        return self.events.popleft()
    # endregion

    def note_attempt(self, succeeded: bool) -> None:
        self.attempted += 1
        if succeeded:
            self.succeeded += 1

    def defer_attempt(self, url: str, method: str, sample: Any = None) -> None:
        self.deferred_attempts.append((url, method, sample))

    def take_deferred_attempts(self) -> List[Tuple[str, str, Any]]:
        attempts, self.deferred_attempts = self.deferred_attempts, []
        return attempts

    def note_patterns(self, keys: List[str]) -> None:
        for key in keys:
            if key not in self.discovered_patterns:
                self.discovered_patterns.append(key)

    def mark_untrusted(self, reason: str) -> None:
        if self.session_valid:
            logger.warning(f"🔒 [Session] {self.company_id}: session no longer trusted ({reason})")
        self.session_valid = False

    # region page housekeeping
    async def check_health(self, positive: List[str], negative: List[str]) -> bool:
        """Look for signed-in page markers and block-page texts on the live page."""
        try:
            report: Any = await self.surface.evaluate(_HEALTH_SCRIPT, [positive, negative])
        except Exception as e:
            logger.warning(f"⚠️  [Session] Health check failed for {self.company_id}: {e}")
            return self.session_valid

        self.last_health_check = utc_now()
        report = report or {}
        blocked = report.get("negative") or []
        markers = report.get("positive") or []
        if blocked:
            self.mark_untrusted(f"block page text: {blocked[0]}")
        elif positive and not markers:
            self.mark_untrusted("no page markers found")
        else:
            logger.info(f"✅ [Session] {self.company_id}: session healthy ({len(markers)} markers)")
        return self.session_valid

    async def dismiss_popups(self, selectors: List[str]) -> int:
        dismissed = 0
        for selector in selectors:
            if await self.surface.click(selector, timeout=1.0):
                dismissed += 1
                logger.debug(f"🪟 [Session] Dismissed popup via {selector}")
        return dismissed
    # endregion

    def get_summary(self) -> ExtractionSummary:
        return ExtractionSummary(
            company_id=self.company_id,
            goal=self.goal,
            state=self.state,
            intercepted_requests=self.intercepted_requests,
            observed_responses=self.observed_responses,
            dropped_events=self.dropped_events,
            attempted=self.attempted,
            succeeded=self.succeeded,
            discovered_patterns=list(self.discovered_patterns),
            discovered_patterns_count=len(self.discovered_patterns),
            candidates_found=len(self.pool),
            candidate_urls=[c.url for c in self.pool.candidates],
            session_valid=self.session_valid,
            last_health_check=self.last_health_check,
            rate_limiter_requests=self.rate_limiter_requests,
        )
