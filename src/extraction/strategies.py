"""
Extraction strategies, one per cascade state.

Each strategy adds validated candidates to the session pool and reports every attempt
(request URL or selector) back to the learner through the StrategyContext. Hard failures
are reported at once; answered calls are deferred and settled by the cascade once it
knows whether the state produced a winner.

- ObservingStrategy: watch page traffic for a bounded time, provoke it once
- DirectCallsStrategy: call API templates directly under the shared rate limiter
- StructuralAnalysisStrategy: re-parse the rendered markup offline
- DirectLookupStrategy: query a priority-ordered selector table on the live page
"""

import abc
import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote, urlparse

import extruct
import requests
from bs4 import BeautifulSoup
from selectolax.parser import HTMLParser

from ..adaptive_config import AdaptiveConfigProvider
from ..extraction_config import ExtractionVocabulary
from ..learning.pattern_learner import PatternLearner
from ..models import CascadeState, ExtractionCandidate, PatternKind
from .page_surface import ObservedResponse
from .rate_limiter import SlidingWindowRateLimiter
from .scanner import compile_patterns, parse_json, scan_css, scan_payload
from .session import ExtractionSession

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}
AUTH_STATUSES = {401, 403}


@dataclass
class StrategyContext:
    """Collaborators shared by every strategy in one cascade."""
    learner: PatternLearner
    provider: AdaptiveConfigProvider
    vocabulary: ExtractionVocabulary
    rate_limiter: SlidingWindowRateLimiter
    http_session: Optional[requests.Session] = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def report(self, session: ExtractionSession, url: str, method: str, succeeded: bool, sample: Any = None) -> None:
        session.note_attempt(succeeded)
        self.learner.record_observation(url, method, succeeded, sample)
        if succeeded:
            session.note_patterns([k.key for k in self.learner.derive_pattern_keys(url)])

    def defer(self, session: ExtractionSession, url: str, method: str, sample: Any = None) -> None:
        """Hold an answered call until the state's outcome is known; its shapes are usable right away."""
        session.defer_attempt(url, method, sample)
        session.note_patterns([k.key for k in self.learner.derive_pattern_keys(url)])

    def settle(self, session: ExtractionSession, succeeded: bool) -> int:
        """Report every deferred call with the outcome of the state that made it."""
        attempts = session.take_deferred_attempts()
        for url, method, sample in attempts:
            session.note_attempt(succeeded)
            self.learner.record_observation(url, method, succeeded, sample)
        if attempts:
            logger.debug(f"📝 [Strategy] {session.company_id}: settled {len(attempts)} attempts as {'success' if succeeded else 'failure'}")
        return len(attempts)

    def report_selector(self, name: str, succeeded: bool) -> None:
        self.learner.record_selector_outcome(name, succeeded)


class ExtractionStrategy(abc.ABC):
    state: CascadeState
    # Pooled strategies go through scoring; others return their winner directly
    pooled = True
    timeout: Optional[float] = 60.0

    @property
    def name(self) -> str:
        return self.state.value

    @abc.abstractmethod
    async def run(self, session: ExtractionSession, context: StrategyContext) -> List[ExtractionCandidate]:
        ...


# region observing
class ObservingStrategy(ExtractionStrategy):
    state = CascadeState.OBSERVING

    def __init__(
        self,
        max_wait: Optional[float] = None,
        idle_cutoff: Optional[float] = None,
        poll_interval: Optional[float] = None,
        trigger_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_wait = max_wait
        self.idle_cutoff = idle_cutoff
        self.poll_interval = poll_interval
        self.trigger_delay = trigger_delay
        self.clock = clock
        self.timeout = None

    def _timing(self, context: StrategyContext) -> Dict[str, float]:
        vocab = context.vocabulary
        return {
            "max_wait": self.max_wait if self.max_wait is not None else vocab.timing_value("observation", "maxWait", 12.0),
            "idle_cutoff": self.idle_cutoff if self.idle_cutoff is not None else vocab.timing_value("observation", "idleCutoff", 4.0),
            "poll_interval": self.poll_interval if self.poll_interval is not None else vocab.timing_value("observation", "pollInterval", 0.5),
            "trigger_delay": self.trigger_delay if self.trigger_delay is not None else vocab.timing_value("observation", "triggerDelay", 2.0),
        }

    async def run(self, session: ExtractionSession, context: StrategyContext) -> List[ExtractionCandidate]:
        timing = self._timing(context)
        network = context.provider.get_config("networkPatterns")
        patterns = compile_patterns(network.get("targetJsonPatterns", []) + network.get("cdnUrlPatterns", []))
        target_keys = network.get("targetKeys", [])
        api_markers = self.api_markers(network)

        session.attach()
        added: List[ExtractionCandidate] = []
        start = self.clock()
        interacted = False
        logger.info(f"👀 [Observing] {session.company_id}: watching traffic for up to {timing['max_wait']}s")

        try:
            while True:
                added.extend(self._drain(session, context, patterns, target_keys, api_markers))
                now = self.clock()
                elapsed = now - start
                if elapsed >= timing["max_wait"]:
                    break
                if not interacted and elapsed >= timing["trigger_delay"]:
                    await self._interact(session, context)
                    interacted = True
                    continue
                idle = now - (session.last_event_at or start)
                if interacted and idle >= timing["idle_cutoff"]:
                    logger.debug(f"💤 [Observing] Traffic idle for {idle:.1f}s, stopping early")
                    break
                await asyncio.sleep(timing["poll_interval"])
        finally:
            added.extend(self._drain(session, context, patterns, target_keys, api_markers))
            self._record_unanswered(session, context, api_markers)

        logger.info(f"👀 [Observing] {session.company_id}: {len(added)} candidates from {session.observed_responses} responses")
        return added

    async def _interact(self, session: ExtractionSession, context: StrategyContext) -> None:
        """One light interaction to provoke lazy-loaded traffic."""
        interaction = context.vocabulary.interaction
        try:
            await session.surface.scroll(float(interaction.get("scrollFraction", 0.5)))
        except Exception as e:
            logger.debug(f"Scroll failed: {e}")
        for selector in interaction.get("tabSelectors", []):
            if await session.surface.click(selector):
                break

    @staticmethod
    def api_markers(network: Dict[str, Any]) -> List[str]:
        """Path shapes that identify API traffic. Content keywords and host names match too broadly."""
        markers = list(network.get("staticApiPatterns", []))
        markers += [p for p in network.get("targetSpecificPatterns", []) if p.startswith("/")]
        return [m for m in dict.fromkeys(markers) if m.startswith("/")]

    @staticmethod
    def _is_api(url: str, markers: List[str], content_type: str = "") -> bool:
        if content_type.startswith("text/html"):
            return False
        path = urlparse(url).path
        return any(marker in path for marker in markers)

    def _drain(self, session, context, patterns, target_keys, api_markers) -> List[ExtractionCandidate]:
        added: List[ExtractionCandidate] = []
        while True:
            response = session.next_event()
            if response is None:
                return added
            added.extend(self._process(response, session, context, patterns, target_keys, api_markers))

    def _process(self, response: ObservedResponse, session, context, patterns, target_keys, api_markers) -> List[ExtractionCandidate]:
        if not response.url.startswith("http"):
            return []
        if response.content_type.startswith("image/"):
            candidate = session.pool.add(response.url, self.name, source=response.url)
            return [candidate] if candidate else []

        payload = parse_json(response.body)
        if self._is_api(response.url, api_markers, response.content_type):
            if not response.ok:
                context.report(session, response.url, response.method, False)
            elif "json" in response.content_type and response.body and payload is None:
                # Malformed body: the attempt counts as a failure for its patterns
                context.report(session, response.url, response.method, False)
            else:
                context.defer(session, response.url, response.method, payload if payload is not None else response.body)

        if not response.ok or not response.body:
            return []
        found = scan_payload(payload if payload is not None else response.body, patterns, target_keys)
        return session.pool.add_all(found, self.name, source=response.url)

    def _record_unanswered(self, session, context, api_markers) -> None:
        for url, request in list(session.pending_requests.items()):
            if self._is_api(url, api_markers):
                context.report(session, url, request.method, False)
        session.pending_requests.clear()
# endregion


# region direct calls
class DirectCallsStrategy(ExtractionStrategy):
    state = CascadeState.DIRECT_CALLS
    timeout = 180.0

    def __init__(self, max_calls: int = 12):
        self.max_calls = max_calls

    def templates(self, session: ExtractionSession, context: StrategyContext) -> List[str]:
        """Adaptive templates, then templates derived from this session's discoveries."""
        config = context.provider.get_config("apiEndpoints")
        ordered = list(config.get("priorityTemplates", [])) + list(config.get("templates", []))
        base_url = context.vocabulary.base_url.rstrip("/")
        for key in session.discovered_patterns:
            kind, _, shape = key.partition(":")
            if kind == PatternKind.PATH.value:
                ordered.append(f"{base_url}{shape}{{companyId}}")
        seen = set()
        return [t for t in ordered if not (t in seen or seen.add(t))]

    async def run(self, session: ExtractionSession, context: StrategyContext) -> List[ExtractionCandidate]:
        if not session.session_valid:
            logger.info(f"⏭️  [Direct Calls] {session.company_id}: session not trusted, skipping")
            return []

        network = context.provider.get_config("networkPatterns")
        patterns = compile_patterns(network.get("targetJsonPatterns", []) + network.get("cdnUrlPatterns", []))
        target_keys = network.get("targetKeys", [])
        headers = dict(context.vocabulary.api_endpoints.headers)
        headers["User-Agent"] = await session.surface.user_agent() or USER_AGENT
        cookies = {c["name"]: c["value"] for c in await session.surface.cookies() if "name" in c}
        if "JSESSIONID" in cookies:
            headers["csrf-token"] = cookies["JSESSIONID"].strip('"')

        http = context.http_session or requests.Session()
        added: List[ExtractionCandidate] = []
        for template in self.templates(session, context)[: self.max_calls]:
            url = template.replace("{companyId}", quote(session.company_id, safe=""))
            payload = await self._call(url, headers, cookies, http, session, context)
            if not session.session_valid:
                break
            if payload is None:
                continue
            new = session.pool.add_all(scan_payload(payload, patterns, target_keys), self.name, source=url)
            added.extend(new)
            if new:
                logger.info(f"🎯 [Direct Calls] {session.company_id}: {len(new)} candidates from {url[:100]}")
                break
        return added

    async def _call(self, url, headers, cookies, http, session, context) -> Optional[Any]:
        """GET one URL with transient retries. Reports the final outcome once."""
        timing = context.vocabulary.timing.get("requests", {})
        retries = int(timing.get("transientRetries", 2))
        base_delay = timing.get("retryBaseDelay", 0.5)
        max_delay = timing.get("retryMaxDelay", 8.0)
        timeout = timing.get("timeout", 15.0)
        loop = asyncio.get_event_loop()

        for attempt in range(retries + 1):
            await context.rate_limiter.acquire()
            session.rate_limiter_requests += 1
            try:
                response = await loop.run_in_executor(
                    None,
                    functools.partial(http.get, url, headers=headers, cookies=cookies, timeout=timeout),
                )
            except requests.RequestException as e:
                logger.warning(f"⚠️  [Direct Calls] Request error for {url[:100]}: {e}")
                status = None
            else:
                status = response.status_code

            if status is not None and status in AUTH_STATUSES:
                session.mark_untrusted(f"HTTP {status}")
                context.report(session, url, "GET", False)
                return None

            if status is not None and status not in TRANSIENT_STATUSES:
                if status >= 400:
                    context.report(session, url, "GET", False)
                    return None
                payload = parse_json(response.text)
                if payload is None:
                    logger.debug(f"Malformed JSON from {url[:100]}")
                    context.report(session, url, "GET", False)
                    return None
                context.defer(session, url, "GET", payload)
                return payload

            if status == 429:
                await context.rate_limiter.backoff()
            if attempt < retries:
                delay = min(base_delay * (2 ** attempt) + random.uniform(0, 1), max_delay)
                logger.debug(f"🔁 [Direct Calls] Retry {attempt + 1}/{retries} for {url[:100]} in {delay:.2f}s")
                await context.sleep(delay)

        context.report(session, url, "GET", False)
        return None
# endregion


# region structural analysis
class StructuralAnalysisStrategy(ExtractionStrategy):
    state = CascadeState.STRUCTURAL_ANALYSIS
    timeout = 30.0

    async def run(self, session: ExtractionSession, context: StrategyContext) -> List[ExtractionCandidate]:
        try:
            html = await session.surface.content()
        except Exception as e:
            logger.warning(f"⚠️  [Structural] Could not read page content for {session.company_id}: {e}")
            return []
        if not html:
            return []

        network = context.provider.get_config("networkPatterns")
        patterns = compile_patterns(network.get("targetJsonPatterns", []) + network.get("cdnUrlPatterns", []))
        cdn_patterns = compile_patterns(network.get("cdnUrlPatterns", []))
        target_keys = network.get("targetKeys", [])
        structural = context.vocabulary.structural
        url = session.surface.url

        probes = [
            ("structural:json-ld", lambda: self._json_ld(html, url, patterns, target_keys)),
            ("structural:scripts", lambda: self._scripts(html, structural.script_indicators, patterns, target_keys)),
            ("structural:styles", lambda: self._styles(html, cdn_patterns)),
            ("structural:meta", lambda: self._meta(html, structural.meta_keywords.get(session.goal.value, []))),
            ("structural:data-attributes", lambda: self._data_attributes(html, structural.data_attributes)),
        ]
        added: List[ExtractionCandidate] = []
        for name, probe in probes:
            try:
                found = probe()
            except Exception as e:
                logger.debug(f"{name} probe failed: {e}")
                found = []
            new = session.pool.add_all(found, self.name, source=name)
            context.report_selector(name, bool(new))
            added.extend(new)
        logger.info(f"🧩 [Structural] {session.company_id}: {len(added)} candidates from markup")
        return added

    @staticmethod
    def _json_ld(html: str, url: str, patterns, target_keys) -> List[str]:
        data = extruct.extract(html, base_url=url, syntaxes=["json-ld"], errors="ignore")
        return scan_payload(data.get("json-ld", []), patterns, target_keys)

    @staticmethod
    def _scripts(html: str, indicators: List[str], patterns, target_keys) -> List[str]:
        found: List[str] = []
        tree = HTMLParser(html)
        for node in tree.css("script"):
            text = node.text(deep=True) or ""
            if not any(indicator in text for indicator in indicators):
                continue
            payload = parse_json(text)
            for value in scan_payload(payload if payload is not None else text, patterns, target_keys):
                if value not in found:
                    found.append(value)
        return found

    @staticmethod
    def _styles(html: str, cdn_patterns) -> List[str]:
        found: List[str] = []
        tree = HTMLParser(html)
        blocks = [node.text(deep=True) or "" for node in tree.css("style")]
        blocks += [node.attributes.get("style") or "" for node in tree.css("[style]")]
        for block in blocks:
            if "background" not in block.lower() and "licdn" not in block:
                continue
            for value in scan_css(block, cdn_patterns):
                if value not in found:
                    found.append(value)
        return found

    @staticmethod
    def _meta(html: str, keywords: List[str]) -> List[str]:
        found: List[str] = []
        soup = BeautifulSoup(html, "lxml")
        for meta in soup.find_all("meta"):
            name = (meta.get("property") or meta.get("name") or "").lower()
            content = meta.get("content") or ""
            if name and content and any(k in name for k in keywords) and content not in found:
                found.append(content)
        return found

    @staticmethod
    def _data_attributes(html: str, attributes: List[str]) -> List[str]:
        found: List[str] = []
        soup = BeautifulSoup(html, "lxml")
        for attribute in attributes:
            for element in soup.find_all(attrs={attribute: True}):
                value = element.get(attribute)
                if value and value not in found:
                    found.append(value)
        return found
# endregion


# region direct lookup
_LOOKUP_SCRIPT = """
([selector, mode]) => {
    const el = document.querySelector(selector);
    if (!el) return null;
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    if (rect.width <= 0 || rect.height <= 0 || style.visibility === 'hidden' || style.display === 'none') return null;
    if (mode === 'src') return el.currentSrc || el.src || el.getAttribute('data-delayed-url');
    const match = (style.backgroundImage || '').match(/url\\(["']?([^"')]+)["']?\\)/);
    return match ? match[1] : null;
}
"""


class DirectLookupStrategy(ExtractionStrategy):
    state = CascadeState.DIRECT_LOOKUP
    pooled = False
    timeout = 30.0

    async def run(self, session: ExtractionSession, context: StrategyContext) -> List[ExtractionCandidate]:
        entries = context.provider.get_config("domSelectors").get(session.goal.value, [])
        entries = sorted(entries, key=lambda e: e.get("adaptivePriority", e["priority"]), reverse=True)
        validator = session.pool.validator

        for entry in entries:
            name = f"lookup:{entry['selector']}"
            try:
                value = await session.surface.evaluate(_LOOKUP_SCRIPT, [entry["selector"], entry["mode"]])
            except Exception as e:
                logger.debug(f"Lookup {entry['selector']} failed: {e}")
                value = None
            url = validator.normalize(value) if value else None
            if url and validator.is_valid(url):
                context.report_selector(name, True)
                logger.info(f"🎯 [Direct Lookup] {session.company_id}: matched {entry['selector']}")
                return [ExtractionCandidate(url=url, origin_strategy=self.name, source=entry["selector"])]
            context.report_selector(name, False)
        return []
# endregion


def default_strategies() -> List[ExtractionStrategy]:
    return [
        ObservingStrategy(),
        DirectCallsStrategy(),
        StructuralAnalysisStrategy(),
        DirectLookupStrategy(),
    ]
