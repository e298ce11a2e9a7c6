"""
Pattern Learner

Turns observed requests/responses into pattern statistics in the PatternStore.

Key derivation deliberately overgenerates (every adjacent pair of path segments,
every query parameter name, the target hostname). Low-value keys are pruned later by
cleanup, not filtered here.

Observations can be recorded directly (record_observation) or pushed through a
bounded queue (submit + drain) when the producer is an event callback. The queue
drops its oldest entry when full.
"""

import asyncio
import hashlib
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional
from urllib.parse import parse_qsl, urlparse

from ..models import Pattern, PatternKind, ResponseFingerprint, SelectorOutcome, utc_now
from .pattern_store import PatternStore

logger = logging.getLogger(__name__)

RECENT_LIST_CAP = 20


@dataclass
class DerivedKey:
    kind: PatternKind
    shape: str
    domain: Optional[str]

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.shape}"


@dataclass
class Observation:
    """One attempted request and its outcome."""
    url: str
    method: str = "GET"
    succeeded: bool = False
    response_sample: Any = None
    strategy: Optional[str] = None
    observed_at: float = field(default=0.0)


def _sanitize_url(url: str, limit: int = 100) -> str:
    return url if len(url) <= limit else url[:limit] + "..."


def _serialize_sample(sample: Any) -> Optional[str]:
    if sample is None:
        return None
    if isinstance(sample, bytes):
        return sample.decode("utf-8", errors="ignore")
    if isinstance(sample, str):
        return sample
    try:
        return json.dumps(sample, default=str)
    except (TypeError, ValueError):
        return str(sample)


class PatternLearner:
    """Derives pattern keys from observed URLs and updates the store's statistics."""

    def __init__(
        self,
        store: PatternStore,
        target_domains: Iterable[str] = ("linkedin.com",),
        target_indicators: Iterable[str] = (),
        auto_save_every: int = 50,
        max_samples: int = 3,
        queue_size: int = 500,
        enabled: bool = True,
    ):
        self.store = store
        self.target_domains = [d.lower() for d in target_domains]
        self.target_indicators = [i.lower() for i in target_indicators]
        self.auto_save_every = max(1, auto_save_every)
        self.max_samples = max_samples
        self.enabled = enabled
        self.queue: Deque[Observation] = deque(maxlen=queue_size)
        self.dropped_observations = 0
        self._listeners: List[Callable[[Pattern], None]] = []
        self._pending_save: Optional[asyncio.Future] = None

    # region derivation
    def is_target_host(self, hostname: Optional[str]) -> bool:
        if not hostname:
            return False
        host = hostname.lower()
        return any(host == d or host.endswith("." + d) for d in self.target_domains)

    def derive_pattern_keys(self, url: str) -> List[DerivedKey]:
        """Candidate pattern keys for one URL. Returns [] for unparseable input."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return []
        hostname = parsed.hostname
        keys: List[DerivedKey] = []

        segments = [s for s in parsed.path.split("/") if s]
        for i in range(len(segments) - 1):
            shape = "/" + "/".join(segments[i:i + 2]) + "/"
            if len(shape) > 5:
                keys.append(DerivedKey(PatternKind.PATH, shape, hostname))

        for name, _ in parse_qsl(parsed.query, keep_blank_values=True):
            if len(name) > 2:
                keys.append(DerivedKey(PatternKind.QUERY, name, hostname))

        if self.is_target_host(hostname):
            keys.append(DerivedKey(PatternKind.DOMAIN, hostname, hostname))

        unique: Dict[str, DerivedKey] = {}
        for derived in keys:
            unique.setdefault(derived.key, derived)
        return list(unique.values())

    def contains_target_data(self, sample: Any) -> bool:
        text = _serialize_sample(sample)
        if not text:
            return False
        lowered = text.lower()
        return any(indicator in lowered for indicator in self.target_indicators)
    # endregion

    # region observation
    def record_observation(
        self,
        url: str,
        method: str = "GET",
        succeeded: bool = False,
        response_sample: Any = None,
    ) -> None:
        """Update statistics for every pattern derived from url. Never raises."""
        if not self.enabled:
            return
        if not isinstance(url, str) or not url:
            logger.warning(f"⚠️  [Pattern Learner] Ignoring observation with invalid URL: {url!r}")
            return
        if not isinstance(method, str) or not method:
            logger.warning(f"⚠️  [Pattern Learner] Ignoring observation with invalid method: {method!r}")
            return

        try:
            derived = self.derive_pattern_keys(url)
            if not derived:
                logger.warning(f"⚠️  [Pattern Learner] Could not derive patterns from {_sanitize_url(url)}")
                return

            target = bool(succeeded) and self.contains_target_data(response_sample)
            fingerprint = self._fingerprint(response_sample, target) if target else None
            for item in derived:
                self._update(item, method.upper(), bool(succeeded), fingerprint)

            self.store.stats["total_observations"] += 1
            if succeeded:
                self.store.stats["successful_observations"] += 1
            if self.store.stats["total_observations"] % self.auto_save_every == 0:
                self._schedule_save()
        except Exception as e:
            logger.warning(f"⚠️  [Pattern Learner] Failed to learn from {_sanitize_url(url)}: {e}")

    def _update(self, item: DerivedKey, method: str, succeeded: bool,
                fingerprint: Optional[ResponseFingerprint]) -> Pattern:
        now = utc_now()
        pattern = self.store.get(item.key)
        if pattern is None:
            pattern = Pattern(
                key=item.key,
                shape=item.shape,
                kind=item.kind,
                domain=item.domain,
                method=method,
                discovered_at=now,
            )
            self.store.stats["pattern_discoveries"] += 1
            logger.info(f"🔍 [Pattern Discovery] New pattern: {item.key}")

        pattern.total_attempts += 1
        pattern.last_used_at = now
        metrics = self.store.success_metrics
        if succeeded:
            pattern.successful_attempts += 1
            pattern.last_success_at = now
            self._push_recent(metrics.last_successful_patterns, item.key)
            if fingerprint is not None:
                if not pattern.yields_target_data:
                    logger.info(f"🎯 [Pattern Learner] Pattern carries target data: {item.key}")
                pattern.yields_target_data = True
                pattern.samples.append(fingerprint)
                if len(pattern.samples) > self.max_samples:
                    del pattern.samples[: len(pattern.samples) - self.max_samples]
        else:
            self._push_recent(metrics.failed_patterns, item.key)

        pattern.recompute_success_rate()
        self.store.put(pattern)
        for listener in self._listeners:
            listener(pattern)
        return pattern

    @staticmethod
    def _push_recent(items: List[str], key: str) -> None:
        if key in items:
            items.remove(key)
        items.append(key)
        if len(items) > RECENT_LIST_CAP:
            del items[: len(items) - RECENT_LIST_CAP]

    @staticmethod
    def _fingerprint(sample: Any, contains_target: bool) -> ResponseFingerprint:
        text = _serialize_sample(sample) or ""
        return ResponseFingerprint(
            data_size=len(text),
            digest=hashlib.sha256(text.encode("utf-8", errors="ignore")).hexdigest()[:16],
            contains_target=contains_target,
        )

    def record_selector_outcome(self, name: str, succeeded: bool) -> None:
        """Track DOM selectors and structural probes alongside URL patterns."""
        if not self.enabled or not name:
            return
        outcomes = self.store.success_metrics.selector_outcomes
        outcome = outcomes.get(name) or SelectorOutcome()
        outcome.attempts += 1
        if succeeded:
            outcome.successes += 1
            outcome.last_success_at = utc_now()
        outcomes[name] = outcome

    def add_listener(self, listener: Callable[[Pattern], None]) -> None:
        self._listeners.append(listener)
    # endregion

    # region queue
    def submit(self, observation: Observation) -> None:
        """Queue an observation; the oldest one is dropped when the queue is full."""
        if self.queue.maxlen is not None and len(self.queue) >= self.queue.maxlen:
            self.dropped_observations += 1
            logger.debug("⚠️  [Pattern Learner] Observation queue full, dropping oldest")
        self.queue.append(observation)

    def drain(self) -> int:
        """Process queued observations in arrival order."""
        processed = 0
        while self.queue:
            obs = self.queue.popleft()
            self.record_observation(obs.url, obs.method, obs.succeeded, obs.response_sample)
            processed += 1
        return processed
    # endregion

    def _schedule_save(self) -> None:
        """Persist now, or in the background when an event loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.store.save()
            return
        if self._pending_save is not None and not self._pending_save.done():
            return
        self._pending_save = loop.create_task(self.store.save_async())
