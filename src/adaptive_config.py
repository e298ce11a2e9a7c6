"""
Adaptive Configuration Provider

Builds per-component configuration snapshots by merging the static extraction
vocabulary with patterns ranked by the PatternStore for one environment.

    baseline entries first -> learned entries (best first) -> dedupe by value

Snapshots are cached per (component, environment) for `cache_ttl` seconds. A cached
snapshot is returned as a deep copy, so callers can mutate what they get. When the
store is missing, empty or failing, the snapshot is the static vocabulary section
(baseline only); get_config never raises.
"""

import copy
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .extraction_config import COMPONENTS, ExtractionVocabulary
from .learning.pattern_store import PatternStore
from .models import EnvironmentProfile, Pattern, PatternKind, utc_now

logger = logging.getLogger(__name__)

# Overall success rate above which validation quality thresholds are relaxed
RELAX_VALIDATION_ABOVE = 0.8


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class AdaptiveConfigProvider:
    """Serves configuration snapshots for the extraction cascade."""

    def __init__(
        self,
        store: Optional[PatternStore],
        vocabulary: ExtractionVocabulary,
        environment: EnvironmentProfile,
        adaptive_mode: bool = True,
        cache_ttl: float = 300.0,
        best_limit: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.vocabulary = vocabulary
        self.environment = environment
        self.adaptive_mode = adaptive_mode
        self.cache_ttl = cache_ttl
        self.best_limit = best_limit
        self.clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, Dict[str, Any]]] = {}
        self.generated = 0

    def get_config(self, component: str) -> Dict[str, Any]:
        """Snapshot for one component. Unknown components return {}."""
        cache_key = (component, self.environment.name)
        cached = self._cache.get(cache_key)
        now = self.clock()
        if cached is not None and now - cached[0] < self.cache_ttl:
            return copy.deepcopy(cached[1])

        snapshot = self._generate(component)
        self._cache[cache_key] = (now, snapshot)
        return copy.deepcopy(snapshot)

    def refresh(self) -> None:
        """Drop every cached snapshot."""
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"🔄 [Adaptive Config] Cleared {count} cached configuration snapshots")

    def invalidate(self, component: str) -> None:
        for key in [k for k in self._cache if k[0] == component]:
            del self._cache[key]

    # region generation
    def _generate(self, component: str) -> Dict[str, Any]:
        base = self.vocabulary.get_config(component)
        if component not in COMPONENTS:
            logger.warning(f"⚠️  [Adaptive Config] Unknown component '{component}'")
            return base

        learned = self._learned_patterns()
        builders = {
            "networkPatterns": self._network_patterns,
            "apiEndpoints": self._api_endpoints,
            "domSelectors": self._dom_selectors,
            "validation": self._validation,
        }
        builder = builders.get(component)
        source = "baseline"
        if builder is not None and learned is not None:
            try:
                base = builder(base, learned)
                source = "adaptive"
            except Exception as e:
                logger.warning(f"⚠️  [Adaptive Config] Failed to merge learned patterns into {component}: {e}")
                base = self.vocabulary.get_config(component)

        base["_metadata"] = {
            "generatedAt": utc_now().isoformat(),
            "environment": self.environment.name,
            "source": source,
            "learnedPatterns": len(learned) if learned else 0,
        }
        self.generated += 1
        logger.debug(f"🔧 [Adaptive Config] Generated {component} ({source}) for {self.environment.name}")
        return base

    def _learned_patterns(self) -> Optional[List[Pattern]]:
        """Ranked patterns, or None when only the baseline should be used."""
        if not self.adaptive_mode or self.store is None:
            return None
        try:
            if not self.store.is_available or self.store.is_empty:
                return None
            return self.store.get_best_patterns(self.environment, self.best_limit)
        except Exception as e:
            logger.warning(f"⚠️  [Adaptive Config] Pattern store unavailable, using baseline: {e}")
            return None

    def _baseline(self) -> Tuple[List[str], List[str]]:
        static = self.vocabulary.network_patterns
        stored = self.store.baseline if self.store is not None else None
        api = list(static.static_api_patterns) + (list(stored.api_endpoints) if stored else [])
        content = list(static.content_patterns) + (list(stored.content_patterns) if stored else [])
        return _dedupe(api), _dedupe(content)

    def _network_patterns(self, base: Dict[str, Any], learned: List[Pattern]) -> Dict[str, Any]:
        api_baseline, content_baseline = self._baseline()
        base["staticApiPatterns"] = _dedupe(
            api_baseline + [p.shape for p in learned if p.kind == PatternKind.PATH]
        )
        base["contentPatterns"] = _dedupe(
            content_baseline + [p.shape for p in learned if p.kind == PatternKind.QUERY]
        )
        base["targetSpecificPatterns"] = _dedupe(p.shape for p in learned if p.yields_target_data)
        return base

    def _api_endpoints(self, base: Dict[str, Any], learned: List[Pattern]) -> Dict[str, Any]:
        base_url = self.vocabulary.base_url.rstrip("/")
        path_patterns = [p for p in learned if p.kind == PatternKind.PATH]
        derived = [f"{base_url}{p.shape}{{companyId}}" for p in path_patterns]
        base["templates"] = _dedupe(list(base.get("templates", [])) + derived)
        base["priorityTemplates"] = _dedupe(
            f"{base_url}{p.shape}{{companyId}}" for p in path_patterns if p.yields_target_data
        )
        return base

    def _dom_selectors(self, base: Dict[str, Any], learned: List[Pattern]) -> Dict[str, Any]:
        outcomes = self.store.success_metrics.selector_outcomes
        for goal, entries in base.items():
            for entry in entries:
                outcome = outcomes.get(f"lookup:{entry['selector']}")
                bonus = 0.0
                if outcome is not None and outcome.attempts:
                    bonus = round(outcome.success_rate * 5 - (2 if outcome.successes == 0 and outcome.attempts >= 5 else 0), 2)
                entry["adaptivePriority"] = entry["priority"] + bonus
            entries.sort(key=lambda e: e["adaptivePriority"], reverse=True)
        return base

    def _validation(self, base: Dict[str, Any], learned: List[Pattern]) -> Dict[str, Any]:
        patterns = self.store.patterns.values()
        attempts = sum(p.total_attempts for p in patterns)
        successes = sum(p.successful_attempts for p in patterns)
        overall = successes / attempts if attempts else 0.0
        if overall > RELAX_VALIDATION_ABOVE:
            quality = base.setdefault("quality", {})
            for key, factor in (("minWidth", 0.8), ("minHeight", 0.8), ("minAspectRatio", 0.9)):
                if key in quality:
                    quality[key] = round(quality[key] * factor, 2)
            logger.info(f"🎚️  [Adaptive Config] Relaxed validation thresholds (overall success {overall:.0%})")
        base["overallSuccessRate"] = round(overall, 4)
        return base
    # endregion

    # region diagnostics
    def get_system_status(self) -> Dict[str, Any]:
        store_ok = self.store is not None and self.store.is_available
        return {
            "adaptiveMode": self.adaptive_mode,
            "environment": self.environment.name,
            "minSuccessRate": self.environment.min_success_rate,
            "vocabularyVersion": self.vocabulary.version,
            "storeAvailable": store_ok,
            "totalPatterns": len(self.store.patterns) if store_ok else 0,
            "cachedComponents": sorted(c for c, _ in self._cache),
            "cacheTtl": self.cache_ttl,
            "snapshotsGenerated": self.generated,
        }

    def export_configurations(self, path: Path) -> Optional[Path]:
        """Write every component snapshot to one JSON file."""
        payload = {
            "exportedAt": utc_now().isoformat(),
            "status": self.get_system_status(),
            "components": {component: self.get_config(component) for component in COMPONENTS},
        }
        try:
            path = Path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"❌ [Adaptive Config] Failed to export configurations: {e}")
            return None
        logger.info(f"📤 [Adaptive Config] Exported configurations to {path}")
        return path
    # endregion
