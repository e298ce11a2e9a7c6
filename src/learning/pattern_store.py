"""
Pattern Store

Durable record of learned request-shape patterns and their outcome statistics.

- One JSON document on disk (metadata, baselinePatterns, apiEndpoints, successMetrics)
- A sibling backup copy is refreshed right before every overwrite
- Load order: primary -> backup -> regenerated defaults
- Write failures are logged and never raised; memory stays authoritative

The store is plain process-wide state shared by every extraction session. Under asyncio
all mutations run on the event loop thread, so there is no locking. If this ever runs
under preemptive threads, pattern updates need a per-key lock.
"""

import asyncio
import functools
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..models import (
    BaselinePatterns,
    EnvironmentProfile,
    Pattern,
    PatternDatabase,
    StoreMetadata,
    SuccessMetrics,
    utc_now,
)

logger = logging.getLogger(__name__)

DB_VERSION = "1.0.0"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PatternStoreError(Exception):
    """Neither the primary nor the backup pattern database could be loaded."""


def _as_aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PatternStore:
    """Keyed pattern records plus metadata, baseline shapes and success metrics."""

    def __init__(
        self,
        db_path: Path,
        backup_path: Optional[Path] = None,
        baseline: Optional[BaselinePatterns] = None,
        environments: Optional[Dict[str, EnvironmentProfile]] = None,
        tie_band: float = 0.1,
        cleanup_min_success_rate: float = 0.1,
        cleanup_min_attempts: int = 10,
        cleanup_retention_days: int = 30,
    ):
        self.db_path = Path(db_path)
        self.backup_path = Path(backup_path) if backup_path else self.db_path.with_name(
            f"{self.db_path.stem}_backup.json"
        )
        self.default_baseline = baseline or BaselinePatterns()
        self.environments: Dict[str, EnvironmentProfile] = environments or {
            "production": EnvironmentProfile(name="production", use_only_high_success_patterns=True,
                                             min_success_rate=0.7, max_retries=3),
            "development": EnvironmentProfile(name="development", min_success_rate=0.3, max_retries=5),
        }
        self.tie_band = tie_band
        self.cleanup_min_success_rate = cleanup_min_success_rate
        self.cleanup_min_attempts = cleanup_min_attempts
        self.cleanup_retention_days = cleanup_retention_days

        self.data: Optional[PatternDatabase] = None
        self.stats: Dict[str, Any] = {
            "total_observations": 0,
            "successful_observations": 0,
            "pattern_discoveries": 0,
            "saves": 0,
            "failed_saves": 0,
            "last_saved_at": None,
        }

    # region lifecycle
    def initialize(self) -> None:
        """Load the database, regenerating defaults when no usable copy exists."""
        try:
            self.load()
            logger.info(f"✅ [Pattern Store] Initialized with {len(self.data.api_endpoints)} API patterns")
        except PatternStoreError as e:
            logger.warning(f"⚠️  [Pattern Store] {e}; creating default pattern database")
            self.create_defaults()

    def load(self) -> PatternDatabase:
        """Load primary, then backup. Raises PatternStoreError when both fail."""
        try:
            self.data = self._read(self.db_path)
            logger.info(f"📊 [Pattern Store] Loaded {len(self.data.api_endpoints)} patterns from {self.db_path}")
            return self.data
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️  [Pattern Store] Could not load patterns from {self.db_path}: {e}")

        try:
            self.data = self._read(self.backup_path)
            logger.info(f"✅ [Pattern Store] Loaded patterns from backup {self.backup_path}")
            return self.data
        except (OSError, ValueError) as e:
            raise PatternStoreError(f"Both primary and backup pattern files failed to load ({e})") from e

    @staticmethod
    def _read(path: Path) -> PatternDatabase:
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("pattern database is not a JSON object")
        try:
            return PatternDatabase.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"invalid pattern database structure: {e.error_count()} errors") from e

    def create_defaults(self) -> None:
        now = utc_now()
        self.data = PatternDatabase(
            metadata=StoreMetadata(version=DB_VERSION, created_at=now, last_updated_at=now),
            baseline_patterns=self.default_baseline,
            api_endpoints={},
            success_metrics=SuccessMetrics(),
        )
        self.save()
        logger.info("✅ [Pattern Store] Default pattern database created")

    @property
    def is_available(self) -> bool:
        return self.data is not None

    @property
    def is_empty(self) -> bool:
        return self.data is None or not self.data.api_endpoints
    # endregion

    # region record access
    @property
    def patterns(self) -> Dict[str, Pattern]:
        return self.data.api_endpoints if self.data else {}

    @property
    def baseline(self) -> BaselinePatterns:
        return self.data.baseline_patterns if self.data else self.default_baseline

    @property
    def success_metrics(self) -> SuccessMetrics:
        if self.data is None:
            self.create_defaults()
        return self.data.success_metrics

    def get(self, key: str) -> Optional[Pattern]:
        return self.patterns.get(key)

    def put(self, pattern: Pattern) -> None:
        if self.data is None:
            self.create_defaults()
        self.data.api_endpoints[pattern.key] = pattern
        self.data.success_metrics.pattern_success_rates[pattern.key] = pattern.success_rate

    def remove(self, key: str) -> bool:
        if self.data is None or key not in self.data.api_endpoints:
            return False
        del self.data.api_endpoints[key]
        self.data.success_metrics.pattern_success_rates.pop(key, None)
        return True
    # endregion

    # region persistence
    def snapshot_json(self) -> Optional[str]:
        """Serialize the whole store after refreshing the aggregate metadata."""
        if self.data is None:
            return None
        patterns = self.data.api_endpoints.values()
        meta = self.data.metadata
        meta.last_updated_at = utc_now()
        meta.total_patterns = len(self.data.api_endpoints)
        meta.successful_patterns = sum(1 for p in patterns if p.success_rate > 0.5)
        meta.target_patterns = sum(1 for p in patterns if p.yields_target_data)
        return json.dumps(self.data.model_dump(mode="json", by_alias=True), indent=2)

    def write_snapshot(self, payload: str) -> bool:
        """Backup the current file, then atomically overwrite it with payload."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            if self.db_path.exists():
                try:
                    shutil.copyfile(self.db_path, self.backup_path)
                except OSError as backup_error:
                    logger.warning(f"⚠️  [Pattern Store] Backup copy failed, continuing with save: {backup_error}")

            fd, tmp_name = tempfile.mkstemp(dir=str(self.db_path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self.db_path)
            finally:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)

            self.stats["saves"] += 1
            self.stats["last_saved_at"] = utc_now().isoformat()
            logger.info(f"💾 [Pattern Store] Saved {self.data.metadata.total_patterns if self.data else 0} patterns to {self.db_path}")
            return True
        except OSError as e:
            self.stats["failed_saves"] += 1
            logger.error(f"❌ [Pattern Store] Failed to save patterns (will retry on next save): {e}")
            return False

    def save(self) -> bool:
        payload = self.snapshot_json()
        if payload is None:
            return False
        return self.write_snapshot(payload)

    async def save_async(self) -> bool:
        """Serialize on the loop thread, write the file in the default executor."""
        payload = self.snapshot_json()
        if payload is None:
            return False
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.write_snapshot, payload)
    # endregion

    # region ranking
    def resolve_environment(self, environment: Union[str, EnvironmentProfile]) -> EnvironmentProfile:
        if isinstance(environment, EnvironmentProfile):
            return environment
        profile = self.environments.get(environment)
        if profile is None:
            logger.warning(f"⚠️  [Pattern Store] Unknown environment '{environment}', using development thresholds")
            profile = self.environments.get("development") or EnvironmentProfile(name=environment)
        return profile

    def _compare(self, a: Pattern, b: Pattern) -> int:
        if a.yields_target_data != b.yields_target_data:
            return -1 if a.yields_target_data else 1
        if abs(a.success_rate - b.success_rate) > self.tie_band:
            return -1 if a.success_rate > b.success_rate else 1
        a_success = _as_aware(a.last_success_at)
        b_success = _as_aware(b.last_success_at)
        if a_success != b_success:
            return -1 if a_success > b_success else 1
        return 0

    def get_best_patterns(
        self,
        environment: Union[str, EnvironmentProfile] = "production",
        limit: int = 20,
    ) -> List[Pattern]:
        """Patterns meeting the environment's minimum success rate, best first."""
        profile = self.resolve_environment(environment)
        eligible = [p for p in self.patterns.values() if p.success_rate >= profile.min_success_rate]
        ranked = sorted(eligible, key=functools.cmp_to_key(self._compare))[:limit]
        logger.debug(f"📊 [Pattern Store] Retrieved {len(ranked)} best patterns for {profile.name}")
        return ranked

    def get_fallback_patterns(self) -> Dict[str, List[str]]:
        """Baseline shapes plus historically reliable learned shapes."""
        historical = sorted(
            (p for p in self.patterns.values() if p.success_rate > 0.8 and p.total_attempts > 10),
            key=lambda p: p.success_rate,
            reverse=True,
        )[:10]
        return {
            "apiEndpoints": list(self.baseline.api_endpoints),
            "contentPatterns": list(self.baseline.content_patterns),
            "historicallySuccessful": [p.shape for p in historical],
        }
    # endregion

    # region maintenance
    def is_cleanup_eligible(self, pattern: Pattern, now: Optional[datetime] = None) -> bool:
        now = _as_aware(now or utc_now())
        cutoff = now - timedelta(days=self.cleanup_retention_days)
        if pattern.shape in self.baseline.api_endpoints or pattern.shape in self.baseline.content_patterns:
            return False
        return (
            pattern.success_rate < self.cleanup_min_success_rate
            and pattern.total_attempts > self.cleanup_min_attempts
            and _as_aware(pattern.last_used_at) < cutoff
        )

    def cleanup(self, now: Optional[datetime] = None) -> List[str]:
        """Remove old unsuccessful patterns. Returns the removed keys."""
        removed = [key for key, p in list(self.patterns.items()) if self.is_cleanup_eligible(p, now)]
        for key in removed:
            self.remove(key)
        if removed:
            logger.info(f"🗑️  [Pattern Store] Cleaned up {len(removed)} unsuccessful patterns")
        else:
            logger.debug("🧹 [Pattern Store] Cleanup found nothing to remove")
        return removed

    def generate_report(self) -> Dict[str, Any]:
        patterns = list(self.patterns.values())
        total_obs = self.stats["total_observations"]
        overall = self.stats["successful_observations"] / total_obs if total_obs else 0.0
        top = sorted(patterns, key=lambda p: p.success_rate, reverse=True)[:10]
        return {
            "summary": {
                "totalPatterns": len(patterns),
                "successfulPatterns": sum(1 for p in patterns if p.success_rate > 0.5),
                "targetPatterns": sum(1 for p in patterns if p.yields_target_data),
                "overallSuccessRate": overall,
                "lastUpdated": self.data.metadata.last_updated_at.isoformat() if self.data else None,
            },
            "topPatterns": [
                {
                    "key": p.key,
                    "shape": p.shape,
                    "successRate": p.success_rate,
                    "totalAttempts": p.total_attempts,
                    "yieldsTargetData": p.yields_target_data,
                }
                for p in top
            ],
            "recommendations": self._recommendations(patterns),
        }

    @staticmethod
    def _recommendations(patterns: List[Pattern]) -> List[Dict[str, Any]]:
        recommendations = []
        low = [p for p in patterns if p.success_rate < 0.3 and p.total_attempts > 5]
        if low:
            recommendations.append({
                "type": "cleanup",
                "message": f"Consider removing {len(low)} low-success patterns",
                "patterns": [p.shape for p in low[:5]],
            })
        strong = [p for p in patterns if p.yields_target_data and p.success_rate > 0.7]
        if strong:
            recommendations.append({
                "type": "prioritize",
                "message": f"Prioritize {len(strong)} high-success target patterns",
                "patterns": [p.shape for p in strong[:5]],
            })
        return recommendations

    def export_patterns(self, path: Optional[Path] = None) -> Optional[Path]:
        """Write the database plus runtime stats to an export file."""
        payload = self.snapshot_json()
        if payload is None:
            return None
        export = json.loads(payload)
        export["exportedAt"] = utc_now().isoformat()
        export["stats"] = dict(self.stats)
        if path is None:
            stamp = utc_now().strftime("%Y%m%dT%H%M%S")
            path = self.db_path.parent / f"api_patterns_export_{stamp}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(export, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"❌ [Pattern Store] Export failed: {e}")
            return None
        logger.info(f"📤 [Pattern Store] Exported patterns to {path}")
        return path

    def import_patterns(self, path: Path) -> int:
        """Merge patterns from an export, keeping whichever copy has the higher success rate."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
            incoming = {
                key: Pattern.model_validate(value)
                for key, value in (raw.get("apiEndpoints") or {}).items()
            }
        except (OSError, ValueError) as e:
            logger.error(f"❌ [Pattern Store] Failed to import patterns from {path}: {e}")
            return 0

        merged = 0
        for key, pattern in incoming.items():
            current = self.get(key)
            if current is None or current.success_rate < pattern.success_rate:
                self.put(pattern)
                merged += 1
        if merged:
            self.save()
        logger.info(f"📥 [Pattern Store] Imported {merged} patterns from {path}")
        return merged
    # endregion
