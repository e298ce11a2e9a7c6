"""
Unit tests for the pattern store: persistence, fallback loading, ranking and cleanup.
"""

import json
from datetime import timedelta

import pytest

from src.learning.pattern_store import PatternStore, PatternStoreError
from src.models import Pattern, PatternKind, utc_now


def make_pattern(shape, rate=1.0, attempts=10, yields=False, last_success=None, last_used=None,
                 kind=PatternKind.PATH):
    successes = round(rate * attempts)
    return Pattern(
        key=f"{kind.value}:{shape}",
        shape=shape,
        kind=kind,
        total_attempts=attempts,
        successful_attempts=successes,
        success_rate=rate,
        yields_target_data=yields,
        last_success_at=last_success,
        last_used_at=last_used or utc_now(),
    )


class TestPersistence:
    """Load/save behaviour of the on-disk database."""

    def test_initialize_creates_defaults(self, tmp_path):
        store = PatternStore(tmp_path / "db.json")
        store.initialize()

        assert store.is_available
        assert store.is_empty
        raw = json.loads((tmp_path / "db.json").read_text())
        assert set(raw) >= {"metadata", "baselinePatterns", "apiEndpoints", "successMetrics"}

    def test_save_writes_backup_of_previous_file(self, store):
        store.put(make_pattern("/voyager/api/"))
        store.save()
        store.put(make_pattern("/api/graphql/"))
        store.save()

        backup = json.loads(store.backup_path.read_text())
        primary = json.loads(store.db_path.read_text())
        assert "path:/voyager/api/" in backup["apiEndpoints"]
        assert "path:/api/graphql/" not in backup["apiEndpoints"]
        assert "path:/api/graphql/" in primary["apiEndpoints"]

    def test_corrupt_primary_falls_back_to_backup(self, store):
        store.put(make_pattern("/voyager/api/"))
        store.save()
        store.save()
        store.db_path.write_text("{not json")

        reloaded = PatternStore(store.db_path)
        reloaded.initialize()
        assert reloaded.get("path:/voyager/api/") is not None

    def test_missing_required_section_triggers_fallback(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text(json.dumps({"metadata": {}, "apiEndpoints": {}}))
        store = PatternStore(path)

        with pytest.raises(PatternStoreError):
            store.load()

        store.initialize()
        assert store.is_available and store.is_empty

    def test_unknown_fields_are_ignored(self, store):
        store.put(make_pattern("/voyager/api/"))
        store.save()
        raw = json.loads(store.db_path.read_text())
        raw["somethingNew"] = {"a": 1}
        raw["apiEndpoints"]["path:/voyager/api/"]["extraField"] = True
        store.db_path.write_text(json.dumps(raw))

        reloaded = PatternStore(store.db_path)
        reloaded.load()
        assert reloaded.get("path:/voyager/api/").success_rate == 1.0

    def test_write_failure_keeps_memory_authoritative(self, store, monkeypatch):
        store.put(make_pattern("/voyager/api/"))

        def boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("src.learning.pattern_store.tempfile.mkstemp", boom)
        assert store.save() is False
        assert store.stats["failed_saves"] == 1
        assert store.get("path:/voyager/api/") is not None

    @pytest.mark.asyncio
    async def test_save_async(self, store):
        store.put(make_pattern("/voyager/api/"))
        assert await store.save_async() is True
        assert "path:/voyager/api/" in json.loads(store.db_path.read_text())["apiEndpoints"]


class TestRanking:
    """get_best_patterns ordering and environment filtering."""

    def test_environment_filters_by_min_success_rate(self, store):
        store.put(make_pattern("/high/rate/", rate=0.9))
        store.put(make_pattern("/mid/rate/", rate=0.5))

        production = [p.shape for p in store.get_best_patterns("production")]
        development = [p.shape for p in store.get_best_patterns("development")]
        assert production == ["/high/rate/"]
        assert set(development) == {"/high/rate/", "/mid/rate/"}

    def test_target_data_ranks_first(self, store):
        store.put(make_pattern("/plain/high/", rate=1.0))
        store.put(make_pattern("/target/lower/", rate=0.75, yields=True))

        assert store.get_best_patterns("production")[0].shape == "/target/lower/"

    def test_rates_within_tie_band_fall_back_to_recency(self, store):
        now = utc_now()
        store.put(make_pattern("/older/high/", rate=0.95, last_success=now - timedelta(days=2)))
        store.put(make_pattern("/newer/lower/", rate=0.9, last_success=now))
        store.put(make_pattern("/clearly/lower/", rate=0.7, last_success=now + timedelta(days=1)))

        shapes = [p.shape for p in store.get_best_patterns("production")]
        assert shapes == ["/newer/lower/", "/older/high/", "/clearly/lower/"]

    def test_limit(self, store):
        for i in range(8):
            store.put(make_pattern(f"/shape/{i}/"))
        assert len(store.get_best_patterns("production", limit=5)) == 5

    def test_fallback_patterns(self, store):
        store.put(make_pattern("/reliable/shape/", rate=0.9, attempts=20))
        store.put(make_pattern("/few/attempts/", rate=1.0, attempts=3))

        fallback = store.get_fallback_patterns()
        assert "/voyager/api/" in fallback["apiEndpoints"]
        assert fallback["historicallySuccessful"] == ["/reliable/shape/"]


class TestCleanup:
    """Cleanup boundary conditions."""

    def test_old_unsuccessful_pattern_removed(self, store):
        pattern = make_pattern("/stale/shape/", rate=0.05, attempts=15,
                               last_used=utc_now() - timedelta(days=40))
        store.put(pattern)

        assert store.cleanup() == ["path:/stale/shape/"]
        assert store.get("path:/stale/shape/") is None

    def test_recent_unsuccessful_pattern_retained(self, store):
        store.put(make_pattern("/recent/shape/", rate=0.05, attempts=15,
                               last_used=utc_now() - timedelta(days=5)))
        assert store.cleanup() == []

    def test_few_attempts_retained(self, store):
        store.put(make_pattern("/few/attempts/", rate=0.0, attempts=10,
                               last_used=utc_now() - timedelta(days=40)))
        assert store.cleanup() == []

    def test_baseline_shapes_never_removed(self, store):
        store.put(make_pattern("/voyager/api/", rate=0.0, attempts=50,
                               last_used=utc_now() - timedelta(days=400)))
        assert store.cleanup() == []

    def test_cleanup_is_idempotent(self, store):
        store.put(make_pattern("/stale/shape/", rate=0.05, attempts=15,
                               last_used=utc_now() - timedelta(days=40)))
        store.cleanup()
        assert store.cleanup() == []

    def test_thresholds_are_configurable(self, tmp_path):
        store = PatternStore(tmp_path / "db.json", cleanup_retention_days=3)
        store.initialize()
        store.put(make_pattern("/recent/shape/", rate=0.05, attempts=15,
                               last_used=utc_now() - timedelta(days=5)))
        assert store.cleanup() == ["path:/recent/shape/"]


class TestReportAndExport:
    def test_report_recommendations(self, store):
        store.put(make_pattern("/weak/shape/", rate=0.1, attempts=10))
        store.put(make_pattern("/strong/shape/", rate=0.9, yields=True))

        report = store.generate_report()
        assert report["summary"]["totalPatterns"] == 2
        assert report["summary"]["targetPatterns"] == 1
        types = {r["type"] for r in report["recommendations"]}
        assert types == {"cleanup", "prioritize"}

    def test_export_import_keeps_better_pattern(self, store, tmp_path):
        store.put(make_pattern("/shared/shape/", rate=0.9))
        export = store.export_patterns(tmp_path / "export.json")
        assert export is not None

        other = PatternStore(tmp_path / "other.json")
        other.initialize()
        other.put(make_pattern("/shared/shape/", rate=0.4))
        assert other.import_patterns(export) == 1
        assert other.get("path:/shared/shape/").success_rate == 0.9
        assert other.import_patterns(export) == 0
