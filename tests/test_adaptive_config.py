"""
Unit tests for the adaptive configuration provider.
"""

import json
from unittest.mock import MagicMock

import pytest

from src.adaptive_config import AdaptiveConfigProvider
from src.models import Pattern, PatternKind, SelectorOutcome, utc_now


def add_pattern(store, shape, kind=PatternKind.PATH, rate=1.0, yields=True, attempts=10):
    store.put(Pattern(
        key=f"{kind.value}:{shape}",
        shape=shape,
        kind=kind,
        total_attempts=attempts,
        successful_attempts=round(rate * attempts),
        success_rate=rate,
        yields_target_data=yields,
        last_success_at=utc_now(),
        last_used_at=utc_now(),
    ))


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestBaselineOnly:
    def test_empty_store_returns_baseline(self, provider, vocabulary):
        config = provider.get_config("networkPatterns")
        assert config["staticApiPatterns"] == vocabulary.network_patterns.static_api_patterns
        assert config["_metadata"]["source"] == "baseline"

    def test_missing_store_returns_baseline(self, vocabulary):
        provider = AdaptiveConfigProvider(None, vocabulary, vocabulary.environment("production"))
        config = provider.get_config("networkPatterns")
        assert config["staticApiPatterns"] == vocabulary.network_patterns.static_api_patterns

    def test_failing_store_returns_baseline(self, vocabulary):
        broken = MagicMock()
        broken.is_available = True
        broken.is_empty = False
        broken.get_best_patterns.side_effect = RuntimeError("corrupt")
        provider = AdaptiveConfigProvider(broken, vocabulary, vocabulary.environment("production"))
        config = provider.get_config("networkPatterns")
        assert config["staticApiPatterns"] == vocabulary.network_patterns.static_api_patterns

    def test_adaptive_mode_off_ignores_learned(self, store, vocabulary):
        add_pattern(store, "/learned/shape/")
        provider = AdaptiveConfigProvider(store, vocabulary, vocabulary.environment("development"), adaptive_mode=False)
        assert "/learned/shape/" not in provider.get_config("networkPatterns")["staticApiPatterns"]

    def test_unknown_component(self, provider):
        assert provider.get_config("nope") == {}


class TestMerging:
    def test_learned_shapes_follow_baseline(self, store, provider, vocabulary):
        add_pattern(store, "/learned/shape/")
        add_pattern(store, "/voyager/api/")
        add_pattern(store, "companyUniversalName", kind=PatternKind.QUERY)

        config = provider.get_config("networkPatterns")
        baseline = vocabulary.network_patterns.static_api_patterns
        assert config["staticApiPatterns"][: len(baseline)] == baseline
        assert config["staticApiPatterns"][len(baseline):] == ["/learned/shape/"]
        assert config["contentPatterns"][-1] == "companyUniversalName"
        assert "/learned/shape/" in config["targetSpecificPatterns"]

    def test_patterns_below_environment_threshold_excluded(self, store, vocabulary):
        add_pattern(store, "/mediocre/shape/", rate=0.5)
        production = AdaptiveConfigProvider(store, vocabulary, vocabulary.environment("production"))
        development = AdaptiveConfigProvider(store, vocabulary, vocabulary.environment("development"))
        assert "/mediocre/shape/" not in production.get_config("networkPatterns")["staticApiPatterns"]
        assert "/mediocre/shape/" in development.get_config("networkPatterns")["staticApiPatterns"]

    def test_api_endpoint_templates(self, store, provider):
        add_pattern(store, "/voyager/api/organization/")
        config = provider.get_config("apiEndpoints")
        expected = "https://www.linkedin.com/voyager/api/organization/{companyId}"
        assert config["templates"][-1] == expected
        assert config["priorityTemplates"] == [expected]

    def test_dom_selector_priorities_follow_outcomes(self, store, provider):
        add_pattern(store, "/learned/shape/")
        store.success_metrics.selector_outcomes["lookup:div.banner img"] = SelectorOutcome(attempts=4, successes=4)

        entries = provider.get_config("domSelectors")["banner"]
        boosted = next(e for e in entries if e["selector"] == "div.banner img")
        assert boosted["adaptivePriority"] == boosted["priority"] + 5
        assert [e["adaptivePriority"] for e in entries] == sorted(
            (e["adaptivePriority"] for e in entries), reverse=True
        )

    def test_validation_relaxed_when_overall_success_high(self, store, provider, vocabulary):
        add_pattern(store, "/learned/shape/", rate=0.9)
        quality = provider.get_config("validation")["quality"]
        assert quality["minWidth"] == vocabulary.validation.quality["minWidth"] * 0.8

    def test_static_components_pass_through(self, provider, vocabulary):
        timing = provider.get_config("timing")
        assert timing["observation"]["maxWait"] == vocabulary.timing["observation"]["maxWait"]


class TestCaching:
    def test_repeated_calls_are_identical(self, store, vocabulary):
        add_pattern(store, "/learned/shape/")
        clock = FakeClock()
        provider = AdaptiveConfigProvider(store, vocabulary, vocabulary.environment("development"), clock=clock)

        first = provider.get_config("networkPatterns")
        clock.now += 10
        second = provider.get_config("networkPatterns")
        assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)

    def test_returned_snapshot_is_a_copy(self, provider):
        config = provider.get_config("networkPatterns")
        config["staticApiPatterns"].append("/mutated/")
        assert "/mutated/" not in provider.get_config("networkPatterns")["staticApiPatterns"]

    def test_ttl_expiry_regenerates(self, store, vocabulary):
        clock = FakeClock()
        provider = AdaptiveConfigProvider(store, vocabulary, vocabulary.environment("development"),
                                          cache_ttl=60, clock=clock)
        provider.get_config("networkPatterns")
        add_pattern(store, "/learned/shape/")

        assert "/learned/shape/" not in provider.get_config("networkPatterns")["staticApiPatterns"]
        clock.now += 61
        assert "/learned/shape/" in provider.get_config("networkPatterns")["staticApiPatterns"]

    def test_refresh_clears_cache(self, store, provider):
        provider.get_config("networkPatterns")
        add_pattern(store, "/learned/shape/")
        provider.refresh()
        assert "/learned/shape/" in provider.get_config("networkPatterns")["staticApiPatterns"]


class TestDiagnostics:
    def test_system_status(self, store, provider):
        add_pattern(store, "/learned/shape/")
        provider.get_config("networkPatterns")
        status = provider.get_system_status()
        assert status["storeAvailable"] is True
        assert status["totalPatterns"] == 1
        assert status["cachedComponents"] == ["networkPatterns"]

    def test_export_configurations(self, provider, tmp_path):
        path = provider.export_configurations(tmp_path / "config_export.json")
        exported = json.loads(path.read_text())
        assert "networkPatterns" in exported["components"]
        assert exported["status"]["environment"] == "development"
