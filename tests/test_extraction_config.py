"""
Unit tests for the extraction vocabulary resource.
"""

import json

import pytest

from src.extraction_config import COMPONENTS, VocabularyError, get_config, load_vocabulary


class TestVocabulary:
    def test_bundled_resource_is_valid(self, vocabulary):
        assert vocabulary.version
        assert set(vocabulary.environments) >= {"production", "development"}
        assert vocabulary.environment("production").name == "production"
        for component in COMPONENTS:
            assert get_config(component), component

    def test_unknown_environment_uses_development(self, vocabulary):
        assert vocabulary.environment("staging").min_success_rate == vocabulary.environment("development").min_success_rate

    def test_components_are_copies(self):
        section = get_config("networkPatterns")
        section["staticApiPatterns"].clear()
        assert get_config("networkPatterns")["staticApiPatterns"]

    def test_goal_vocabularies_are_disjoint(self, vocabulary):
        goals = vocabulary.validation.goals
        assert not set(goals["banner"].path_tokens) & set(goals["logo"].path_tokens)

    def test_missing_resource(self, tmp_path):
        with pytest.raises(VocabularyError):
            load_vocabulary(tmp_path / "missing.json")

    def test_invalid_regex_rejected(self, tmp_path):
        raw = json.loads(load_vocabulary().model_dump_json(by_alias=True))
        raw["networkPatterns"]["targetJsonPatterns"] = ["(unclosed"]
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(raw))
        with pytest.raises(VocabularyError):
            load_vocabulary(path)

    def test_missing_component_rejected(self, tmp_path):
        raw = json.loads(load_vocabulary().model_dump_json(by_alias=True))
        del raw["interaction"]
        path = tmp_path / "partial.json"
        path.write_text(json.dumps(raw))
        with pytest.raises(VocabularyError):
            load_vocabulary(path)
