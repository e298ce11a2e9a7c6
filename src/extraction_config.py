"""
Extraction vocabulary loader.

The regexes, keyword tables, DOM lookup table, timings and environment profiles that
drive extraction live in a versioned JSON resource (src/data/extraction_config.json).
It is validated once at startup; a missing or malformed resource is the one
misconfiguration allowed to stop the engine from starting.

Components are exposed as plain dicts (camelCase keys, same as the resource) through
get_config(), which is what the adaptive configuration provider merges learned
patterns into.
"""

import copy
import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .models import EnvironmentProfile

logger = logging.getLogger(__name__)

DEFAULT_VOCABULARY_PATH = Path(__file__).parent / "data" / "extraction_config.json"

COMPONENTS = (
    "networkPatterns",
    "apiEndpoints",
    "domSelectors",
    "structural",
    "validation",
    "scoring",
    "timing",
    "sessionHealth",
    "interaction",
)


class VocabularyError(Exception):
    """The extraction vocabulary resource is missing or invalid."""


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def _check_regexes(patterns: List[str]) -> List[str]:
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValueError(f"invalid regex {pattern!r}: {e}")
    return patterns


class NetworkPatterns(_Section):
    static_api_patterns: List[str]
    content_patterns: List[str]
    target_json_patterns: List[str]
    target_keys: List[str]
    cdn_url_patterns: List[str]

    @field_validator("target_json_patterns", "cdn_url_patterns")
    @classmethod
    def _regexes(cls, value: List[str]) -> List[str]:
        return _check_regexes(value)


class ApiEndpoints(_Section):
    templates: List[str]
    headers: Dict[str, str] = Field(default_factory=dict)


class LookupEntry(_Section):
    selector: str
    mode: str
    priority: int

    @field_validator("mode")
    @classmethod
    def _mode(cls, value: str) -> str:
        if value not in ("src", "bg"):
            raise ValueError(f"lookup mode must be 'src' or 'bg', got {value!r}")
        return value


class GoalVocabulary(_Section):
    exclude: List[str]
    path_tokens: List[str]
    keywords: List[str]
    dimension_patterns: List[str] = Field(default_factory=list)

    @field_validator("dimension_patterns")
    @classmethod
    def _regexes(cls, value: List[str]) -> List[str]:
        return _check_regexes(value)


class Validation(_Section):
    valid_domains: List[str]
    dummy_patterns: List[str]
    goals: Dict[str, GoalVocabulary]
    quality: Dict[str, float] = Field(default_factory=dict)


class GoalScoring(_Section):
    keyword_weights: Dict[str, float]
    aspect_bands: List[Tuple[float, float]] = Field(default_factory=list)
    width_bands: List[Tuple[float, float]] = Field(default_factory=list)
    format_bonuses: Dict[str, float] = Field(default_factory=dict)
    penalties: Dict[str, float] = Field(default_factory=dict)
    min_acceptable_score: float = 0.0


class Structural(_Section):
    script_indicators: List[str]
    meta_keywords: Dict[str, List[str]]
    data_attributes: List[str]


class ExtractionVocabulary(_Section):
    """Validated shape of the vocabulary resource."""
    version: str
    target_domains: List[str]
    base_url: str
    entity_path_pattern: str
    target_indicators: List[str]
    environments: Dict[str, EnvironmentProfile]
    network_patterns: NetworkPatterns
    api_endpoints: ApiEndpoints
    dom_selectors: Dict[str, List[LookupEntry]]
    structural: Structural
    validation: Validation
    scoring: Dict[str, GoalScoring]
    timing: Dict[str, Dict[str, float]]
    session_health: Dict[str, Any]
    interaction: Dict[str, Any]

    @field_validator("environments")
    @classmethod
    def _name_profiles(cls, value: Dict[str, EnvironmentProfile]) -> Dict[str, EnvironmentProfile]:
        return {name: profile.model_copy(update={"name": name}) for name, profile in value.items()}

    def raw(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def get_config(self, component: str) -> Dict[str, Any]:
        """Return a deep copy of one component section, or {} when unknown."""
        section = self.raw().get(component)
        if not isinstance(section, dict):
            return {}
        return copy.deepcopy(section)

    def environment(self, name: str) -> EnvironmentProfile:
        profile = self.environments.get(name)
        if profile is None:
            logger.warning(f"⚠️  Unknown environment '{name}', using 'development' thresholds")
            profile = self.environments.get("development") or EnvironmentProfile(name=name)
        return profile

    def timing_value(self, group: str, key: str, default: float) -> float:
        return float(self.timing.get(group, {}).get(key, default))


def load_vocabulary(path: Optional[Path] = None) -> ExtractionVocabulary:
    """Load and validate the vocabulary resource. Raises VocabularyError."""
    return _load_cached(str(path or DEFAULT_VOCABULARY_PATH))


@lru_cache(maxsize=8)
def _load_cached(path: str) -> ExtractionVocabulary:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise VocabularyError(f"Could not read extraction vocabulary {path}: {e}") from e

    try:
        vocabulary = ExtractionVocabulary.model_validate(raw)
    except ValidationError as e:
        raise VocabularyError(f"Extraction vocabulary {path} failed validation: {e}") from e

    missing = [c for c in COMPONENTS if c not in raw]
    if missing:
        raise VocabularyError(f"Extraction vocabulary {path} is missing components: {', '.join(missing)}")

    logger.info(f"✅ Loaded extraction vocabulary v{vocabulary.version} from {path}")
    return vocabulary


def get_config(component: str, path: Optional[Path] = None) -> Dict[str, Any]:
    """Static (non-adaptive) configuration for a component."""
    return load_vocabulary(path).get_config(component)
