"""
Pydantic models for the adaptive extraction engine.

Persisted records (the pattern database) are serialized with camelCase aliases so the
on-disk layout stays stable across releases:

    {"metadata": ..., "baselinePatterns": ..., "apiEndpoints": {...}, "successMetrics": ...}

Transient records (candidates, results, summaries) are plain snake_case models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _PersistedModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================================================
# PERSISTED PATTERN DATABASE
# ============================================================================

class PatternKind(str, Enum):
    """What part of a request URL a pattern was derived from."""
    PATH = "path"
    QUERY = "query"
    DOMAIN = "domain"


class ResponseFingerprint(_PersistedModel):
    """Anonymized digest of a response body, kept for diagnostics only."""
    timestamp: datetime = Field(default_factory=utc_now, description="When the response was sampled")
    data_size: int = Field(0, ge=0, description="Size of the serialized body in characters")
    digest: str = Field(..., description="Truncated sha256 of the serialized body")
    contains_target: bool = Field(False, description="Whether the body matched the target indicators")


class Pattern(_PersistedModel):
    """A learned request-shape record with its outcome statistics."""
    key: str = Field(..., description="Identity, formatted as '{kind}:{shape}'")
    shape: str = Field(..., description="Path fragment, query parameter name or hostname")
    kind: PatternKind = Field(..., description="Which URL component the shape came from")
    domain: Optional[str] = Field(None, description="Hostname the pattern was observed on")
    method: str = Field("GET", description="HTTP verb observed")
    discovered_at: datetime = Field(default_factory=utc_now, description="First observation")
    last_used_at: Optional[datetime] = Field(None, description="Most recent observation")
    last_success_at: Optional[datetime] = Field(None, description="Most recent successful observation")
    total_attempts: int = Field(0, ge=0, description="Number of observations")
    successful_attempts: int = Field(0, ge=0, description="Number of successful observations")
    success_rate: float = Field(0.0, ge=0.0, le=1.0, description="successful_attempts / total_attempts")
    yields_target_data: bool = Field(False, description="A successful response carried target indicators")
    samples: List[ResponseFingerprint] = Field(default_factory=list, description="Bounded sample cache")

    def recompute_success_rate(self) -> float:
        self.success_rate = (
            self.successful_attempts / self.total_attempts if self.total_attempts else 0.0
        )
        return self.success_rate


class StoreMetadata(_PersistedModel):
    version: str = Field("1.0.0", description="Database layout version")
    created_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)
    total_patterns: int = 0
    successful_patterns: int = 0
    target_patterns: int = 0


class BaselinePatterns(_PersistedModel):
    """Hand-curated shapes that never expire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    api_endpoints: List[str] = Field(default_factory=list)
    content_patterns: List[str] = Field(default_factory=list)


class SelectorOutcome(_PersistedModel):
    """Outcome counters for a DOM selector or structural probe."""
    attempts: int = Field(0, ge=0)
    successes: int = Field(0, ge=0)
    last_success_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0


class SuccessMetrics(_PersistedModel):
    pattern_success_rates: Dict[str, float] = Field(default_factory=dict)
    last_successful_patterns: List[str] = Field(default_factory=list)
    failed_patterns: List[str] = Field(default_factory=list)
    selector_outcomes: Dict[str, SelectorOutcome] = Field(default_factory=dict)


class PatternDatabase(_PersistedModel):
    """The whole persisted store. metadata, baselinePatterns and apiEndpoints are required."""
    metadata: StoreMetadata
    baseline_patterns: BaselinePatterns
    api_endpoints: Dict[str, Pattern]
    success_metrics: SuccessMetrics = Field(default_factory=SuccessMetrics)


# ============================================================================
# CONFIGURATION
# ============================================================================

class EnvironmentProfile(_PersistedModel):
    """Named ranking thresholds for one deployment environment."""
    name: str = Field("development", description="Profile name")
    use_only_high_success_patterns: bool = False
    min_success_rate: float = Field(0.3, ge=0.0, le=1.0)
    max_retries: int = Field(3, ge=0)


# ============================================================================
# EXTRACTION (TRANSIENT)
# ============================================================================

class ExtractionGoal(str, Enum):
    """What asset a cascade run is looking for."""
    BANNER = "banner"
    LOGO = "logo"


class CascadeState(str, Enum):
    NOT_STARTED = "not_started"
    OBSERVING = "observing"
    DIRECT_CALLS = "direct_calls"
    STRUCTURAL_ANALYSIS = "structural_analysis"
    DIRECT_LOOKUP = "direct_lookup"
    DONE = "done"


class ExtractionCandidate(BaseModel):
    """A validated URL produced by one strategy, pending scoring."""
    url: str = Field(..., description="Normalized candidate URL")
    origin_strategy: str = Field(..., description="Strategy that produced the candidate")
    source: Optional[str] = Field(None, description="Request URL, selector or block the URL came from")
    raw_score: Optional[float] = Field(None, description="Score assigned during selection")


class ExtractionResult(BaseModel):
    """Outcome of one cascade run for one entity and goal."""
    company_id: str = Field(..., description="Entity identifier")
    goal: ExtractionGoal = Field(..., description="Asset that was sought")
    result_url: Optional[str] = Field(None, description="Selected URL, None when exhausted")
    outcome: str = Field("exhausted", description="'success' or 'exhausted'")
    winning_strategy: Optional[str] = Field(None, description="State that produced the winner")
    states_visited: List[CascadeState] = Field(default_factory=list)
    candidates_considered: int = Field(0, ge=0)
    elapsed_ms: int = Field(0, ge=0)
    session_valid: bool = Field(True, description="Session trust state at the end of the run")
    completed_at: datetime = Field(default_factory=utc_now)


class ExtractionSummary(BaseModel):
    """Diagnostics for one extraction session."""
    company_id: str
    goal: ExtractionGoal
    state: CascadeState
    intercepted_requests: int = 0
    observed_responses: int = 0
    dropped_events: int = 0
    attempted: int = 0
    succeeded: int = 0
    discovered_patterns: List[str] = Field(default_factory=list)
    discovered_patterns_count: int = 0
    candidates_found: int = 0
    candidate_urls: List[str] = Field(default_factory=list)
    session_valid: bool = True
    last_health_check: Optional[datetime] = None
    rate_limiter_requests: int = 0


class CompanyMetadata(BaseModel):
    """Company profile fields gathered alongside the banner and logo."""
    company_id: str
    source_url: str
    name: Optional[str] = None
    description: Optional[str] = None
    website: Optional[str] = None
    industry: Optional[str] = None
    company_size: Optional[str] = None
    headquarters: Optional[str] = None
    founded: Optional[int] = None
    specialties: List[str] = Field(default_factory=list)
    followers: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    banner_url: Optional[str] = None
    logo_url: Optional[str] = None
    extracted_at: datetime = Field(default_factory=utc_now)
