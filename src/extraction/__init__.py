"""
Extraction cascade: page surface adapters, strategies, candidate validation and scoring.
"""

from .cascade import ExtractionCascade
from .profile_extractor import extract_company_metadata
from .page_surface import ObservedRequest, ObservedResponse, PageSurface, PlaywrightPageSurface
from .rate_limiter import SlidingWindowRateLimiter
from .scorer import CandidateScorer
from .session import CandidatePool, ExtractionSession
from .strategies import (
    DirectCallsStrategy,
    DirectLookupStrategy,
    ObservingStrategy,
    StrategyContext,
    StructuralAnalysisStrategy,
)
from .validator import CandidateValidator, normalize_url

__all__ = [
    "ExtractionCascade",
    "ExtractionSession",
    "CandidatePool",
    "CandidateScorer",
    "CandidateValidator",
    "normalize_url",
    "extract_company_metadata",
    "SlidingWindowRateLimiter",
    "PageSurface",
    "PlaywrightPageSurface",
    "ObservedRequest",
    "ObservedResponse",
    "StrategyContext",
    "ObservingStrategy",
    "DirectCallsStrategy",
    "StructuralAnalysisStrategy",
    "DirectLookupStrategy",
]
