"""
Candidate URL normalization and validation.

A candidate passes when, after normalization:
    1. its host is in the allowed CDN family
    2. it contains no goal-specific exclusion token (banner and logo vocabularies are disjoint)
    3. it contains no placeholder token
    4. it carries at least one positive indicator (path token, keyword, dimension hint)
"""

import html
import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from ..extraction_config import ExtractionVocabulary, GoalVocabulary
from ..models import ExtractionGoal

logger = logging.getLogger(__name__)

_DOUBLE_SLASH = re.compile(r"([^:]/)/+")


def normalize_url(url: Optional[str]) -> Optional[str]:
    """Repair the usual artifacts of URLs lifted out of JSON, CSS and markup."""
    if not url or not isinstance(url, str):
        return None
    url = url.strip().strip("'\"")
    url = url.replace("\\u002F", "/").replace("\\/", "/")
    url = html.unescape(url)
    if not url:
        return None
    if url.startswith("//"):
        url = "https:" + url
    elif not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        if url.startswith("/"):
            return None
        url = "https://" + url
    return _DOUBLE_SLASH.sub(r"\1", url)


class CandidateValidator:
    """Validation gate applied to every candidate before it enters a pool."""

    def __init__(self, vocabulary: ExtractionVocabulary, goal: ExtractionGoal = ExtractionGoal.BANNER):
        self.goal = goal
        validation = vocabulary.validation
        self.valid_domains = [d.lower() for d in validation.valid_domains]
        self.dummy_patterns = [d.lower() for d in validation.dummy_patterns]
        goal_vocabulary: GoalVocabulary = validation.goals[goal.value]
        self.exclude = [t.lower() for t in goal_vocabulary.exclude]
        self.path_tokens = [t.lower() for t in goal_vocabulary.path_tokens]
        self.keywords = [t.lower() for t in goal_vocabulary.keywords]
        self.dimension_patterns = [re.compile(p, re.IGNORECASE) for p in goal_vocabulary.dimension_patterns]

    def normalize(self, url: Optional[str]) -> Optional[str]:
        return normalize_url(url)

    def rejection_reason(self, url: str) -> Optional[str]:
        """None when the (normalized) URL is acceptable, else a short reason."""
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if parsed.scheme not in ("http", "https") or not host:
            return "malformed"
        if not any(host == d or host.endswith("." + d) for d in self.valid_domains):
            return "domain"

        lowered = url.lower()
        if any(token in lowered for token in self.exclude):
            return "excluded"
        if any(token in lowered for token in self.dummy_patterns):
            return "placeholder"
        if not self._has_indicator(lowered, url):
            return "no-indicator"
        return None

    def _has_indicator(self, lowered: str, url: str) -> bool:
        if any(token in lowered for token in self.path_tokens):
            return True
        if any(keyword in lowered for keyword in self.keywords):
            return True
        return any(p.search(url) for p in self.dimension_patterns)

    def is_valid(self, url: Optional[str]) -> bool:
        normalized = self.normalize(url)
        if normalized is None:
            return False
        reason = self.rejection_reason(normalized)
        if reason:
            logger.debug(f"🚫 [Validator] Rejected {self.goal.value} candidate ({reason}): {normalized[:100]}")
            return False
        return True

    def filter(self, urls: List[str]) -> List[str]:
        """Normalized, valid, de-duplicated URLs in input order."""
        result: List[str] = []
        for url in urls:
            normalized = self.normalize(url)
            if normalized and normalized not in result and self.rejection_reason(normalized) is None:
                result.append(normalized)
        return result
