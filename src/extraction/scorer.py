"""
Candidate scoring and selection.

Scores are additive: keyword weights, an aspect-ratio bonus (three bands), a width
bonus (two bands), a modern-format bonus, minus placeholder penalties. Selection is a
stable sort on score, so equal scores keep pool insertion order and the first
inserted candidate wins.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from ..extraction_config import GoalScoring
from ..models import ExtractionCandidate

logger = logging.getLogger(__name__)

DIMENSION_RE = re.compile(r"(\d{3,4})x(\d{2,4})")
_WIDTH_HEIGHT_RE = re.compile(r"w_(\d{3,4}).*?h_(\d{2,4})|width=(\d{3,4}).*?height=(\d{2,4})")


def _dimensions(url: str) -> Optional[Tuple[int, int]]:
    match = DIMENSION_RE.search(url)
    if match:
        return int(match.group(1)), int(match.group(2))
    match = _WIDTH_HEIGHT_RE.search(url)
    if match:
        groups = [g for g in match.groups() if g]
        return int(groups[0]), int(groups[1])
    return None


class CandidateScorer:
    def __init__(self, scoring: GoalScoring):
        self.scoring = scoring

    def score(self, url: str) -> float:
        lowered = url.lower()
        total = 0.0

        for keyword, weight in self.scoring.keyword_weights.items():
            if keyword in lowered:
                total += weight

        dims = _dimensions(lowered)
        if dims:
            width, height = dims
            if height:
                ratio = width / height
                for threshold, bonus in self.scoring.aspect_bands:
                    if ratio > threshold:
                        total += bonus
                        break
            for threshold, bonus in self.scoring.width_bands:
                if width > threshold:
                    total += bonus
                    break

        path = lowered.split("?", 1)[0]
        for fmt, bonus in self.scoring.format_bonuses.items():
            if path.endswith("." + fmt) or f"format={fmt}" in lowered or f"/{fmt}/" in lowered:
                total += bonus
                break

        for token, penalty in self.scoring.penalties.items():
            if token in lowered:
                total -= penalty

        return total

    def rank(self, candidates: Sequence[ExtractionCandidate]) -> List[ExtractionCandidate]:
        """Candidates with raw_score filled in, best first, ties in insertion order."""
        for candidate in candidates:
            candidate.raw_score = self.score(candidate.url)
        return sorted(candidates, key=lambda c: c.raw_score, reverse=True)

    def select(self, candidates: Sequence[ExtractionCandidate]) -> Optional[ExtractionCandidate]:
        """Best acceptable candidate, or None for an empty pool."""
        if not candidates:
            return None
        ranked = self.rank(candidates)
        best = ranked[0]
        if best.raw_score < self.scoring.min_acceptable_score:
            logger.debug(f"📉 [Scorer] Best candidate scored {best.raw_score} below threshold")
            return None
        if len(ranked) > 1:
            logger.debug(f"🏆 [Scorer] Selected {best.url[:100]} ({best.raw_score}) over {len(ranked) - 1} others")
        return best

    def select_url(self, candidates: Sequence[ExtractionCandidate]) -> Optional[str]:
        best = self.select(candidates)
        return best.url if best else None
