"""
Pattern learning: the durable pattern store and the learner that feeds it.
"""

from .pattern_store import PatternStore, PatternStoreError
from .pattern_learner import DerivedKey, Observation, PatternLearner

__all__ = [
    "PatternStore",
    "PatternStoreError",
    "PatternLearner",
    "Observation",
    "DerivedKey",
]
