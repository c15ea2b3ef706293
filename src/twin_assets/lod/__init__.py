"""Adaptive level-of-detail selection."""

from .controller import LODController, LODObject, LODPolicy, LODStatistics
from .level_policy import LevelPolicyDecision, LevelPolicyInputs, select_level
from .notifications import LevelChanged, LevelChangeFailed

__all__ = [
    "LODController",
    "LODObject",
    "LODPolicy",
    "LODStatistics",
    "LevelChangeFailed",
    "LevelChanged",
    "LevelPolicyDecision",
    "LevelPolicyInputs",
    "select_level",
]
