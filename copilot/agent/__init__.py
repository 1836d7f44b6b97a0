"""
Scheduling agent: intent resolution, conflict detection and slot search
"""

from .conflict_manager import find_conflicts, has_conflict
from .normalizer import match_temporal, normalize
from .orchestrator import SchedulingOrchestrator, build_default_orchestrator
from .state import ConversationStore
from .time_block_planner import TimeBlockPlanner

__all__ = [
    "SchedulingOrchestrator",
    "build_default_orchestrator",
    "ConversationStore",
    "TimeBlockPlanner",
    "find_conflicts",
    "has_conflict",
    "match_temporal",
    "normalize",
]
