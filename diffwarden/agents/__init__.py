"""Agent modules for diff review and fixing."""

from .review_agent import ReviewAgent
from .fix_agent import FixAgent, FixDecision, FixStatus
from .orchestrator import ReviewOrchestrator

__all__ = [
    "ReviewAgent",
    "FixAgent",
    "FixDecision",
    "FixStatus",
    "ReviewOrchestrator",
]
