"""Build planning: graph plus settings to a platform-normalized plan."""

from .license import classify_license
from .planner import BuildPlanner, PlanResult

__all__ = ["BuildPlanner", "PlanResult", "classify_license"]
