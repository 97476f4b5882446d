# Public surface of the orchestrator package.
from ._types import ApplySink, IdLookup, SourceAdapter
from ._planner import PlanOptions, plan
from ._resolve import reconcile, reconcile_all
from ._rules import RULES, apply_rules
from ._applier import advance_watermark, apply_plan
from .facade import Orchestrator

__all__ = [
    "Orchestrator",
    "SourceAdapter", "ApplySink", "IdLookup",
    "reconcile", "reconcile_all", "RULES", "apply_rules",
    "PlanOptions", "plan", "apply_plan", "advance_watermark",
]
