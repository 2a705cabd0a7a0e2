"""Context budgeting and bundle composition."""

from .budgeter import BudgetDecision, SizeEstimator, SizeUnit, decide, require_mandatory
from .composer import Composer
from .models import BlockKind, ContentBlock, ContextBundle, TrimReason, TrimRecord

__all__ = [
    "BlockKind",
    "BudgetDecision",
    "Composer",
    "ContentBlock",
    "ContextBundle",
    "SizeEstimator",
    "SizeUnit",
    "TrimReason",
    "TrimRecord",
    "decide",
    "require_mandatory",
]
