"""Context budget policy.

Everything here is a pure function of its inputs: the same sizes and ceiling
always yield the same decision.

Mandatory blocks (rules, agent persona, inline command instructions) are never
rejected; if they alone exceed the ceiling composition fails. Optional blocks
(skill summaries, then skill details) are accepted greedily in priority order
until the first one that does not fit. From then on the budget counts as
exhausted, so the accepted optional blocks always form the longest fitting
prefix of the priority order and a lower ceiling can only shorten it.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Optional

from ..errors import BudgetInfeasibleError


class SizeUnit(str, Enum):
    CHARS = "chars"
    TOKENS = "tokens"


# Rough average for English prose and code; good enough for budgeting.
CHARS_PER_TOKEN = 4


class SizeEstimator:
    """Measures block text in the configured unit."""

    def __init__(self, unit: SizeUnit = SizeUnit.TOKENS) -> None:
        self.unit = SizeUnit(unit)

    def measure(self, text: Optional[str]) -> int:
        if not text:
            return 0
        if self.unit is SizeUnit.CHARS:
            return len(text)
        return math.ceil(len(text) / CHARS_PER_TOKEN)

    def __repr__(self) -> str:
        return f"SizeEstimator(unit={self.unit.value!r})"


class BudgetDecision(str, Enum):
    ACCEPT = "accept"
    ACCEPT_SUMMARY_ONLY = "accept-summary-only"
    REJECT = "reject"


def decide(
    current_size: int,
    ceiling: int,
    block_size: int,
    detail_size: Optional[int] = None,
) -> BudgetDecision:
    """Decide whether the next optional block fits.

    ``detail_size`` is the size of the first detail section that would follow
    a skill summary. When the summary fits but that section would not fit
    after it, the summary is accepted on its own.
    """
    after = current_size + block_size
    if after > ceiling:
        return BudgetDecision.REJECT
    if detail_size is not None and after + detail_size > ceiling:
        return BudgetDecision.ACCEPT_SUMMARY_ONLY
    return BudgetDecision.ACCEPT


def require_mandatory(mandatory_size: int, ceiling: int, agent_id: Optional[str] = None) -> None:
    """Fail when mandatory content alone cannot fit under the ceiling."""
    if mandatory_size > ceiling:
        raise BudgetInfeasibleError(mandatory_size, ceiling, agent_id)
