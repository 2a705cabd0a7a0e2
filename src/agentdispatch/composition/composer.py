"""Bundle composition with progressive disclosure.

Blocks are laid out as: rules, agent persona, inline command instructions,
skill summaries (resolver priority order), then skill details (same order,
second pass). Every optional block that is left out is recorded in the
bundle's trimming log together with the reason.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..orchestration.resolver import ResolutionPlan
from .budgeter import BudgetDecision, SizeEstimator, decide, require_mandatory
from .models import BlockKind, ContentBlock, ContextBundle, TrimReason, TrimRecord

logger = logging.getLogger(__name__)


class Composer:
    """Stateless bundle builder; one instance can serve any number of plans."""

    def __init__(self, estimator: Optional[SizeEstimator] = None) -> None:
        self.estimator = estimator or SizeEstimator()

    def _block(self, kind: BlockKind, source_id: str, content: str, *,
               section: Optional[int] = None, title: Optional[str] = None) -> ContentBlock:
        return ContentBlock(
            kind=kind,
            source_id=source_id,
            section=section,
            title=title,
            content=content,
            size=self.estimator.measure(content),
        )

    def mandatory_blocks(self, plan: ResolutionPlan) -> List[ContentBlock]:
        blocks = [self._block(BlockKind.RULE, rule.id, rule.text) for rule in plan.rules]
        blocks.append(self._block(BlockKind.PERSONA, plan.agent.id, plan.agent.persona))
        if plan.command.instructions:
            blocks.append(self._block(BlockKind.INSTRUCTIONS, plan.command.id, plan.command.instructions))
        return blocks

    def detail_blocks(self, plan: ResolutionPlan) -> Dict[str, List[ContentBlock]]:
        return {
            skill.id: [
                self._block(BlockKind.SKILL_DETAIL, skill.id, section.body, section=idx, title=section.title)
                for idx, section in enumerate(skill.sections)
            ]
            for skill in plan.skills
        }

    def compose(self, plan: ResolutionPlan, ceiling: int) -> ContextBundle:
        """Compose the bundle for ``plan`` under ``ceiling``.

        Raises :class:`~agentdispatch.errors.BudgetInfeasibleError` when the
        mandatory blocks alone do not fit; no partial bundle is produced.
        """
        blocks = self.mandatory_blocks(plan)
        used = sum(block.size for block in blocks)
        require_mandatory(used, ceiling, plan.agent.id)

        trimmed: List[TrimRecord] = []

        def trim(block: ContentBlock, reason: TrimReason) -> None:
            trimmed.append(TrimRecord(block_id=block.block_id, kind=block.kind, size=block.size, reason=reason))

        details = self.detail_blocks(plan)
        accepted: Dict[str, BudgetDecision] = {}
        exhausted = False

        # Pass 1: summaries
        for skill in plan.skills:
            summary = self._block(BlockKind.SKILL_SUMMARY, skill.id, skill.summary)
            if exhausted:
                trim(summary, TrimReason.BUDGET_EXHAUSTED)
                continue
            first = details[skill.id][0].size if details[skill.id] else None
            decision = decide(used, ceiling, summary.size, first)
            if decision is BudgetDecision.REJECT:
                trim(summary, TrimReason.EXCEEDS_CEILING)
                exhausted = True
                continue
            blocks.append(summary)
            used += summary.size
            accepted[skill.id] = decision

        # Pass 2: details, only for skills whose summary made it in
        for skill in plan.skills:
            for detail in details[skill.id]:
                decision = accepted.get(skill.id)
                if decision is None:
                    trim(detail, TrimReason.SUMMARY_REJECTED)
                elif exhausted:
                    trim(detail, TrimReason.BUDGET_EXHAUSTED)
                elif decision is BudgetDecision.ACCEPT_SUMMARY_ONLY:
                    trim(detail, TrimReason.SUMMARY_ONLY)
                    exhausted = True
                elif decide(used, ceiling, detail.size) is BudgetDecision.REJECT:
                    trim(detail, TrimReason.EXCEEDS_CEILING)
                    exhausted = True
                else:
                    blocks.append(detail)
                    used += detail.size

        bundle = ContextBundle(
            command_id=plan.command.id,
            agent_id=plan.agent.id,
            ceiling=ceiling,
            unit=self.estimator.unit.value,
            blocks=tuple(blocks),
            total_size=used,
            trimming_log=tuple(trimmed),
        )
        if trimmed:
            logger.info(
                "Bundle for %s/%s trimmed %d block(s); %d/%d used",
                plan.command.id, plan.agent.id, len(trimmed), used, ceiling,
            )
        else:
            logger.debug("Bundle for %s/%s complete; %d/%d used", plan.command.id, plan.agent.id, used, ceiling)
        return bundle
