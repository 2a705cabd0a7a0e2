"""Data models for composed context bundles."""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class BlockKind(str, Enum):
    """Content block kinds, in composition order."""
    RULE = "rule"
    PERSONA = "persona"
    INSTRUCTIONS = "instructions"
    SKILL_SUMMARY = "skill-summary"
    SKILL_DETAIL = "skill-detail"

    @property
    def mandatory(self) -> bool:
        return self in (BlockKind.RULE, BlockKind.PERSONA, BlockKind.INSTRUCTIONS)


class TrimReason(str, Enum):
    """Why an optional block was left out of a bundle."""
    EXCEEDS_CEILING = "exceeds-ceiling"
    BUDGET_EXHAUSTED = "budget-exhausted"
    SUMMARY_ONLY = "summary-only"
    SUMMARY_REJECTED = "summary-rejected"


class ContentBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: BlockKind
    source_id: str = Field(..., description="Identifier of the definition the block came from")
    section: Optional[int] = Field(default=None, description="Detail section index")
    title: Optional[str] = None
    content: str = ""
    size: int = Field(..., ge=0)

    @property
    def block_id(self) -> str:
        if self.kind is BlockKind.SKILL_SUMMARY:
            return f"skill:{self.source_id}:summary"
        if self.kind is BlockKind.SKILL_DETAIL:
            return f"skill:{self.source_id}:detail:{self.section}"
        return f"{self.kind.value}:{self.source_id}"


class TrimRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_id: str
    kind: BlockKind
    size: int
    reason: TrimReason


class ContextBundle(BaseModel):
    """Ordered, budget-constrained assembly for one execution."""

    model_config = ConfigDict(frozen=True)

    command_id: str
    agent_id: str
    ceiling: int
    unit: str = "tokens"
    blocks: Tuple[ContentBlock, ...] = ()
    total_size: int = 0
    trimming_log: Tuple[TrimRecord, ...] = ()

    @property
    def block_ids(self) -> Tuple[str, ...]:
        return tuple(block.block_id for block in self.blocks)

    @property
    def optional_block_ids(self) -> frozenset:
        return frozenset(b.block_id for b in self.blocks if not b.kind.mandatory)

    @property
    def remaining(self) -> int:
        return self.ceiling - self.total_size

    def blocks_of(self, kind: BlockKind) -> Tuple[ContentBlock, ...]:
        return tuple(block for block in self.blocks if block.kind is kind)

    def render(self) -> str:
        """Deterministic text rendering handed to task runners."""
        parts = []
        for block in self.blocks:
            header = f"<!-- {block.block_id} -->"
            parts.append(f"{header}\n{block.content}" if block.content else header)
        return "\n\n".join(parts)

    def fingerprint(self) -> str:
        return hashlib.sha256(self.render().encode("utf-8")).hexdigest()
