"""Definition models for the four registry kinds.

Commands, agents, skills and rules are loaded once at startup from external
definition documents and never mutated afterwards, so every model here is
frozen. Bodies (persona text, instructions, skill sections, rule text) are
opaque payloads: nothing in the engine interprets them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DefinitionKind(str, Enum):
    """Registry definition kinds."""
    COMMAND = "command"
    AGENT = "agent"
    SKILL = "skill"
    RULE = "rule"


def normalize_tags(value: Any) -> Tuple[str, ...]:
    """Normalise tags to a sorted tuple of unique, lower-case strings.

    Accepts a list/tuple/set or a comma-separated string.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        raise ValueError(f"tags must be a list or a comma-separated string, got {type(value).__name__}")
    tags = {str(item).strip().lower() for item in items if str(item).strip()}
    return tuple(sorted(tags))


class _Definition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Unique identifier within its kind")
    description: str = Field(default="", description="Human description")
    source: str = Field(default="<memory>", description="Where the definition was loaded from")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Identifier cannot be empty")
        return v.strip()


class ArgumentSpec(BaseModel):
    """One positional argument of a command's argument schema."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    description: str = ""
    required: bool = False


class CommandDefinition(_Definition):
    """A named, user-invocable operation mapped to one primary agent."""

    agent: str = Field(..., description="Target agent identifier")
    arguments: Tuple[ArgumentSpec, ...] = Field(default=(), description="Ordered argument schema")
    fanout: Tuple[str, ...] = Field(default=(), description="Additional agents to delegate to")
    tags: Tuple[str, ...] = Field(default=(), description="Capability tags contributed by the command")
    instructions: Optional[str] = Field(default=None, description="Inline instructions")

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Tuple[str, ...]:
        return normalize_tags(v)

    @field_validator("agent")
    @classmethod
    def validate_agent(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Command must name a target agent")
        return v.strip()

    @field_validator("fanout", mode="before")
    @classmethod
    def validate_fanout(cls, v: Any) -> Tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split(",")
        seen: list[str] = []
        for item in v:
            name = str(item).strip()
            if name and name not in seen:
                seen.append(name)
        return tuple(seen)

    @property
    def targets(self) -> Tuple[str, ...]:
        """Primary agent followed by fan-out agents, without duplicates."""
        return (self.agent,) + tuple(a for a in self.fanout if a != self.agent)


class AgentDefinition(_Definition):
    """A persona with capability tags and a declared output schema."""

    persona: str = Field(default="", description="Opaque persona instructions")
    tags: Tuple[str, ...] = Field(default=(), description="Capability tags")
    output_schema: Optional[Dict[str, Any]] = Field(default=None, description="JSON schema for run output")

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Tuple[str, ...]:
        return normalize_tags(v)


class SkillSection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str
    body: str


class SkillDefinition(_Definition):
    """Reusable reference material disclosed summary-first."""

    summary: str = Field(default="", description="Short summary text")
    sections: Tuple[SkillSection, ...] = Field(default=(), description="Ordered detail sections")
    tags: Tuple[str, ...] = Field(default=(), description="Applicability tags")

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> Tuple[str, ...]:
        return normalize_tags(v)


class RuleDefinition(_Definition):
    """A mandatory constraint, always-on or scoped to agents by tag."""

    text: str = Field(default="", description="Opaque rule text")
    always_on: bool = Field(default=False, description="Include in every bundle")
    scope: Tuple[str, ...] = Field(default=(), description="Agent tags the rule applies to")

    @field_validator("scope", mode="before")
    @classmethod
    def validate_scope(cls, v: Any) -> Tuple[str, ...]:
        return normalize_tags(v)

    def applies_to(self, agent_tags: Iterable[str]) -> bool:
        if self.always_on:
            return True
        return bool(set(self.scope) & set(agent_tags))
