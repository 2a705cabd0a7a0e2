"""Command resolution.

Maps an invoked command (plus an optional agent override and caller context
tags) to exactly one agent and the candidate skills and rules for it. Skill
and rule selection goes through the registry's ``tag -> ids`` tables rather
than any inspection of the definitions' bodies.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..definitions import (
    AgentDefinition,
    CommandDefinition,
    RuleDefinition,
    SkillDefinition,
    normalize_tags,
)
from ..errors import AgentNotFoundError, CommandNotFoundError, InvalidArgumentsError
from ..registry import Registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionPlan:
    """Resolved agent plus ordered candidate skills and rules."""
    command: CommandDefinition
    agent: AgentDefinition
    skills: Tuple[SkillDefinition, ...] = ()
    rules: Tuple[RuleDefinition, ...] = ()
    tags: Tuple[str, ...] = ()
    skill_overlap: Dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def skill_ids(self) -> Tuple[str, ...]:
        return tuple(s.id for s in self.skills)

    @property
    def rule_ids(self) -> Tuple[str, ...]:
        return tuple(r.id for r in self.rules)


class Resolver:
    """Resolve commands against a read-only :class:`Registry`."""

    def __init__(self, registry: Registry) -> None:
        self.registry = registry

    def get_command(self, command_id: str) -> CommandDefinition:
        command = self.registry.get_command(command_id)
        if command is None:
            raise CommandNotFoundError(command_id)
        return command

    def resolve(
        self,
        command_id: str,
        agent_override: Optional[str] = None,
        context_tags: Iterable[str] = (),
    ) -> ResolutionPlan:
        """Resolve the command's primary (or overridden) agent."""
        command = self.get_command(command_id)
        agent_id = self._primary_agent_id(command, agent_override)
        return self._plan(command, agent_id, context_tags)

    def resolve_targets(
        self,
        command_id: str,
        agent_override: Optional[str] = None,
        context_tags: Iterable[str] = (),
    ) -> List[ResolutionPlan]:
        """Resolve one plan per fan-out target, primary agent first.

        Every target is resolved before anything is dispatched, so a missing
        fan-out agent aborts the whole invocation.
        """
        command = self.get_command(command_id)
        primary = self._primary_agent_id(command, agent_override)
        targets = [primary] + [a for a in command.fanout if a != primary]
        context_tags = tuple(context_tags)
        return [self._plan(command, agent_id, context_tags) for agent_id in targets]

    def _primary_agent_id(self, command: CommandDefinition, agent_override: Optional[str]) -> str:
        if agent_override:
            if self.registry.get_agent(agent_override) is not None:
                logger.info("Agent override %s replaces %s for %s", agent_override, command.agent, command.id)
                return agent_override
            logger.warning(
                "Ignoring unknown agent override %s for command %s", agent_override, command.id
            )
        return command.agent

    def _plan(self, command: CommandDefinition, agent_id: str, context_tags: Iterable[str]) -> ResolutionPlan:
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id, command.id)

        tags = tuple(sorted(set(agent.tags) | set(command.tags) | set(normalize_tags(tuple(context_tags)))))
        overlap = self.registry.skills_matching(tags)
        skill_ids = sorted(overlap, key=lambda sid: (-overlap[sid], sid))
        skills = tuple(self.registry.get_skill(sid) for sid in skill_ids)

        plan = ResolutionPlan(
            command=command,
            agent=agent,
            skills=skills,
            rules=self._candidate_rules(agent),
            tags=tags,
            skill_overlap=overlap,
        )
        logger.debug(
            "Resolved %s -> %s (skills=%s rules=%s)",
            command.id, agent.id, plan.skill_ids, plan.rule_ids,
        )
        return plan

    def _candidate_rules(self, agent: AgentDefinition) -> Tuple[RuleDefinition, ...]:
        always_on = sorted(self.registry.always_on_rules(), key=lambda r: r.id)
        always_ids = {r.id for r in always_on}
        scoped_ids = sorted(self.registry.rules_scoped_to(agent.tags) - always_ids)
        return tuple(always_on) + tuple(self.registry.get_rule(rid) for rid in scoped_ids)


def bind_arguments(command: CommandDefinition, raw: str) -> Dict[str, str]:
    """Bind a free-form argument string onto the command's argument schema.

    Tokens are split with shell quoting rules and assigned in declared order;
    the last declared argument takes the remainder. Without a schema the whole
    string is bound to ``arguments``.
    """
    raw = (raw or "").strip()
    specs = command.arguments
    if not specs:
        return {"arguments": raw} if raw else {}

    try:
        tokens = shlex.split(raw)
    except ValueError:
        # unbalanced quotes: fall back to whitespace splitting
        tokens = raw.split()

    bound: Dict[str, str] = {}
    for idx, spec in enumerate(specs):
        if idx >= len(tokens):
            break
        if idx == len(specs) - 1:
            bound[spec.name] = " ".join(tokens[idx:])
        else:
            bound[spec.name] = tokens[idx]

    missing = [spec.name for spec in specs if spec.required and not bound.get(spec.name)]
    if missing:
        raise InvalidArgumentsError(command.id, missing)
    return bound
