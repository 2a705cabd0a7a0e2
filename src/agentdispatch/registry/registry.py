"""Read-only definition registry with tag indexes.

The registry is built once at startup and never mutated afterwards, so reads
need no locking. Lookups are by identifier per kind; tag queries go through
explicit ``tag -> ids`` tables for agents, skills and rules.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence, Tuple

from ..definitions import (
    AgentDefinition,
    CommandDefinition,
    DefinitionKind,
    RuleDefinition,
    SkillDefinition,
)
from ..errors import DuplicateIdError, RegistryNotInitializedError
from .loader import DefinitionDocument, load_directory, load_documents

logger = logging.getLogger(__name__)

_EMPTY: FrozenSet[str] = frozenset()


def _index_by_id(kind: DefinitionKind, definitions: Iterable) -> Mapping[str, object]:
    by_id: Dict[str, object] = {}
    for definition in definitions:
        existing = by_id.get(definition.id)
        if existing is not None:
            raise DuplicateIdError(kind.value, definition.id, existing.source, definition.source)
        by_id[definition.id] = definition
    return MappingProxyType(dict(sorted(by_id.items())))


def _index_by_tag(definitions: Iterable, attr: str = "tags") -> Mapping[str, FrozenSet[str]]:
    index: Dict[str, set] = defaultdict(set)
    for definition in definitions:
        for tag in getattr(definition, attr):
            index[tag].add(definition.id)
    return MappingProxyType({tag: frozenset(ids) for tag, ids in sorted(index.items())})


class Registry:
    """Indexes commands, agents, skills and rules by identifier and tag."""

    def __init__(
        self,
        commands: Sequence[CommandDefinition] = (),
        agents: Sequence[AgentDefinition] = (),
        skills: Sequence[SkillDefinition] = (),
        rules: Sequence[RuleDefinition] = (),
    ) -> None:
        self._commands = _index_by_id(DefinitionKind.COMMAND, commands)
        self._agents = _index_by_id(DefinitionKind.AGENT, agents)
        self._skills = _index_by_id(DefinitionKind.SKILL, skills)
        self._rules = _index_by_id(DefinitionKind.RULE, rules)

        self._agent_tags = _index_by_tag(self._agents.values())
        self._skill_tags = _index_by_tag(self._skills.values())
        self._rule_tags = _index_by_tag(self._rules.values(), attr="scope")
        self._always_on = tuple(r for r in self._rules.values() if r.always_on)

        self._warn_dangling_targets()
        logger.info(
            "Registry loaded: %d commands, %d agents, %d skills, %d rules",
            len(self._commands), len(self._agents), len(self._skills), len(self._rules),
        )

    # ------------------------------------------------------------------ #
    #   Construction helpers
    # ------------------------------------------------------------------ #

    @classmethod
    def from_definitions(cls, definitions: Iterable) -> "Registry":
        """Build a registry from a mixed iterable of definition models."""
        grouped: Dict[type, list] = defaultdict(list)
        for definition in definitions:
            grouped[type(definition)].append(definition)
        return cls(
            commands=grouped[CommandDefinition],
            agents=grouped[AgentDefinition],
            skills=grouped[SkillDefinition],
            rules=grouped[RuleDefinition],
        )

    @classmethod
    def from_documents(cls, documents: Iterable[DefinitionDocument]) -> "Registry":
        return cls._from_grouped(load_documents(documents))

    @classmethod
    def from_directory(cls, root: Path) -> "Registry":
        logger.debug("Loading definitions from %s", root)
        return cls._from_grouped(load_directory(Path(root)))

    @classmethod
    def _from_grouped(cls, grouped: Mapping[DefinitionKind, list]) -> "Registry":
        return cls(
            commands=grouped[DefinitionKind.COMMAND],
            agents=grouped[DefinitionKind.AGENT],
            skills=grouped[DefinitionKind.SKILL],
            rules=grouped[DefinitionKind.RULE],
        )

    def _warn_dangling_targets(self) -> None:
        for command in self._commands.values():
            for agent_id in command.targets:
                if agent_id not in self._agents:
                    logger.warning(
                        "Command %s targets unknown agent %s", command.id, agent_id
                    )

    # ------------------------------------------------------------------ #
    #   Lookups
    # ------------------------------------------------------------------ #

    def get_command(self, command_id: str) -> Optional[CommandDefinition]:
        return self._commands.get(command_id)

    def get_agent(self, agent_id: str) -> Optional[AgentDefinition]:
        return self._agents.get(agent_id)

    def get_skill(self, skill_id: str) -> Optional[SkillDefinition]:
        return self._skills.get(skill_id)

    def get_rule(self, rule_id: str) -> Optional[RuleDefinition]:
        return self._rules.get(rule_id)

    def commands(self) -> Tuple[CommandDefinition, ...]:
        return tuple(self._commands.values())

    def agents(self) -> Tuple[AgentDefinition, ...]:
        return tuple(self._agents.values())

    def skills(self) -> Tuple[SkillDefinition, ...]:
        return tuple(self._skills.values())

    def rules(self) -> Tuple[RuleDefinition, ...]:
        return tuple(self._rules.values())

    # ------------------------------------------------------------------ #
    #   Tag queries
    # ------------------------------------------------------------------ #

    def agents_with_tag(self, tag: str) -> FrozenSet[str]:
        return self._agent_tags.get(tag.lower(), _EMPTY)

    def skills_with_tag(self, tag: str) -> FrozenSet[str]:
        return self._skill_tags.get(tag.lower(), _EMPTY)

    def rules_with_tag(self, tag: str) -> FrozenSet[str]:
        return self._rule_tags.get(tag.lower(), _EMPTY)

    def skills_matching(self, tags: Iterable[str]) -> Dict[str, int]:
        """Return ``skill id -> number of shared tags`` for skills matching any tag."""
        overlap: Dict[str, int] = defaultdict(int)
        for tag in set(tags):
            for skill_id in self.skills_with_tag(tag):
                overlap[skill_id] += 1
        return dict(overlap)

    def rules_scoped_to(self, tags: Iterable[str]) -> FrozenSet[str]:
        """Ids of rules whose scope tags intersect ``tags``."""
        ids: set = set()
        for tag in set(tags):
            ids |= self.rules_with_tag(tag)
        return frozenset(ids)

    def always_on_rules(self) -> Tuple[RuleDefinition, ...]:
        return self._always_on

    def summary(self) -> Dict[str, int]:
        return {
            "commands": len(self._commands),
            "agents": len(self._agents),
            "skills": len(self._skills),
            "rules": len(self._rules),
        }


# --------------------------------------------------------------------------- #
#   Process-wide registry
# --------------------------------------------------------------------------- #

_registry: Optional[Registry] = None


def init_registry(root: Path) -> Registry:
    """Load the process-wide registry once at startup."""
    global _registry
    if _registry is not None:
        logger.debug("Registry already initialised; ignoring reload of %s", root)
        return _registry
    _registry = Registry.from_directory(root)
    return _registry


def get_registry() -> Registry:
    if _registry is None:
        raise RegistryNotInitializedError()
    return _registry


def reset_registry() -> None:
    """Tear down the process-wide registry (process exit, tests)."""
    global _registry
    _registry = None
