import logging
import textwrap
from pathlib import Path

import pytest

from agentdispatch.definitions import (
    AgentDefinition,
    ArgumentSpec,
    CommandDefinition,
    RuleDefinition,
    SkillDefinition,
    SkillSection,
)
from agentdispatch.registry import Registry, reset_registry


# ----------------------------------------------------------------------
# Registry isolation
# ----------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _fresh_registry(monkeypatch):
    """Each test starts without a process-wide registry or env overrides."""
    reset_registry()
    for name in ("AGENTDISPATCH_CONFIG", "AGENTDISPATCH_BUDGET_CEILING", "AGENTDISPATCH_RUNNER"):
        monkeypatch.delenv(name, raising=False)
    yield
    reset_registry()


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """configure_logging() replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


# ----------------------------------------------------------------------
# In-memory definitions
# ----------------------------------------------------------------------
REVIEW_SCHEMA = {
    "type": "object",
    "required": ["verdict"],
    "properties": {"verdict": {"type": "string"}},
}


@pytest.fixture
def definitions():
    """A small but complete set of definitions covering every kind."""
    return [
        AgentDefinition(
            id="reviewer",
            description="Reviews Python changes",
            persona="You review Python code carefully.",
            tags=["python", "review"],
        ),
        AgentDefinition(
            id="tester",
            description="Writes and runs tests",
            persona="You write focused tests.",
            tags=["testing"],
            output_schema=REVIEW_SCHEMA,
        ),
        AgentDefinition(
            id="writer",
            description="Writes documentation",
            persona="You write clear docs.",
            tags=["docs"],
        ),
        CommandDefinition(
            id="review",
            description="Review a change",
            agent="reviewer",
            fanout=["tester"],
            arguments=[
                ArgumentSpec(name="target", required=True),
                ArgumentSpec(name="notes"),
            ],
            instructions="Review the target and report findings.",
        ),
        CommandDefinition(id="docs", description="Write docs", agent="writer", tags=["changelog"]),
        SkillDefinition(
            id="python-style",
            summary="Python style guide summary.",
            sections=[
                SkillSection(title="Naming", body="Use snake_case for functions."),
                SkillSection(title="Imports", body="Group stdlib, third-party, local."),
            ],
            tags=["python", "review"],
        ),
        SkillDefinition(
            id="pytest-guide",
            summary="How we use pytest.",
            sections=[SkillSection(title="Fixtures", body="Prefer fixtures over setup methods.")],
            tags=["testing", "python"],
        ),
        SkillDefinition(
            id="changelog",
            summary="Changelog conventions.",
            sections=[SkillSection(title="Format", body="Keep a changelog.")],
            tags=["changelog"],
        ),
        RuleDefinition(id="safety", text="Never run destructive commands.", always_on=True),
        RuleDefinition(id="py-rule", text="Target Python 3.9+.", scope=["python"]),
        RuleDefinition(id="docs-rule", text="Use sentence case headings.", scope=["docs"]),
    ]


@pytest.fixture
def registry(definitions):
    return Registry.from_definitions(definitions)


# ----------------------------------------------------------------------
# On-disk definitions
# ----------------------------------------------------------------------
def write_doc(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
    return path


@pytest.fixture
def definitions_root(tmp_path):
    """A definitions directory with one document of every kind."""
    root = tmp_path / "defs"
    write_doc(root / "agents" / "reviewer.md", """
        ---
        description: Reviews Python changes
        tags: [python, review]
        ---
        You review Python code carefully.
    """)
    write_doc(root / "agents" / "tester.md", """
        ---
        description: Writes tests
        capabilities: testing
        output_schema:
          type: object
          required: [verdict]
        ---
        You write focused tests.
    """)
    write_doc(root / "commands" / "review.md", """
        ---
        description: Review a change
        agent: reviewer
        fanout: [tester]
        argument-hint: <target> [notes]
        ---
        Review the target and report findings.
    """)
    write_doc(root / "skills" / "python-style" / "SKILL.md", """
        ---
        description: Python style guide summary.
        tags: [python]
        ---
        Read this before reviewing.

        ## Naming
        Use snake_case for functions.

        ## Imports
        Group stdlib, third-party, local.
    """)
    write_doc(root / "skills" / "python-style" / "reference.md", """
        Not a definition.
    """)
    write_doc(root / "rules" / "safety.md", """
        ---
        description: Always applies
        ---
        Never run destructive commands.
    """)
    write_doc(root / "rules" / "py-rule.md", """
        ---
        scope: python
        ---
        Target Python 3.9+.
    """)
    return root
