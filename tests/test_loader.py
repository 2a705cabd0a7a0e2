"""Tests for definition document parsing and directory loading."""

import pytest

from agentdispatch.definitions import (
    AgentDefinition,
    CommandDefinition,
    DefinitionKind,
    RuleDefinition,
    SkillDefinition,
    normalize_tags,
)
from agentdispatch.errors import DefinitionError
from agentdispatch.registry import DefinitionDocument, parse_document, split_front_matter, split_sections
from agentdispatch.registry.loader import iter_directory, load_directory


def _doc(kind, text, source="mem.md"):
    return DefinitionDocument(kind=kind, source=source, text=text)


class TestFrontMatter:
    """Front-matter splitting."""

    def test_split_returns_meta_and_body(self):
        meta, body = split_front_matter("---\nid: a\ntags: [x]\n---\nhello\n", "a.md")
        assert meta == {"id": "a", "tags": ["x"]}
        assert body == "hello"

    def test_empty_front_matter_is_allowed(self):
        meta, body = split_front_matter("---\n---\nbody", "a.md")
        assert meta == {}
        assert body == "body"

    def test_missing_opening_delimiter(self):
        with pytest.raises(DefinitionError) as exc:
            split_front_matter("id: a\n", "a.md")
        assert exc.value.source == "a.md"

    def test_missing_closing_delimiter(self):
        with pytest.raises(DefinitionError):
            split_front_matter("---\nid: a\n", "a.md")

    def test_invalid_yaml(self):
        with pytest.raises(DefinitionError):
            split_front_matter("---\nid: [unclosed\n---\n", "a.md")

    def test_non_mapping_front_matter(self):
        with pytest.raises(DefinitionError):
            split_front_matter("---\n- a\n- b\n---\n", "a.md")


class TestSections:
    """Skill body splitting at level-2 headings."""

    def test_preamble_becomes_overview(self):
        sections = split_sections("Intro text.\n\n## One\nfirst\n\n## Two\nsecond")
        assert [s.title for s in sections] == ["Overview", "One", "Two"]
        assert sections[1].body == "first"
        assert sections[2].body == "second"

    def test_no_headings_is_single_section(self):
        sections = split_sections("Just a body.")
        assert len(sections) == 1
        assert sections[0].title == "Overview"

    def test_empty_body_has_no_sections(self):
        assert split_sections("") == ()

    def test_level_three_headings_stay_inside_section(self):
        sections = split_sections("## Main\nintro\n### Detail\nmore")
        assert len(sections) == 1
        assert "### Detail" in sections[0].body

    def test_empty_sections_are_dropped(self):
        sections = split_sections("## Empty\n\n## Full\ncontent")
        assert [s.title for s in sections] == ["Full"]


class TestParseDocument:
    """Per-kind parsing."""

    def test_command(self):
        command = parse_document(_doc(
            DefinitionKind.COMMAND,
            "---\nagent: reviewer\nfanout: tester, writer\narguments:\n  - name: target\n    required: true\n  - notes\n---\nDo it.",
            source="commands/review.md",
        ))
        assert isinstance(command, CommandDefinition)
        assert command.id == "review"
        assert command.agent == "reviewer"
        assert command.fanout == ("tester", "writer")
        assert [a.name for a in command.arguments] == ["target", "notes"]
        assert command.arguments[0].required is True
        assert command.arguments[1].required is False
        assert command.instructions == "Do it."

    def test_command_argument_hint(self):
        command = parse_document(_doc(
            DefinitionKind.COMMAND, "---\nagent: a\nargument-hint: <file> [mode]\n---\n", source="x.md"
        ))
        assert [(a.name, a.required) for a in command.arguments] == [("file", True), ("mode", False)]
        assert command.instructions is None

    def test_command_without_agent_is_rejected(self):
        with pytest.raises(DefinitionError):
            parse_document(_doc(DefinitionKind.COMMAND, "---\ndescription: x\n---\n"))

    def test_explicit_id_wins_over_filename(self):
        agent = parse_document(_doc(DefinitionKind.AGENT, "---\nid: Custom\n---\nbody", source="agents/x.md"))
        assert agent.id == "Custom"

    def test_agent_capabilities_alias(self):
        agent = parse_document(_doc(
            DefinitionKind.AGENT,
            "---\ncapabilities: [Python, Review, python]\noutput-schema:\n  type: object\n---\nPersona",
            source="agents/reviewer.md",
        ))
        assert isinstance(agent, AgentDefinition)
        assert agent.tags == ("python", "review")
        assert agent.output_schema == {"type": "object"}
        assert agent.persona == "Persona"

    def test_skill_id_from_directory(self):
        skill = parse_document(_doc(
            DefinitionKind.SKILL,
            "---\ndescription: Summary\ntags: [a]\n---\n## S\nbody",
            source="skills/my-skill/SKILL.md",
        ))
        assert isinstance(skill, SkillDefinition)
        assert skill.id == "my-skill"
        assert skill.summary == "Summary"
        assert len(skill.sections) == 1

    def test_rule_without_scope_is_always_on(self):
        rule = parse_document(_doc(DefinitionKind.RULE, "---\n---\nBe safe.", source="rules/safe.md"))
        assert isinstance(rule, RuleDefinition)
        assert rule.always_on is True
        assert rule.text == "Be safe."

    def test_scoped_rule_is_not_always_on(self):
        rule = parse_document(_doc(DefinitionKind.RULE, "---\nscope: python\n---\nx", source="rules/py.md"))
        assert rule.always_on is False
        assert rule.scope == ("python",)
        assert rule.applies_to(["python", "review"])
        assert not rule.applies_to(["docs"])

    def test_unknown_field_reports_source(self):
        with pytest.raises(DefinitionError) as exc:
            parse_document(_doc(DefinitionKind.AGENT, "---\ntags: 42\n---\n", source="agents/bad.md"))
        assert "agents/bad.md" in exc.value.message


class TestNormalizeTags:
    def test_string_and_list_forms(self):
        assert normalize_tags("B, a ,b") == ("a", "b")
        assert normalize_tags(["X", "", "y"]) == ("x", "y")
        assert normalize_tags(None) == ()

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            normalize_tags(3)


class TestDirectoryLoading:
    def test_load_directory_groups_by_kind(self, definitions_root):
        grouped = load_directory(definitions_root)
        assert [d.id for d in grouped[DefinitionKind.AGENT]] == ["reviewer", "tester"]
        assert [d.id for d in grouped[DefinitionKind.COMMAND]] == ["review"]
        assert [d.id for d in grouped[DefinitionKind.SKILL]] == ["python-style"]
        assert sorted(d.id for d in grouped[DefinitionKind.RULE]) == ["py-rule", "safety"]

    def test_reference_files_next_to_skill_are_ignored(self, definitions_root):
        sources = [doc.source for doc in iter_directory(definitions_root)]
        assert not any(s.endswith("reference.md") for s in sources)

    def test_missing_root(self, tmp_path):
        with pytest.raises(DefinitionError):
            list(iter_directory(tmp_path / "nope"))

    def test_broken_document_aborts_load(self, definitions_root):
        (definitions_root / "agents" / "broken.md").write_text("no front matter", encoding="utf-8")
        with pytest.raises(DefinitionError) as exc:
            load_directory(definitions_root)
        assert "broken.md" in exc.value.source
