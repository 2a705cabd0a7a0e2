"""
Definition loader
~~~~~~~~~~~~~~~~~

Turns Markdown documents with a YAML front-matter block into definition
models. The loader only reads identifiers, descriptive metadata and tag
fields; bodies are carried through untouched.

Directory layout under a definitions root::

    commands/*.md
    agents/*.md
    skills/*.md  or  skills/<id>/SKILL.md
    rules/*.md
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Tuple

import yaml
from pydantic import ValidationError

from ..definitions import (
    AgentDefinition,
    ArgumentSpec,
    CommandDefinition,
    DefinitionKind,
    RuleDefinition,
    SkillDefinition,
    SkillSection,
)
from ..errors import DefinitionError

logger = logging.getLogger(__name__)

KIND_DIRECTORIES: Dict[DefinitionKind, str] = {
    DefinitionKind.COMMAND: "commands",
    DefinitionKind.AGENT: "agents",
    DefinitionKind.SKILL: "skills",
    DefinitionKind.RULE: "rules",
}

SKILL_FILENAME = "SKILL.md"

_SECTION_RE = re.compile(r"^##[ \t]+(?P<title>.+?)[ \t]*#*[ \t]*$", re.MULTILINE)


@dataclass(frozen=True)
class DefinitionDocument:
    """A raw definition document as supplied by the external source."""
    kind: DefinitionKind
    source: str
    text: str


def split_front_matter(text: str, source: str) -> Tuple[Dict[str, Any], str]:
    """Split a document into its front-matter mapping and body."""
    lines = text.splitlines(True)
    if not lines or lines[0].strip() != "---":
        raise DefinitionError(source, "missing opening front-matter delimiter '---'")

    end_idx = None
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            end_idx = i
            break
    if end_idx is None:
        raise DefinitionError(source, "missing closing front-matter delimiter '---'")

    try:
        meta = yaml.safe_load("".join(lines[1:end_idx])) or {}
    except yaml.YAMLError as exc:
        raise DefinitionError(source, f"front-matter is not valid YAML ({exc})") from exc
    if not isinstance(meta, dict):
        raise DefinitionError(source, "front-matter must be a mapping")

    body = "".join(lines[end_idx + 1:]).strip("\n")
    return meta, body


def split_sections(body: str) -> Tuple[SkillSection, ...]:
    """Split a skill body into ordered detail sections at level-2 headings."""
    matches = list(_SECTION_RE.finditer(body))
    sections: List[SkillSection] = []

    preamble = body[: matches[0].start()] if matches else body
    if preamble.strip():
        sections.append(SkillSection(title="Overview", body=preamble.strip()))

    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(body)
        content = body[match.end():end].strip()
        if content:
            sections.append(SkillSection(title=match.group("title").strip(), body=content))
    return tuple(sections)


def _identifier(meta: Dict[str, Any], source: str) -> str:
    for key in ("id", "name"):
        value = meta.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    path = Path(source)
    if path.name == SKILL_FILENAME:
        return path.parent.name
    return path.stem


def _first(meta: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in meta and meta[key] is not None:
            return meta[key]
    return default


def _parse_arguments(meta: Dict[str, Any], source: str) -> Tuple[ArgumentSpec, ...]:
    raw = meta.get("arguments")
    specs: List[ArgumentSpec] = []
    if raw is None:
        hint = meta.get("argument-hint") or meta.get("argument_hint")
        if hint:
            # "<file> [options]" style hints: angle brackets mark required args
            for token in str(hint).split():
                name = token.strip("<>[]")
                if name:
                    specs.append(ArgumentSpec(name=name, required=token.startswith("<")))
        return tuple(specs)

    if not isinstance(raw, list):
        raise DefinitionError(source, "'arguments' must be a list")
    for item in raw:
        if isinstance(item, str):
            specs.append(ArgumentSpec(name=item))
        elif isinstance(item, dict):
            specs.append(ArgumentSpec(**item))
        else:
            raise DefinitionError(source, f"invalid argument entry {item!r}")
    return tuple(specs)


def parse_document(document: DefinitionDocument):
    """Parse one document into the definition model for its kind."""
    meta, body = split_front_matter(document.text, document.source)
    source = document.source
    common = {
        "id": _identifier(meta, source),
        "description": str(meta.get("description") or ""),
        "source": source,
    }

    try:
        if document.kind is DefinitionKind.COMMAND:
            return CommandDefinition(
                **common,
                agent=_first(meta, "agent", default=""),
                arguments=_parse_arguments(meta, source),
                fanout=_first(meta, "fanout", "delegates", default=()),
                tags=meta.get("tags"),
                instructions=body or None,
            )
        if document.kind is DefinitionKind.AGENT:
            return AgentDefinition(
                **common,
                persona=body,
                tags=_first(meta, "tags", "capabilities"),
                output_schema=_first(meta, "output_schema", "output-schema"),
            )
        if document.kind is DefinitionKind.SKILL:
            return SkillDefinition(
                **common,
                summary=str(_first(meta, "summary", "description", default="")),
                sections=split_sections(body),
                tags=_first(meta, "tags", "applies_to"),
            )
        scope = _first(meta, "scope", "tags")
        always_on = _first(meta, "always_on", "always-on")
        if always_on is None:
            always_on = not scope
        return RuleDefinition(
            **common,
            text=body,
            always_on=bool(always_on),
            scope=scope,
        )
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise DefinitionError(source, details) from exc
    except (TypeError, ValueError) as exc:
        raise DefinitionError(source, str(exc)) from exc


def _kind_files(root: Path, kind: DefinitionKind) -> Iterator[Path]:
    directory = root / KIND_DIRECTORIES[kind]
    if not directory.is_dir():
        return
    for path in sorted(directory.rglob("*.md")):
        if not path.is_file():
            continue
        if kind is DefinitionKind.SKILL and path.parent != directory and path.name != SKILL_FILENAME:
            # reference files that live next to a SKILL.md are not definitions
            continue
        yield path


def iter_directory(root: Path) -> Iterator[DefinitionDocument]:
    """Yield every definition document found under ``root``."""
    root = Path(root)
    if not root.is_dir():
        raise DefinitionError(str(root), "definitions directory does not exist")
    for kind in DefinitionKind:
        for path in _kind_files(root, kind):
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise DefinitionError(str(path), f"cannot read file ({exc})") from exc
            yield DefinitionDocument(kind=kind, source=str(path), text=text)


def load_documents(documents: Iterable[DefinitionDocument]) -> Dict[DefinitionKind, list]:
    """Parse documents and group the definitions by kind, in input order."""
    grouped: Dict[DefinitionKind, list] = {kind: [] for kind in DefinitionKind}
    for document in documents:
        definition = parse_document(document)
        grouped[document.kind].append(definition)
        logger.debug("Loaded %s %s from %s", document.kind.value, definition.id, document.source)
    return grouped


def load_directory(root: Path) -> Dict[DefinitionKind, list]:
    return load_documents(iter_directory(root))

