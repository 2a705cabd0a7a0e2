"""Definition loading and the read-only registry."""

from .loader import DefinitionDocument, parse_document, split_front_matter, split_sections
from .registry import Registry, get_registry, init_registry, reset_registry

__all__ = [
    "DefinitionDocument",
    "Registry",
    "get_registry",
    "init_registry",
    "parse_document",
    "reset_registry",
    "split_front_matter",
    "split_sections",
]
