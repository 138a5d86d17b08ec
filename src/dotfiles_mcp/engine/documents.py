"""
YAML document loader for variable and job index files.

This module provides the single entry point used by both resolution engines to
read a structured document from disk:

- Reads the file as UTF-8
- Parses it with ``yaml.safe_load``
- Validates the root is a mapping (empty documents become ``{}``)
- Records the 1-based line of every mapping key for provenance tracing

Any failure is raised as StructuralParseError. Missing files are the caller's
concern (imports raise ImportNotFoundError before reaching this module).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import StructuralParseError

logger = logging.getLogger(__name__)

KeyPath = tuple[str, ...]


@dataclass
class YamlDocument:
    """
    A parsed YAML mapping plus the line of each key.

    Attributes:
        path: File the document was read from
        data: Parsed root mapping
        key_lines: Line of every mapping key, keyed by its path from the root.
            Keys nested in sequences are not indexed.

    Example:
        doc = load_document(Path("variables/index.yaml"))
        doc.line_of("variables", "user")  # -> 7
    """

    path: Path
    data: dict[str, Any]
    key_lines: dict[KeyPath, int] = field(default_factory=dict)

    def line_of(self, *keys: str) -> int:
        """Return the 1-based line of a key path, or 0 when unknown."""
        return self.key_lines.get(tuple(keys), 0)


def load_document(path: str | Path) -> YamlDocument:
    """
    Load a YAML mapping from disk.

    Args:
        path: Path to the YAML file

    Returns:
        YamlDocument with parsed data and key line numbers

    Raises:
        StructuralParseError: If the file cannot be read, is not valid YAML,
            or its root is not a mapping
    """
    file_path = Path(path)

    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as e:
        raise StructuralParseError(file_path, f"cannot read file: {e}") from e

    return parse_document(text, source=file_path)


def parse_document(text: str, source: str | Path = "<string>") -> YamlDocument:
    """
    Parse YAML text into a YamlDocument.

    Args:
        text: YAML content
        source: Identifier used in error messages

    Returns:
        YamlDocument with parsed data and key line numbers

    Raises:
        StructuralParseError: If the YAML is invalid or the root is not a mapping
    """
    try:
        data = yaml.safe_load(text)
        node = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError as e:
        raise StructuralParseError(source, f"invalid YAML syntax: {e}") from e

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise StructuralParseError(
            source, f"document root must be a mapping, got {type(data).__name__}"
        )

    key_lines: dict[KeyPath, int] = {}
    if isinstance(node, yaml.MappingNode):
        _index_key_lines(node, (), key_lines)

    logger.debug(f"Parsed {source}: {len(data)} top-level keys")
    return YamlDocument(path=Path(source), data=data, key_lines=key_lines)


def _index_key_lines(node: yaml.MappingNode, prefix: KeyPath, out: dict[KeyPath, int]) -> None:
    for key_node, value_node in node.value:
        if not isinstance(key_node, yaml.ScalarNode):
            continue
        key_path = prefix + (str(key_node.value),)
        out[key_path] = key_node.start_mark.line + 1
        if isinstance(value_node, yaml.MappingNode):
            _index_key_lines(value_node, key_path, out)
