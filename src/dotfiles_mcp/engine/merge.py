"""
Conflict-detecting deep merge of variable trees.

Rules for a key present on both sides:
- both values are mappings: merge recursively
- otherwise the values must be equal (type-aware: 1, 1.0 and True differ)
  or VariableConflictError is raised

Keys present on one side only are added. Because differing values always
raise, the set of conflicts does not depend on the order sources are merged.
"""

import copy
from pathlib import Path
from typing import Any

from .exceptions import VariableConflictError


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that also requires matching types at every level."""
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)
    if isinstance(left, list):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    return left == right


class VariableMerger:
    """
    Accumulates variable trees from many sources into one merged tree.

    Keeps the source of every dotted key it adds so a conflict can name the
    file that defined the existing value.

    Example:
        merger = VariableMerger(base_path=dotfiles_dir)
        merger.merge({"user": {"name": "x"}}, "a.yaml")
        merger.merge({"user": {"email": "y"}}, "b.yaml")
        merger.tree  # {"user": {"name": "x", "email": "y"}}
    """

    def __init__(self, base_path: str | Path | None = None):
        self.base_path = base_path
        self.tree: dict[str, Any] = {}
        self.origins: dict[str, str] = {}

    def merge(self, incoming: dict[str, Any], source: str | Path) -> dict[str, Any]:
        """
        Merge incoming into the accumulated tree.

        Incoming values are deep-copied; the caller's document is never mutated.

        Raises:
            VariableConflictError: If a shared key holds unequal non-map values
        """
        self._merge_into(self.tree, incoming, str(source), "")
        return self.tree

    def origin_of(self, dotted_key: str) -> str:
        """Return the source that introduced dotted_key or its nearest parent."""
        parts = dotted_key.split(".")
        while parts:
            origin = self.origins.get(".".join(parts))
            if origin is not None:
                return origin
            parts.pop()
        return ""

    def _merge_into(
        self, target: dict[str, Any], incoming: dict[str, Any], source: str, prefix: str
    ) -> None:
        for key, value in incoming.items():
            dotted = f"{prefix}.{key}" if prefix else str(key)

            if key not in target:
                target[key] = copy.deepcopy(value)
                self.origins[dotted] = source
                continue

            existing = target[key]
            if isinstance(existing, dict) and isinstance(value, dict):
                self._merge_into(existing, value, source, dotted)
            elif not values_equal(existing, value):
                raise VariableConflictError(
                    variable=dotted,
                    existing_value=existing,
                    new_value=value,
                    existing_source=self.origin_of(dotted),
                    new_source=source,
                    base_path=self.base_path,
                )


def deep_merge(
    target: dict[str, Any],
    incoming: dict[str, Any],
    source: str | Path = "",
    base_path: str | Path | None = None,
) -> dict[str, Any]:
    """Merge incoming into a copy of target and return the result."""
    merger = VariableMerger(base_path=base_path)
    merger.merge(target, "")
    merger.merge(incoming, source)
    return merger.tree
