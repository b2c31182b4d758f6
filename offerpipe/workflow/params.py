"""``${name}`` placeholder resolution against the workflow context."""

from __future__ import annotations

import re
from typing import Any, Mapping

PLACEHOLDER = re.compile(r"\$\{\s*([^}]+?)\s*\}")


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def lookup(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path through mappings and sequence indices only."""

    if path in context:
        return context[path]
    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def resolve_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Replace placeholders recursively.

    A string that is exactly one placeholder takes the referenced value with
    its type intact; placeholders embedded in longer text are interpolated
    as text. Unknown names are left untouched.
    """

    if isinstance(value, str):
        whole = PLACEHOLDER.fullmatch(value.strip())
        if whole is not None:
            resolved = lookup(context, whole.group(1))
            return value if resolved is MISSING else resolved

        def _substitute(match: re.Match[str]) -> str:
            resolved = lookup(context, match.group(1))
            return match.group(0) if resolved is MISSING else str(resolved)

        return PLACEHOLDER.sub(_substitute, value)
    if isinstance(value, Mapping):
        return {key: resolve_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, context) for item in value]
    return value


def resolve_params(params: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    return {key: resolve_value(value, context) for key, value in params.items()}


__all__ = ["MISSING", "PLACEHOLDER", "lookup", "resolve_params", "resolve_value"]
