"""
``{{ path.to.value }}`` templates in node parameters.

Paths are dotted lookups into the node's input data; list indices are plain
integers (``{{ items.0.name }}``). A string that is exactly one placeholder
renders to the raw value (dicts and numbers stay typed); placeholders inside
longer text render as strings. Missing paths render as empty strings or None.
"""

import json
import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

_MISSING = object()


def lookup_path(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path against nested dicts/lists."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, list | tuple):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return default
        else:
            return default
    return current


def render_string(template: str, data: dict[str, Any]) -> Any:
    whole = _PLACEHOLDER.fullmatch(template.strip())
    if whole:
        return lookup_path(data, whole.group(1))

    def _replace(match: re.Match) -> str:
        value = lookup_path(data, match.group(1), _MISSING)
        if value is _MISSING or value is None:
            return ""
        if isinstance(value, dict | list):
            return json.dumps(value)
        return str(value)

    return _PLACEHOLDER.sub(_replace, template)


def render(value: Any, data: dict[str, Any]) -> Any:
    """Render every string inside ``value`` (recursing into dicts and lists)."""
    if isinstance(value, str):
        return render_string(value, data) if "{{" in value else value
    if isinstance(value, dict):
        return {k: render(v, data) for k, v in value.items()}
    if isinstance(value, list):
        return [render(v, data) for v in value]
    return value
