"""
Template rendering for prompt bodies.

Supports:
- Simple interpolation: {{varName}}
- Dot notation: {{task.title}}
- Each blocks: {{#each items}}...{{this}}...{{this.prop}}...{{@index}}...{{/each}}
- If blocks: {{#if expr}}...{{/if}}

Mapping and list values are rendered as JSON. Braces inside substituted
values are escaped so a value can never expand into another placeholder.
"""

import json
import re
from typing import Any, Dict

from .conditions import resolve_path

EACH_PATTERN = re.compile(r"\{\{#each\s+([\w.-]+)\s*\}\}(.*?)\{\{/each\}\}", re.DOTALL)
IF_PATTERN = re.compile(r"\{\{#if\s+([\w.-]+)\s*\}\}(.*?)\{\{/if\}\}", re.DOTALL)
VAR_PATTERN = re.compile(r"\{\{\s*([\w.@-]+)\s*\}\}")
THIS_PROP_PATTERN = re.compile(r"\{\{this\.([\w.-]+)\}\}")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return str(value)


def _escape(text: str) -> str:
    return text.replace("{{", "\\{\\{")


def _render_each(match: "re.Match", variables: Dict[str, Any]) -> str:
    items = resolve_path(match.group(1), variables)
    if not isinstance(items, (list, tuple)):
        return ""

    body = match.group(2)
    rendered = []
    for index, item in enumerate(items):
        chunk = body.replace("{{this}}", _escape(_stringify(item)))
        if isinstance(item, dict):
            chunk = THIS_PROP_PATTERN.sub(
                lambda m: _escape(_stringify(resolve_path(m.group(1), item))), chunk
            )
        chunk = chunk.replace("{{@index}}", str(index))
        rendered.append(chunk)
    return "".join(rendered)


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """
    Render a template against the given variables.

    Args:
        template: Template text with {{ }} placeholders
        variables: Variables to substitute

    Returns:
        Rendered text; unresolved placeholders render as empty strings
    """
    result = EACH_PATTERN.sub(lambda m: _render_each(m, variables), template)
    result = IF_PATTERN.sub(
        lambda m: m.group(2) if resolve_path(m.group(1), variables) else "", result
    )
    return VAR_PATTERN.sub(
        lambda m: _escape(_stringify(resolve_path(m.group(1), variables))), result
    )
