"""Compact one-line rendering of tool invocations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from testsmith.protocol.envelope import ToolCallPayload
from testsmith.tools.catalog import ToolCatalog, build_tool_catalog

GENERIC_VALUE_MAX_LEN = 30


def _generic_value(value: Any) -> str:
    if isinstance(value, str):
        text = value if len(value) <= GENERIC_VALUE_MAX_LEN else value[:GENERIC_VALUE_MAX_LEN] + "..."
        return f'"{text}"'
    return str(value)


def _generic_parts(args: Mapping[str, Any]) -> list[str]:
    return [f"{key}: {_generic_value(value)}" for key, value in args.items() if value is not None]


def summarize_tool_call(payload: ToolCallPayload, catalog: ToolCatalog | None = None) -> str:
    """Render ``Tool: <name> | k: v, ...`` using the catalog's display metadata."""
    catalog = catalog or build_tool_catalog()
    spec = catalog.spec(payload.tool_name)
    if spec is None:
        parts = _generic_parts(payload.args)
    else:
        parts = []
        for summary_field in spec.summary:
            if summary_field.arg not in payload.args:
                continue
            rendered = summary_field.render(payload.args[summary_field.arg])
            if rendered:
                parts.append(rendered)
    head = f"Tool: {payload.tool_name}"
    return f"{head} | {', '.join(parts)}" if parts else head
