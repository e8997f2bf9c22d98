"""Tools package for testsmith."""

from testsmith.tools.catalog import ToolCatalog, ToolSpec, build_tool_catalog
from testsmith.tools.registry import ToolDescriptor, ToolRegistry, ToolResult

__all__ = ["ToolCatalog", "ToolDescriptor", "ToolRegistry", "ToolResult", "ToolSpec", "build_tool_catalog"]
