"""Tool catalog: argument schemas and display metadata for every tool."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

SummaryStyle = Literal["plain", "quoted", "flag", "list", "percent"]
_SHOWN = object()


class ReadFileInput(BaseModel):
    """Read a UTF-8 file with optional line offset and limit."""

    file_path: str = Field(..., description="Path relative to the working directory")
    offset: int = Field(default=0, ge=0, description="Line offset (0-based)")
    limit: int | None = Field(default=None, ge=1, description="Maximum number of lines")


class WriteFileInput(BaseModel):
    """Write UTF-8 content to a file, creating parent directories."""

    file_path: str = Field(..., description="Path relative to the working directory")
    content: str = Field(..., description="File content")


class EditFileInput(BaseModel):
    """Replace text in a file."""

    file_path: str = Field(..., description="Path relative to the working directory")
    old: str = Field(..., description="Text to replace")
    new: str = Field(..., description="Replacement text")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class ListFilesInput(BaseModel):
    """List files in a directory."""

    dir_path: str = Field(default=".", description="Directory relative to the working directory")
    recursive: bool = Field(default=False, description="Descend into subdirectories")


class SearchFilesInput(BaseModel):
    """Search file contents for a substring."""

    pattern: str = Field(..., description="Substring to look for")
    directory: str = Field(default=".", description="Directory to search")


class RunCommandInput(BaseModel):
    """Run a shell command in the working directory."""

    command: str = Field(..., description="Shell command")
    timeout_seconds: int = Field(default=30, ge=1, le=600, description="Timeout in seconds")


class WebSearchInput(BaseModel):
    """Search the web."""

    query: str = Field(..., description="Search query")
    limit: int = Field(default=3, ge=1, le=10, description="Maximum results")
    scrape: bool = Field(default=False, description="Fetch each result page as markdown")


class UrlExtractInput(BaseModel):
    """Fetch a URL and return its content."""

    url: str = Field(..., description="URL to fetch")
    formats: list[Literal["markdown", "html"]] = Field(
        default_factory=lambda: ["markdown"], description="Output formats"
    )


class GenerateUnitTestsInput(BaseModel):
    """Generate, run and repair Go unit tests for one source file."""

    file_path: str = Field(..., description="Go source file relative to the working directory")
    test_framework: Literal["testing", "testify"] = Field(default="testing", description="Go testing framework")
    coverage_target: float | None = Field(default=None, ge=0, le=100, description="Target coverage percentage")


@dataclass(frozen=True)
class SummaryField:
    """How one argument shows up in the compact tool-call line."""

    arg: str
    label: str | None = None
    style: SummaryStyle = "plain"
    max_length: int | None = None
    hide_when: Any = _SHOWN

    def render(self, value: Any) -> str | None:
        if self.hide_when is not _SHOWN and value == self.hide_when:
            return None
        if self.style == "flag":
            return (self.label or self.arg) if value is True else None
        if self.style == "list":
            if not isinstance(value, list):
                return None
            items = [str(item) for item in value if isinstance(item, str)]
            if not items:
                return None
            return f"{self.label or self.arg}: [{','.join(items)}]"
        if isinstance(value, bool) or value is None:
            return None
        if self.style == "percent":
            if not isinstance(value, int | float):
                return None
            return f"{self.label or self.arg}: {int(value)}%"
        text = str(int(value)) if isinstance(value, float) and value.is_integer() else str(value)
        if self.max_length is not None and len(text) > self.max_length:
            text = text[: self.max_length] + "..."
        if self.style == "quoted":
            text = f'"{text}"'
        return f"{self.label or self.arg}: {text}"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    model: type[BaseModel]
    summary: tuple[SummaryField, ...] = field(default_factory=tuple)


class ToolCatalog:
    """Specs keyed by tool name."""

    def __init__(self, specs: Iterable[ToolSpec] | None = None) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        self._specs[spec.name] = spec

    def spec(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def specs(self) -> list[ToolSpec]:
        return sorted(self._specs.values(), key=lambda spec: spec.name)


_FILE = SummaryField("file_path", "file")


def _all_specs() -> list[ToolSpec]:
    return [
        ToolSpec("read_file", "Read file contents", ReadFileInput, (_FILE,)),
        ToolSpec("write_file", "Write file contents", WriteFileInput, (_FILE,)),
        ToolSpec("edit_file", "Edit file contents", EditFileInput, (_FILE,)),
        ToolSpec(
            "list_files",
            "List files in a directory",
            ListFilesInput,
            (SummaryField("dir_path", "dir"), SummaryField("recursive", style="flag")),
        ),
        ToolSpec(
            "search_files",
            "Search file contents",
            SearchFilesInput,
            (SummaryField("pattern", style="quoted"), SummaryField("directory", "in", hide_when=".")),
        ),
        ToolSpec(
            "run_command",
            "Run a shell command",
            RunCommandInput,
            (SummaryField("command", "cmd", max_length=50),),
        ),
        ToolSpec(
            "web_search",
            "Search the web",
            WebSearchInput,
            (
                SummaryField("query", style="quoted"),
                SummaryField("limit", hide_when=3),
                SummaryField("scrape", "scrape: true", style="flag"),
            ),
        ),
        ToolSpec(
            "url_extract",
            "Fetch a URL as markdown or html",
            UrlExtractInput,
            (SummaryField("url", max_length=50), SummaryField("formats", style="list")),
        ),
        ToolSpec(
            "generate_unit_tests",
            "Generate and verify Go unit tests for a source file",
            GenerateUnitTestsInput,
            (
                _FILE,
                SummaryField("test_framework", "framework", hide_when="testing"),
                SummaryField("coverage_target", "coverage", style="percent"),
            ),
        ),
    ]


def build_tool_catalog() -> ToolCatalog:
    return ToolCatalog(_all_specs())
