"""Tool execution engine: one registry entry per catalog variant."""

from __future__ import annotations

import builtins
import inspect
import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from republic import Tool

from testsmith.errors import TestsmithError
from testsmith.protocol.envelope import STATUS_TOOL_ERROR, STATUS_TOOL_RESULT, response_envelope, tool_call_envelope
from testsmith.protocol.framing import Emit
from testsmith.tools.catalog import ToolCatalog, ToolSpec, build_tool_catalog

ToolHandler = Callable[[Any], Any]
PREVIEW_MAX_LEN = 240


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


def _preview(text: str) -> str:
    preview = " ".join(text.split())
    return _shorten_text(preview, width=PREVIEW_MAX_LEN) if preview else "(empty)"


@dataclass(frozen=True)
class ToolDescriptor:
    """Catalog spec bound to its runtime handler."""

    spec: ToolSpec
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True)
class ToolResult:
    """Structured outcome of one tool invocation."""

    name: str
    ok: bool
    output: Any = None
    error: str | None = None

    def render(self) -> str:
        if not self.ok:
            return f"error: {self.error}"
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, ensure_ascii=False, default=str)


class ToolRegistry:
    """Validate arguments, announce, execute and report every tool call."""

    def __init__(self, emit: Emit, catalog: ToolCatalog | None = None) -> None:
        self._emit = emit
        self._catalog = catalog or build_tool_catalog()
        self._tools: dict[str, ToolDescriptor] = {}

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    def register(self, name: str) -> Callable[[ToolHandler], ToolHandler]:
        spec = self._catalog.spec(name)
        if spec is None:
            raise KeyError(f"tool is not declared in the catalog: {name}")

        def decorator(handler: ToolHandler) -> ToolHandler:
            self._tools[name] = ToolDescriptor(spec=spec, handler=handler)
            return handler

        return decorator

    def has(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def descriptors(self) -> builtins.list[ToolDescriptor]:
        return sorted(self._tools.values(), key=lambda item: item.name)

    def model_tools(self) -> builtins.list[Tool]:
        """Expose every registered tool to the model; calls route back through ``execute``."""
        tools: builtins.list[Tool] = []
        for descriptor in self.descriptors():
            tools.append(
                Tool(
                    name=descriptor.name,
                    description=descriptor.spec.description,
                    parameters=descriptor.spec.model.model_json_schema(),
                    handler=self._model_handler(descriptor.name),
                )
            )
        return tools

    def _model_handler(self, name: str) -> Callable[..., Any]:
        # Arguments stay raw; ``execute`` owns validation.
        async def _handler(**kwargs: Any) -> str:
            result = await self.execute(name, kwargs)
            return result.render()

        return _handler

    def _log_tool_call(self, name: str, kwargs: Mapping[str, Any]) -> None:
        params: list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            params.append(f"{key}={_shorten_text(rendered, width=30)}")
        logger.info("tool.call.start name={} {{ {} }}", name, ", ".join(params))

    async def execute(self, name: str, args: Mapping[str, Any] | None = None) -> ToolResult:
        """Run one tool; failures come back as a ``ToolResult`` instead of raising."""
        raw_args = dict(args or {})
        self._emit(tool_call_envelope(name, raw_args))
        self._log_tool_call(name, raw_args)

        start = time.monotonic()
        try:
            result = await self._run(name, raw_args)
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", name, duration * 1000)

        if result.ok:
            self._emit(response_envelope(status=STATUS_TOOL_RESULT, message=_preview(result.render()), tool=name))
        else:
            self._emit(response_envelope(status=STATUS_TOOL_ERROR, message=result.error, tool=name))
        return result

    async def _run(self, name: str, raw_args: dict[str, Any]) -> ToolResult:
        descriptor = self.get(name)
        if descriptor is None:
            return ToolResult(name=name, ok=False, error=f"unknown tool: {name}")

        try:
            params = descriptor.spec.model.model_validate(raw_args)
        except PydanticValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or '(root)'}: {error['msg']}" for error in exc.errors()
            )
            return ToolResult(name=name, ok=False, error=f"invalid arguments for {name}: {details}")

        try:
            output = descriptor.handler(params)
            if inspect.isawaitable(output):
                output = await output
        except (TestsmithError, OSError) as exc:
            logger.warning("tool.call.failed name={} error={}", name, exc)
            return ToolResult(name=name, ok=False, error=str(exc))
        except Exception as exc:
            logger.exception("tool.call.error name={}", name)
            return ToolResult(name=name, ok=False, error=f"{type(exc).__name__}: {exc}")
        return ToolResult(name=name, ok=True, output=output)
