"""Draft Go test files through the generative text backend."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from loguru import logger

from testsmith.errors import ServiceError
from testsmith.tools.testgen.diagnosis import guidance_for
from testsmith.tools.testgen.similarity import Neighbor

TestFramework = Literal["testing", "testify"]
DEFAULT_COVERAGE_TARGET = 80
PACKAGE_RE = re.compile(r"^\s*package\s+([A-Za-z_][A-Za-z0-9_]*)", re.MULTILINE)
FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")
PACKAGE_LINE_RE = re.compile(r"^\s*package\s+\w+\s*$", re.MULTILINE)

SYSTEM_PROMPT = """You are an expert Go developer. Generate comprehensive unit tests for the provided Go code.

Requirements:
- Use the {framework} testing framework
- Target {coverage}% test coverage
- Cover edge cases, error conditions and normal operation
- Use the similar code examples as reference for testing patterns
- Name test functions TestFunctionName
- Prefer table-driven tests where appropriate

Output ONLY raw Go test functions. Do not include markdown fences, explanations,
package declarations or import statements; those are added automatically."""


class TextBackend(Protocol):
    async def complete(self, *, system_prompt: str, prompt: str) -> str: ...


@dataclass(frozen=True)
class GenerationRequest:
    source: str
    framework: TestFramework = "testing"
    coverage_target: float | None = None
    neighbors: Sequence[Neighbor] = field(default_factory=tuple)
    prior_error: str | None = None
    attempt_number: int = 1

    @property
    def package(self) -> str:
        return source_package(self.source)


@dataclass(frozen=True)
class Draft:
    artifact: str
    fallback: bool = False
    error: str | None = None


def source_package(source: str) -> str:
    match = PACKAGE_RE.search(source)
    return match.group(1) if match else "main"


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = FENCE_OPEN_RE.sub("", cleaned, count=1)
    cleaned = FENCE_CLOSE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def import_block(framework: TestFramework) -> str:
    if framework == "testify":
        return 'import (\n\t"testing"\n\n\t"github.com/stretchr/testify/assert"\n)'
    return 'import (\n\t"testing"\n)'


def assemble_test_file(body: str, framework: TestFramework, package: str = "main") -> str:
    """Prefix the package clause and import block to a generated body."""
    cleaned = PACKAGE_LINE_RE.sub("", strip_code_fences(body)).strip()
    return f"package {package}\n\n{import_block(framework)}\n\n{cleaned}\n"


def placeholder_artifact(reason: str, framework: TestFramework, package: str = "main") -> str:
    """A compilable test file with one skipped test naming the failure."""
    comment = " ".join(reason.split()) or "unknown error"
    body = (
        "// Test generation failed, using placeholder template\n"
        f"// Error: {comment}\n\n"
        "func TestPlaceholder(t *testing.T) {\n"
        '\tt.Skip("test generation failed - please implement tests manually")\n'
        "}"
    )
    if framework == "testify":
        body += "\n\nvar _ = assert.True"
    return assemble_test_file(body, framework, package)


def render_examples(neighbors: Sequence[Neighbor]) -> str:
    if not neighbors:
        return "(no similar examples found)"
    return "\n\n".join(
        f"Example {index} (similarity: {neighbor.similarity:.3f}, {neighbor.source_location}):\n{neighbor.content}"
        for index, neighbor in enumerate(neighbors, start=1)
    )


def build_prompt(request: GenerationRequest) -> str:
    parts = [
        f"Generate unit tests for this Go code (attempt {request.attempt_number}):",
        f"```go\n{request.source}\n```",
        f"Similar code examples from knowledge base:\n```\n{render_examples(request.neighbors)}\n```",
    ]
    if request.prior_error:
        parts.append(f"Previous test attempt failed with these errors:\n{request.prior_error}")
        parts.append(guidance_for(request.prior_error))
        parts.append(f"Fix the issues and generate working unit tests using the {request.framework} framework.")
    else:
        parts.append(f"Generate comprehensive unit tests using the {request.framework} framework.")
    return "\n\n".join(parts)


class TestWriter:
    """Turn a generation request into a complete test file."""

    __test__ = False

    def __init__(self, backend: TextBackend) -> None:
        self._backend = backend

    async def draft(self, request: GenerationRequest) -> Draft:
        coverage = int(request.coverage_target) if request.coverage_target is not None else DEFAULT_COVERAGE_TARGET
        system_prompt = SYSTEM_PROMPT.format(framework=request.framework, coverage=coverage)
        try:
            body = await self._backend.complete(system_prompt=system_prompt, prompt=build_prompt(request))
        except ServiceError as exc:
            logger.warning("testgen.draft.fallback attempt={} error={}", request.attempt_number, exc)
            return Draft(
                artifact=placeholder_artifact(str(exc), request.framework, request.package),
                fallback=True,
                error=str(exc),
            )
        if not strip_code_fences(body):
            reason = "backend returned an empty response"
            logger.warning("testgen.draft.fallback attempt={} error={}", request.attempt_number, reason)
            return Draft(
                artifact=placeholder_artifact(reason, request.framework, request.package), fallback=True, error=reason
            )
        return Draft(artifact=assemble_test_file(body, request.framework, request.package))
