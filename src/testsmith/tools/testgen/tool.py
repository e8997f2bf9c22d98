"""The ``generate_unit_tests`` tool."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from testsmith.config import Settings
from testsmith.errors import ValidationError
from testsmith.protocol.envelope import STATUS_NOTICE, response_envelope
from testsmith.protocol.framing import Emit
from testsmith.tools.builtin import resolve_path
from testsmith.tools.catalog import GenerateUnitTestsInput
from testsmith.tools.registry import ToolRegistry
from testsmith.tools.testgen.embedding import EmbeddingClient
from testsmith.tools.testgen.loop import GenerateVerifyRetryLoop
from testsmith.tools.testgen.runner import GoTestRunner
from testsmith.tools.testgen.similarity import SimilarityIndex
from testsmith.tools.testgen.writer import GenerationRequest, TestWriter, TextBackend


def companion_test_path(source_path: Path) -> Path:
    return source_path.with_name(source_path.name.removesuffix(".go") + "_test.go")


def validate_source(workspace: Path, raw_path: str) -> Path:
    source_path = resolve_path(workspace, raw_path)
    if not source_path.exists():
        raise ValidationError(f"file not found: {raw_path}")
    if not source_path.is_file():
        raise ValidationError(f"path is not a file: {raw_path}")
    if source_path.suffix != ".go":
        raise ValidationError(f"file is not a Go file: {raw_path}")
    if source_path.name.endswith("_test.go"):
        raise ValidationError(f"file is already a Go test file: {raw_path}")
    return source_path


class _Collaborators:
    """Build external clients on first use so missing settings fail the tool call, not startup."""

    def __init__(
        self,
        settings: Settings,
        workspace: Path,
        backend_factory: Callable[[], TextBackend],
        embedder: EmbeddingClient | None,
        index: SimilarityIndex | None,
        runner: GoTestRunner | None,
    ) -> None:
        self._settings = settings
        self._workspace = workspace
        self._backend_factory = backend_factory
        self._embedder = embedder
        self._index = index
        self._runner = runner
        self._writer: TestWriter | None = None

    @property
    def embedder(self) -> EmbeddingClient:
        if self._embedder is None:
            self._embedder = EmbeddingClient.from_settings(self._settings)
        return self._embedder

    @property
    def index(self) -> SimilarityIndex:
        if self._index is None:
            self._index = SimilarityIndex.from_settings(self._settings)
        return self._index

    @property
    def runner(self) -> GoTestRunner:
        if self._runner is None:
            self._runner = GoTestRunner.from_settings(self._settings, self._workspace)
        return self._runner

    @property
    def writer(self) -> TestWriter:
        if self._writer is None:
            self._writer = TestWriter(self._backend_factory())
        return self._writer


def register_test_generation_tool(
    registry: ToolRegistry,
    *,
    workspace: Path,
    settings: Settings,
    emit: Emit,
    backend_factory: Callable[[], TextBackend],
    embedder: EmbeddingClient | None = None,
    index: SimilarityIndex | None = None,
    runner: GoTestRunner | None = None,
) -> None:
    collaborators = _Collaborators(settings, workspace, backend_factory, embedder, index, runner)

    @registry.register("generate_unit_tests")
    async def generate_unit_tests(params: GenerateUnitTestsInput) -> dict[str, Any]:
        """Generate Go tests for one source file and iterate until they pass."""
        source_path = validate_source(workspace, params.file_path)
        source = source_path.read_text(encoding="utf-8")

        embedding = await collaborators.embedder.embed(source)
        neighbors = await collaborators.index.nearest(embedding, k=settings.neighbor_limit)
        writer = collaborators.writer
        loop = GenerateVerifyRetryLoop(
            writer=writer, runner=collaborators.runner, emit=emit, max_attempts=settings.max_test_attempts
        )

        test_path = companion_test_path(source_path)
        test_file = test_path.relative_to(workspace).as_posix() if test_path.is_relative_to(workspace) else str(test_path)
        if test_path.exists():
            logger.warning("testgen.overwrite path={}", test_path)
            emit(
                response_envelope(
                    status=STATUS_NOTICE,
                    message=f"Test file {test_file} already exists and will be overwritten",
                    operation="overwrite_test_file",
                    filePath=test_file,
                )
            )

        request = GenerationRequest(
            source=source,
            framework=params.test_framework,
            coverage_target=params.coverage_target,
            neighbors=tuple(neighbors),
        )
        result = await loop.run(request, test_path)
        return {
            "file_path": params.file_path,
            "test_file_path": test_file,
            "test_framework": params.test_framework,
            "size": len(result.artifact),
            "created": datetime.now(UTC).isoformat(),
            "test_results": result.to_payload(),
        }
