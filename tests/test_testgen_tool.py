from pathlib import Path

import pytest

from testsmith.config import Settings
from testsmith.errors import ServiceError
from testsmith.protocol.envelope import MessageType
from testsmith.tools.registry import ToolRegistry
from testsmith.tools.testgen.diagnosis import RunOutcome
from testsmith.tools.testgen.runner import GoTestRunner
from testsmith.tools.testgen.similarity import Neighbor
from testsmith.tools.testgen.tool import register_test_generation_tool

SOURCE = "package calc\n\nfunc Add(a, b int) int { return a + b }\n"


class _Embedder:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.inputs: list[str] = []

    async def embed(self, content: str) -> list[float]:
        self.inputs.append(content)
        if self.error is not None:
            raise self.error
        return [0.1, 0.2, 0.3]


class _Index:
    def __init__(self) -> None:
        self.queries: list[tuple[list[float], int]] = []

    async def nearest(self, embedding: list[float], k: int = 10) -> list[Neighbor]:
        self.queries.append((list(embedding), k))
        return [Neighbor(source_location="add.go#1", content="func TestAdd(t *testing.T) {}", distance=0.1)]


class _Backend:
    async def complete(self, *, system_prompt: str, prompt: str) -> str:
        _ = (system_prompt, prompt)
        return "func TestAdd(t *testing.T) {}"


class _PassingRunner(GoTestRunner):
    async def run(self, test_path: Path) -> RunOutcome:
        return RunOutcome(command="go test -v ./pkg", returncode=0, stdout="PASS\nok  \tcalc\n", stderr="")


def _registry(tmp_path: Path, settings: Settings, recorder, embedder=None, index=None) -> ToolRegistry:
    registry = ToolRegistry(recorder)
    register_test_generation_tool(
        registry,
        workspace=tmp_path,
        settings=settings,
        emit=recorder,
        backend_factory=_Backend,
        embedder=embedder or _Embedder(),
        index=index or _Index(),
        runner=_PassingRunner(tmp_path),
    )
    return registry


def _write_source(tmp_path: Path) -> Path:
    source = tmp_path / "pkg" / "calc.go"
    source.parent.mkdir()
    source.write_text(SOURCE, encoding="utf-8")
    return source


@pytest.mark.asyncio
async def test_generates_and_verifies_tests(tmp_path: Path, settings: Settings, recorder) -> None:
    _write_source(tmp_path)
    index = _Index()
    registry = _registry(tmp_path, settings, recorder, index=index)

    result = await registry.execute("generate_unit_tests", {"file_path": "pkg/calc.go"})

    assert result.ok, result.error
    output = result.output
    assert output["test_file_path"] == "pkg/calc_test.go"
    assert output["test_framework"] == "testing"
    assert output["test_results"] == {"success": True, "attemptNumber": 1, "output": "PASS\nok  \tcalc\n"}
    artifact = (tmp_path / "pkg" / "calc_test.go").read_text(encoding="utf-8")
    assert artifact.startswith("package calc\n")
    assert output["size"] == len(artifact)
    assert index.queries == [([0.1, 0.2, 0.3], 10)]
    tool_names = [envelope.data["toolName"] for envelope in recorder.of_type(MessageType.TOOL_CALL)]
    assert tool_names == ["generate_unit_tests", "run_command"]
    assert recorder.statuses()[-1] == "tool_result"


@pytest.mark.asyncio
async def test_existing_test_file_triggers_overwrite_notice(tmp_path: Path, settings: Settings, recorder) -> None:
    _write_source(tmp_path)
    (tmp_path / "pkg" / "calc_test.go").write_text("package calc\n// old\n", encoding="utf-8")
    registry = _registry(tmp_path, settings, recorder)

    result = await registry.execute("generate_unit_tests", {"file_path": "pkg/calc.go", "test_framework": "testify"})

    assert result.ok
    notices = recorder.messages("notice")
    assert notices[0] == "Test file pkg/calc_test.go already exists and will be overwritten"
    assert "// old" not in (tmp_path / "pkg" / "calc_test.go").read_text(encoding="utf-8")


@pytest.mark.parametrize(
    ("file_path", "expected"),
    [
        ("missing.go", "file not found: missing.go"),
        ("pkg", "path is not a file: pkg"),
        ("pkg/notes.txt", "file is not a Go file: pkg/notes.txt"),
        ("pkg/calc_test.go", "file is already a Go test file: pkg/calc_test.go"),
    ],
)
@pytest.mark.asyncio
async def test_rejects_invalid_sources(
    tmp_path: Path, settings: Settings, recorder, file_path: str, expected: str
) -> None:
    _write_source(tmp_path)
    (tmp_path / "pkg" / "notes.txt").write_text("hi", encoding="utf-8")
    (tmp_path / "pkg" / "calc_test.go").write_text("package calc\n", encoding="utf-8")
    embedder = _Embedder()
    registry = _registry(tmp_path, settings, recorder, embedder=embedder)

    result = await registry.execute("generate_unit_tests", {"file_path": file_path})

    assert not result.ok
    assert result.error == expected
    assert embedder.inputs == []


@pytest.mark.asyncio
async def test_embedding_failure_aborts_without_artifact(tmp_path: Path, settings: Settings, recorder) -> None:
    _write_source(tmp_path)
    registry = _registry(tmp_path, settings, recorder, embedder=_Embedder(ServiceError("failed to generate embedding")))

    result = await registry.execute("generate_unit_tests", {"file_path": "pkg/calc.go"})

    assert result.error == "failed to generate embedding"
    assert not (tmp_path / "pkg" / "calc_test.go").exists()


@pytest.mark.asyncio
async def test_missing_service_configuration_fails_on_first_use(tmp_path: Path, settings: Settings, recorder) -> None:
    _write_source(tmp_path)
    registry = ToolRegistry(recorder)
    register_test_generation_tool(
        registry, workspace=tmp_path, settings=settings, emit=recorder, backend_factory=_Backend
    )

    result = await registry.execute("generate_unit_tests", {"file_path": "pkg/calc.go"})

    assert result.error == "TESTSMITH_EMBEDDING_SERVICE_URL is not set"
