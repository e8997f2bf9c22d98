import pytest

from testsmith.errors import ServiceError
from testsmith.tools.testgen.similarity import Neighbor
from testsmith.tools.testgen.writer import (
    GenerationRequest,
    TestWriter,
    assemble_test_file,
    build_prompt,
    placeholder_artifact,
    source_package,
    strip_code_fences,
)

SOURCE = "package calc\n\nfunc Add(a, b int) int { return a + b }\n"


class _Backend:
    def __init__(self, reply: str | Exception) -> None:
        self.reply = reply
        self.calls: list[dict[str, str]] = []

    async def complete(self, *, system_prompt: str, prompt: str) -> str:
        self.calls.append({"system_prompt": system_prompt, "prompt": prompt})
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def test_strip_code_fences() -> None:
    assert strip_code_fences("```go\nfunc TestA(t *testing.T) {}\n```") == "func TestA(t *testing.T) {}"
    assert strip_code_fences("```\nbody\n```\n") == "body"
    assert strip_code_fences("plain body") == "plain body"


def test_source_package_defaults_to_main() -> None:
    assert source_package(SOURCE) == "calc"
    assert source_package("// no package clause") == "main"


def test_assemble_prefixes_boilerplate_and_drops_model_package_clause() -> None:
    artifact = assemble_test_file("```go\npackage wrong\n\nfunc TestAdd(t *testing.T) {}\n```", "testify", "calc")

    assert artifact.startswith('package calc\n\nimport (\n\t"testing"\n\n\t"github.com/stretchr/testify/assert"\n)\n\n')
    assert "package wrong" not in artifact
    assert artifact.endswith("func TestAdd(t *testing.T) {}\n")


def test_placeholder_is_a_single_skipped_test() -> None:
    artifact = placeholder_artifact("model_timeout: no response\nwithin 90s", "testing", "calc")

    assert artifact.startswith("package calc\n")
    assert artifact.count("func Test") == 1
    assert "func TestPlaceholder(t *testing.T)" in artifact
    assert "t.Skip(" in artifact
    assert "// Error: model_timeout: no response within 90s" in artifact


def test_regeneration_prompt_carries_error_and_guidance() -> None:
    request = GenerationRequest(
        source=SOURCE,
        neighbors=(Neighbor(source_location="x.go#1", content="func TestX(t *testing.T) {}", distance=0.25),),
        prior_error="undefined: Multiply",
        attempt_number=2,
    )
    prompt = build_prompt(request)

    assert "attempt 2" in prompt
    assert "undefined: Multiply" in prompt
    assert "undefined function/variable references" in prompt
    assert "similarity: 0.750" in prompt


@pytest.mark.asyncio
async def test_draft_assembles_backend_output() -> None:
    backend = _Backend("```go\nfunc TestAdd(t *testing.T) {}\n```")
    draft = await TestWriter(backend).draft(GenerationRequest(source=SOURCE, coverage_target=95))

    assert not draft.fallback
    assert draft.artifact.startswith("package calc\n")
    assert "func TestAdd" in draft.artifact
    assert "95% test coverage" in backend.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_draft_falls_back_on_backend_failure() -> None:
    draft = await TestWriter(_Backend(ServiceError("model_call_error: 503"))).draft(GenerationRequest(source=SOURCE))

    assert draft.fallback
    assert draft.error == "model_call_error: 503"
    assert "TestPlaceholder" in draft.artifact


@pytest.mark.asyncio
async def test_draft_falls_back_on_empty_reply() -> None:
    draft = await TestWriter(_Backend("```go\n```")).draft(GenerationRequest(source=SOURCE))
    assert draft.fallback
    assert draft.error == "backend returned an empty response"
