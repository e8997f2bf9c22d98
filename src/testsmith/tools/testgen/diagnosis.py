"""Classify failed test runs and turn them into regeneration guidance."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

COMPILE_ERROR_MARKERS = (
    "undefined:",
    "undefined reference",
    "redeclared",
    "unknown field",
    "too many errors",
    "syntax error",
)
PASS_LINE_RE = re.compile(r"^(PASS|ok\s)", re.MULTILINE)


class GuidanceCategory(StrEnum):
    DUPLICATE_DECLARATION = "duplicate_declaration"
    UNDEFINED_REFERENCE = "undefined_reference"
    FIELD_MISMATCH = "field_mismatch"
    SYNTAX_ERROR = "syntax_error"
    GENERIC = "generic"


GUIDANCE: dict[GuidanceCategory, str] = {
    GuidanceCategory.DUPLICATE_DECLARATION: (
        "IMPORTANT: Fix duplicate declarations. Make sure each import and identifier is declared only once."
    ),
    GuidanceCategory.UNDEFINED_REFERENCE: (
        "IMPORTANT: Fix undefined function/variable references. "
        "Only use functions and variables that exist in the original code."
    ),
    GuidanceCategory.FIELD_MISMATCH: (
        "IMPORTANT: Fix struct field names. Use the exact field names from the original struct definitions."
    ),
    GuidanceCategory.SYNTAX_ERROR: "IMPORTANT: Fix Go syntax errors. Ensure the code is valid, gofmt-clean Go.",
    GuidanceCategory.GENERIC: (
        "IMPORTANT: Fix all compilation errors and failing assertions so the tests compile and pass."
    ),
}

# First match wins.
_CLASSIFIERS: tuple[tuple[str, GuidanceCategory], ...] = (
    ("redeclared", GuidanceCategory.DUPLICATE_DECLARATION),
    ("undefined:", GuidanceCategory.UNDEFINED_REFERENCE),
    ("unknown field", GuidanceCategory.FIELD_MISMATCH),
    ("syntax error", GuidanceCategory.SYNTAX_ERROR),
)


def classify_failure(error_text: str) -> GuidanceCategory:
    for marker, category in _CLASSIFIERS:
        if marker in error_text:
            return category
    return GuidanceCategory.GENERIC


def guidance_for(error_text: str) -> str:
    return GUIDANCE[classify_failure(error_text)]


@dataclass(frozen=True)
class RunOutcome:
    """Captured result of one ``go test`` invocation."""

    command: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def combined(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


def has_compile_error(text: str) -> bool:
    return any(marker in text for marker in COMPILE_ERROR_MARKERS)


def is_passing(outcome: RunOutcome) -> bool:
    if outcome.timed_out or outcome.returncode != 0:
        return False
    if has_compile_error(outcome.stdout) or has_compile_error(outcome.stderr):
        return False
    return bool(PASS_LINE_RE.search(outcome.stdout))


def failure_summary(outcome: RunOutcome) -> str:
    if outcome.timed_out:
        detail = outcome.combined
        return f"timed out: {outcome.command}" + (f"\n{detail}" if detail else "")
    return f"tests failed (exit={outcome.returncode}): {outcome.combined or '(no output)'}"
