"""Results of running the Gren compiler and parsing its JSON report."""

from __future__ import annotations

import enum
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_U32_MAX = 2**32 - 1


class Severity(str, enum.Enum):
    """Severity of a message reported by the compiler."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class DiagnosticLocation:
    """One-based line and column of a compiler message, with an optional end."""

    line: int
    column: int
    end_line: Optional[int] = None
    end_column: Optional[int] = None


@dataclass
class CompilerDiagnostic:
    """A compiler message tied to a file location, when one is known."""

    severity: Severity
    title: str
    message: str
    path: Optional[Path] = None
    location: Optional[DiagnosticLocation] = None


@dataclass
class GlobalError:
    """A compiler error that is not tied to a place in a source file."""

    severity: Severity
    title: str
    message: str
    path: Optional[Path] = None


@dataclass
class CompilationResult:
    """Outcome of one compiler run."""

    success: bool
    diagnostics: list[CompilerDiagnostic]
    global_errors: list[GlobalError]
    content_hash: int
    timestamp: float = field(default_factory=time.time)


class _MalformedReport(ValueError):
    """The compiler's JSON does not have the expected shape."""


def _require(mapping: dict[str, Any], key: str, kind: type) -> Any:
    if key not in mapping:
        raise _MalformedReport(f"missing field `{key}`")
    value = mapping[key]
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise _MalformedReport(f"field `{key}` has the wrong type")
    return value


def _require_present(mapping: dict[str, Any], key: str) -> Any:
    if key not in mapping:
        raise _MalformedReport(f"missing field `{key}`")
    return mapping[key]


def _uint(mapping: dict[str, Any], key: str) -> int:
    value = _require(mapping, key, int)
    if not 0 <= value <= _U32_MAX:
        raise _MalformedReport(f"field `{key}` is out of range")
    return value


def _position(region: dict[str, Any], key: str) -> tuple[int, int]:
    point = _require(region, key, dict)
    return _uint(point, "line"), _uint(point, "column")


def _problem_diagnostic(path: str, problem: Any) -> CompilerDiagnostic:
    if not isinstance(problem, dict):
        raise _MalformedReport("problem is not an object")
    title = _require(problem, "title", str)
    region = _require(problem, "region", dict)
    start_line, start_column = _position(region, "start")
    end_line, end_column = _position(region, "end")
    message = _require_present(problem, "message")
    return CompilerDiagnostic(
        severity=Severity.ERROR,
        title=title,
        message=extract_message_text(message),
        path=Path(path),
        location=DiagnosticLocation(start_line, start_column, end_line, end_column),
    )


def _compile_errors(report: dict[str, Any]) -> list[CompilerDiagnostic]:
    diagnostics: list[CompilerDiagnostic] = []
    for error in _require(report, "errors", list):
        if not isinstance(error, dict):
            raise _MalformedReport("error entry is not an object")
        path = _require(error, "path", str)
        _require(error, "name", str)
        problems = _require(error, "problems", list)
        diagnostics.extend(_problem_diagnostic(path, problem) for problem in problems)
    return diagnostics


def _global_error(report: dict[str, Any]) -> GlobalError:
    path = _require(report, "path", str)
    title = _require(report, "title", str)
    message = _require_present(report, "message")
    logger.info("global compiler error detected: %s", title)
    return GlobalError(
        severity=Severity.ERROR,
        title=title,
        message=extract_message_text(message),
        path=Path(path) if path else None,
    )


def _interpret(report: Any) -> tuple[list[CompilerDiagnostic], list[GlobalError]]:
    if not isinstance(report, dict):
        raise _MalformedReport("report is not an object")
    kind = _require(report, "type", str)
    if kind == "compile-errors":
        return _compile_errors(report), []
    if kind == "error":
        return [], [_global_error(report)]
    logger.warning("unknown compiler output format, ignoring")
    return [], []


def parse_compiler_output(
    output: str,
) -> tuple[list[CompilerDiagnostic], list[GlobalError]]:
    """Parse the JSON report of ``gren make --report=json``.

    Output that is not a recognisable report becomes a single plain-text
    diagnostic holding the whole output.
    """
    if not output.strip():
        return [], []
    try:
        return _interpret(json.loads(output))
    except ValueError as exc:
        logger.warning("failed to parse compiler output as JSON: %s", exc)
        logger.debug("compiler output was: %s", output)
        return [
            CompilerDiagnostic(
                severity=Severity.ERROR,
                title="Compiler Error",
                message=output,
            )
        ], []


def _json_text(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def extract_message_text(message: Any) -> str:
    """Flatten a compiler message, plain or a list of styled chunks, into text."""
    if isinstance(message, str):
        return message
    if isinstance(message, list):
        parts = []
        for chunk in message:
            if isinstance(chunk, str):
                parts.append(chunk)
            elif isinstance(chunk, dict):
                text = chunk.get("string")
                parts.append(text if isinstance(text, str) else "")
            else:
                parts.append(_json_text(chunk))
        return "".join(parts)
    return _json_text(message)