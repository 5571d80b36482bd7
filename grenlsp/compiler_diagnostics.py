"""Conversion of Gren compiler messages into protocol diagnostics."""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

from grenlsp.compiler_output import CompilerDiagnostic, Severity
from grenlsp.protocol import (
    Diagnostic,
    DiagnosticSeverity,
    Position,
    Range,
    path_to_uri,
)

_U32_MAX = 2**32 - 1

_LINE_COLUMN_WORDS = re.compile(r"line (\d+),?\s*column (\d+)")
_LINE_COLUMN_PAIR = re.compile(r"(\d+):(\d+)")

_SEVERITIES = {
    Severity.ERROR: DiagnosticSeverity.ERROR,
    Severity.WARNING: DiagnosticSeverity.WARNING,
    Severity.INFO: DiagnosticSeverity.INFORMATION,
}

_DEFAULT_RANGE = Range(Position(0, 0), Position(0, 1))


def compiler_diagnostics_to_lsp(
    compiler_diagnostics: Iterable[CompilerDiagnostic], uri: str
) -> list[Diagnostic]:
    """Convert the compiler messages that belong to ``uri`` into diagnostics."""
    converted = (compiler_diagnostic_to_lsp(diag, uri) for diag in compiler_diagnostics)
    return [diagnostic for diagnostic in converted if diagnostic is not None]


def compiler_diagnostic_to_lsp(
    diag: CompilerDiagnostic, uri: str
) -> Optional[Diagnostic]:
    """Convert one compiler message, or return None if it is for another file."""
    if diag.path is not None:
        try:
            diag_uri = path_to_uri(diag.path)
        except ValueError:
            diag_uri = None
        if diag_uri is not None and diag_uri != uri:
            return None

    range_ = extract_range_from_diagnostic(diag) or _DEFAULT_RANGE
    return Diagnostic(
        range=range_,
        severity=_SEVERITIES[diag.severity],
        source="gren",
        message=format_diagnostic_message(diag),
    )


def _one_based_to_zero(value: int) -> int:
    return max(value - 1, 0)


def extract_range_from_diagnostic(diag: CompilerDiagnostic) -> Optional[Range]:
    """Range of a compiler message, from its location or else from its text."""
    location = diag.location
    if location is not None:
        end_line = location.end_line if location.end_line is not None else location.line
        end_column = (
            location.end_column
            if location.end_column is not None
            else location.column + 1
        )
        return Range(
            Position(_one_based_to_zero(location.line), _one_based_to_zero(location.column)),
            Position(_one_based_to_zero(end_line), _one_based_to_zero(end_column)),
        )
    return parse_location_from_message(diag.message)


def _parse_u32(text: str) -> Optional[int]:
    if not text.isascii() or not text.isdigit():
        return None
    value = int(text)
    return value if value <= _U32_MAX else None


def parse_location_from_message(message: str) -> Optional[Range]:
    """Find a "line X, column Y" or "X:Y" location in a message.

    Both numbers are one-based; the result is a one-character zero-based range.
    """
    for pattern in (_LINE_COLUMN_WORDS, _LINE_COLUMN_PAIR):
        match = pattern.search(message)
        if match is None:
            continue
        line, column = _parse_u32(match.group(1)), _parse_u32(match.group(2))
        if line is None or column is None:
            continue
        start_line = _one_based_to_zero(line)
        return Range(
            Position(start_line, _one_based_to_zero(column)),
            Position(start_line, column),
        )
    return None


def format_diagnostic_message(diag: CompilerDiagnostic) -> str:
    """Join title and message, leaving out whichever is empty."""
    if not diag.title:
        return diag.message
    if not diag.message:
        return diag.title
    return f"{diag.title}: {diag.message}"


def merge_diagnostics(
    compiler_diagnostics: Iterable[Diagnostic],
    syntax_diagnostics: Iterable[Diagnostic],
) -> list[Diagnostic]:
    """Combine diagnostics, syntax ones first.

    A compiler diagnostic is dropped when it overlaps an error already kept.
    """
    merged = list(syntax_diagnostics)
    for compiler_diag in compiler_diagnostics:
        blocked = any(
            kept.severity == DiagnosticSeverity.ERROR
            and ranges_overlap(kept.range, compiler_diag.range)
            for kept in merged
        )
        if not blocked:
            merged.append(compiler_diag)
    return merged


def ranges_overlap(a: Range, b: Range) -> bool:
    """Whether two ranges share a position, end points included."""
    return a.start <= b.end and b.start <= a.end


def group_diagnostics_by_uri(
    compiler_diagnostics: Mapping[str, Iterable[CompilerDiagnostic]],
) -> dict[str, list[Diagnostic]]:
    """Convert compiler messages grouped by document URI."""
    return {
        uri: compiler_diagnostics_to_lsp(diags, uri)
        for uri, diags in compiler_diagnostics.items()
    }