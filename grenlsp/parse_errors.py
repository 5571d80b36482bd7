"""Syntax errors from the Gren parse tree and their conversion to diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional

from grenlsp.protocol import Diagnostic, DiagnosticSeverity, Position, Range

_TYPE_SIGNATURE_PARENTS = frozenset({"type_annotation", "type_ref"})


class Point(NamedTuple):
    """A zero-based row and column in the source text."""

    row: int
    column: int


@dataclass
class ParseErrorContext:
    """Surroundings of an error node that help to describe it."""

    parent_kind: Optional[str] = None
    expected: Optional[str] = None
    actual_text: Optional[str] = None
    previous_sibling: Optional[str] = None
    next_sibling: Optional[str] = None


@dataclass
class ParseError:
    """An error or missing node found in the syntax tree."""

    start_byte: int
    end_byte: int
    start_position: Point
    end_position: Point
    kind: str
    is_missing: bool = False
    context: ParseErrorContext = field(default_factory=ParseErrorContext)

    @property
    def byte_length(self) -> int:
        return self.end_byte - self.start_byte


def parse_errors_to_diagnostics(errors: Iterable[ParseError]) -> list[Diagnostic]:
    """Turn parse errors into error diagnostics, dropping duplicates first."""
    return [
        Diagnostic(
            range=Range(
                Position(error.start_position.row, error.start_position.column),
                Position(error.end_position.row, error.end_position.column),
            ),
            severity=DiagnosticSeverity.ERROR,
            source="gren-lsp",
            message=create_detailed_error_message(error),
        )
        for error in deduplicate_errors(errors)
    ]


def deduplicate_errors(errors: Iterable[ParseError]) -> list[ParseError]:
    """Drop errors that overlap an earlier, larger one without saying anything new."""
    ordered = sorted(
        errors,
        key=lambda e: (e.start_position.row, e.start_position.column, -e.byte_length),
    )
    kept: list[ParseError] = []
    for error in ordered:
        if all(
            not _ranges_overlap(error, existing)
            or _is_significantly_different(error, existing)
            for existing in kept
        ):
            kept.append(error)
    return kept


def _ranges_overlap(a: ParseError, b: ParseError) -> bool:
    return not (a.end_position <= b.start_position or b.end_position <= a.start_position)


def _is_significantly_different(a: ParseError, b: ParseError) -> bool:
    if a.kind != b.kind:
        return True

    a_parent, b_parent = a.context.parent_kind, b.context.parent_kind
    if a_parent is not None and b_parent is not None:
        if a_parent == "ERROR" or b_parent == "ERROR":
            return False
        if a_parent != b_parent:
            return True

    a_text, b_text = a.context.actual_text, b.context.actual_text
    if a_text is not None and b_text is not None:
        if a_text != b_text and a_text not in b_text and b_text not in a_text:
            return True

    return False


def create_detailed_error_message(error: ParseError) -> str:
    """Describe a parse error using whatever context is known about it."""
    context = error.context
    if error.is_missing:
        return f"Missing {context.expected if context.expected is not None else error.kind}"

    expected, actual, parent = context.expected, context.actual_text, context.parent_kind
    in_signature = parent in _TYPE_SIGNATURE_PARENTS

    if expected is not None and actual is not None and parent is not None:
        if in_signature:
            return f"Expected '{expected}' in type signature, but found '{actual}'"
        return f"Expected {expected} in {parent}, but found '{actual}'"
    if expected is not None and parent is not None:
        if in_signature:
            return f"Expected '{expected}' in type signature"
        return f"Expected {expected} in {parent}"
    if expected is not None and actual is not None:
        return f"Expected {expected}, but found '{actual}'"
    if expected is not None:
        return f"Expected {expected}"
    if actual is not None and parent is not None:
        if in_signature:
            return f"Invalid type signature: unexpected '{actual}'"
        return f"Unexpected '{actual}' in {parent}"
    if actual is not None:
        return f"Unexpected '{actual}'"
    if parent is not None:
        if in_signature:
            return "Invalid type signature"
        return f"Syntax error in {parent}"
    return f"Syntax error: unexpected {error.kind}"