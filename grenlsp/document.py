"""An open text document kept in sync with the editor."""

from __future__ import annotations

import bisect
import re
from typing import Iterable

from grenlsp.protocol import (
    Position,
    Range,
    TextDocumentContentChangeEvent,
    TextDocumentItem,
)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def _line_starts(text: str) -> list[int]:
    return [0, *(match.end() for match in _LINE_BREAK.finditer(text))]


def _utf16_units(char: str) -> int:
    return 2 if ord(char) > 0xFFFF else 1


class Document:
    """Text of an open document with its version and language.

    Positions count characters in UTF-16 code units, as the protocol does;
    offsets are indices into :attr:`text`.
    """

    def __init__(self, item: TextDocumentItem) -> None:
        self.uri = item.uri
        self._language_id = item.language_id
        self._version = item.version
        self._text = item.text
        self._line_starts = _line_starts(item.text)

    @property
    def text(self) -> str:
        return self._text

    @property
    def version(self) -> int:
        return self._version

    @property
    def language_id(self) -> str:
        return self._language_id

    @property
    def size(self) -> int:
        """Size of the text in UTF-8 bytes."""
        return len(self._text.encode("utf-8"))

    @property
    def last_modified(self) -> int:
        """The version of the latest change."""
        return self._version

    def apply_changes(self, changes: Iterable[TextDocumentContentChangeEvent]) -> None:
        """Apply edits in order and move to the next version."""
        for change in changes:
            if change.range is None:
                self._set_text(change.text)
                continue
            start = self.position_to_offset(change.range.start)
            end = self.position_to_offset(change.range.end)
            start, end = min(start, end), max(start, end)
            self._set_text(self._text[:start] + change.text + self._text[end:])
        self._version += 1

    def _set_text(self, text: str) -> None:
        self._text = text
        self._line_starts = _line_starts(text)

    def position_to_offset(self, position: Position) -> int:
        """Offset of a position, clamped to the text and to its line."""
        if position.line >= len(self._line_starts):
            return len(self._text)
        if position.line < 0:
            return 0
        line_start = self._line_starts[position.line]
        next_start = (
            self._line_starts[position.line + 1]
            if position.line + 1 < len(self._line_starts)
            else len(self._text)
        )
        offset = line_start
        units = 0
        while offset < next_start and units < position.character:
            units += _utf16_units(self._text[offset])
            offset += 1
        return offset

    def offset_to_position(self, offset: int) -> Position:
        """Position of an offset, clamped to the text."""
        offset = max(0, min(offset, len(self._text)))
        line = bisect.bisect_right(self._line_starts, offset) - 1
        line_start = self._line_starts[line]
        character = sum(_utf16_units(c) for c in self._text[line_start:offset])
        return Position(line, character)

    def full_range(self) -> Range:
        """The range that covers the whole text."""
        return Range(Position(0, 0), self.offset_to_position(len(self._text)))

    def debug_filename(self) -> str:
        """A file name, safe on any file system, for dumping this document."""
        name = self.uri.replace("file://", "")
        for separator in ("/", "\\", ":"):
            name = name.replace(separator, "_")
        return f"{name}_v{self._version}.sexp"