"""Language Server Protocol data types used by the Gren tooling."""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname


@dataclass(frozen=True, order=True)
class Position:
    """A zero-based line and character offset in a text document."""

    line: int
    character: int


@dataclass(frozen=True)
class Range:
    """A span between two positions; the end is exclusive."""

    start: Position
    end: Position


class DiagnosticSeverity(enum.IntEnum):
    """Diagnostic severities as numbered by the protocol."""

    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


@dataclass
class Diagnostic:
    """A problem reported for a range of a document."""

    range: Range
    message: str
    severity: Optional[DiagnosticSeverity] = None
    code: Optional[str] = None
    source: Optional[str] = None
    related_information: Optional[list[Any]] = None
    tags: Optional[list[int]] = None
    data: Any = None


@dataclass
class TextDocumentItem:
    """A text document as sent by the client when it is opened."""

    uri: str
    language_id: str
    version: int
    text: str


@dataclass
class TextDocumentContentChangeEvent:
    """A change to a document: a ranged edit, or the whole text when no range is given."""

    text: str
    range: Optional[Range] = None
    range_length: Optional[int] = field(default=None)


def path_to_uri(path: str | os.PathLike[str]) -> str:
    """Turn an absolute file system path into a ``file://`` URI."""
    candidate = Path(path)
    if not candidate.is_absolute():
        raise ValueError(f"cannot make a file URI from relative path: {candidate}")
    return candidate.as_uri()


def uri_to_path(uri: str) -> Path:
    """Turn a ``file://`` URI into a file system path."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"not a file URI: {uri}")
    if parsed.netloc not in ("", "localhost"):
        raise ValueError(f"file URI with a remote host is not supported: {uri}")
    return Path(url2pathname(parsed.path))