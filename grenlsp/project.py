"""Project layout helpers: locating the compiler, module names and project settings."""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import os
import re
import shutil
import subprocess
from pathlib import Path, PurePath
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

COMPILER_PATH_VARIABLE = "GREN_COMPILER_PATH"
PROJECT_FILE = "gren.json"
SOURCE_DIR = "src"
SOURCE_SUFFIX = ".gren"

_MODULE_DECLARATION = re.compile(
    r"^[ \t]*(?:effect\s+|port\s+)?module\s+"
    r"([A-Z][A-Za-z0-9_]*(?:\.[A-Z][A-Za-z0-9_]*)*)",
    re.MULTILINE,
)


class ProjectType(str, enum.Enum):
    """Kind of project declared by the ``type`` field of the project file."""

    APPLICATION = "application"
    PACKAGE = "package"


class CompilerNotFoundError(RuntimeError):
    """No working Gren compiler could be found."""


def _compiler_works(path: Path) -> bool:
    try:
        completed = subprocess.run(
            [str(path), "--help"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as exc:
        logger.info("compiler candidate %s is not accessible: %s", path, exc)
        return False
    return completed.returncode == 0


def _log_version(path: Path) -> None:
    try:
        completed = subprocess.run(
            [str(path), "--version"], capture_output=True, check=False
        )
    except OSError:
        return
    logger.info(
        "Gren compiler version: %s",
        completed.stdout.decode("utf-8", errors="replace").strip(),
    )


def _local_candidates() -> list[Path]:
    home = os.environ.get("HOME", "/tmp")
    return [
        Path(home, ".vscode", "extensions", "gren-lsp", "bin", "gren"),
        Path(home, ".vscode-server", "extensions", "gren-lsp", "bin", "gren"),
        Path(home, ".local", "bin", "gren-0.6.0"),
        Path(home, ".local", "bin", "gren"),
    ]


def find_gren_executable() -> Path:
    """Locate a working compiler from the environment or known install places.

    The ``PATH`` is never searched, so that a compiler of another version is
    not picked up by accident.
    """
    configured = os.environ.get(COMPILER_PATH_VARIABLE)
    if configured is None:
        logger.info("no %s environment variable found", COMPILER_PATH_VARIABLE)
    elif not configured:
        logger.info("%s is set but empty", COMPILER_PATH_VARIABLE)
    else:
        path = Path(configured)
        if not path.exists():
            logger.warning("compiler path from %s does not exist: %s",
                           COMPILER_PATH_VARIABLE, configured)
        elif _compiler_works(path):
            logger.info("verified Gren compiler from %s: %s",
                        COMPILER_PATH_VARIABLE, configured)
            _log_version(path)
            return path
        else:
            logger.warning("compiler at %s exists but --help failed: %s",
                           COMPILER_PATH_VARIABLE, configured)

    for candidate in _local_candidates():
        logger.info("trying local Gren compiler: %s", candidate)
        if not candidate.exists():
            logger.info("candidate %s does not exist", candidate)
            continue
        if _compiler_works(candidate):
            logger.info("found working Gren compiler: %s", candidate)
            _log_version(candidate)
            return candidate
        logger.info("candidate %s exists but --help failed", candidate)

    raise CompilerNotFoundError(
        "Could not find gren executable. Checked:\n"
        f"1. {COMPILER_PATH_VARIABLE} environment variable\n"
        "2. Local installation locations\n"
        "\n"
        "PATH is never used to prevent version mismatches.\n"
        f"Please set {COMPILER_PATH_VARIABLE} environment variable to point to "
        "your Gren compiler."
    )


def _strip_comments(text: str) -> str:
    """Blank out line and nested block comments, keeping line breaks."""
    out: list[str] = []
    depth = 0
    i = 0
    n = len(text)
    while i < n:
        if text.startswith("{-", i):
            depth += 1
            i += 2
        elif depth:
            if text.startswith("-}", i):
                depth -= 1
                i += 2
            else:
                if text[i] == "\n":
                    out.append("\n")
                i += 1
        elif text.startswith("--", i):
            end = text.find("\n", i)
            if end == -1:
                break
            i = end
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def extract_module_name(content: str) -> str:
    """Name declared by the ``module Name exposing (...)`` line of a source file."""
    match = _MODULE_DECLARATION.search(_strip_comments(content))
    if match is None:
        raise ValueError("Could not find module declaration in source code")
    name = match.group(1)
    logger.info("extracted module name from source: %s", name)
    return name


def file_path_to_module_name(file_path: PathLike, working_dir: PathLike) -> str:
    """Module name for a source file, e.g. ``src/Foo/Bar.gren`` gives ``Foo.Bar``."""
    path = PurePath(file_path)
    if path.is_absolute():
        try:
            path = path.relative_to(PurePath(working_dir))
        except ValueError:
            raise ValueError(
                f"File path {file_path} is not within working directory {working_dir}"
            ) from None

    parts = list(path.parts)
    if parts and parts[0] == SOURCE_DIR:
        parts = parts[1:]
    if parts:
        parts[-1] = PurePath(parts[-1]).stem if PurePath(parts[-1]).suffix else parts[-1]
    name = ".".join(parts)
    if not name:
        raise ValueError(f"Could not determine module name from path: {file_path}")
    logger.info("converted file path %s to module name: %s", file_path, name)
    return name


def read_project_type(working_dir: PathLike) -> ProjectType:
    """Project type from the project file; anything unclear counts as an application."""
    project_file = Path(working_dir, PROJECT_FILE)
    if not project_file.exists():
        logger.info("no %s found, assuming application project", PROJECT_FILE)
        return ProjectType.APPLICATION
    try:
        config = json.loads(project_file.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("failed to read %s: %s, assuming application", PROJECT_FILE, exc)
        return ProjectType.APPLICATION
    except ValueError as exc:
        logger.warning("failed to parse %s: %s, assuming application", PROJECT_FILE, exc)
        return ProjectType.APPLICATION

    kind = config.get("type") if isinstance(config, dict) else None
    if kind == ProjectType.PACKAGE.value:
        return ProjectType.PACKAGE
    if kind == ProjectType.APPLICATION.value:
        return ProjectType.APPLICATION
    if isinstance(kind, str):
        logger.warning("unknown project type %r, assuming application", kind)
    else:
        logger.warning("no 'type' field in %s, assuming application", PROJECT_FILE)
    return ProjectType.APPLICATION


def content_hash(content: str, path: Optional[PathLike] = None) -> int:
    """A 64-bit hash of source text, and of its path when one is given."""
    digest = hashlib.blake2b(digest_size=8)
    encoded = content.encode("utf-8")
    digest.update(len(encoded).to_bytes(8, "little"))
    digest.update(encoded)
    if path is not None:
        digest.update(b"\x00path")
        digest.update(os.fsencode(path))
    return int.from_bytes(digest.digest(), "little")


def copy_gren_sources(src_dir: PathLike, dst_dir: PathLike) -> list[Path]:
    """Copy every ``.gren`` file under ``src_dir`` to the same place under ``dst_dir``.

    Directories are recreated; files that fail to copy are logged and skipped.
    Returns the destination paths of the files copied.
    """
    source = Path(src_dir)
    if not source.exists():
        return []
    copied: list[Path] = []
    destination = Path(dst_dir)
    destination.mkdir(parents=True, exist_ok=True)
    for entry in sorted(source.iterdir()):
        target = destination / entry.name
        if entry.is_dir():
            copied.extend(copy_gren_sources(entry, target))
        elif entry.suffix == SOURCE_SUFFIX:
            try:
                shutil.copyfile(entry, target)
            except OSError as exc:
                logger.warning("failed to copy %s to %s: %s", entry, target, exc)
            else:
                copied.append(target)
    return copied