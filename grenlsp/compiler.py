"""Running the Gren compiler on project files and on unsaved editor content."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from grenlsp.compiler_output import CompilationResult, parse_compiler_output
from grenlsp.project import (
    PROJECT_FILE,
    SOURCE_DIR,
    SOURCE_SUFFIX,
    CompilerNotFoundError,
    PathLike,
    ProjectType,
    content_hash,
    copy_gren_sources,
    extract_module_name,
    file_path_to_module_name,
    find_gren_executable,
    read_project_type,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _MakeRun:
    success: bool
    stderr: str


def _temp_base() -> Path:
    return Path(tempfile.gettempdir(), "gren-lsp", f"compile_{os.getpid()}")


def _within(path: Path, base: Path) -> bool:
    try:
        if path.resolve(strict=True).is_relative_to(base.resolve(strict=True)):
            return True
    except OSError:
        pass
    return path.is_relative_to(base)


class GrenCompiler:
    """Runs ``gren make`` for a project and caches the results per file."""

    compile_timeout: float = 30.0

    def __init__(self, working_dir: PathLike, gren_path: Optional[PathLike] = None) -> None:
        self.working_dir = Path(working_dir)
        self.gren_path = Path(gren_path) if gren_path is not None else find_gren_executable()
        logger.info("using Gren compiler at %s", self.gren_path)
        self._cache: dict[Path, CompilationResult] = {}
        self._project_type: Optional[ProjectType] = None

    def detect_project_type(self) -> ProjectType:
        """Project type from the project file, read once and then remembered."""
        if self._project_type is None:
            self._project_type = read_project_type(self.working_dir)
        return self._project_type

    @staticmethod
    def _file_hash(path: Path) -> int:
        return content_hash(path.read_text(encoding="utf-8"), path)

    async def compile_file(self, file_path: PathLike) -> CompilationResult:
        """Compile a file of the project, reusing the last result if it is unchanged."""
        path = Path(file_path)
        digest = self._file_hash(path)
        cached = self._cache.get(path)
        if cached is not None and cached.content_hash == digest:
            logger.info("using cached compilation result for %s", path)
            return cached
        if cached is not None:
            logger.info("cache invalidated for %s (content changed)", path)

        result = await self._compile_project_file(path)
        self._cache[path] = result
        return result

    async def force_compile_file(self, file_path: PathLike) -> CompilationResult:
        """Compile a file, ignoring any cached result."""
        logger.info("force compiling %s (bypassing cache)", file_path)
        self.invalidate_cache(file_path)
        return await self.compile_file(file_path)

    async def _compile_project_file(self, path: Path) -> CompilationResult:
        project_type = self.detect_project_type()
        module_name = file_path_to_module_name(path, self.working_dir)
        if not self.gren_path.exists():
            raise CompilerNotFoundError(f"Compiler path does not exist: {self.gren_path}")

        run = await self._run_make(
            module_name, self.working_dir, project_type, self.compile_timeout
        )
        return self._result_from(run, self._file_hash(path))

    async def compile_content(
        self, content: str, original_path: PathLike
    ) -> CompilationResult:
        """Compile unsaved text as if it were the file at ``original_path``.

        The text is compiled in a scratch copy of the project, so that imports
        resolve; diagnostics for the scratch copy are reported against
        ``original_path``.
        """
        original = Path(original_path)
        try:
            module_name = extract_module_name(content)
        except ValueError as exc:
            logger.warning("%s, using file name instead", exc)
            module_name = original.stem

        temp_base = _temp_base()
        temp_file = temp_base / f"{module_name}{SOURCE_SUFFIX}"
        try:
            try:
                temp_file.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning("failed to create temp directory %s: %s", temp_file.parent, exc)

            project_src = self.working_dir / PROJECT_FILE
            project_dst = temp_base / PROJECT_FILE
            if project_src.exists() and not project_dst.exists():
                try:
                    shutil.copyfile(project_src, project_dst)
                except OSError as exc:
                    logger.warning("failed to copy %s to temp directory: %s", PROJECT_FILE, exc)

            try:
                copied = copy_gren_sources(
                    self.working_dir / SOURCE_DIR, temp_base / SOURCE_DIR
                )
                logger.info("copied %d source files to temp directory", len(copied))
            except OSError as exc:
                logger.warning("failed to copy source files to temp directory: %s", exc)

            # Written after the copy so the unsaved text wins over the disk version.
            temp_file.write_bytes(content.encode("utf-8"))

            result = await self._compile_in_directory(temp_file, temp_base, content)
            for diagnostic in result.diagnostics:
                if diagnostic.path is not None and _within(diagnostic.path, temp_base):
                    logger.info(
                        "adjusting diagnostic path from %s to %s", diagnostic.path, original
                    )
                    diagnostic.path = original
            result.content_hash = content_hash(content)
            return result
        finally:
            shutil.rmtree(temp_base, ignore_errors=True)

    async def _compile_in_directory(
        self, file_path: Path, working_dir: Path, content: Optional[str]
    ) -> CompilationResult:
        project_type = self.detect_project_type()
        module_name: Optional[str] = None
        if content is not None:
            try:
                module_name = extract_module_name(content)
            except ValueError as exc:
                logger.warning("%s, falling back to file name", exc)
        if module_name is None:
            module_name = file_path.stem
            if not module_name:
                raise ValueError(f"Could not determine module name from file path: {file_path}")

        run = await self._run_make(module_name, working_dir, project_type, None)
        return self._result_from(run, self._file_hash(file_path))

    async def _run_make(
        self,
        module_name: str,
        cwd: Path,
        project_type: ProjectType,
        timeout: Optional[float],
    ) -> _MakeRun:
        args = [str(self.gren_path), "make", module_name, "--report=json"]
        if project_type is ProjectType.APPLICATION:
            args.append("--output=/dev/null")
        logger.info("running %s in %s", " ".join(args), cwd)

        started = time.monotonic()
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Compiler execution timed out after {timeout:g} seconds"
            ) from None
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        success = process.returncode == 0
        logger.info(
            "compilation took %.3fs, success: %s", time.monotonic() - started, success
        )
        if stdout:
            logger.debug("compiler stdout: %s", stdout.decode("utf-8", errors="replace"))
        return _MakeRun(success, stderr.decode("utf-8", errors="replace"))

    @staticmethod
    def _result_from(run: _MakeRun, digest: int) -> CompilationResult:
        diagnostics, global_errors = parse_compiler_output(run.stderr)
        logger.info("found %d compiler diagnostics", len(diagnostics))
        for error in global_errors:
            logger.info("global compiler error - %s: %s", error.title, error.message)
        return CompilationResult(
            success=run.success,
            diagnostics=diagnostics,
            global_errors=global_errors,
            content_hash=digest,
        )

    def clear_cache(self) -> None:
        """Forget every cached compilation result."""
        self._cache.clear()

    def invalidate_cache(self, file_path: PathLike) -> None:
        """Forget the cached result of one file."""
        self._cache.pop(Path(file_path), None)

    def invalidate_all_cache(self) -> None:
        """Forget all cached results and the project type."""
        count = len(self._cache)
        self._cache.clear()
        self._project_type = None
        logger.info("invalidated cache for all %d files and project type", count)

    def is_available(self) -> bool:
        """Whether the compiler runs and answers ``--help`` successfully."""
        try:
            completed = subprocess.run(
                [str(self.gren_path), "--help"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError:
            return False
        return completed.returncode == 0

    async def get_version(self) -> str:
        """First line of the compiler's help text if it names Gren."""
        process = await asyncio.create_subprocess_exec(
            str(self.gren_path),
            "--help",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await process.communicate()
        lines = stdout.decode("utf-8", errors="replace").splitlines()
        if lines and "Gren" in lines[0]:
            return lines[0]
        return "Unknown version"