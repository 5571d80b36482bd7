import json
import sys
from pathlib import Path

import pytest

from grenlsp.compiler import GrenCompiler
from grenlsp.compiler_output import Severity
from grenlsp.project import CompilerNotFoundError, ProjectType, content_hash

_SCRIPT = """#!@PYTHON@
import json
import sys
import time
from pathlib import Path

HERE = Path(__file__).resolve().parent
args = sys.argv[1:]
cwd = Path.cwd()


def read(name, default):
    path = HERE / name
    return path.read_text() if path.exists() else default


entry = {"argv": args, "cwd": str(cwd)}
if args[:1] == ["make"]:
    entry["files"] = {
        str(p.relative_to(cwd)): p.read_text()
        for p in sorted(cwd.rglob("*"))
        if p.is_file()
    }
with open(HERE / "calls.jsonl", "a") as log:
    log.write(json.dumps(entry) + "\\n")

if args[:1] == ["--help"]:
    print(read("help_output", "Gren 0.6.0 compiler"))
    sys.exit(int(read("help_code", "0")))
if args[:1] == ["--version"]:
    print("0.6.0")
    sys.exit(0)
if args[:1] == ["make"]:
    time.sleep(float(read("sleep", "0")))
    report = read("report.json", "")
    sys.stderr.write(report.replace("__CWD__", str(cwd)))
    sys.exit(int(read("make_code", "1" if report else "0")))
sys.exit(2)
"""


class FakeGren:
    def __init__(self, directory: Path) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        self.directory = directory
        self.path = directory / "gren"
        self.path.write_text(_SCRIPT.replace("@PYTHON@", sys.executable))
        self.path.chmod(0o755)

    def set(self, name: str, value: str) -> None:
        (self.directory / name).write_text(value)

    def set_report(self, report: dict) -> None:
        self.set("report.json", json.dumps(report))

    def calls(self) -> list:
        log = self.directory / "calls.jsonl"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines()]

    def make_calls(self) -> list:
        return [call for call in self.calls() if call["argv"][:1] == ["make"]]


@pytest.fixture
def gren(tmp_path):
    return FakeGren(tmp_path / "bin")


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "src" / "Main.gren").write_text("module Main exposing (..)\n\nmain = 0\n")
    (root / "src" / "Util.gren").write_text("module Util exposing (..)\n\nhelper = 1\n")
    return root


def _compile_errors(path: str) -> dict:
    return {
        "type": "compile-errors",
        "errors": [
            {
                "path": path,
                "name": "Main",
                "problems": [
                    {
                        "title": "TOO MANY ARGS",
                        "region": {
                            "start": {"line": 154, "column": 9},
                            "end": {"line": 154, "column": 19},
                        },
                        "message": [
                            "The `String` type needs 0 arguments, but I see 1 instead:",
                            {"color": "RED", "string": "^^^^^^^^^^"},
                        ],
                    }
                ],
            }
        ],
    }


def test_is_available_with_working_compiler(gren, project):
    compiler = GrenCompiler(project, gren.path)
    assert compiler.is_available() is True


def test_is_available_false_when_help_fails(gren, project):
    gren.set("help_code", "1")
    compiler = GrenCompiler(project, gren.path)
    assert compiler.is_available() is False


def test_is_available_false_for_missing_executable(tmp_path, project):
    compiler = GrenCompiler(project, tmp_path / "nowhere" / "gren")
    assert compiler.is_available() is False


def test_constructor_finds_compiler_from_environment(gren, project, monkeypatch):
    monkeypatch.setenv("GREN_COMPILER_PATH", str(gren.path))
    compiler = GrenCompiler(project)
    assert compiler.gren_path == gren.path


@pytest.mark.asyncio
async def test_get_version_returns_first_help_line(gren, project):
    compiler = GrenCompiler(project, gren.path)
    assert await compiler.get_version() == "Gren 0.6.0 compiler"


@pytest.mark.asyncio
async def test_get_version_unknown_when_help_does_not_name_gren(gren, project):
    gren.set("help_output", "some other tool")
    compiler = GrenCompiler(project, gren.path)
    assert await compiler.get_version() == "Unknown version"


def test_detect_project_type_is_cached_until_invalidated(gren, project):
    (project / "gren.json").write_text(json.dumps({"type": "package"}))
    compiler = GrenCompiler(project, gren.path)
    assert compiler.detect_project_type() is ProjectType.PACKAGE

    (project / "gren.json").write_text(json.dumps({"type": "application"}))
    assert compiler.detect_project_type() is ProjectType.PACKAGE

    compiler.invalidate_all_cache()
    assert compiler.detect_project_type() is ProjectType.APPLICATION


@pytest.mark.asyncio
async def test_compile_file_reports_diagnostics_and_arguments(gren, project):
    main = project / "src" / "Main.gren"
    gren.set_report(_compile_errors(str(main)))
    compiler = GrenCompiler(project, gren.path)

    result = await compiler.compile_file(main)

    assert result.success is False
    assert result.global_errors == []
    assert len(result.diagnostics) == 1
    diag = result.diagnostics[0]
    assert diag.title == "TOO MANY ARGS"
    assert diag.severity is Severity.ERROR
    assert diag.path == main
    assert (diag.location.line, diag.location.column) == (154, 9)
    assert (diag.location.end_line, diag.location.end_column) == (154, 19)
    assert "^^^^^^^^^^" in diag.message
    assert result.content_hash == content_hash(main.read_text(), main)

    calls = gren.make_calls()
    assert len(calls) == 1
    assert calls[0]["argv"] == ["make", "Main", "--report=json", "--output=/dev/null"]
    assert Path(calls[0]["cwd"]).resolve() == project.resolve()


@pytest.mark.asyncio
async def test_package_project_has_no_output_argument(gren, project):
    (project / "gren.json").write_text(json.dumps({"type": "package"}))
    compiler = GrenCompiler(project, gren.path)

    await compiler.compile_file(project / "src" / "Util.gren")

    assert gren.make_calls()[0]["argv"] == ["make", "Util", "--report=json"]


@pytest.mark.asyncio
async def test_successful_compile_has_no_diagnostics(gren, project):
    compiler = GrenCompiler(project, gren.path)
    result = await compiler.compile_file(project / "src" / "Main.gren")
    assert result.success is True
    assert result.diagnostics == []
    assert result.global_errors == []


@pytest.mark.asyncio
async def test_global_error_is_reported(gren, project):
    gren.set_report(
        {
            "type": "error",
            "path": "gren.json",
            "title": "GREN VERSION MISMATCH",
            "message": ["It requires ", {"string": "0.5.4"}, ", but you are using ",
                        {"string": "0.5.3"}],
        }
    )
    compiler = GrenCompiler(project, gren.path)
    result = await compiler.compile_file(project / "src" / "Main.gren")

    assert result.diagnostics == []
    assert len(result.global_errors) == 1
    error = result.global_errors[0]
    assert error.title == "GREN VERSION MISMATCH"
    assert error.path == Path("gren.json")
    assert "0.5.4" in error.message and "0.5.3" in error.message


@pytest.mark.asyncio
async def test_compile_file_uses_cache_until_content_changes(gren, project):
    main = project / "src" / "Main.gren"
    compiler = GrenCompiler(project, gren.path)

    first = await compiler.compile_file(main)
    second = await compiler.compile_file(main)
    assert second is first
    assert len(gren.make_calls()) == 1

    main.write_text("module Main exposing (..)\n\nmain = 42\n")
    third = await compiler.compile_file(main)
    assert len(gren.make_calls()) == 2
    assert third.content_hash != first.content_hash


@pytest.mark.asyncio
async def test_force_compile_and_cache_clearing_rerun_compiler(gren, project):
    main = project / "src" / "Main.gren"
    compiler = GrenCompiler(project, gren.path)

    await compiler.compile_file(main)
    await compiler.force_compile_file(main)
    assert len(gren.make_calls()) == 2

    compiler.clear_cache()
    await compiler.compile_file(main)
    assert len(gren.make_calls()) == 3

    compiler.invalidate_cache(main)
    await compiler.compile_file(main)
    assert len(gren.make_calls()) == 4


@pytest.mark.asyncio
async def test_compile_file_with_missing_compiler_raises(tmp_path, project):
    compiler = GrenCompiler(project, tmp_path / "missing" / "gren")
    with pytest.raises(CompilerNotFoundError):
        await compiler.compile_file(project / "src" / "Main.gren")


@pytest.mark.asyncio
async def test_compile_file_outside_project_raises(gren, project, tmp_path):
    outside = tmp_path / "Elsewhere.gren"
    outside.write_text("module Elsewhere exposing (..)\n")
    compiler = GrenCompiler(project, gren.path)
    with pytest.raises(ValueError):
        await compiler.compile_file(outside)


@pytest.mark.asyncio
async def test_compile_file_times_out(gren, project):
    gren.set("sleep", "5")
    compiler = GrenCompiler(project, gren.path)
    compiler.compile_timeout = 0.3
    with pytest.raises(TimeoutError):
        await compiler.compile_file(project / "src" / "Main.gren")


@pytest.mark.asyncio
async def test_compile_content_uses_unsaved_text_in_scratch_project(gren, project):
    (project / "gren.json").write_text(json.dumps({"type": "application"}))
    original = project / "src" / "Main.gren"
    content = "module Main exposing (..)\n\nmain = 99\n"
    report = _compile_errors("__CWD__/Main.gren")
    report["errors"].append(
        {
            "path": "/elsewhere/Lib.gren",
            "name": "Lib",
            "problems": [
                {
                    "title": "NAMING ERROR",
                    "region": {"start": {"line": 1, "column": 1},
                               "end": {"line": 1, "column": 2}},
                    "message": "oops",
                }
            ],
        }
    )
    gren.set_report(report)
    compiler = GrenCompiler(project, gren.path)

    result = await compiler.compile_content(content, original)

    calls = gren.make_calls()
    assert len(calls) == 1
    call = calls[0]
    assert call["argv"][:2] == ["make", "Main"]
    assert call["files"]["Main.gren"] == content
    assert call["files"]["src/Util.gren"] == (project / "src" / "Util.gren").read_text()
    assert "gren.json" in call["files"]
    assert not Path(call["cwd"]).exists()

    paths = [diag.path for diag in result.diagnostics]
    assert paths == [original, Path("/elsewhere/Lib.gren")]
    assert result.content_hash == content_hash(content)
    assert original.read_text() != content


@pytest.mark.asyncio
async def test_compile_content_falls_back_to_file_stem(gren, project):
    compiler = GrenCompiler(project, gren.path)
    await compiler.compile_content("main = 1\n", project / "src" / "Scratch.gren")
    call = gren.make_calls()[0]
    assert call["argv"][:2] == ["make", "Scratch"]
    assert call["files"]["Scratch.gren"] == "main = 1\n"


@pytest.mark.asyncio
async def test_compile_content_does_not_fill_file_cache(gren, project):
    main = project / "src" / "Main.gren"
    compiler = GrenCompiler(project, gren.path)
    await compiler.compile_content(main.read_text(), main)
    await compiler.compile_file(main)
    assert len(gren.make_calls()) == 2