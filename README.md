# grenlsp

Building blocks for a language server for the Gren programming language.
It uses only the Python standard library and needs Python 3.10 or later.

## What is in the package

- **LSP data types** (`grenlsp.protocol`): `Position`, `Range`,
  `DiagnosticSeverity`, `Diagnostic`, `TextDocumentItem` and
  `TextDocumentContentChangeEvent`, plus `path_to_uri` and `uri_to_path`.
  `path_to_uri` accepts absolute paths only and raises `ValueError`
  otherwise; `uri_to_path` accepts `file://` URIs only.
- **Open documents** (`grenlsp.document.Document`): built from a
  `TextDocumentItem`, it holds the text, version and language id of an
  editor buffer. `apply_changes` applies full-text or ranged changes in
  order and then raises the version by one. `position_to_offset` and
  `offset_to_position` convert between protocol positions (counted in
  UTF-16 code units) and indices into the text, clamping out-of-range
  values. `size` is the text's length in UTF-8 bytes, `full_range()`
  covers the whole text, and `debug_filename()` gives a file-system-safe
  name for dumping the document.
- **Parse-error diagnostics** (`grenlsp.parse_errors`): `ParseError`,
  `ParseErrorContext` and `Point` describe syntax errors found in a parse
  tree. `deduplicate_errors` drops errors that overlap a larger earlier one
  without adding anything new, `create_detailed_error_message` writes
  messages such as `Expected '->' in type signature, but found 'Int'`, and
  `parse_errors_to_diagnostics` does both and returns error diagnostics
  with the source `gren-lsp`.
- **Compiler output** (`grenlsp.compiler_output`): `parse_compiler_output`
  reads what `gren make --report=json` writes to standard error and returns
  a list of `CompilerDiagnostic` and a list of `GlobalError`.
  `extract_message_text` flattens a message made of plain and styled chunks
  into text. `CompilationResult` holds the outcome of one run.
- **Compiler diagnostics** (`grenlsp.compiler_diagnostics`):
  `compiler_diagnostics_to_lsp` turns compiler records that belong to one
  document URI into diagnostics with the source `gren`, converting the
  compiler's one-based lines and columns to zero-based ones; a location is
  also picked out of the message text (`line X, column Y` or `X:Y`) when
  the record has none. `merge_diagnostics` puts syntax diagnostics first
  and drops compiler diagnostics that overlap an error already kept.
  `group_diagnostics_by_uri` converts a mapping of URI to records.
- **Project helpers** (`grenlsp.project`): `find_gren_executable`,
  `read_project_type` (reads `type` from `gren.json`, and treats anything
  missing or unclear as `ProjectType.APPLICATION`), `extract_module_name`
  (from the module declaration in source text), `file_path_to_module_name`
  (`src/Foo/Bar.gren` gives `Foo.Bar`), `content_hash` and
  `copy_gren_sources`.
- **Compiler driver** (`grenlsp.compiler.GrenCompiler`): runs `gren make`
  on files on disk or on unsaved buffer contents, with a result cache keyed
  on file content.

## Finding the compiler

`find_gren_executable()` never searches `PATH`, so that an unrelated Gren
version cannot be picked up by accident. It looks, in order, at:

1. the `GREN_COMPILER_PATH` environment variable;
2. `~/.vscode/extensions/gren-lsp/bin/gren`,
   `~/.vscode-server/extensions/gren-lsp/bin/gren`,
   `~/.local/bin/gren-0.6.0` and `~/.local/bin/gren`.

A candidate is only accepted if `gren --help` succeeds. If nothing is found,
`CompilerNotFoundError` is raised. `GrenCompiler(working_dir, gren_path)`
calls it only when no `gren_path` is given.

## Example: compiling a buffer

```python
import asyncio
from pathlib import Path

from grenlsp.compiler import GrenCompiler
from grenlsp.compiler_diagnostics import compiler_diagnostics_to_lsp
from grenlsp.protocol import path_to_uri


async def check(project: Path, source_file: Path, buffer_text: str) -> None:
    compiler = GrenCompiler(project)
    result = await compiler.compile_content(buffer_text, source_file)
    for diagnostic in compiler_diagnostics_to_lsp(result.diagnostics, path_to_uri(source_file)):
        print(diagnostic.range.start.line, diagnostic.message)
    for error in result.global_errors:
        print("project error:", error.title)


project = Path("my-app").resolve()
asyncio.run(check(project, project / "src" / "Main.gren", "module Main exposing (..)\n"))
```

`compile_content` copies `gren.json` and the project's `.gren` sources to a
scratch directory under the system temporary directory, writes the buffer
there as its module, runs the compiler in that directory, reports
diagnostics for scratch files against the original path, and removes the
scratch directory afterwards.

Files saved on disk are compiled with `compile_file`, which runs the
compiler in the project directory with a 30-second limit (`TimeoutError`
when it is exceeded) and reuses the cached result while the file's content
is unchanged. `force_compile_file` bypasses the cache, `invalidate_cache`
and `clear_cache` forget cached results, and `invalidate_all_cache` also
forgets the detected project type after `gren.json` changes. For
applications `--output=/dev/null` is passed; for packages it is not.
`is_available()` checks that the compiler answers `--help`, and
`get_version()` returns the first line of its help text when that names
Gren, or `"Unknown version"`.

## Example: reading compiler output directly

```python
from grenlsp.compiler_output import parse_compiler_output

diagnostics, global_errors = parse_compiler_output(stderr_text)
```

Output that is not a recognisable JSON report is kept as a single
`Compiler Error` diagnostic without a location, so no message from the
compiler is lost. Empty output gives two empty lists.

## What the package does not do

- It contains no Gren parser. `ParseError` values must be produced by the
  caller from its own parse tree; this package only deduplicates them and
  turns them into diagnostics.
- It is not a running language server: there is no JSON-RPC transport, no
  request handling (completion, hover, go-to-definition, rename) and no
  symbol index or storage.
- It installs no command-line program.

## Running the tests

From a checkout of the package:

```
pip install -e ".[test]"
pytest
```