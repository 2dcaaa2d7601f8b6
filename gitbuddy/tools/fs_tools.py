"""Read-only file-system and search tools, rooted at a working directory."""

from __future__ import annotations

import asyncio
import fnmatch
import os
import re
from pathlib import Path

from pydantic import BaseModel, Field

from gitbuddy.engine.errors import ToolError
from gitbuddy.tools.registry import ToolDef

DEFAULT_MAX_LINES = 1000
DEFAULT_READ_LINES = 200
DEFAULT_MAX_RESULTS = 100
MAX_FILE_SIZE = 10 * 1024 * 1024

EXCLUDED_DIRS = {
    ".git", "node_modules", "vendor", "__pycache__", ".venv", "venv",
    ".mypy_cache", ".pytest_cache", ".tox", "dist", "build", ".idea", ".vscode",
}


def resolve_path(root: Path, path: str) -> Path:
    """Resolve ``path`` against ``root``; anything escaping ``root`` is rejected."""
    root = root.resolve()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        raise ToolError(f"path is outside the working directory: {path}")
    return resolved


def _is_binary(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            return b"\0" in f.read(8000)
    except OSError:
        return True


def _compile(pattern: str, ignore_case: bool) -> re.Pattern[str]:
    try:
        return re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as exc:
        raise ToolError(f"invalid regular expression pattern: {exc}") from exc


def _match_glob(name: str, pattern: str) -> bool:
    # "*.{js,ts}" style alternation
    m = re.fullmatch(r"(.*)\{([^}]*)\}(.*)", pattern)
    if m:
        head, alts, tail = m.groups()
        return any(fnmatch.fnmatch(name, f"{head}{alt}{tail}") for alt in alts.split(","))
    return fnmatch.fnmatch(name, pattern)


# ---------------------------------------------------------------------------
# read_file
# ---------------------------------------------------------------------------

class ReadFileInput(BaseModel):
    file_path: str
    start_line: int = Field(default=1, ge=1)
    end_line: int | None = Field(default=None, ge=1)


def _read_file(root: Path, inp: ReadFileInput, max_lines: int) -> str:
    path = resolve_path(root, inp.file_path)
    if not path.exists():
        raise ToolError(f"file not found: {inp.file_path}")
    if path.is_dir():
        raise ToolError(f"path is a directory: {inp.file_path}. Use list_directory instead")
    if path.stat().st_size > MAX_FILE_SIZE:
        raise ToolError(f"file too large: {inp.file_path}")

    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    total = len(lines)
    start = inp.start_line
    end = inp.end_line or start + min(DEFAULT_READ_LINES, max_lines) - 1
    if end < start:
        raise ToolError("end_line must be greater than or equal to start_line")
    capped = end - start + 1 > max_lines
    if capped:
        end = start + max_lines - 1
    if start > total:
        return f"File: {inp.file_path}\nFile has only {total} lines; start_line {start} is past the end.\n"

    end = min(end, total)
    body = "".join(f"{n:6d} | {lines[n - 1]}\n" for n in range(start, end + 1))
    out = [f"File: {inp.file_path}\n", f"Lines: {start}-{end} (total lines in file: {total})\n"]
    if capped:
        out.append(f"Note: Output truncated to {max_lines} lines (max_lines_per_read limit)\n")
    if end < total:
        out.append(f"Note: File has more content after line {end}\n")
        out.append("Tip: Use start_line and end_line parameters to read specific sections\n")
    out.append("\n")
    out.append(body)
    return "".join(out)


# ---------------------------------------------------------------------------
# list_directory / list_files
# ---------------------------------------------------------------------------

class ListDirectoryInput(BaseModel):
    path: str = "."
    recursive: bool = False
    max_depth: int = Field(default=3, ge=1)
    show_hidden: bool = False


def _list_directory(root: Path, inp: ListDirectoryInput) -> str:
    path = resolve_path(root, inp.path)
    if not path.exists():
        raise ToolError(f"directory not found: {inp.path}")
    if not path.is_dir():
        raise ToolError(f"path is not a directory: {inp.path}")

    out = [f"Directory: {inp.path}\n", f"Recursive: {str(inp.recursive).lower()}"]
    if inp.recursive:
        out.append(f" (max depth: {inp.max_depth})")
    out.append("\n\n")

    def walk(directory: Path, depth: int) -> None:
        try:
            entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name))
        except OSError as exc:
            raise ToolError(f"failed to read directory: {exc}") from exc
        indent = "  " * depth
        for entry in entries:
            if not inp.show_hidden and entry.name.startswith("."):
                continue
            if entry.is_dir():
                if entry.name in EXCLUDED_DIRS:
                    continue
                out.append(f"{indent}[DIR]  {entry.name}/\n")
                if inp.recursive and depth + 1 < inp.max_depth:
                    walk(entry, depth + 1)
            else:
                try:
                    size = entry.stat().st_size
                except OSError:
                    size = 0
                out.append(f"{indent}[FILE] {entry.name} ({size} bytes)\n")

    walk(path, 0)
    return "".join(out)


class ListFilesInput(BaseModel):
    path: str = "."
    pattern: str = "*"
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1)


def _list_files(root: Path, inp: ListFilesInput) -> str:
    base = resolve_path(root, inp.path)
    if not base.is_dir():
        raise ToolError(f"directory not found: {inp.path}")
    matches: list[str] = []
    truncated = False
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS and not d.startswith("."))
        for name in sorted(filenames):
            rel = Path(dirpath, name).relative_to(base).as_posix()
            if _match_glob(name, inp.pattern) or _match_glob(rel, inp.pattern):
                if len(matches) >= inp.max_results:
                    truncated = True
                    break
                matches.append(rel)
        if truncated:
            break
    if not matches:
        return f"No files matching '{inp.pattern}' under {inp.path}"
    out = f"Found {len(matches)} file(s) matching '{inp.pattern}' under {inp.path}:\n"
    out += "\n".join(matches)
    if truncated:
        out += f"\n... (results limited to {inp.max_results})"
    return out


# ---------------------------------------------------------------------------
# grep_file / grep_directory
# ---------------------------------------------------------------------------

class GrepFileInput(BaseModel):
    file_path: str
    pattern: str
    ignore_case: bool = False
    context: int = Field(default=0, ge=0)


def _grep_lines(lines: list[str], regex: re.Pattern[str], context: int, label: str, limit: int) -> tuple[list[str], int]:
    out: list[str] = []
    count = 0
    for i, line in enumerate(lines):
        if not regex.search(line):
            continue
        count += 1
        if count > limit:
            break
        if context:
            lo, hi = max(0, i - context), min(len(lines), i + context + 1)
            for j in range(lo, hi):
                marker = ":" if j == i else "-"
                out.append(f"{label}{j + 1}{marker} {lines[j]}")
            out.append("--")
        else:
            out.append(f"{label}{i + 1}: {line}")
    return out, min(count, limit)


def _grep_file(root: Path, inp: GrepFileInput) -> str:
    path = resolve_path(root, inp.file_path)
    if not path.is_file():
        raise ToolError(f"file not found: {inp.file_path}")
    regex = _compile(inp.pattern, inp.ignore_case)
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    out, count = _grep_lines(lines, regex, inp.context, "", DEFAULT_MAX_RESULTS)
    if not count:
        return f"No matches for '{inp.pattern}' in {inp.file_path}"
    return f"Found {count} match(es) in {inp.file_path}:\n" + "\n".join(out)


class GrepDirectoryInput(BaseModel):
    directory: str = "."
    pattern: str
    file_pattern: str = ""
    ignore_case: bool = False
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1)


def _grep_directory(root: Path, inp: GrepDirectoryInput) -> str:
    base = resolve_path(root, inp.directory)
    if not base.is_dir():
        raise ToolError(f"path is not a directory: {inp.directory}. Use grep_file instead")
    regex = _compile(inp.pattern, inp.ignore_case)

    out: list[str] = []
    total = 0
    files_hit = 0
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS and not d.startswith("."))
        for name in sorted(filenames):
            if inp.file_pattern and not _match_glob(name, inp.file_pattern):
                continue
            path = Path(dirpath, name)
            try:
                if path.stat().st_size > MAX_FILE_SIZE or _is_binary(path):
                    continue
                lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError:
                continue
            rel = path.relative_to(base).as_posix()
            hits, count = _grep_lines(lines, regex, 0, f"{rel}:", inp.max_results - total)
            if count:
                files_hit += 1
                total += count
                out.extend(hits)
            if total >= inp.max_results:
                break
        if total >= inp.max_results:
            break

    if not total:
        return f"No matches for '{inp.pattern}' in {inp.directory}"
    header = f"Found {total} match(es) in {files_hit} file(s) under {inp.directory}:\n"
    footer = f"\n... (results limited to {inp.max_results})" if total >= inp.max_results else ""
    return header + "\n".join(out) + footer


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def make_fs_tools(work_dir: str | Path, max_lines: int = DEFAULT_MAX_LINES) -> list[ToolDef]:
    """Factory: binds the working directory into each handler."""
    root = Path(work_dir)

    async def read_file(inp: ReadFileInput) -> str:
        return await asyncio.to_thread(_read_file, root, inp, max_lines)

    async def list_directory(inp: ListDirectoryInput) -> str:
        return await asyncio.to_thread(_list_directory, root, inp)

    async def list_files(inp: ListFilesInput) -> str:
        return await asyncio.to_thread(_list_files, root, inp)

    async def grep_file(inp: GrepFileInput) -> str:
        return await asyncio.to_thread(_grep_file, root, inp)

    async def grep_directory(inp: GrepDirectoryInput) -> str:
        return await asyncio.to_thread(_grep_directory, root, inp)

    return [
        ToolDef(
            name="read_file",
            description=(
                "Read a file with line numbers. Use start_line/end_line to read a section; "
                f"at most {max_lines} lines are returned per call."
            ),
            input_model=ReadFileInput,
            handler=read_file,
        ),
        ToolDef(
            name="list_directory",
            description="List the contents of a directory, optionally recursively up to max_depth.",
            input_model=ListDirectoryInput,
            handler=list_directory,
        ),
        ToolDef(
            name="list_files",
            description="Find files whose name or relative path matches a glob pattern (e.g. '*.py').",
            input_model=ListFilesInput,
            handler=list_files,
        ),
        ToolDef(
            name="grep_file",
            description="Search one file for a regular expression; returns matching lines with numbers.",
            input_model=GrepFileInput,
            handler=grep_file,
        ),
        ToolDef(
            name="grep_directory",
            description=(
                "Search every text file under a directory for a regular expression. "
                "Skips .git, node_modules, vendor and binary files."
            ),
            input_model=GrepDirectoryInput,
            handler=grep_directory,
            timeout=60.0,
        ),
    ]
