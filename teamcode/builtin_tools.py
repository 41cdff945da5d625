"""
Built-in workspace tools:

    bash                    shell command in the workspace
    read_file, list_dir     look at files
    glob, grep              find files by name or content
    write_file, edit_file,  change files (multi_edit applies several
    multi_edit              replacements to one file, all or nothing)
    ask_user                put a question to the human

Paths are resolved against ToolContext.cwd and may not escape it. Tool
errors come back as failed ToolResults; the dispatcher still catches
anything unexpected.
"""

import fnmatch
import os
import re
import subprocess
from pathlib import Path

from teamcode.messages import MAX_TOOL_OUTPUT
from teamcode.tools import Tool, ToolCatalog, ToolResult

BASH_TIMEOUT = 120
DANGEROUS = ["rm -rf /", "sudo", "shutdown", "reboot", "> /dev/"]
LIST_LIMIT = 500
SEARCH_LIMIT = 50


def safe_path(cwd, p: str) -> Path:
    root = Path(cwd).resolve()
    path = (root / p).resolve()
    if not path.is_relative_to(root):
        raise ValueError(f"Path escapes workspace: {p}")
    return path


def run_bash(args: dict, context) -> ToolResult:
    command = args.get("command", "")
    if not command:
        return ToolResult.fail("No command given")
    if any(d in command for d in DANGEROUS):
        return ToolResult.fail("Dangerous command blocked")
    try:
        r = subprocess.run(command, shell=True, cwd=context.cwd,
                           capture_output=True, text=True, timeout=BASH_TIMEOUT)
    except subprocess.TimeoutExpired:
        return ToolResult.fail(f"Timeout ({BASH_TIMEOUT}s)")
    out = (r.stdout + r.stderr).strip()[:MAX_TOOL_OUTPUT] or "(no output)"
    if r.returncode != 0:
        return ToolResult.fail(f"Exit code {r.returncode}", out)
    return ToolResult.ok(out)


def run_read(args: dict, context) -> ToolResult:
    try:
        lines = safe_path(context.cwd, args.get("path", "")).read_text().splitlines()
    except (OSError, ValueError, UnicodeDecodeError) as e:
        return ToolResult.fail(str(e))
    limit = args.get("limit")
    if limit and limit < len(lines):
        lines = lines[:limit] + [f"... ({len(lines) - limit} more)"]
    return ToolResult.ok("\n".join(lines)[:MAX_TOOL_OUTPUT])


def _walk_files(root: Path):
    """Files under root, skipping hidden directories (.git, .venv, ...)."""
    if root.is_file():
        yield root
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            yield Path(dirpath) / name


def run_glob(args: dict, context) -> ToolResult:
    pattern = args.get("pattern", "")
    kind = args.get("type", "file")
    if not pattern:
        return ToolResult.fail("No pattern given")
    try:
        root = safe_path(context.cwd, args.get("path", "."))
        cwd = Path(context.cwd).resolve()
        matches = []
        for p in sorted(root.rglob(pattern)):
            rel = p.relative_to(cwd)
            if any(part.startswith(".") for part in rel.parts[:-1]):
                continue
            if (kind == "file" and not p.is_file()) or (kind == "directory" and not p.is_dir()):
                continue
            matches.append(str(rel))
            if len(matches) >= SEARCH_LIMIT:
                break
    except (OSError, ValueError) as e:
        return ToolResult.fail(str(e))
    return ToolResult.ok("\n".join(matches) or "No files found.")


def run_grep(args: dict, context) -> ToolResult:
    query = args.get("query", "")
    if not query:
        return ToolResult.fail("No query given")
    flags = 0 if args.get("case_sensitive") else re.IGNORECASE
    try:
        regex = re.compile(re.escape(query) if args.get("fixed_strings") else query, flags)
    except re.error as e:
        return ToolResult.fail(f"Invalid pattern: {e}")
    includes = args.get("includes") or []
    per_line = args.get("match_per_line", False)

    try:
        root = safe_path(context.cwd, args.get("path", "."))
    except ValueError as e:
        return ToolResult.fail(str(e))
    cwd = Path(context.cwd).resolve()
    results = []
    for fp in _walk_files(root):
        if includes and not any(fnmatch.fnmatch(fp.name, g) for g in includes):
            continue
        try:
            lines = fp.read_text().splitlines()
        except (OSError, UnicodeDecodeError):
            continue
        rel = fp.relative_to(cwd)
        hits = [(n, line) for n, line in enumerate(lines, 1) if regex.search(line)]
        if not hits:
            continue
        if per_line:
            results += [f"{rel}:{n}:{line}" for n, line in hits]
        else:
            results.append(str(rel))
        if len(results) >= SEARCH_LIMIT:
            results = results[:SEARCH_LIMIT]
            break
    return ToolResult.ok("\n".join(results)[:MAX_TOOL_OUTPUT] or "No matches found.")


def run_write(args: dict, context) -> ToolResult:
    path, content = args.get("path", ""), args.get("content", "")
    try:
        fp = safe_path(context.cwd, path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        fp.write_text(content)
    except (OSError, ValueError) as e:
        return ToolResult.fail(str(e))
    return ToolResult.ok(f"Wrote {len(content)} bytes to {path}")


def run_edit(args: dict, context) -> ToolResult:
    path = args.get("path", "")
    old_text, new_text = args.get("old_text", ""), args.get("new_text", "")
    if not old_text:
        return ToolResult.fail("old_text must not be empty")
    try:
        fp = safe_path(context.cwd, path)
        c = fp.read_text()
        if old_text not in c:
            return ToolResult.fail(f"Text not found in {path}")
        fp.write_text(c.replace(old_text, new_text, 1))
    except (OSError, ValueError, UnicodeDecodeError) as e:
        return ToolResult.fail(str(e))
    return ToolResult.ok(f"Edited {path}")


def run_multi_edit(args: dict, context) -> ToolResult:
    """Apply edits in order to one file. Nothing is written unless all apply."""
    path = args.get("path", "")
    edits = args.get("edits") or []
    if not edits:
        return ToolResult.fail("No edits provided")
    try:
        fp = safe_path(context.cwd, path)
        content = fp.read_text()
    except (OSError, ValueError, UnicodeDecodeError) as e:
        return ToolResult.fail(str(e))

    for i, edit in enumerate(edits):
        old_text, new_text = edit.get("old_text", ""), edit.get("new_text", "")
        if not old_text:
            return ToolResult.fail(f"Edit {i}: old_text must not be empty")
        if old_text == new_text:
            return ToolResult.fail(f"Edit {i}: old_text and new_text are identical")
        count = content.count(old_text)
        if count == 0:
            return ToolResult.fail(f"Edit {i}: text not found in {path}")
        if edit.get("replace_all"):
            content = content.replace(old_text, new_text)
        elif count > 1:
            return ToolResult.fail(f"Edit {i}: text found {count} times. Use replace_all or add more context.")
        else:
            content = content.replace(old_text, new_text, 1)

    try:
        fp.write_text(content)
    except OSError as e:
        return ToolResult.fail(str(e))
    return ToolResult.ok(f"Applied {len(edits)} edits to {path}")


def run_list_dir(args: dict, context) -> ToolResult:
    try:
        root = safe_path(context.cwd, args.get("path", "."))
        entries = sorted(root.iterdir(), key=lambda p: (not p.is_dir(), p.name))
    except (OSError, ValueError) as e:
        return ToolResult.fail(str(e))
    lines = [f"{p.name}/" if p.is_dir() else p.name for p in entries[:LIST_LIMIT]]
    if len(entries) > LIST_LIMIT:
        lines.append(f"... ({len(entries) - LIST_LIMIT} more)")
    return ToolResult.ok("\n".join(lines) or "(empty directory)")


def run_ask_user(args: dict, context) -> ToolResult:
    question = args.get("question", "")
    if not question:
        return ToolResult.fail("No question given")
    try:
        answer = context.ask_user(question)
    except (EOFError, KeyboardInterrupt):
        return ToolResult.fail("Failed to get user input")
    return ToolResult.ok(answer or "(no answer)")


BUILTIN_TOOLS = [
    Tool("bash", "Run a shell command in the workspace.",
         {"properties": {"command": {"type": "string"}}, "required": ["command"]},
         run_bash),
    Tool("read_file", "Read file contents.",
         {"properties": {"path": {"type": "string"}, "limit": {"type": "integer"}},
          "required": ["path"]},
         run_read),
    Tool("write_file", "Write content to a file, creating parent directories.",
         {"properties": {"path": {"type": "string"}, "content": {"type": "string"}},
          "required": ["path", "content"]},
         run_write),
    Tool("edit_file", "Replace the first occurrence of old_text with new_text in a file.",
         {"properties": {"path": {"type": "string"}, "old_text": {"type": "string"},
                         "new_text": {"type": "string"}},
          "required": ["path", "old_text", "new_text"]},
         run_edit),
    Tool("list_dir", "List a directory, folders first.",
         {"properties": {"path": {"type": "string"}}},
         run_list_dir),
    Tool("glob", "Find files by name pattern (e.g. *.py, test_*), searched recursively.",
         {"properties": {"pattern": {"type": "string"},
                         "path": {"type": "string", "description": "Directory to search (default: .)"},
                         "type": {"type": "string", "enum": ["file", "directory", "any"]}},
          "required": ["pattern"]},
         run_glob),
    Tool("grep", "Search file contents with a regex. Lists matching files, or matching "
                 "lines with match_per_line.",
         {"properties": {"query": {"type": "string"},
                         "path": {"type": "string", "description": "File or directory (default: .)"},
                         "includes": {"type": "array", "items": {"type": "string"},
                                      "description": "File name globs to search, e.g. *.py"},
                         "fixed_strings": {"type": "boolean"},
                         "case_sensitive": {"type": "boolean"},
                         "match_per_line": {"type": "boolean"}},
          "required": ["query"]},
         run_grep),
    Tool("multi_edit", "Apply several replacements to one file in order. All succeed or none are written.",
         {"properties": {"path": {"type": "string"},
                         "edits": {"type": "array", "items": {
                             "type": "object",
                             "properties": {"old_text": {"type": "string"},
                                            "new_text": {"type": "string"},
                                            "replace_all": {"type": "boolean"}},
                             "required": ["old_text", "new_text"]}}},
          "required": ["path", "edits"]},
         run_multi_edit),
    Tool("ask_user", "Ask the user a question and wait for the answer.",
         {"properties": {"question": {"type": "string"}}, "required": ["question"]},
         run_ask_user),
]


def default_catalog() -> ToolCatalog:
    return ToolCatalog(BUILTIN_TOOLS)
