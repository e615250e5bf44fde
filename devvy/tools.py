"""
Agent Tools

Side-effecting capabilities the model can invoke during an agent turn:
- bash: Run a shell command with a timeout and an output cap
- write_file: Create or overwrite a file
- edit_file: Search/replace inside a file (exact or regex)
- read_file: Read a file or a line range
- list_files: List a directory, optionally recursively
- signal_implementation_mode: Mark the end of brainstorming

Every tool returns a ToolResult. Failures are values, not exceptions, so
the model sees its own tool's error and can try again.
"""

import asyncio
import logging
import os
import re
import signal
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .validation import validate_bash_command, validate_file_path

logger = logging.getLogger(__name__)

DEFAULT_SHELL_TIMEOUT = 60.0
MAX_OUTPUT_CHARS = 100_000
KILL_GRACE_SECONDS = 2.0
DEFAULT_LIST_DEPTH = 3

# Skipped by list_files in addition to dot-entries
IGNORED_DIRS = {"node_modules", "__pycache__", "venv", ".venv"}


@dataclass
class ToolResult:
    """Outcome of a tool execution."""
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None

    def to_message_content(self) -> str:
        """Text fed back to the model as the tool-role message."""
        if self.success:
            return self.output or ""
        return f"Error: {self.error or 'Unknown error'}"


class Tool(ABC):
    """Base class for tools. Subclasses set name/description/parameters."""

    name: str = ""
    description: str = ""
    parameters: dict = {"type": "object", "properties": {}, "required": []}

    @abstractmethod
    async def execute(self, args: dict[str, Any]) -> ToolResult:
        ...

    def to_openai_tool(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """
    Name-keyed collection of tools.

    Usage:
        registry = create_default_registry()
        result = await registry.execute("read_file", {"path": "README.md"})
        manifest = registry.to_manifest()  # pass as `tools=` to the gateway
    """

    def __init__(self, tools: Optional[list[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool):
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def get_all(self) -> list[Tool]:
        return list(self._tools.values())

    def get_all_names(self) -> list[str]:
        return list(self._tools.keys())

    def to_manifest(self) -> list[dict]:
        return [tool.to_openai_tool() for tool in self._tools.values()]

    async def execute(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Run a tool by name. Never raises for tool failures."""
        tool = self.get(name)
        if tool is None:
            return ToolResult(success=False, error=f"Unknown tool: {name}")

        if not isinstance(args, dict):
            return ToolResult(success=False, error=f"Arguments for {name} must be an object")

        try:
            result = await tool.execute(args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Tool {name} raised: {e}")
            return ToolResult(success=False, error=str(e) or type(e).__name__)

        if not result.success:
            logger.warning(f"Tool {name} failed: {result.error}")
        return result

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


# =============================================================================
# Shell
# =============================================================================

def truncate_output(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [output truncated at {limit} characters]"


async def _read_capped(stream: Optional[asyncio.StreamReader], limit: int) -> tuple[str, bool]:
    """Drain a stream, keeping at most `limit` characters."""
    if stream is None:
        return "", False

    kept: list[bytes] = []
    size = 0
    truncated = False
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        if size < limit:
            kept.append(chunk[:limit - size])
            size += min(len(chunk), limit - size)
            if len(chunk) > len(kept[-1]):
                truncated = True
        else:
            truncated = True

    return b"".join(kept).decode("utf-8", errors="replace"), truncated


async def _kill_process_group(proc: asyncio.subprocess.Process):
    """SIGTERM the whole group, then SIGKILL after a grace period."""
    if proc.returncode is not None:
        return

    if sys.platform == "win32":
        proc.kill()
        await proc.wait()
        return

    try:
        pgid = os.getpgid(proc.pid)
        os.killpg(pgid, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), KILL_GRACE_SECONDS)
            return
        except asyncio.TimeoutError:
            os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except OSError as e:
        logger.debug(f"Process group kill failed, killing pid {proc.pid}: {e}")
        if proc.returncode is None:
            proc.kill()

    await proc.wait()


class BashTool(Tool):
    name = "bash"
    description = "Execute a shell command and return its output."
    parameters = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to run"},
            "cwd": {"type": "string", "description": "Working directory (optional, defaults to the current directory)"},
            "timeout": {"type": "number", "description": "Timeout in seconds (optional, defaults to 60)"},
        },
        "required": ["command"],
    }

    def __init__(self, timeout: float = DEFAULT_SHELL_TIMEOUT, max_output: int = MAX_OUTPUT_CHARS):
        self.timeout = timeout
        self.max_output = max_output

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        command = args.get("command")
        if not command:
            return ToolResult(success=False, error="Command is required")

        check = validate_bash_command(command)
        if not check.is_valid:
            return ToolResult(success=False, error="; ".join(check.errors))

        cwd = args.get("cwd") or os.getcwd()
        if not Path(cwd).is_dir():
            return ToolResult(success=False, error=f"Working directory does not exist: {cwd}")

        timeout = float(args.get("timeout") or self.timeout)

        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=sys.platform != "win32",
        )

        async def collect():
            out, err = await asyncio.gather(
                _read_capped(proc.stdout, self.max_output),
                _read_capped(proc.stderr, self.max_output),
            )
            await proc.wait()
            return out, err

        try:
            (stdout, out_truncated), (stderr, err_truncated) = await asyncio.wait_for(collect(), timeout)
        except asyncio.TimeoutError:
            await _kill_process_group(proc)
            logger.warning(f"Command timed out after {timeout:g}s: {command}")
            return ToolResult(success=False, error=f"Command timed out after {timeout:g} seconds")
        except asyncio.CancelledError:
            await _kill_process_group(proc)
            raise

        if out_truncated:
            stdout += f"\n... [output truncated at {self.max_output} characters]"
        if err_truncated:
            stderr += f"\n... [output truncated at {self.max_output} characters]"

        if proc.returncode != 0:
            detail = stderr.strip() or stdout.strip()
            message = f"Command failed with exit code {proc.returncode}"
            if detail:
                message += f": {detail}"
            return ToolResult(success=False, error=truncate_output(message, self.max_output), output=stdout or None)

        output = stdout
        if stderr:
            output += f"\nStderr: {stderr}"
        return ToolResult(success=True, output=truncate_output(output, self.max_output))


# =============================================================================
# Files
# =============================================================================

class WriteFileTool(Tool):
    name = "write_file"
    description = "Create or overwrite a file with the given content. Creates parent directories if needed."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to write to (relative or absolute)"},
            "content": {"type": "string", "description": "The content to write to the file"},
        },
        "required": ["path", "content"],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        path = args.get("path")
        content = args.get("content")
        if content is None:
            return ToolResult(success=False, error="Content is required")

        check = validate_file_path(path, allow_write=True)
        if not check.is_valid:
            return ToolResult(success=False, error="; ".join(check.errors))

        try:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            return ToolResult(success=False, error=f"Failed to write {path}: {e}")

        return ToolResult(success=True, output=f"File written successfully: {path}")


class EditFileTool(Tool):
    name = "edit_file"
    description = "Edit an existing file by replacing specific text. Supports exact string matching or regex patterns."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to edit"},
            "search": {"type": "string", "description": "The text or regex pattern to search for"},
            "replace": {"type": "string", "description": "The replacement text"},
            "is_regex": {"type": "boolean", "description": "Treat search as a regex pattern (optional, defaults to false)"},
            "all": {"type": "boolean", "description": "Replace all occurrences (optional, defaults to false)"},
        },
        "required": ["path", "search", "replace"],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        path = args.get("path")
        search = args.get("search")
        replace = args.get("replace")
        is_regex = bool(args.get("is_regex", False))
        replace_all = bool(args.get("all", False))

        if not search:
            return ToolResult(success=False, error="Search text is required")
        if replace is None:
            return ToolResult(success=False, error="Replacement text is required")

        check = validate_file_path(path, allow_write=True)
        if not check.is_valid:
            return ToolResult(success=False, error="; ".join(check.errors))

        target = Path(path)
        try:
            content = target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ToolResult(success=False, error=f"File not found: {path}")
        except OSError as e:
            return ToolResult(success=False, error=f"Failed to read {path}: {e}")

        count = 0 if replace_all else 1
        if is_regex:
            try:
                pattern = re.compile(search, re.MULTILINE)
            except re.error as e:
                return ToolResult(success=False, error=f"Invalid regex: {e}")
            new_content, matches = pattern.subn(replace, content, count=count)
        else:
            matches = content.count(search) if replace_all else int(search in content)
            new_content = content.replace(search, replace, -1 if replace_all else 1)

        if matches == 0:
            return ToolResult(success=False, error=f"No matches found for: {search}")

        try:
            target.write_text(new_content, encoding="utf-8")
        except OSError as e:
            return ToolResult(success=False, error=f"Failed to write {path}: {e}")

        plural = "s" if matches > 1 else ""
        return ToolResult(success=True, output=f"File edited successfully: {path} ({matches} replacement{plural} made)")


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read the contents of a file."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The file path to read"},
            "start_line": {"type": "number", "description": "Starting line number (1-indexed, optional)"},
            "end_line": {"type": "number", "description": "Ending line number (1-indexed, inclusive, optional)"},
        },
        "required": ["path"],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        path = args.get("path")
        if not path:
            return ToolResult(success=False, error="Path is required")

        try:
            content = Path(path).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ToolResult(success=False, error=f"File not found: {path}")
        except OSError as e:
            return ToolResult(success=False, error=f"Failed to read {path}: {e}")

        start_line = args.get("start_line")
        end_line = args.get("end_line")
        if start_line is None and end_line is None:
            return ToolResult(success=True, output=content)

        lines = content.split("\n")
        start = max(int(start_line or 1), 1) - 1
        end = int(end_line) if end_line is not None else len(lines)
        return ToolResult(success=True, output="\n".join(lines[start:end]))


def format_size(size: float) -> str:
    units = ["B", "KB", "MB", "GB"]
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    return f"{size:.1f} {units[unit]}" if unit else f"{int(size)} {units[unit]}"


class ListFilesTool(Tool):
    name = "list_files"
    description = "List files and directories in a given path."
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory to list (optional, defaults to the current directory)"},
            "recursive": {"type": "boolean", "description": "List recursively (optional, defaults to false)"},
            "max_depth": {"type": "number", "description": "Maximum recursion depth (optional, defaults to 3)"},
        },
        "required": [],
    }

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        base = Path(args.get("path") or os.getcwd())
        recursive = bool(args.get("recursive", False))
        max_depth = int(args.get("max_depth") or DEFAULT_LIST_DEPTH)

        if not base.exists():
            return ToolResult(success=False, error=f"Directory not found: {base}")
        if not base.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {base}")

        try:
            lines = self._list_dir(base, recursive, max_depth, 0)
        except OSError as e:
            return ToolResult(success=False, error=f"Failed to list {base}: {e}")

        return ToolResult(success=True, output="\n".join(lines) or "(empty directory)")

    def _list_dir(self, directory: Path, recursive: bool, max_depth: int, depth: int) -> list[str]:
        lines = []
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            if entry.name.startswith(".") or entry.name in IGNORED_DIRS:
                continue

            if entry.is_dir():
                lines.append(f"[dir] {entry}")
                if recursive and depth < max_depth:
                    lines.extend(self._list_dir(entry, recursive, max_depth, depth + 1))
            else:
                lines.append(f"[file] {entry} ({format_size(entry.stat().st_size)})")
        return lines


class SignalImplementationModeTool(Tool):
    name = "signal_implementation_mode"
    description = "Signals that the brainstorming phase is complete and the implementation phase should begin."

    async def execute(self, args: dict[str, Any]) -> ToolResult:
        return ToolResult(success=True, output="Implementation mode signaled.")


def create_default_registry(shell_timeout: float = DEFAULT_SHELL_TIMEOUT) -> ToolRegistry:
    """Registry with the shell and file tools."""
    return ToolRegistry([
        BashTool(timeout=shell_timeout),
        WriteFileTool(),
        EditFileTool(),
        ReadFileTool(),
        ListFilesTool(),
    ])
