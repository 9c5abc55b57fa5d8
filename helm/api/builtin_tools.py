"""Built-in host tools for the Helm agent: bash, read_file, write_file, edit_file.

These give the agent shell and file-edit capabilities confined to the
workspace directory. Every handler returns ToolText or ToolError, so
failures reach the model as error tool results instead of exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from helm.agent.tools import ToolContract, ToolError, ToolOutput, ToolRegistry, ToolText
from helm.config import Settings

logger = logging.getLogger(__name__)

# Limits
_MAX_BASH_TIMEOUT = 300  # seconds
_MAX_OUTPUT_CHARS = 100 * 1024  # 100KB
_MAX_FILE_SIZE = 1 * 1024 * 1024  # 1MB
_DEFAULT_WORKSPACE = "/tmp/helm-workspace"


def _validate_path(path_str: str, workspace_dir: str) -> Path:
    """Validate that a path is under workspace_dir.

    Raises ValueError if path escapes workspace.
    """
    workspace = Path(workspace_dir).resolve()
    target = (workspace / path_str).resolve() if not Path(path_str).is_absolute() else Path(path_str).resolve()

    if not target.is_relative_to(workspace):
        raise ValueError(
            f"Path '{path_str}' is outside workspace '{workspace_dir}'. "
            "Only paths within the workspace directory are allowed."
        )
    return target


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def bash_tool(
    command: str,
    timeout: int = 30,
    *,
    _workspace_dir: str = _DEFAULT_WORKSPACE,
    _max_timeout: int = _MAX_BASH_TIMEOUT,
) -> ToolOutput:
    """Execute a shell command in the workspace directory.

    Args:
        command: Shell command to execute
        timeout: Timeout in seconds (clamped to 1.._max_timeout)
        _workspace_dir: Internal param set by registration closure
        _max_timeout: Internal param set by registration closure

    Returns:
        ToolText with stdout + stderr, or ToolError on timeout/failure
    """
    effective_timeout = max(1, min(timeout, _max_timeout))

    try:
        workspace = Path(_workspace_dir)
        workspace.mkdir(parents=True, exist_ok=True)

        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workspace),
        )
    except OSError as e:
        logger.exception("bash_tool failed to start")
        return ToolError(f"Error executing command: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=effective_timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return ToolError(f"Command timed out after {effective_timeout}s.\nCommand: {command}")

    stdout_text = stdout.decode("utf-8", errors="replace")
    stderr_text = stderr.decode("utf-8", errors="replace")

    if len(stdout_text) > _MAX_OUTPUT_CHARS:
        stdout_text = stdout_text[:_MAX_OUTPUT_CHARS] + "\n... [output truncated at 100KB]"
    if len(stderr_text) > _MAX_OUTPUT_CHARS:
        stderr_text = stderr_text[:_MAX_OUTPUT_CHARS] + "\n... [stderr truncated at 100KB]"

    parts = []
    if stdout_text:
        parts.append(stdout_text)
    if stderr_text:
        parts.append(f"STDERR:\n{stderr_text}")
    if proc.returncode != 0:
        parts.append(f"Exit code: {proc.returncode}")

    # Non-zero exit is still a result the model can read, not a tool failure
    return ToolText("\n".join(parts) if parts else "(no output)")


async def read_file_tool(
    path: str,
    offset: int = 0,
    limit: int = 0,
    *,
    _workspace_dir: str = _DEFAULT_WORKSPACE,
) -> ToolOutput:
    """Read a file from the workspace directory.

    Args:
        path: File path (relative to workspace or absolute within workspace)
        offset: Line offset to start reading from (0-indexed)
        limit: Number of lines to read (0 = all)
    """
    try:
        target = _validate_path(path, _workspace_dir)
    except ValueError as e:
        return ToolError(str(e))

    if not target.exists():
        return ToolError(f"File not found: {path}")
    if not target.is_file():
        return ToolError(f"Not a file: {path}")

    file_size = target.stat().st_size
    if file_size > _MAX_FILE_SIZE and offset == 0 and limit == 0:
        return ToolError(
            f"File too large: {file_size:,} bytes (limit: {_MAX_FILE_SIZE:,} bytes). "
            f"Use offset/limit to read portions."
        )

    try:
        content = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
    except OSError as e:
        logger.exception("read_file_tool error")
        return ToolError(f"Error reading file: {e}")

    if offset > 0 or limit > 0:
        lines = content.splitlines(keepends=True)
        if offset > 0:
            lines = lines[offset:]
        if limit > 0:
            lines = lines[:limit]
        content = "".join(lines)

    return ToolText(content if content else "(empty file)")


async def write_file_tool(
    path: str,
    content: str,
    *,
    _workspace_dir: str = _DEFAULT_WORKSPACE,
) -> ToolOutput:
    """Write content to a file in the workspace, creating parent directories."""
    try:
        target = _validate_path(path, _workspace_dir)
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")
    except ValueError as e:
        return ToolError(str(e))
    except OSError as e:
        logger.exception("write_file_tool error")
        return ToolError(f"Error writing file: {e}")

    return ToolText(f"File written successfully: {target}\nSize: {len(content):,} bytes")


async def edit_file_tool(
    path: str,
    old_text: str,
    new_text: str,
    *,
    _workspace_dir: str = _DEFAULT_WORKSPACE,
) -> ToolOutput:
    """Replace exactly one occurrence of old_text with new_text.

    Fails when old_text is missing or ambiguous so the model can widen
    its selection instead of editing the wrong spot.
    """
    try:
        target = _validate_path(path, _workspace_dir)
    except ValueError as e:
        return ToolError(str(e))

    if not target.is_file():
        return ToolError(f"File not found: {path}")
    if not old_text:
        return ToolError("old_text must not be empty")

    try:
        content = await asyncio.to_thread(target.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return ToolError(f"Error reading file: {e}")

    count = content.count(old_text)
    if count == 0:
        return ToolError(f"old_text not found in {path}")
    if count > 1:
        return ToolError(
            f"old_text matches {count} times in {path}; include more context to make it unique"
        )

    try:
        await asyncio.to_thread(
            target.write_text, content.replace(old_text, new_text, 1), encoding="utf-8"
        )
    except OSError as e:
        logger.exception("edit_file_tool error")
        return ToolError(f"Error writing file: {e}")

    line = content[: content.index(old_text)].count("\n") + 1
    return ToolText(f"Edited {target} at line {line}")


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

_BASH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "command": {"type": "string", "description": "Shell command to execute"},
        "timeout": {
            "type": "integer",
            "description": "Timeout in seconds (default 30, max 300)",
            "default": 30,
            "minimum": 1,
            "maximum": 300,
        },
    },
    "required": ["command"],
}

_READ_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "path": {"type": "string", "description": "File path (relative or absolute within workspace)"},
        "offset": {
            "type": "integer",
            "description": "Line offset to start reading from (0-indexed)",
            "default": 0,
            "minimum": 0,
        },
        "limit": {
            "type": "integer",
            "description": "Number of lines to read (0 = all)",
            "default": 0,
            "minimum": 0,
        },
    },
    "required": ["path"],
}

_WRITE_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "path": {"type": "string", "description": "File path (relative or absolute within workspace)"},
        "content": {"type": "string", "description": "Content to write to the file"},
    },
    "required": ["path", "content"],
}

_EDIT_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "path": {"type": "string", "description": "File path (relative or absolute within workspace)"},
        "old_text": {"type": "string", "description": "Exact text to replace; must occur exactly once"},
        "new_text": {"type": "string", "description": "Replacement text"},
    },
    "required": ["path", "old_text", "new_text"],
}


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_builtin_tools(registry: ToolRegistry, settings: Settings) -> None:
    """Register bash, read_file, write_file and edit_file with the registry.

    Creates closure wrappers that inject workspace_dir from settings.
    """
    workspace = settings.workspace_dir
    max_timeout = min(settings.bash_timeout_max, _MAX_BASH_TIMEOUT)

    async def _bash(command: str, timeout: int = 30) -> ToolOutput:
        return await bash_tool(command, timeout, _workspace_dir=workspace, _max_timeout=max_timeout)

    async def _read_file(path: str, offset: int = 0, limit: int = 0) -> ToolOutput:
        return await read_file_tool(path, offset, limit, _workspace_dir=workspace)

    async def _write_file(path: str, content: str) -> ToolOutput:
        return await write_file_tool(path, content, _workspace_dir=workspace)

    async def _edit_file(path: str, old_text: str, new_text: str) -> ToolOutput:
        return await edit_file_tool(path, old_text, new_text, _workspace_dir=workspace)

    registry.register(ToolContract(
        name="bash",
        description="Execute a shell command in the workspace directory",
        handler=_bash,
        input_schema=_BASH_SCHEMA,
    ))
    registry.register(ToolContract(
        name="read_file",
        description="Read a file from the workspace directory",
        handler=_read_file,
        input_schema=_READ_FILE_SCHEMA,
    ))
    registry.register(ToolContract(
        name="write_file",
        description="Write content to a file in the workspace directory",
        handler=_write_file,
        input_schema=_WRITE_FILE_SCHEMA,
    ))
    registry.register(ToolContract(
        name="edit_file",
        description="Replace a unique snippet of text in a workspace file",
        handler=_edit_file,
        input_schema=_EDIT_FILE_SCHEMA,
    ))
