"""Unit tests for helm/api/builtin_tools.py -- bash, read_file, write_file, edit_file.

Filesystem tests use the pytest tmp_path fixture for workspace isolation.
Platform-aware commands use python -c for cross-platform compatibility.
"""

import sys

import pytest

from helm.agent.tools import ToolError, ToolRegistry, ToolText
from helm.api.builtin_tools import (
    _MAX_FILE_SIZE,
    bash_tool,
    edit_file_tool,
    read_file_tool,
    register_builtin_tools,
    write_file_tool,
)
from helm.config import Settings

# ---------------------------------------------------------------------------
# bash_tool tests
# ---------------------------------------------------------------------------


class TestBashTool:
    """Tests for the bash shell execution tool."""

    @pytest.mark.asyncio
    async def test_bash_tool_success(self, tmp_path):
        """Simple command -> stdout captured in response."""
        result = await bash_tool(
            command=f'{sys.executable} -c "print(\'hello from bash tool\')"',
            _workspace_dir=str(tmp_path),
        )
        assert isinstance(result, ToolText)
        assert "hello from bash tool" in result.text

    @pytest.mark.asyncio
    async def test_bash_tool_timeout(self, tmp_path):
        """Command exceeding timeout -> killed, reported as an error."""
        result = await bash_tool(
            command=f'{sys.executable} -c "import time; time.sleep(30)"',
            timeout=1,
            _workspace_dir=str(tmp_path),
        )
        assert isinstance(result, ToolError)
        assert "timed out" in result.message.lower()
        assert "1s" in result.message

    @pytest.mark.asyncio
    async def test_bash_tool_output_truncation(self, tmp_path):
        """Output exceeding 100KB -> truncated with marker."""
        result = await bash_tool(
            command=f'{sys.executable} -c "print(\'x\' * 200000)"',
            _workspace_dir=str(tmp_path),
        )
        assert "truncated" in result.text.lower()
        assert len(result.text) < 200000

    @pytest.mark.asyncio
    async def test_bash_tool_stderr(self, tmp_path):
        """Stderr output captured and labeled."""
        result = await bash_tool(
            command=f'{sys.executable} -c "import sys; sys.stderr.write(\'warning msg\\n\')"',
            _workspace_dir=str(tmp_path),
        )
        assert "STDERR" in result.text
        assert "warning msg" in result.text

    @pytest.mark.asyncio
    async def test_bash_tool_nonzero_exit(self, tmp_path):
        """Non-zero exit code reported in output, not as a tool failure."""
        result = await bash_tool(
            command=f'{sys.executable} -c "import sys; sys.exit(42)"',
            _workspace_dir=str(tmp_path),
        )
        assert isinstance(result, ToolText)
        assert "Exit code: 42" in result.text

    @pytest.mark.asyncio
    async def test_bash_tool_no_output(self, tmp_path):
        result = await bash_tool(
            command=f'{sys.executable} -c "pass"',
            _workspace_dir=str(tmp_path),
        )
        assert result == ToolText("(no output)")

    @pytest.mark.asyncio
    async def test_bash_tool_creates_workspace(self, tmp_path):
        """Workspace directory auto-created if it doesn't exist."""
        workspace = tmp_path / "deep" / "nested" / "workspace"
        assert not workspace.exists()

        result = await bash_tool(
            command=f'{sys.executable} -c "print(\'created\')"',
            _workspace_dir=str(workspace),
        )
        assert "created" in result.text
        assert workspace.exists()


# ---------------------------------------------------------------------------
# read_file_tool tests
# ---------------------------------------------------------------------------


class TestReadFileTool:
    """Tests for the file reading tool."""

    @pytest.mark.asyncio
    async def test_read_file_success(self, tmp_path):
        (tmp_path / "hello.txt").write_text("Hello, world!\nLine 2\nLine 3", encoding="utf-8")

        result = await read_file_tool(path="hello.txt", _workspace_dir=str(tmp_path))

        assert result == ToolText("Hello, world!\nLine 2\nLine 3")

    @pytest.mark.asyncio
    async def test_read_file_not_found(self, tmp_path):
        """Missing file -> ToolError (not exception)."""
        result = await read_file_tool(path="nonexistent.txt", _workspace_dir=str(tmp_path))

        assert isinstance(result, ToolError)
        assert "File not found" in result.message

    @pytest.mark.asyncio
    async def test_read_file_directory(self, tmp_path):
        (tmp_path / "subdir").mkdir()

        result = await read_file_tool(path="subdir", _workspace_dir=str(tmp_path))

        assert isinstance(result, ToolError)
        assert "Not a file" in result.message

    @pytest.mark.asyncio
    async def test_read_file_size_limit(self, tmp_path):
        """File exceeding 1MB -> size limit message."""
        (tmp_path / "large.bin").write_bytes(b"x" * (_MAX_FILE_SIZE + 1))

        result = await read_file_tool(path="large.bin", _workspace_dir=str(tmp_path))

        assert isinstance(result, ToolError)
        assert "too large" in result.message.lower()
        assert "offset/limit" in result.message.lower()

    @pytest.mark.asyncio
    async def test_read_file_with_offset_and_limit(self, tmp_path):
        """offset/limit parameters slice file by lines."""
        (tmp_path / "lines.txt").write_text("line0\nline1\nline2\nline3\nline4\n", encoding="utf-8")

        result = await read_file_tool(
            path="lines.txt",
            offset=1,
            limit=2,
            _workspace_dir=str(tmp_path),
        )

        assert result.text == "line1\nline2\n"

    @pytest.mark.asyncio
    async def test_read_file_path_validation(self, tmp_path):
        """Path outside workspace -> rejection message."""
        result = await read_file_tool(path="../../../etc/passwd", _workspace_dir=str(tmp_path))

        assert isinstance(result, ToolError)
        assert "outside workspace" in result.message.lower()

    @pytest.mark.asyncio
    async def test_read_file_absolute_path_outside_workspace(self, tmp_path):
        if sys.platform == "win32":
            outside_path = "C:\\Windows\\System32\\drivers\\etc\\hosts"
        else:
            outside_path = "/etc/passwd"

        result = await read_file_tool(path=outside_path, _workspace_dir=str(tmp_path))

        assert "outside workspace" in result.message.lower()

    @pytest.mark.asyncio
    async def test_read_file_empty(self, tmp_path):
        (tmp_path / "empty.txt").write_text("", encoding="utf-8")

        result = await read_file_tool(path="empty.txt", _workspace_dir=str(tmp_path))

        assert result == ToolText("(empty file)")


# ---------------------------------------------------------------------------
# write_file_tool tests
# ---------------------------------------------------------------------------


class TestWriteFileTool:
    """Tests for the file writing tool."""

    @pytest.mark.asyncio
    async def test_write_file_success(self, tmp_path):
        result = await write_file_tool(
            path="output.txt",
            content="Written by test",
            _workspace_dir=str(tmp_path),
        )

        assert "written successfully" in result.text.lower()
        assert (tmp_path / "output.txt").read_text(encoding="utf-8") == "Written by test"

    @pytest.mark.asyncio
    async def test_write_file_creates_dirs(self, tmp_path):
        """Write to nested path -> parent directories auto-created."""
        await write_file_tool(
            path="deep/nested/dir/file.txt",
            content="Nested content",
            _workspace_dir=str(tmp_path),
        )

        nested_file = tmp_path / "deep" / "nested" / "dir" / "file.txt"
        assert nested_file.read_text(encoding="utf-8") == "Nested content"

    @pytest.mark.asyncio
    async def test_write_file_path_validation(self, tmp_path):
        result = await write_file_tool(
            path="../../../tmp/evil.txt",
            content="malicious content",
            _workspace_dir=str(tmp_path),
        )

        assert isinstance(result, ToolError)
        assert "outside workspace" in result.message.lower()

    @pytest.mark.asyncio
    async def test_write_file_reports_size(self, tmp_path):
        result = await write_file_tool(
            path="sized.txt",
            content="Hello " * 100,
            _workspace_dir=str(tmp_path),
        )

        assert "Size: 600 bytes" in result.text


# ---------------------------------------------------------------------------
# edit_file_tool tests
# ---------------------------------------------------------------------------


class TestEditFileTool:
    """Tests for the unique-match edit tool."""

    @pytest.mark.asyncio
    async def test_edit_replaces_unique_match(self, tmp_path):
        target = tmp_path / "config.ini"
        target.write_text("[display]\nresolution=1280x720\nrotate=0\n", encoding="utf-8")

        result = await edit_file_tool(
            path="config.ini",
            old_text="resolution=1280x720",
            new_text="resolution=1920x1080",
            _workspace_dir=str(tmp_path),
        )

        assert isinstance(result, ToolText)
        assert "line 2" in result.text
        assert target.read_text(encoding="utf-8") == "[display]\nresolution=1920x1080\nrotate=0\n"

    @pytest.mark.asyncio
    async def test_edit_ambiguous_match_rejected(self, tmp_path):
        target = tmp_path / "dup.txt"
        target.write_text("x=1\nx=1\n", encoding="utf-8")

        result = await edit_file_tool(
            path="dup.txt", old_text="x=1", new_text="x=2", _workspace_dir=str(tmp_path),
        )

        assert isinstance(result, ToolError)
        assert "2 times" in result.message
        assert target.read_text(encoding="utf-8") == "x=1\nx=1\n"

    @pytest.mark.asyncio
    async def test_edit_missing_text_rejected(self, tmp_path):
        (tmp_path / "a.txt").write_text("hello", encoding="utf-8")

        result = await edit_file_tool(
            path="a.txt", old_text="goodbye", new_text="x", _workspace_dir=str(tmp_path),
        )

        assert isinstance(result, ToolError)
        assert "not found" in result.message

    @pytest.mark.asyncio
    async def test_edit_missing_file(self, tmp_path):
        result = await edit_file_tool(
            path="nope.txt", old_text="a", new_text="b", _workspace_dir=str(tmp_path),
        )

        assert isinstance(result, ToolError)
        assert "File not found" in result.message


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_builtin_tools(self, tmp_path):
        settings = Settings(ANTHROPIC_API_KEY="k", workspace_dir=str(tmp_path))
        registry = ToolRegistry()

        register_builtin_tools(registry, settings)

        assert registry.names() == ["bash", "read_file", "write_file", "edit_file"]
        for definition in registry.definitions():
            assert definition["input_schema"]["type"] == "object"
            assert definition["input_schema"]["required"]

    @pytest.mark.asyncio
    async def test_registered_tools_use_workspace(self, tmp_path):
        settings = Settings(ANTHROPIC_API_KEY="k", workspace_dir=str(tmp_path))
        registry = ToolRegistry()
        register_builtin_tools(registry, settings)

        written = await registry.invoke("write_file", {"path": "note.txt", "content": "hi"})
        read = await registry.invoke("read_file", {"path": "note.txt"})

        assert isinstance(written, ToolText)
        assert read == ToolText("hi")
        assert (tmp_path / "note.txt").exists()
