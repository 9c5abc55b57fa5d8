"""Result formatter -- turns a tool's output into a tool_result content block."""

from __future__ import annotations

from typing import Any

from helm.agent.messages import ImageBlock, TextBlock, ToolResultBlock
from helm.agent.tools import ToolError, ToolImage, ToolText, normalize_output

DEFAULT_MAX_BYTES = 50_000
ERROR_PREFIX = "ERROR: "


def truncate_text(text: str, max_bytes: int) -> str:
    """Cut text to at most max_bytes UTF-8 bytes and append a truncation marker.

    The cut never splits a multi-byte character.
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    kept = encoded[:max_bytes].decode("utf-8", errors="ignore")
    dropped = len(encoded) - len(kept.encode("utf-8"))
    return f"{kept}\n... [truncated {dropped} bytes]"


class ResultFormatter:
    """Formats tool outputs for the transcript.

    Text and error outputs are capped at max_bytes. Images pass through
    untouched; keeping them small is the producing tool's responsibility.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.max_bytes = max_bytes

    def format(self, tool_use_id: str, output: Any) -> ToolResultBlock:
        """Build the ToolResultBlock answering tool_use_id."""
        if not isinstance(output, (ToolText, ToolError, ToolImage)):
            output = normalize_output(output)

        if isinstance(output, ToolImage):
            return ToolResultBlock(
                tool_use_id=tool_use_id,
                content=(ImageBlock(output.data, output.media_type),),
            )
        if isinstance(output, ToolError):
            return ToolResultBlock(
                tool_use_id=tool_use_id,
                content=(TextBlock(truncate_text(ERROR_PREFIX + output.message, self.max_bytes)),),
                is_error=True,
            )
        # The API rejects empty text blocks
        text = output.text or "(no output)"
        return ToolResultBlock(
            tool_use_id=tool_use_id,
            content=(TextBlock(truncate_text(text, self.max_bytes)),),
        )
