"""Transcript message model and Anthropic Messages API (de)serialization.

A Message's content is either plain text or an ordered list of content
blocks. Blocks are plain dataclasses; to_api() produces the JSON shape the
Messages API expects and block_from_api() parses response blocks back.
Blocks the loop does not interpret (e.g. thinking) are kept as RawBlock so
an assistant turn replays verbatim.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class TextBlock:
    text: str

    def to_api(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ImageBlock:
    """Inline image. data holds raw bytes; base64 happens on serialization."""

    data: bytes
    media_type: str = "image/png"

    def to_api(self) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": self.media_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            },
        }


@dataclass(frozen=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_api(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: tuple[TextBlock | ImageBlock, ...] = ()
    is_error: bool = False

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": [b.to_api() for b in self.content],
        }
        if self.is_error:
            data["is_error"] = True
        return data


@dataclass(frozen=True)
class RawBlock:
    """A response block passed through untouched."""

    data: dict[str, Any]

    @property
    def type(self) -> str:
        return self.data.get("type", "unknown")

    def to_api(self) -> dict[str, Any]:
        return dict(self.data)


ContentBlock = TextBlock | ImageBlock | ToolUseBlock | ToolResultBlock | RawBlock


@dataclass
class Message:
    """A single message in a conversation."""

    role: Role
    content: str | list[ContentBlock]

    @property
    def blocks(self) -> list[ContentBlock]:
        """Content as a block list (plain text becomes one TextBlock)."""
        if isinstance(self.content, str):
            return [TextBlock(self.content)] if self.content else []
        return list(self.content)

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [b for b in self.blocks if isinstance(b, ToolResultBlock)]

    @property
    def is_tool_result(self) -> bool:
        """True for the user message that answers an assistant's tool_use blocks."""
        return self.role == "user" and bool(self.tool_results)

    @property
    def text(self) -> str:
        """Concatenated text blocks, newline separated."""
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    def to_api(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [b.to_api() for b in self.content]}


def block_from_api(data: dict[str, Any]) -> ContentBlock:
    """Parse one content block from an API response."""
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(data.get("text", ""))
    if block_type == "tool_use":
        return ToolUseBlock(
            id=data["id"],
            name=data["name"],
            input=data.get("input") or {},
        )
    return RawBlock(dict(data))
