"""Agent module -- the agentic tool-use loop.

Public API: AgentLoop plus the registry, transcript, formatter, message
and error types it is built from.
"""

from helm.agent.client import AnthropicClient, ModelRequest, ModelResponse, ModelService
from helm.agent.errors import (
    Busy,
    Cancelled,
    HelmError,
    IterationBudgetExceeded,
    ModelServiceUnavailable,
    ToolExecutionFailed,
    ToolNotFound,
)
from helm.agent.formatter import ResultFormatter
from helm.agent.loop import AgentLoop, LoopResult, LoopState, LoopStatus, StopReason
from helm.agent.messages import (
    ContentBlock,
    ImageBlock,
    Message,
    RawBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from helm.agent.tools import (
    ToolContract,
    ToolError,
    ToolImage,
    ToolOutput,
    ToolRegistry,
    ToolText,
    normalize_output,
)
from helm.agent.transcript import TranscriptStore

__all__ = [
    "AgentLoop",
    "LoopResult",
    "LoopState",
    "LoopStatus",
    "StopReason",
    # Model service
    "AnthropicClient",
    "ModelRequest",
    "ModelResponse",
    "ModelService",
    # Tools
    "ToolContract",
    "ToolError",
    "ToolImage",
    "ToolOutput",
    "ToolRegistry",
    "ToolText",
    "normalize_output",
    "ResultFormatter",
    # Transcript
    "TranscriptStore",
    "ContentBlock",
    "ImageBlock",
    "Message",
    "RawBlock",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    # Errors
    "Busy",
    "Cancelled",
    "HelmError",
    "IterationBudgetExceeded",
    "ModelServiceUnavailable",
    "ToolExecutionFailed",
    "ToolNotFound",
]
