"""Shared fixtures: scripted model service, tool registry, loop factory.

No network access: the model service is a scripted fake that records every
request it receives and replies from a list (or a callable).
"""

import copy

import pytest

from helm.agent.client import ModelRequest, ModelResponse
from helm.agent.loop import AgentLoop
from helm.agent.tools import ToolContract, ToolRegistry, ToolText
from helm.agent.transcript import TranscriptStore
from helm.config import Settings


class ScriptedModel:
    """ModelService fake.

    replies is either a list consumed in order (the last reply repeats once
    the list is exhausted) or a callable taking the ModelRequest.
    """

    def __init__(self, replies) -> None:
        self._replies = replies
        self.requests: list[ModelRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def create_message(self, request: ModelRequest) -> ModelResponse:
        # Snapshot of what was sent
        self.requests.append(copy.deepcopy(request))
        if callable(self._replies):
            reply = self._replies(request)
        else:
            index = min(len(self.requests), len(self._replies)) - 1
            reply = self._replies[index]
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def settings() -> Settings:
    """Settings with small limits for loop tests."""
    return Settings(
        ANTHROPIC_API_KEY="test-key",
        max_iterations=5,
        history_max_messages=30,
        tool_result_max_bytes=1024,
        workspace_dir="/tmp/helm-test-workspace",
    )


@pytest.fixture
def call_log() -> list[str]:
    """Order in which tool handlers start and finish."""
    return []


@pytest.fixture
def registry(call_log) -> ToolRegistry:
    """ToolRegistry with echo and add tools registered."""
    reg = ToolRegistry()

    async def echo(message: str = "default") -> ToolText:
        call_log.append(f"echo:{message}")
        return ToolText(f"Echo: {message}")

    async def add(a: float = 0, b: float = 0) -> str:
        call_log.append("add")
        return str(a + b)

    reg.register(ToolContract(
        name="echo",
        description="Echo tool",
        handler=echo,
        input_schema={
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    ))
    reg.register(ToolContract(
        name="add",
        description="Add tool",
        handler=add,
        input_schema={
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    ))
    return reg


@pytest.fixture
def make_loop(registry):
    """Factory: make_loop(replies, **kwargs) -> (AgentLoop, ScriptedModel)."""

    def _make(replies, **kwargs):
        model = ScriptedModel(replies)
        store = kwargs.pop("store", None)
        max_messages = kwargs.pop("max_messages", 30)
        if store is None:
            store = TranscriptStore(max_messages=max_messages)
        loop = AgentLoop(
            model,
            kwargs.pop("registry", registry),
            store,
            system_prompt=kwargs.pop("system_prompt", "You control a test machine."),
            max_iterations=kwargs.pop("max_iterations", 5),
            **kwargs,
        )
        return loop, model

    return _make
