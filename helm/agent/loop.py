"""Agentic loop -- drives model calls and tool execution for one conversation.

AgentLoop.process() appends the user's message, then repeats:
call the model with the transcript and tool schemas, append the assistant
response verbatim, and either finish (no tool_use blocks / end_turn) or run
every requested tool in order and append all results as one user message.

The loop stops on natural completion, when max_iterations model calls
have been made, or at the next iteration boundary after abort().
Tool failures are fed back to the model; model-service failures propagate.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from helm.agent.client import ModelRequest, ModelResponse, ModelService
from helm.agent.errors import Busy, Cancelled, IterationBudgetExceeded
from helm.agent.formatter import DEFAULT_MAX_BYTES, ResultFormatter
from helm.agent.messages import (
    ContentBlock,
    ImageBlock,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from helm.agent.tools import ToolError, ToolOutput, ToolRegistry
from helm.agent.transcript import TranscriptStore
from helm.config import Settings
from helm.events import (
    IterationStarted,
    LoopFinished,
    NullObserver,
    ProgressEvent,
    ProgressObserver,
    ToolFinished,
    ToolStarted,
    safe_notify,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 25
DEFAULT_MAX_IMAGES = 3

_END_TURN = "end_turn"
_IMAGE_PLACEHOLDER = "[earlier image omitted to save context]"


class StopReason(StrEnum):
    COMPLETED = "completed"
    BUDGET_EXHAUSTED = "budget_exhausted"
    CANCELLED = "cancelled"


@dataclass
class LoopState:
    """Transient per-call execution state."""

    conversation_id: str
    max_iterations: int
    iteration: int = 0
    cancelled: bool = False
    tool_call_count: int = 0
    # Results of the current iteration, appended as one message once all tools ran
    results: list[ToolResultBlock] = field(default_factory=list)


@dataclass
class LoopResult:
    """Outcome of one process() call."""

    response_text: str
    iterations: int
    tool_call_count: int
    stop_reason: StopReason
    usage: dict[str, int] = field(
        default_factory=lambda: {"input_tokens": 0, "output_tokens": 0}
    )

    @property
    def completed(self) -> bool:
        return self.stop_reason is StopReason.COMPLETED

    def raise_for_outcome(self, conversation_id: str) -> None:
        """Raise IterationBudgetExceeded / Cancelled for non-completed outcomes."""
        if self.stop_reason is StopReason.BUDGET_EXHAUSTED:
            raise IterationBudgetExceeded(conversation_id, self.iterations)
        if self.stop_reason is StopReason.CANCELLED:
            raise Cancelled(conversation_id)


@dataclass
class LoopStatus:
    active_conversations: list[str]
    registered_tool_count: int
    stored_conversations: int
    model: str = ""


class AgentLoop:
    """Runs the tool-use loop for any number of independent conversations.

    At most one process() call may be in flight per conversation id;
    different ids run concurrently.
    """

    def __init__(
        self,
        model: ModelService,
        registry: ToolRegistry,
        store: TranscriptStore | None = None,
        *,
        system_prompt: str = "",
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        formatter: ResultFormatter | None = None,
        observer: ProgressObserver | None = None,
        max_images_in_context: int = DEFAULT_MAX_IMAGES,
        model_name: str = "",
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self._model = model
        self._registry = registry
        self._store = store if store is not None else TranscriptStore()
        self._formatter = formatter if formatter is not None else ResultFormatter(DEFAULT_MAX_BYTES)
        self._observer: ProgressObserver = observer if observer is not None else NullObserver()
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.max_images_in_context = max_images_in_context
        self.model_name = model_name
        self._active: dict[str, LoopState] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        model: ModelService,
        registry: ToolRegistry,
        observer: ProgressObserver | None = None,
    ) -> AgentLoop:
        """Build a loop with store, formatter and limits taken from Settings."""
        return cls(
            model,
            registry,
            TranscriptStore(
                max_messages=settings.history_max_messages,
                max_conversations=settings.max_conversations,
            ),
            system_prompt=settings.system_prompt,
            max_iterations=settings.max_iterations,
            formatter=ResultFormatter(settings.tool_result_max_bytes),
            observer=observer,
            max_images_in_context=settings.max_images_in_context,
            model_name=settings.model,
        )

    @property
    def store(self) -> TranscriptStore:
        return self._store

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def process(
        self,
        conversation_id: str,
        text: str,
        images: list[ImageBlock] | None = None,
    ) -> LoopResult:
        """Run the loop for one user message.

        Raises Busy if this conversation is already running and
        ModelServiceUnavailable if the model call fails. Budget exhaustion
        and cancellation are reported through LoopResult.stop_reason.
        """
        if conversation_id in self._active:
            raise Busy(conversation_id)
        if not text and not images:
            raise ValueError("process() needs text or at least one image")

        state = LoopState(conversation_id=conversation_id, max_iterations=self.max_iterations)
        self._active[conversation_id] = state
        self._store.pin(conversation_id)
        try:
            self._store.append(conversation_id, _user_message(text, images))
            result = await self._run(state)
            await self._notify(LoopFinished(
                conversation_id=conversation_id,
                iterations=result.iterations,
                tool_call_count=result.tool_call_count,
                stop_reason=result.stop_reason.value,
            ))
            return result
        except Exception as e:
            logger.error("Loop failed for conversation %s: %s", conversation_id, e)
            raise
        finally:
            self._repair_pairing(state)
            self._store.trim(conversation_id)
            self._store.unpin(conversation_id)
            self._active.pop(conversation_id, None)

    def abort(self, conversation_id: str) -> bool:
        """Request cooperative cancellation. Returns False if nothing is running."""
        state = self._active.get(conversation_id)
        if state is None:
            return False
        state.cancelled = True
        logger.info(
            "Abort requested for conversation %s (iteration %d)",
            conversation_id,
            state.iteration,
        )
        return True

    def clear_history(self, conversation_id: str) -> None:
        """Drop a conversation's history. Raises Busy while a loop is writing to it."""
        if conversation_id in self._active:
            raise Busy(conversation_id)
        self._store.clear(conversation_id)

    def is_running(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def status(self) -> LoopStatus:
        return LoopStatus(
            active_conversations=list(self._active),
            registered_tool_count=len(self._registry),
            stored_conversations=len(self._store),
            model=self.model_name,
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, state: LoopState) -> LoopResult:
        conversation_id = state.conversation_id
        usage = {"input_tokens": 0, "output_tokens": 0}
        last_text = ""

        while state.iteration < state.max_iterations:
            if state.cancelled:
                logger.info("Conversation %s cancelled after %d iterations", conversation_id, state.iteration)
                return LoopResult(last_text, state.iteration, state.tool_call_count, StopReason.CANCELLED, usage)

            state.iteration += 1
            await self._notify(IterationStarted(conversation_id, state.iteration, state.max_iterations))

            response = await self._model.create_message(self._build_request(conversation_id))
            _add_usage(usage, response)

            # Append verbatim, tool_use blocks included
            self._store.append(conversation_id, Message(role="assistant", content=list(response.content)))

            text = "\n".join(b.text for b in response.content if isinstance(b, TextBlock))
            tool_uses = [b for b in response.content if isinstance(b, ToolUseBlock)]
            if text:
                last_text = text

            if not tool_uses or response.stop_reason == _END_TURN:
                if tool_uses:
                    # end_turn with stray tool_use blocks: answer them so pairing holds
                    self._store.append(conversation_id, Message(
                        role="user",
                        content=[
                            self._formatter.format(tu.id, ToolError("not executed: turn ended"))
                            for tu in tool_uses
                        ],
                    ))
                logger.debug(
                    "Conversation %s completed after %d iterations (stop_reason=%s)",
                    conversation_id,
                    state.iteration,
                    response.stop_reason,
                )
                return LoopResult(text, state.iteration, state.tool_call_count, StopReason.COMPLETED, usage)

            # Sequential, in request order
            state.results = []
            for tool_use in tool_uses:
                state.tool_call_count += 1
                state.results.append(await self._execute_tool(state, tool_use))

            self._store.append(conversation_id, Message(role="user", content=list(state.results)))
            state.results = []

        if state.cancelled:
            logger.info("Conversation %s cancelled during its last iteration", conversation_id)
            return LoopResult(last_text, state.iteration, state.tool_call_count, StopReason.CANCELLED, usage)

        logger.warning(
            "Conversation %s reached max_iterations=%d without completing",
            conversation_id,
            state.max_iterations,
        )
        return LoopResult(last_text, state.iteration, state.tool_call_count, StopReason.BUDGET_EXHAUSTED, usage)

    async def _execute_tool(self, state: LoopState, tool_use: ToolUseBlock) -> ToolResultBlock:
        await self._notify(ToolStarted(
            conversation_id=state.conversation_id,
            iteration=state.iteration,
            tool_use_id=tool_use.id,
            tool_name=tool_use.name,
            tool_input=tool_use.input,
        ))
        start_time = time.monotonic()
        output: ToolOutput
        if isinstance(tool_use.input, dict):
            output = await self._registry.invoke(tool_use.name, tool_use.input)
        else:
            output = ToolError(f"invalid input for {tool_use.name}: expected an object")
        duration_ms = int((time.monotonic() - start_time) * 1000)

        block = self._formatter.format(tool_use.id, output)
        await self._notify(ToolFinished(
            conversation_id=state.conversation_id,
            iteration=state.iteration,
            tool_use_id=tool_use.id,
            tool_name=tool_use.name,
            is_error=block.is_error,
            duration_ms=duration_ms,
        ))
        return block

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_request(self, conversation_id: str) -> ModelRequest:
        history = self._store.read(conversation_id)
        return ModelRequest(
            system_prompt=self.system_prompt,
            messages=format_messages(history, self.max_images_in_context),
            tools=self._registry.definitions(),
        )

    def _repair_pairing(self, state: LoopState) -> None:
        """Answer dangling tool_use blocks left by an interrupted iteration.

        Tools that already ran keep their real results; only the ones that
        never finished are reported as interrupted.
        """
        conversation_id = state.conversation_id
        history = self._store.read(conversation_id)
        if not history:
            return
        last = history[-1]
        if last.role == "assistant" and last.tool_uses:
            finished = {block.tool_use_id: block for block in state.results}
            logger.warning(
                "Conversation %s interrupted with %d of %d tool calls unfinished",
                conversation_id,
                len(last.tool_uses) - len(finished),
                len(last.tool_uses),
            )
            self._store.append(conversation_id, Message(
                role="user",
                content=[
                    finished.get(tu.id)
                    or self._formatter.format(tu.id, ToolError("not executed: interrupted"))
                    for tu in last.tool_uses
                ],
            ))
        state.results = []

    async def _notify(self, event: ProgressEvent) -> None:
        await safe_notify(self._observer, event)


def _user_message(text: str, images: list[ImageBlock] | None) -> Message:
    if not images:
        return Message(role="user", content=text)
    content: list[ContentBlock] = list(images)
    if text:
        content.append(TextBlock(text))
    return Message(role="user", content=content)


def _add_usage(total: dict[str, int], response: ModelResponse) -> None:
    if not response.usage:
        return
    for key in ("input_tokens", "output_tokens"):
        total[key] += int(response.usage.get(key, 0) or 0)


def _prune_images(messages: list[Message], keep: int) -> list[Message]:
    """Replace all but the newest `keep` images with a text placeholder.

    Returns new Message objects; the input list is not modified.
    """
    seen = 0
    pruned: list[Message] = []
    for message in reversed(messages):
        if isinstance(message.content, str):
            pruned.append(message)
            continue
        blocks: list[ContentBlock] = []
        changed = False
        for block in reversed(message.content):
            if isinstance(block, ImageBlock):
                seen += 1
                if seen > keep:
                    block = TextBlock(_IMAGE_PLACEHOLDER)
                    changed = True
            elif isinstance(block, ToolResultBlock) and any(
                isinstance(b, ImageBlock) for b in block.content
            ):
                inner: list[TextBlock | ImageBlock] = []
                for b in reversed(block.content):
                    if isinstance(b, ImageBlock):
                        seen += 1
                        if seen > keep:
                            b = TextBlock(_IMAGE_PLACEHOLDER)
                            changed = True
                    inner.append(b)
                block = ToolResultBlock(block.tool_use_id, tuple(reversed(inner)), block.is_error)
            blocks.append(block)
        pruned.append(Message(message.role, list(reversed(blocks))) if changed else message)
    pruned.reverse()
    return pruned


def format_messages(messages: list[Message], max_images: int = DEFAULT_MAX_IMAGES) -> list[dict[str, Any]]:
    """Serialize a transcript for the Messages API.

    Older images are pruned and consecutive same-role messages are merged
    (e.g. a new user message following the tool results of an earlier,
    unfinished call).
    """
    formatted: list[dict[str, Any]] = []
    for message in _prune_images(messages, max_images):
        data = message.to_api()
        if formatted and formatted[-1]["role"] == data["role"]:
            formatted[-1]["content"] = _as_blocks(formatted[-1]["content"]) + _as_blocks(data["content"])
        else:
            formatted.append(data)
    return formatted


def _as_blocks(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)
