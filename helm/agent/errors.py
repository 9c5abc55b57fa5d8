"""Error types for the agentic loop.

ToolNotFound and ToolExecutionFailed are recovered inside the loop and
reported to the model as error tool results. ModelServiceUnavailable and
Busy propagate to the caller. IterationBudgetExceeded and Cancelled are
normally reported as a LoopResult.stop_reason; the exception types exist
for callers that prefer to raise on those outcomes.
"""

from __future__ import annotations


class HelmError(Exception):
    """Base class for all Helm errors.

    retriable tells the caller whether repeating the same request may succeed.
    """

    def __init__(self, message: str, retriable: bool = False) -> None:
        super().__init__(message)
        self.retriable = retriable


class ToolNotFound(HelmError):
    """Raised when the model requests a tool that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown tool: {name}")
        self.name = name


class ToolExecutionFailed(HelmError):
    """Raised by a tool handler that wants to report a failure explicitly."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"tool '{name}' failed: {reason}")
        self.name = name
        self.reason = reason


class ModelServiceUnavailable(HelmError):
    """Raised when the model service cannot be reached or rejects the request."""

    def __init__(
        self,
        reason: str,
        status_code: int | None = None,
        retriable: bool = False,
    ) -> None:
        super().__init__(f"Model service unavailable: {reason}", retriable=retriable)
        self.reason = reason
        self.status_code = status_code


class Busy(HelmError):
    """Raised when process() is called for a conversation that is already running."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' is already processing a request",
            retriable=True,
        )
        self.conversation_id = conversation_id


class IterationBudgetExceeded(HelmError):
    """The loop used all of its iterations without the model finishing."""

    def __init__(self, conversation_id: str, iterations: int) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' stopped after {iterations} iterations "
            "without completing"
        )
        self.conversation_id = conversation_id
        self.iterations = iterations


class Cancelled(HelmError):
    """The loop was aborted by the caller."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation '{conversation_id}' was cancelled")
        self.conversation_id = conversation_id
