"""REST API for the Helm agent.

Endpoints:
  POST   /chat                         - Send message, run the agentic loop
  POST   /chat/{conversation_id}/abort - Request cooperative cancellation
  DELETE /chat/{conversation_id}       - Clear conversation history
  GET    /status                       - Loop status
  GET    /tools                        - Registered tool definitions
  GET    /health                       - Health check
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any
from uuid import uuid4

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from helm.agent.errors import Busy, ModelServiceUnavailable
from helm.agent.loop import AgentLoop, LoopResult, StopReason
from helm.agent.messages import ImageBlock

logger = logging.getLogger(__name__)

BUDGET_NOTE = (
    "\n\n(Note: I ran out of steps before fully completing this task. "
    "Send another message to let me continue.)"
)
CANCELLED_NOTE = "\n\n(Task cancelled.)"


def _parse_images(raw: Any) -> list[ImageBlock]:
    """Parse [{data: base64, media_type}] into ImageBlocks. Raises ValueError."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("images must be a list")
    images = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("data"):
            raise ValueError("each image needs a base64 'data' field")
        try:
            data = base64.b64decode(item["data"], validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise ValueError(f"invalid base64 image data: {e}") from e
        images.append(ImageBlock(data, item.get("media_type", "image/png")))
    return images


def render_response(result: LoopResult) -> str:
    """Final user-facing text, with an explicit note for unfinished tasks."""
    text = result.response_text
    if result.stop_reason is StopReason.BUDGET_EXHAUSTED:
        text += BUDGET_NOTE
    elif result.stop_reason is StopReason.CANCELLED:
        text += CANCELLED_NOTE
    return text.strip()


def create_app(loop: AgentLoop, lifespan: Any | None = None) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def chat(request: Request) -> JSONResponse:
        """POST /chat - Send a message, get a response."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        if not isinstance(body, dict):
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("message") or ""
        try:
            images = _parse_images(body.get("images"))
        except ValueError as e:
            return JSONResponse({"error": str(e)}, status_code=400)
        if not message and not images:
            return JSONResponse({"error": "Missing required field: message"}, status_code=400)

        conversation_id = str(body.get("conversation_id") or uuid4())

        try:
            result = await loop.process(conversation_id, message, images or None)
        except Busy as e:
            return JSONResponse(
                {"error": str(e), "conversation_id": conversation_id},
                status_code=409,
            )
        except ModelServiceUnavailable as e:
            logger.error("Model service failure for %s: %s", conversation_id, e)
            return JSONResponse(
                {
                    "error": "The language model service is unavailable. Please try again later.",
                    "detail": str(e),
                    "conversation_id": conversation_id,
                    "retriable": e.retriable,
                },
                status_code=502,
            )
        except Exception as e:
            logger.error("Chat error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

        return JSONResponse({
            "response": render_response(result),
            "conversation_id": conversation_id,
            "iterations": result.iterations,
            "tool_call_count": result.tool_call_count,
            "stop_reason": result.stop_reason.value,
            "completed": result.completed,
            "usage": result.usage,
        })

    async def abort_chat(request: Request) -> JSONResponse:
        """POST /chat/{conversation_id}/abort - Cancel at the next iteration boundary."""
        conversation_id = request.path_params["conversation_id"]
        aborted = loop.abort(conversation_id)
        return JSONResponse({"aborted": aborted, "conversation_id": conversation_id})

    async def clear_chat(request: Request) -> JSONResponse:
        """DELETE /chat/{conversation_id} - Clear history."""
        conversation_id = request.path_params["conversation_id"]
        try:
            loop.clear_history(conversation_id)
        except Busy as e:
            return JSONResponse({"error": str(e)}, status_code=409)
        return JSONResponse({"status": "cleared", "conversation_id": conversation_id})

    async def status(request: Request) -> JSONResponse:
        """GET /status - Loop status overview."""
        s = loop.status()
        return JSONResponse({
            "model": s.model,
            "active_conversations": s.active_conversations,
            "registered_tool_count": s.registered_tool_count,
            "stored_conversations": s.stored_conversations,
            "max_iterations": loop.max_iterations,
        })

    async def tools(request: Request) -> JSONResponse:
        """GET /tools - Tool definitions as sent to the model."""
        return JSONResponse({"tools": loop.registry.definitions()})

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "healthy"})

    routes = [
        Route("/chat", chat, methods=["POST"]),
        Route("/chat/{conversation_id}/abort", abort_chat, methods=["POST"]),
        Route("/chat/{conversation_id}", clear_chat, methods=["DELETE"]),
        Route("/status", status),
        Route("/tools", tools),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
