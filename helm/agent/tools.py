"""Tool contracts and the registry the agentic loop dispatches through.

Provides:
- ToolText / ToolError / ToolImage: the closed union a handler returns
- normalize_output(): coerces legacy result shapes into that union
- ToolContract: name, description, input schema and handler
- ToolRegistry: registers contracts, looks them up, invokes handlers

Handlers receive the tool input as keyword arguments and may be async or
plain functions (plain functions run in a worker thread). Errors never
escape invoke(): they come back as ToolError so the loop can report them
to the model.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import inspect
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from helm.agent.errors import ToolExecutionFailed, ToolNotFound

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool output union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolText:
    text: str


@dataclass(frozen=True)
class ToolError:
    message: str


@dataclass(frozen=True)
class ToolImage:
    """Image result. Downscaling is the tool's job, not the loop's."""

    data: bytes
    media_type: str = "image/png"


ToolOutput = ToolText | ToolError | ToolImage


def normalize_output(result: Any) -> ToolOutput:
    """Coerce an arbitrary handler return value into a ToolOutput.

    - ToolText / ToolError / ToolImage: returned as-is
    - str: ToolText
    - None: ToolText("null")
    - mapping with an "error" key: ToolError
    - mapping with type "image" and base64 "data": ToolImage
    - anything else: JSON-serialized ToolText
    """
    if isinstance(result, (ToolText, ToolError, ToolImage)):
        return result
    if result is None:
        return ToolText("null")
    if isinstance(result, str):
        return ToolText(result)
    if isinstance(result, Mapping):
        if result.get("error"):
            return ToolError(str(result["error"]))
        if result.get("type") == "image" and result.get("data"):
            data = result["data"]
            if isinstance(data, str):
                try:
                    data = base64.b64decode(data, validate=True)
                except (binascii.Error, ValueError):
                    return ToolError("image result carried invalid base64 data")
            media_type = result.get("media_type") or result.get("mediaType") or "image/png"
            return ToolImage(bytes(data), media_type)
    return ToolText(json.dumps(result, indent=2, ensure_ascii=False, default=str))


# ---------------------------------------------------------------------------
# Contract + registry
# ---------------------------------------------------------------------------


@dataclass
class ToolContract:
    """Declarative description of a tool plus the handler that runs it."""

    name: str
    description: str
    handler: Callable[..., Any]
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def definition(self) -> dict[str, Any]:
        """Tool definition in Anthropic API format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    """Name -> ToolContract lookup table.

    Lookups are exact and case-sensitive. Registering an existing name
    replaces the previous contract.
    """

    def __init__(self) -> None:
        self._contracts: dict[str, ToolContract] = {}

    def register(self, contract: ToolContract) -> None:
        """Register a tool contract (last write wins)."""
        if contract.name in self._contracts:
            logger.warning("Tool '%s' re-registered, replacing previous handler", contract.name)
        self._contracts[contract.name] = contract
        logger.debug("Registered tool: %s", contract.name)

    def lookup(self, name: str) -> ToolContract | None:
        return self._contracts.get(name)

    def names(self) -> list[str]:
        return list(self._contracts)

    def definitions(self) -> list[dict[str, Any]]:
        """All tool definitions in registration order."""
        return [c.definition() for c in self._contracts.values()]

    def __len__(self) -> int:
        return len(self._contracts)

    def __contains__(self, name: object) -> bool:
        return name in self._contracts

    async def invoke(self, name: str, tool_input: dict[str, Any]) -> ToolOutput:
        """Run a tool once and return its normalized output.

        Unknown tools and handler exceptions come back as ToolError.
        Only asyncio.CancelledError propagates.
        """
        contract = self.lookup(name)
        if contract is None:
            return ToolError(str(ToolNotFound(name)))

        try:
            inspect.signature(contract.handler).bind(**tool_input)
        except TypeError as e:
            logger.warning("Tool %s called with bad arguments: %s", name, e)
            return ToolError(f"invalid arguments for {name}: {e}")
        except ValueError:
            pass  # C callables without an introspectable signature

        try:
            if inspect.iscoroutinefunction(contract.handler):
                result = await contract.handler(**tool_input)
            else:
                result = await asyncio.to_thread(contract.handler, **tool_input)
                if inspect.isawaitable(result):
                    result = await result
        except ToolExecutionFailed as e:
            logger.warning("Tool %s reported failure: %s", name, e.reason)
            return ToolError(e.reason)
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            return ToolError(f"{type(e).__name__}: {e}")

        try:
            return normalize_output(result)
        except Exception as e:
            logger.exception("Tool %s returned an unserializable result", name)
            return ToolError(f"unserializable result: {type(e).__name__}: {e}")
