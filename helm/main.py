"""Helm agent entry point.

Wires the components and starts the server:
  Settings -> AnthropicClient -> ToolRegistry -> AgentLoop -> App -> Uvicorn

The model client's httpx pool is opened and closed by the Starlette
lifespan so it lives on the same event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from helm.agent.client import AnthropicClient
from helm.agent.loop import AgentLoop
from helm.agent.tools import ToolRegistry
from helm.api.builtin_tools import register_builtin_tools
from helm.api.rest import create_app
from helm.config import Settings
from helm.events import LoggingObserver

logger = logging.getLogger(__name__)


def create_components(settings: Settings) -> dict:
    """Build all components in dependency order. Nothing is started yet."""
    client = AnthropicClient(settings)

    registry = ToolRegistry()
    register_builtin_tools(registry, settings)

    loop = AgentLoop.from_settings(settings, client, registry, observer=LoggingObserver())

    return {"client": client, "registry": registry, "loop": loop}


async def shutdown_components(components: dict) -> None:
    logger.info("Shutting down Helm...")
    client = components.get("client")
    if client:
        await client.close()
    logger.info("Helm shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app with a lifespan managing the model client."""
    components = create_components(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await components["client"].start()
        app.state.components = components
        logger.info(
            "Helm started: model=%s, max_iterations=%d, tools=%d, workspace=%s",
            settings.model,
            settings.max_iterations,
            len(components["registry"]),
            settings.workspace_dir,
        )
        yield
        await shutdown_components(components)

    return create_app(components["loop"], lifespan=lifespan)


def main() -> None:
    """Entry point -- parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Helm agent (model: %s)", settings.model)
    if not settings.anthropic_api_key and not settings.anthropic_auth_token:
        logger.warning(
            "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set -- "
            "/chat requests will fail"
        )

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
