"""
FastAPI application for the Mira Assistant server.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mira_assistant import __version__
from mira_assistant.assistant.core import AssistantConfig
from mira_assistant.assistant.llm import LLMBackend, create_llm
from mira_assistant.config import Config, get_config
from mira_assistant.server.schemas import HealthResponse
from mira_assistant.server.session import SessionRegistry

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    llm: Optional[LLMBackend] = None,
    assistant_config: Optional[AssistantConfig] = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Server configuration (default: global config)
        llm: Language model to use (default: built from config.llm)
        assistant_config: Per-session tunables
        cors_origins: CORS allowed origins (default: config.server.cors_origins)

    Returns:
        FastAPI application
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        http = httpx.AsyncClient(
            timeout=10.0,
            headers={"User-Agent": f"mira-assistant/{__version__}"},
        )
        model = llm or create_llm(
            config.llm.backend,
            config.llm.model,
            host=config.llm.host,
            api_key=config.llm.api_key,
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
        )
        app.state.sessions = SessionRegistry(model, http, config.tools, assistant_config)
        logger.info("Mira Assistant %s ready (LLM: %s)", __version__, model.model)

        yield

        # Shutdown
        await app.state.sessions.close_all()
        await http.aclose()
        if llm is None:
            await model.aclose()

    app = FastAPI(
        title="Mira Assistant API",
        description="Voice-activated assistant for smart glasses sessions",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    origins = cors_origins or config.server.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from mira_assistant.server.websocket import router as ws_router

    app.include_router(ws_router, tags=["WebSocket"])

    # Health check endpoint
    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            version=__version__,
            sessions=len(app.state.sessions),
        )

    return app


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
) -> None:
    """
    Run the server.

    Args:
        host: Host to bind to
        port: Port to bind to
        reload: Enable auto-reload (development)
    """
    import uvicorn

    config = get_config()

    uvicorn.run(
        "mira_assistant.server.app:create_app",
        factory=True,
        host=host or config.server.host,
        port=port or config.server.port,
        reload=reload,
    )
