"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat import ChatOrchestrator
from .config import PROJECT_ROOT, Settings, get_settings
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .logging_settings import parse_logging_settings
from .routers.chat import router as chat_router
from .routers.conversations import router as conversations_router
from .routers.feedback import router as feedback_router
from .routers.tools import router as tools_router
from .services.rate_limiter import RateLimiter

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve(path: Path) -> Path:
    return path if path.is_absolute() else PROJECT_ROOT / path


def _configure_logging(settings: Settings) -> None:
    """Configure console and file logging from LOG_LEVEL and the settings file."""
    # Load .env first so LOG_LEVEL is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "").upper()
    env_level = getattr(logging, log_level_str, None) if log_level_str else None
    file_settings = parse_logging_settings(_resolve(settings.logging_settings_path))

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = []

    terminal_level = env_level if isinstance(env_level, int) else file_settings.terminal_level
    if terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(terminal_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    log_dir = _resolve(settings.log_dir)
    if file_settings.file_level is not None:
        file_handler = DateStampedFileHandler(log_dir)
        file_handler.setLevel(file_settings.file_level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    levels = [handler.level for handler in handlers] or [logging.WARNING]
    root_level = min(levels)
    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    logging.getLogger("assistant").setLevel(root_level)
    logging.getLogger("uvicorn").setLevel(root_level)

    # Quiet noisy HTTP client libraries unless debugging
    if root_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    cleanup_old_logs(
        [log_dir],
        file_settings.retention_hours,
        logger=logging.getLogger(__name__),
    )


def create_app(
    settings: Settings | None = None,
    *,
    orchestrator: ChatOrchestrator | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    if configure_logging:
        _configure_logging(settings)

    orchestrator = orchestrator or ChatOrchestrator(settings)
    feedback_limiter = RateLimiter(
        settings.feedback_rate_limit, settings.feedback_rate_window_seconds
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.initialize()
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Orchestrator shutdown timed out after 10s")
            except Exception as exc:
                logging.warning("Error during orchestrator shutdown: %s", exc)

    app = FastAPI(
        title="Assistant Chat Backend",
        version="0.1.0",
        description="Streaming and tool-capable chat assistant backend.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chat_orchestrator = orchestrator
    app.state.feedback_rate_limiter = feedback_limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(tools_router)
    app.include_router(feedback_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | bool]:
        return {
            "status": "ok",
            "chat_model": settings.chat_model,
            "web_search_configured": orchestrator.search_service.configured,
        }

    return app


__all__ = ["create_app"]
