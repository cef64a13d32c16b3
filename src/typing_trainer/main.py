"""FastAPI application entry point."""

import logging
import os

import structlog
import uvicorn
from fastapi import FastAPI

from typing_trainer.api.routes import router
from typing_trainer.config import get_settings


def configure_logging() -> None:
    """Configure structlog based on environment."""
    is_production = os.getenv("ENV", "development").lower() == "production"

    if is_production:
        # Production: JSON format for machine parsing
        renderer = structlog.processors.JSONRenderer()
        level = logging.INFO
    else:
        # Development: console format for human readability
        renderer = structlog.dev.ConsoleRenderer()
        level = logging.DEBUG

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()

app = FastAPI(title="Typing Trainer", version="0.1.0")
app.include_router(router)


def main() -> None:
    """Run the application."""
    settings = get_settings()
    uvicorn.run(
        "typing_trainer.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
