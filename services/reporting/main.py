"""Entrypoint module for the reporting FastAPI service."""

from __future__ import annotations

from fastapi import FastAPI

from shared.config.settings import get_settings

from .app import app

__all__ = ["app", "get_app"]


def get_app() -> FastAPI:
    """Return the configured FastAPI application."""

    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "services.reporting.main:app",
        host=settings.app.host,
        port=settings.app.port,
    )
