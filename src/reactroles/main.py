"""FastAPI application factory.

The HTTP surface is operational only (``/health``); the bot itself runs
inside the app's lifespan on the same event loop.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from reactroles.config import Settings
from reactroles.storage import (
    BindingStore,
    DatabaseBindingStore,
    JsonBindingStore,
    NullBindingStore,
)

logger = logging.getLogger(__name__)


async def build_store(settings: Settings) -> tuple[BindingStore, AsyncEngine | None]:
    """Create the configured binding store (and its engine for the database backend)."""
    if settings.reactroles_storage == "none":
        return NullBindingStore(), None
    if settings.reactroles_storage == "database":
        from reactroles.db.engine import create_engine, init_schema

        engine = create_engine(settings.database_url)
        await init_schema(engine)
        return DatabaseBindingStore(engine), engine
    return JsonBindingStore(settings.reactroles_json_path), None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: build the store, optionally start the Discord bot."""
    settings: Settings = app.state.settings
    store, engine = await build_store(settings)
    app.state.store = store
    app.state.engine = engine
    logger.info("binding_store backend=%s", settings.reactroles_storage)

    discord_bot = None
    from reactroles.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from reactroles.discord.bot import start_reaction_role_bot

        discord_bot = await start_reaction_role_bot(settings, store)
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")
    app.state.discord_bot = discord_bot

    yield

    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    if engine is not None:
        await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the reactroles FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.reactroles_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.reactroles_debug:
        logging.getLogger("reactroles").setLevel(logging.DEBUG)

    app = FastAPI(
        title="reactroles",
        version="0.1.0",
        description="Reaction-role reconciliation bot",
        docs_url="/docs" if settings.reactroles_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.discord_bot = None

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        bot = request.app.state.discord_bot
        if bot is None:
            return {
                "status": "ok",
                "discord": False,
                "ready": False,
                "ready_at": None,
                "bindings": {"active": 0, "disabled": 0},
            }
        manager = bot.manager
        return {
            "status": "ok",
            "discord": True,
            "ready": manager.is_ready,
            "ready_at": manager.ready_at.isoformat() if manager.ready_at else None,
            "bindings": {
                "active": len(manager.registry.enabled()),
                "disabled": manager.registry.disabled_count(),
            },
        }

    return app
