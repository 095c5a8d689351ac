import asyncio
import logging
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from callqc.api import health, webhook
from callqc.container import Services, build_services
from callqc.core.config import settings
from callqc.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def wait_for_database(engine: Engine, max_attempts: int = 8, delay_seconds: float = 1.5) -> None:
    attempt = 0
    delay = delay_seconds
    while attempt < max_attempts:
        attempt += 1
        try:
            with engine.connect():
                return
        except OperationalError as exc:
            if attempt >= max_attempts:
                logger.error(
                    "Database connection failed after %s attempts.",
                    attempt,
                    exc_info=exc,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1fs.",
                attempt,
                max_attempts,
                delay,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 1.5, 10.0)


def alembic_config(database_url: str) -> Config:
    alembic_ini = Path(__file__).resolve().parents[1] / "alembic.ini"
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(alembic_ini.parent / "alembic"))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


def run_migrations(engine: Engine, database_url: str) -> None:
    config = alembic_config(database_url)
    with engine.connect() as connection:
        tables = inspect(connection).get_table_names()
    if tables and "alembic_version" not in tables:
        logger.warning("Existing tables detected without alembic version; stamping baseline.")
        command.stamp(config, "head")
        return
    command.upgrade(config, "head")


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title=settings.app_name)
    app.include_router(health.router)
    app.include_router(webhook.router)
    if services is not None:
        app.state.services = services

    @app.on_event("startup")
    async def on_startup() -> None:
        configure_logging(settings.log_level)
        if services is not None:
            return
        built = build_services(settings)
        await wait_for_database(built.engine)
        run_migrations(built.engine, settings.database_url)
        app.state.services = built

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        # injected services belong to the caller
        if services is None and getattr(app.state, "services", None) is not None:
            app.state.services.close()

    return app


app = create_app()
