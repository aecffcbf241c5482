# profitra/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from profitra.api import ledger_error_handler, router
from profitra.core import errors
from profitra.core.clock import Clock, SystemClock
from profitra.core.config import Settings, settings as default_settings
from profitra.database import Database
from profitra.engine import LedgerEngine
from profitra.monitoring import run_selftest
from profitra.sweeper import MaturitySweeper

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    settings = settings or default_settings
    database = database or Database.from_settings(settings)
    clock = clock or SystemClock()

    engine = LedgerEngine(database, settings, clock)
    sweeper = MaturitySweeper(database, clock, interval_seconds=settings.SWEEP_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # schema first, then the background sweeper
        try:
            database.init_schema()
            logger.info("DB initialized")
        except Exception:
            logger.exception("DB init failed (startup). Continuing to boot app.")

        if settings.SWEEPER_ENABLED:
            sweeper.start()
        try:
            yield
        finally:
            sweeper.shutdown()

    app = FastAPI(title="Profitra Ledger", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.engine = engine
    app.state.sweeper = sweeper

    app.add_exception_handler(errors.LedgerError, ledger_error_handler)
    app.include_router(router)

    @app.get("/")
    async def root():
        return {"message": "Profitra ledger is running"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/ready")
    def ready():
        result = run_selftest(database, sweeper, settings, quick=True)
        return {"status": result.get("status", "unknown"), "checks": result.get("checks", [])}

    @app.get("/selftest")
    def selftest():
        return run_selftest(database, sweeper, settings, quick=False, now=clock.now())

    return app


configure_logging(default_settings.LOG_LEVEL)
app = create_app()
