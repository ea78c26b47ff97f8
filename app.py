#!/usr/bin/env python3
"""
Tradingflow Broker API - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Wires configuration, the database engine, the Redis cache
and the exchange client factory into one FastAPI app.

============================================================
USAGE
============================================================
Direct execution:
    python app.py

With uvicorn:
    uvicorn app:app --host 0.0.0.0 --port 8000

Environment-based configuration (.env is honored):
    DATABASE_URL, REDIS_URL, REDIS_PASSWORD, CACHE_NAMESPACE,
    BINANCE_TESTNET, EXCHANGE_TIMEOUT_SECONDS, LOG_LEVEL

============================================================
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from api.router import router as broker_router
from broker_engine.clients.factory import ClientFactory
from broker_engine.config import EngineConfig
from database.engine import (
    create_all_tables,
    create_database_engine,
    create_session_factory,
    verify_database_connection,
)


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING
# ============================================================

def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure root logging from LOG_LEVEL."""
    level = (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ============================================================
# APPLICATION
# ============================================================

def create_app(config: Optional[EngineConfig] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Engine configuration (read from the environment if omitted)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine_config = config or EngineConfig.from_env()

        engine = create_database_engine(engine_config.database_url)
        await verify_database_connection(engine)
        await create_all_tables(engine)

        redis = Redis.from_url(engine_config.redis_url, password=engine_config.redis_password)

        app.state.config = engine_config
        app.state.db_engine = engine
        app.state.session_factory = create_session_factory(engine)
        app.state.redis = redis
        app.state.client_factory = ClientFactory(
            endpoints=engine_config.endpoints,
            timeout_config=engine_config.timeouts,
        )

        logger.info("Broker API started")
        try:
            yield
        finally:
            await redis.aclose()
            await engine.dispose()
            logger.info("Broker API stopped")

    app = FastAPI(
        title="Tradingflow Broker API",
        description="Broker management, order list submission and cached account views.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS (Allow local frontend development)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(broker_router)

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Broker API is running"}

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
