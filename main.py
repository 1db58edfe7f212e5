"""
Ops dashboard credential broker — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Dict

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.integrations import router as integrations_router
from api.middleware import register_middleware
from config.settings import config
from connectors.encryption import get_cipher
from database.session import init_models

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ops Dashboard Credential Broker",
        version="1.0.0",
        description="OAuth2 + PKCE credential custody and integration health.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    app.include_router(integrations_router)

    @app.get("/healthz")
    async def healthz() -> Dict[str, bool]:
        return {"ok": True}

    @app.on_event("startup")
    async def on_startup():
        get_cipher(config)
        logger.info("Preparing credential tables…")
        await init_models()
        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
