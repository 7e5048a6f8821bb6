"""
Insurance Relay API
===================
FastAPI application hosting the relay intermediary. Mount routers here.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from insurance_relay.config import Settings, get_settings
from insurance_relay.routers import relay
from insurance_relay.services.backend_gateway import PredictionBackendClient
from insurance_relay.services.relay_server import RelayServer


def create_app(settings: Settings) -> FastAPI:
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(
        title="Insurance Relay API",
        description="Relays wearable health metrics to the insurance prediction backend",
        version="0.1.0",
        docs_url="/api/docs" if settings.environment != "production" else None,
        redoc_url="/api/redoc" if settings.environment != "production" else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.relay_server = RelayServer(PredictionBackendClient.from_settings(settings))
    app.include_router(relay.router)

    @app.get("/api/v1/health")
    async def health_check() -> dict:
        return {"status": "ok", "service": "insurance-relay"}

    return app


app = create_app(get_settings())
