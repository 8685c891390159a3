import asyncio
import traceback
from typing import Dict, Any, Optional
from fastapi import FastAPI
from hypercorn.asyncio import serve
from hypercorn.config import Config as HyperConfig
from ..core.engine import EngineState
from ..utils.exceptions import InitializationError
from ..utils.logging import get_logger
from .endpoints.devices import device_router
from .endpoints.schedules import schedule_router
from .routes import operator_router

def create_api(engine: EngineState) -> FastAPI:
    """FastAPI application bound to one engine"""
    app = FastAPI(
        title="Osmium Hub API",
        description="Command dispatch and scheduling for ESP32 devices",
        version="1.0.0"
    )

    # Store engine for dependency injection
    app.state.engine = engine

    app.include_router(device_router)
    app.include_router(operator_router, prefix="/api")
    app.include_router(schedule_router, prefix="/api")
    return app


class APIServer:
    """Handles API server initialization and management"""

    def __init__(self, config: Dict[str, Any], shutdown_event: asyncio.Event):
        self.config = config
        self.shutdown_event = shutdown_event
        self.logger = get_logger("API Server")
        self.app: Optional[FastAPI] = None

    def initialize(self, engine: EngineState) -> FastAPI:
        try:
            self.app = create_api(engine)
            return self.app
        except Exception:
            raise InitializationError(f"Failed to initialize API server: {traceback.format_exc()}")

    async def start(self):
        """Start the API server"""
        if not self.app:
            raise InitializationError("API server started before initialize()")

        hypercorn_config = HyperConfig()
        try:
            host = self.config['api']['host']
            port = self.config['api']['port']
            hypercorn_config.bind = [f"{host}:{port}"]

            async def shutdown_trigger():
                await self.shutdown_event.wait()

            self.logger.info(f"Starting API server on {host}:{port}")
            await serve(self.app, hypercorn_config, shutdown_trigger=shutdown_trigger)
        except Exception:
            self.logger.error(f"Failed to start API server: {traceback.format_exc()}")
            raise
