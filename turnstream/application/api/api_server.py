from typing import Optional
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import structlog

from turnstream.application.api.dependencies import build_services
from turnstream.application.api.route import agent, memories
from turnstream.application.websocket import ws_server
from turnstream.domain.orchestration.core.provider_transport import ProviderTransport
from turnstream.infrastructure.config.settings import Settings, get_settings
from turnstream.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[ProviderTransport] = None
) -> FastAPI:
    """Build the HTTP and WebSocket surface around one orchestrator"""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.SERVICE_NAME)

    app = FastAPI(title="Turnstream Server")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = build_services(settings, transport)

    app.include_router(agent.router)
    app.include_router(memories.router)
    app.include_router(ws_server.router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        services = request.app.state.services
        return {
            "status": "healthy",
            "active_connections": len(services.connection_manager.active_connections),
            "active_turns": sum(1 for handle in services.orchestrator.active_turns.values() if not handle.done),
            "timestamp": datetime.utcnow().isoformat(),
            "metrics": metrics.get_metrics_summary(),
        }

    logger.info("Turnstream server configured", wire_format=settings.WIRE_FORMAT, memory_backend=settings.MEMORY_BACKEND)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
