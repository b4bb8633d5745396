from typing import Optional
from dataclasses import dataclass
from fastapi import Request

from turnstream.application.websocket.connection_manager import ConnectionManager
from turnstream.domain.context.memory.in_memory_backend import InMemoryMemoryBackend
from turnstream.domain.context.memory.memory_store import MemoryBackend, MemoryStore
from turnstream.domain.orchestration.core.provider_transport import ProviderTransport
from turnstream.domain.orchestration.core.turn_orchestrator import TurnOrchestrator
from turnstream.domain.tool.builtin.calculator import create_calculator_tool
from turnstream.domain.tool.tool_registry import ToolRegistry
from turnstream.infrastructure.config.settings import Settings
from turnstream.infrastructure.persistence.sqlite_memory_backend import SqliteMemoryBackend
from turnstream.infrastructure.providers.http_transport import HttpProviderTransport


@dataclass
class AppServices:
    """Long-lived collaborators shared by every route"""
    settings: Settings
    orchestrator: TurnOrchestrator
    memory_store: MemoryStore
    connection_manager: ConnectionManager


def create_memory_backend(settings: Settings) -> MemoryBackend:
    if settings.MEMORY_BACKEND == "sqlite":
        return SqliteMemoryBackend(settings.MEMORY_SQLITE_PATH)
    return InMemoryMemoryBackend()


def build_services(settings: Settings, transport: Optional[ProviderTransport] = None) -> AppServices:
    memory_store = MemoryStore(
        create_memory_backend(settings),
        namespace=settings.MEMORY_NAMESPACE,
        max_file_bytes=settings.MEMORY_MAX_FILE_BYTES,
        max_total_bytes=settings.MEMORY_MAX_TOTAL_BYTES,
        max_view_chars=settings.MEMORY_MAX_VIEW_CHARS,
    )
    transport = transport or HttpProviderTransport(
        settings.PROVIDER_BASE_URL,
        api_key=settings.PROVIDER_API_KEY,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )
    orchestrator = TurnOrchestrator(
        transport,
        registry=ToolRegistry([create_calculator_tool()]),
        memory_store=memory_store,
        wire_format=settings.WIRE_FORMAT,
        suggestions_marker=settings.SUGGESTIONS_MARKER,
        enable_tool_search=settings.ENABLE_TOOL_SEARCH,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )
    return AppServices(
        settings=settings,
        orchestrator=orchestrator,
        memory_store=memory_store,
        connection_manager=ConnectionManager(),
    )


def get_orchestrator(request: Request) -> TurnOrchestrator:
    return request.app.state.services.orchestrator


def get_memory_store(request: Request) -> MemoryStore:
    return request.app.state.services.memory_store
