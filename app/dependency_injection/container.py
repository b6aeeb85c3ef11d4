from __future__ import annotations

import punq
from fastapi import Request

from app.agents.engine import ChatEngine
from app.agents.factory import build_chat_engine, build_title_generator
from app.agents.tools.registry import ToolRegistry, build_tool_registry
from app.core.settings import Settings
from app.services.auth_service import AuthService
from app.services.blob_store import build_blob_store
from app.services.chat_repository import ChatRepository
from app.services.chat_service import ChatService
from app.services.contracts import (
    AuthServiceProtocol,
    BlobStoreProtocol,
    ChatRepositoryProtocol,
    ChatServiceProtocol,
    DatabaseServiceProtocol,
    StreamRegistryProtocol,
    TitleGeneratorProtocol,
)
from app.services.database_service import DatabaseService
from app.services.stream_registry import build_stream_registry


def build_container(
    settings: Settings,
    *,
    database: DatabaseServiceProtocol | None = None,
    stream_registry: StreamRegistryProtocol | None = None,
    engine: ChatEngine | None = None,
    title_generator: TitleGeneratorProtocol | None = None,
    blob_store: BlobStoreProtocol | None = None,
) -> punq.Container:
    """Assemble the service graph; explicit instances override the settings-driven defaults."""

    container = punq.Container()
    container.register(Settings, instance=settings)

    if database is not None:
        container.register(DatabaseServiceProtocol, instance=database)
    else:
        container.register(
            DatabaseServiceProtocol,
            factory=lambda: DatabaseService(dsn=settings.chat_db_dsn),
            scope=punq.Scope.singleton,
        )
    container.register(
        StreamRegistryProtocol,
        instance=stream_registry if stream_registry is not None else build_stream_registry(settings),
    )
    container.register(
        BlobStoreProtocol,
        instance=blob_store if blob_store is not None else build_blob_store(settings),
    )
    container.register(ChatEngine, instance=engine if engine is not None else build_chat_engine(settings))
    container.register(
        TitleGeneratorProtocol,
        instance=title_generator if title_generator is not None else build_title_generator(settings),
    )

    container.register(
        ChatRepositoryProtocol,
        factory=lambda: ChatRepository(database=container.resolve(DatabaseServiceProtocol)),
        scope=punq.Scope.singleton,
    )
    container.register(
        ToolRegistry,
        factory=lambda: build_tool_registry(settings, container.resolve(BlobStoreProtocol)),
        scope=punq.Scope.singleton,
    )
    container.register(AuthServiceProtocol, factory=lambda: AuthService(settings), scope=punq.Scope.singleton)
    container.register(
        ChatServiceProtocol,
        factory=lambda: ChatService(
            settings=settings,
            chat_repository=container.resolve(ChatRepositoryProtocol),
            stream_registry=container.resolve(StreamRegistryProtocol),
            engine=container.resolve(ChatEngine),
            title_generator=container.resolve(TitleGeneratorProtocol),
            tool_registry=container.resolve(ToolRegistry),
        ),
        scope=punq.Scope.singleton,
    )

    return container


def get_container(request: Request) -> punq.Container:
    return request.app.state.container
