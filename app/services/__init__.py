"""Service layer orchestrating application use-cases."""

from app.services.auth_service import AuthService
from app.services.chat_repository import ChatRepository
from app.services.database_service import DatabaseService
from app.services.stream_emitter import StreamEmitter

__all__ = ["AuthService", "ChatRepository", "DatabaseService", "StreamEmitter"]
