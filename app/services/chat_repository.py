from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
import logging
from typing import Any

from app.api.schemas.chat import Attachment, ChatMessage, ChatRecord, VisibilityType
from app.services.contracts import DatabaseServiceProtocol

logger = logging.getLogger(__name__)


def _json_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return value if isinstance(value, list) else []


def _dump_attachments(attachments: Sequence[Attachment]) -> list[dict[str, Any]]:
    return [attachment.model_dump(mode="json", by_alias=True) for attachment in attachments]


class ChatRepository:
    """Row store for chats, their messages, and the append-only run id list."""

    def __init__(self, database: DatabaseServiceProtocol) -> None:
        self._database = database

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        row = await self._database.fetchrow(
            """
            SELECT id::text AS id, user_id::text AS user_id, title, visibility, created_at, attachments
            FROM chats
            WHERE id = $1::uuid
            """,
            chat_id,
        )
        return self._chat_from_record(row) if row is not None else None

    async def save_chat(self, *, chat_id: str, user_id: str, title: str, visibility: VisibilityType) -> None:
        await self._database.execute(
            """
            INSERT INTO chats (id, user_id, title, visibility, created_at, attachments)
            VALUES ($1::uuid, $2::uuid, $3, $4, NOW(), '[]'::jsonb)
            ON CONFLICT (id) DO NOTHING
            """,
            chat_id,
            user_id,
            title,
            visibility,
        )

    async def update_chat_title(self, chat_id: str, title: str) -> None:
        await self._database.execute(
            "UPDATE chats SET title = $2 WHERE id = $1::uuid",
            chat_id,
            title,
        )

    async def update_chat_attachments(self, chat_id: str, attachments: Sequence[Attachment]) -> None:
        await self._database.execute(
            "UPDATE chats SET attachments = $2::jsonb WHERE id = $1::uuid",
            chat_id,
            _dump_attachments(attachments),
        )

    async def delete_chat(self, chat_id: str) -> ChatRecord | None:
        """Delete a chat with its messages and run ids in one statement."""
        row = await self._database.fetchrow(
            """
            WITH deleted_messages AS (
              DELETE FROM messages WHERE chat_id = $1::uuid
            ),
            deleted_streams AS (
              DELETE FROM streams WHERE chat_id = $1::uuid
            )
            DELETE FROM chats
            WHERE id = $1::uuid
            RETURNING id::text AS id, user_id::text AS user_id, title, visibility, created_at, attachments
            """,
            chat_id,
        )
        return self._chat_from_record(row) if row is not None else None

    async def get_messages(self, chat_id: str) -> list[ChatMessage]:
        rows = await self._database.fetch(
            """
            SELECT id::text AS id, chat_id::text AS chat_id, role, parts, attachments, created_at
            FROM messages
            WHERE chat_id = $1::uuid
            ORDER BY sequence ASC
            """,
            chat_id,
        )
        return [self._message_from_record(row) for row in rows]

    async def save_messages(self, messages: Sequence[ChatMessage]) -> None:
        """Insert messages in order; an id that already exists keeps its first writer.

        ``sequence`` is an identity column, so concurrent writers to one chat never
        compete for the same ordering slot.
        """
        for message in messages:
            payload = message.model_dump(mode="json", by_alias=True)
            await self._database.execute(
                """
                INSERT INTO messages (id, chat_id, role, parts, attachments, created_at)
                VALUES ($1::uuid, $2::uuid, $3, $4::jsonb, $5::jsonb, $6)
                ON CONFLICT (id) DO NOTHING
                """,
                message.id,
                message.chat_id,
                message.role,
                payload["parts"],
                payload["attachments"],
                message.created_at,
            )
        logger.debug("messages saved", extra={"count": len(messages)})

    async def create_stream_id(self, *, stream_id: str, chat_id: str) -> None:
        await self._database.execute(
            "INSERT INTO streams (id, chat_id, created_at) VALUES ($1::uuid, $2::uuid, NOW())",
            stream_id,
            chat_id,
        )

    async def get_stream_ids(self, chat_id: str) -> list[str]:
        rows = await self._database.fetch(
            """
            SELECT id::text AS id
            FROM streams
            WHERE chat_id = $1::uuid
            ORDER BY created_at ASC
            """,
            chat_id,
        )
        return [str(row["id"]) for row in rows]

    @staticmethod
    def _chat_from_record(row: Mapping[str, Any]) -> ChatRecord:
        return ChatRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            visibility=row["visibility"],
            created_at=row["created_at"],
            attachments=_json_list(row.get("attachments")),
        )

    @staticmethod
    def _message_from_record(row: Mapping[str, Any]) -> ChatMessage:
        return ChatMessage(
            id=row["id"],
            chat_id=row["chat_id"],
            role=row["role"],
            parts=_json_list(row.get("parts")),
            attachments=_json_list(row.get("attachments")),
            created_at=row["created_at"],
        )
