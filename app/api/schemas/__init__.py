from app.api.schemas.auth import UnifiedPrincipal
from app.api.schemas.chat import (
    Attachment,
    ChatMessage,
    ChatRecord,
    DeletedChatResponse,
    PatchAttachmentsRequest,
    PostChatRequest,
)

__all__ = [
    "Attachment",
    "ChatMessage",
    "ChatRecord",
    "DeletedChatResponse",
    "PatchAttachmentsRequest",
    "PostChatRequest",
    "UnifiedPrincipal",
]
