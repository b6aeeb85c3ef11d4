import uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field

ChatModelVariant = Literal["chat-model", "chat-model-reasoning"]
VisibilityType = Literal["public", "private"]
MessageRole = Literal["user", "assistant"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Attachment(_CamelModel):
    url: AnyHttpUrl = Field(..., description="Public URL of the uploaded document")
    name: str = Field(..., min_length=1, max_length=2000, description="Original file name")
    content_type: Literal["application/pdf"] = Field(
        ...,
        alias="contentType",
        description="Only PDF documents can be attached",
    )


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    reasoning: str


class ToolInvocation(_CamelModel):
    state: Literal["call", "result"]
    tool_call_id: str = Field(..., alias="toolCallId")
    tool_name: str = Field(..., alias="toolName")
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ToolInvocationPart(_CamelModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: ToolInvocation = Field(..., alias="toolInvocation")


MessagePart = Annotated[TextPart | ReasoningPart | ToolInvocationPart, Field(discriminator="type")]


class ChatMessage(_CamelModel):
    """One persisted conversation turn; ``parts`` order is the rendering order."""

    id: str
    chat_id: str = Field(..., alias="chatId")
    role: MessageRole
    parts: list[MessagePart] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)
    created_at: datetime = Field(..., alias="createdAt")


class ChatRecord(_CamelModel):
    id: str
    user_id: str = Field(..., alias="userId")
    title: str
    visibility: VisibilityType
    created_at: datetime = Field(..., alias="createdAt")
    attachments: list[Attachment] = Field(default_factory=list)


class UserTextPart(BaseModel):
    type: Literal["text"]
    text: str = Field(..., min_length=1, max_length=2000)


class UserMessagePayload(_CamelModel):
    id: uuid.UUID
    created_at: datetime = Field(..., alias="createdAt")
    role: Literal["user"]
    content: str = Field(..., min_length=1, max_length=2000)
    parts: list[UserTextPart]
    experimental_attachments: list[Attachment] | None = None


class PostChatRequest(_CamelModel):
    id: uuid.UUID = Field(..., description="Chat id; a new chat is created when it doesn't exist yet")
    message: UserMessagePayload
    selected_chat_model: ChatModelVariant = Field(..., alias="selectedChatModel")
    selected_visibility_type: VisibilityType = Field(..., alias="selectedVisibilityType")


class PatchAttachmentsRequest(_CamelModel):
    chat_id: uuid.UUID = Field(..., alias="chatId")
    attachments: list[Attachment]


class DeletedChatResponse(_CamelModel):
    id: str
    user_id: str = Field(..., alias="userId")
    title: str
    visibility: VisibilityType
    created_at: datetime = Field(..., alias="createdAt")
