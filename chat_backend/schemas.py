# chat_backend/schemas.py
# Purpose: Pydantic v2 models for conversation messages and the /api/v1 DTOs.
# Notes:
# - Message mirrors the OpenAI Responses "input" message shape, so a validated
#   Message can be sent upstream as-is and stored losslessly as JSON.
# - Only the input_text content item is ever built; input_image is declared
#   so stored payloads that carry it still validate.

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

Role = Literal["user", "assistant", "system", "developer"]


class InputTextItem(BaseModel):
    type: Literal["input_text"] = "input_text"
    text: str


class InputImageItem(BaseModel):
    type: Literal["input_image"] = "input_image"
    image_url: str


ContentItem = Annotated[Union[InputTextItem, InputImageItem], Field(discriminator="type")]


class Message(BaseModel):
    role: Role
    content: Union[str, List[ContentItem]]

    def has_content(self) -> bool:
        if isinstance(self.content, str):
            return bool(self.content.strip())
        return len(self.content) > 0

    def text(self) -> str:
        """Flatten content to plain text (text items joined by a space)."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(item.text for item in self.content if isinstance(item, InputTextItem))


_content_item_adapter: TypeAdapter = TypeAdapter(ContentItem)


def validate_message(candidate: Any) -> Message:
    """Return a typed Message or raise pydantic.ValidationError."""
    if isinstance(candidate, Message):
        return candidate
    return Message.model_validate(candidate)


def validate_content_item(candidate: Any) -> Union[InputTextItem, InputImageItem]:
    """Return a typed content item or raise pydantic.ValidationError."""
    return _content_item_adapter.validate_python(candidate)


# ---------------------- /api/v1 DTOs ----------------------
class CreateChatRequest(BaseModel):
    sessionId: int
    role: Role
    content: Union[
        Annotated[str, Field(min_length=1, max_length=20000)],
        Annotated[List[ContentItem], Field(min_length=1)],
    ]

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content)


class CreateUserRequest(BaseModel):
    email: str = Field(..., max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=128)


class ChatRecord(BaseModel):
    id: int
    session_id: int
    role: Role
    content: Union[str, List[ContentItem]]
    created_at: Optional[datetime] = None


class SessionSummary(BaseModel):
    id: int
    user_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ErrorResponse(BaseModel):
    error: str
    code: int
    request_id: Optional[str] = None
    error_code: Optional[str] = None
    details: Optional[List[dict]] = None
