"""Chat Pydantic schemas.

Request bodies keep the camelCase field names existing clients send
(sessionId, userMessage, subscriptionPlan). Session and message rows are
serialized snake_case; pagination blocks follow the shapes their
endpoints have always returned.
"""

from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# =============================================================================
# Request Schemas
# =============================================================================


class ChatRequest(BaseModel):
    """Body of POST /chat and POST /chat/stream."""

    message: str | None = None
    session_id: str | None = Field(default=None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class RenameSessionRequest(BaseModel):
    """Body of PATCH /chat/{id}. title is validated by the service."""

    title: Any = None


class RouteRequest(BaseModel):
    """Body of POST /route."""

    user_message: str | None = Field(default=None, alias="userMessage")
    subscription_plan: str | None = Field(default=None, alias="subscriptionPlan")

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Response Schemas
# =============================================================================


class ChatSessionOut(BaseModel):
    id: UUID
    title: str
    created_at: UtcDatetime
    last_message_at: Annotated[datetime | None, AfterValidator(_as_utc)] = None
    total_messages: int
    model_used: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ChatMessageOut(BaseModel):
    id: UUID
    role: str  # "user" | "assistant"
    content: str
    token_count: int | None = None
    model_used: str | None = None
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class SessionListPagination(BaseModel):
    has_more: bool = Field(serialization_alias="hasMore")
    next_cursor: str | None = Field(default=None, serialization_alias="nextCursor")
    prev_cursor: str | None = Field(default=None, serialization_alias="prevCursor")
    limit: int


class SessionListResponse(BaseModel):
    data: list[ChatSessionOut]
    pagination: SessionListPagination
    cached: bool = False


class MessagePagination(BaseModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class ChatSessionDetail(ChatSessionOut):
    messages: list[ChatMessageOut]
    pagination: MessagePagination


class ChatHistoryResponse(BaseModel):
    """Body of GET /chat/history: the most recently updated session's messages."""

    messages: list[ChatMessageOut]
    session_id: UUID | None = Field(default=None, serialization_alias="sessionId")
    total_sessions: int = Field(serialization_alias="totalSessions")
    cached: bool = False


class AppendedExchange(BaseModel):
    """Result of an atomic two-message append."""

    session: ChatSessionOut
    user_message_id: UUID
    assistant_message_id: UUID


class ChatReply(BaseModel):
    """Body of a POST /chat response (inside the data envelope)."""

    output: str
    session_id: UUID = Field(serialization_alias="sessionId")
    model: str
    downgraded: bool
    is_new_chat: bool = Field(serialization_alias="isNewChat")
    cached: bool
    routing: dict[str, Any]
