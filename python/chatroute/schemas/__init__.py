"""Pydantic schemas for request/response models."""

from chatroute.schemas.chat import (
    AppendedExchange,
    ChatMessageOut,
    ChatReply,
    ChatRequest,
    ChatSessionDetail,
    ChatSessionOut,
    MessagePagination,
    RenameSessionRequest,
    RouteRequest,
    SessionListPagination,
    SessionListResponse,
)

__all__ = [
    "AppendedExchange",
    "ChatMessageOut",
    "ChatReply",
    "ChatRequest",
    "ChatSessionDetail",
    "ChatSessionOut",
    "MessagePagination",
    "RenameSessionRequest",
    "RouteRequest",
    "SessionListPagination",
    "SessionListResponse",
]
