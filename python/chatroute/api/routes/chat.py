"""Chat API routes.

- POST /chat            send a message, JSON answer
- POST /chat/stream     send a message, SSE answer
- GET /chat/sessions    cursor-paginated session list (cached per owner)
- GET /chat/history     messages of the most recently updated session (cached per owner)
- GET /chat/{id}        session detail with offset-paginated messages
- PATCH /chat/{id}      rename
- DELETE /chat/{id}     delete with messages

Routes are transport-only: each calls one service function. Every write
evicts the owner's cached session views.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from chatroute.api.deps import (
    get_db,
    get_model_invoker,
    get_redis,
    get_session_factory,
    get_settings_dep,
)
from chatroute.auth.middleware import Viewer, get_viewer
from chatroute.config import Settings
from chatroute.errors import ApiError, ApiErrorCode
from chatroute.responses import success_response
from chatroute.schemas.chat import ChatRequest, RenameSessionRequest
from chatroute.services import chat_sessions
from chatroute.services.cache_invalidation import invalidate_session_views
from chatroute.services.chat import send_chat, validate_message
from chatroute.services.chat_stream import SSE_HEADERS, stream_chat
from chatroute.services.llm import ModelInvoker
from chatroute.services.response_cache import (
    get_view,
    session_detail_key,
    session_history_key,
    session_list_key,
    set_view,
)

router = APIRouter(prefix="/chat", tags=["chat"])


# =============================================================================
# Send Message
# =============================================================================


@router.post("")
async def send_message(
    body: ChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    invoker: Annotated[ModelInvoker, Depends(get_model_invoker)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    redis_client=Depends(get_redis),
) -> dict:
    """Send a message and return the routed model's answer.

    Errors:
        E_MESSAGE_REQUIRED (400): Message missing or blank.
        E_INVALID_REQUEST (400): Message longer than MAX_MESSAGE_CHARS.
        E_UPGRADE_REQUIRED (403): Plan does not admit the intent; body carries requiredPlan.
        E_SESSION_NOT_FOUND (404): sessionId is not one of the viewer's sessions.
        E_PERSISTENCE_FAILED (500): The exchange could not be saved.
    """
    reply = await send_chat(
        db,
        owner_id=viewer.user_id,
        plan=viewer.subscription_plan,
        message=body.message,
        session_id=body.session_id,
        invoker=invoker,
        redis_client=redis_client,
        cache_ttl_s=settings.chat_cache_ttl_s,
    )
    return reply.model_dump(mode="json", by_alias=True)


@router.post("/stream")
async def send_message_stream(
    body: ChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    invoker: Annotated[ModelInvoker, Depends(get_model_invoker)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    db_factory=Depends(get_session_factory),
    redis_client=Depends(get_redis),
) -> StreamingResponse:
    """Send a message with an SSE response.

    Frames: routing, session, model_selected, delta*, error?, then data: [DONE].

    Errors (JSON, before the stream opens):
        E_MESSAGE_REQUIRED (400): Message missing or blank.
        E_INVALID_REQUEST (400): Message longer than MAX_MESSAGE_CHARS.
        E_STREAMING_DISABLED (403): ENABLE_STREAMING is off.
    """
    if not settings.enable_streaming:
        raise ApiError(ApiErrorCode.E_STREAMING_DISABLED, "Streaming is disabled")
    message = validate_message(body.message)

    return StreamingResponse(
        stream_chat(
            db_factory,
            owner_id=viewer.user_id,
            plan=viewer.subscription_plan,
            message=message,
            session_id=body.session_id,
            invoker=invoker,
            redis_client=redis_client,
            cache_ttl_s=settings.chat_cache_ttl_s,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# =============================================================================
# Sessions
# =============================================================================


@router.get("/sessions")
def list_sessions(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    redis_client=Depends(get_redis),
    limit: int = Query(default=chat_sessions.DEFAULT_LIST_LIMIT, description="1-100, clamped"),
    cursor: str | None = Query(default=None, description="created_at of the boundary row"),
    direction: str = Query(default="next", description="next (older) or prev (newer)"),
    force: bool = Query(default=False, description="Bypass the list cache"),
) -> dict:
    """List the viewer's sessions newest-first.

    Errors:
        E_INVALID_CURSOR (400): Cursor is not an ISO-8601 timestamp.
        E_INVALID_REQUEST (400): direction is not next/prev.
    """
    limit = chat_sessions.clamp_limit(limit)
    key = session_list_key(viewer.user_id, cursor, limit, direction)

    if not force:
        cached = get_view(redis_client, key)
        if cached.hit:
            return {**cached.value, "cached": True}

    result = chat_sessions.list_sessions(
        db, viewer.user_id, limit=limit, cursor=cursor, direction=direction
    )
    payload = result.model_dump(mode="json", by_alias=True)
    set_view(redis_client, key, payload, ttl_seconds=settings.session_cache_ttl_s)
    return payload


@router.get("/history")
def get_history(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    redis_client=Depends(get_redis),
    limit: int = Query(default=chat_sessions.DEFAULT_DETAIL_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> dict:
    """Latest session's messages (oldest-first) with the viewer's session count.

    Must stay declared before /{session_id}.
    """
    limit = chat_sessions.clamp_limit(limit)
    key = session_history_key(viewer.user_id, limit, offset)

    cached = get_view(redis_client, key)
    if cached.hit:
        return {**cached.value, "cached": True}

    result = chat_sessions.get_latest_history(db, viewer.user_id, limit=limit, offset=offset)
    payload = result.model_dump(mode="json", by_alias=True)
    set_view(redis_client, key, payload, ttl_seconds=settings.session_cache_ttl_s)
    return payload


@router.get("/{session_id}")
def get_session(
    session_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    redis_client=Depends(get_redis),
    limit: int = Query(default=chat_sessions.DEFAULT_DETAIL_LIMIT),
    offset: int = Query(default=0, ge=0),
) -> dict:
    """Session detail with a page of messages (oldest-first within the page).

    Errors:
        E_SESSION_NOT_FOUND (404): Session doesn't exist or viewer is not owner.
    """
    limit = chat_sessions.clamp_limit(limit)
    key = session_detail_key(viewer.user_id, session_id, limit, offset)

    cached = get_view(redis_client, key)
    if cached.hit:
        return success_response(cached.value)

    detail = chat_sessions.get_session_detail(
        db, viewer.user_id, session_id, limit=limit, offset=offset
    )
    payload = detail.model_dump(mode="json")
    set_view(redis_client, key, payload, ttl_seconds=settings.session_cache_ttl_s)
    return success_response(payload)


@router.patch("/{session_id}")
def rename_session(
    session_id: str,
    body: RenameSessionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    redis_client=Depends(get_redis),
) -> dict:
    """Rename a session.

    Errors:
        E_INVALID_TITLE (400): Title missing, blank, or longer than 200 characters.
        E_SESSION_NOT_FOUND (404): Session doesn't exist or viewer is not owner.
    """
    result = chat_sessions.rename_session(db, viewer.user_id, session_id, body.title)
    invalidate_session_views(redis_client, viewer.user_id, reason="rename")
    return success_response(result.model_dump(mode="json"))


@router.delete("/{session_id}")
def delete_session(
    session_id: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    redis_client=Depends(get_redis),
) -> dict:
    """Delete a session and its messages.

    Errors:
        E_SESSION_NOT_FOUND (404): Session doesn't exist or viewer is not owner.
    """
    chat_sessions.delete_session(db, viewer.user_id, session_id)
    invalidate_session_views(redis_client, viewer.user_id, reason="delete")
    return {"message": "Chat session deleted successfully"}
