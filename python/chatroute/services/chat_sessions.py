"""Chat session store.

Sessions and messages for one owner:
- placeholder detection and creation of new sessions ("New Chat")
- conversation history for prompting
- atomic append of a user + assistant exchange
- cursor pagination of sessions, offset pagination of messages
- the latest-session history view
- rename and delete

All operations enforce owner-only access and answer E_SESSION_NOT_FOUND
for both missing and foreign sessions. Cache invalidation is the caller's
job (see cache_invalidation); this module only touches the database.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from chatroute.db.models import ChatMessage, ChatSession
from chatroute.db.session import transaction
from chatroute.errors import (
    ApiErrorCode,
    InvalidRequestError,
    NotFoundError,
    PersistenceError,
)
from chatroute.logging import get_logger
from chatroute.schemas.chat import (
    AppendedExchange,
    ChatHistoryResponse,
    ChatMessageOut,
    ChatSessionDetail,
    ChatSessionOut,
    MessagePagination,
    SessionListPagination,
    SessionListResponse,
)
from chatroute.services.llm.prompt import estimate_token_count
from chatroute.services.llm.types import Turn

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

PLACEHOLDER_SESSION_IDS = frozenset({"new", "new-chat", "draft", "temp", "placeholder", ""})
PLACEHOLDER_TITLE = "New Chat"
TITLE_PREVIEW_CHARS = 50
MAX_TITLE_CHARS = 200
HISTORY_LIMIT = 20

DEFAULT_LIST_LIMIT = 20
DEFAULT_DETAIL_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 100

DIRECTIONS = ("next", "prev")


# =============================================================================
# Helper Functions
# =============================================================================


def clamp_limit(limit: int) -> int:
    """Clamp limit to valid range [MIN_LIMIT, MAX_LIMIT]."""
    return min(max(limit, MIN_LIMIT), MAX_LIMIT)


def is_placeholder_session_id(session_id: str | None) -> bool:
    """True when the client has no real session yet."""
    if session_id is None:
        return True
    return session_id.strip().lower() in PLACEHOLDER_SESSION_IDS


def title_from_message(message: str) -> str:
    """First message truncated to 50 characters, with "..." if it was longer."""
    if len(message) > TITLE_PREVIEW_CHARS:
        return message[:TITLE_PREVIEW_CHARS] + "..."
    return message


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def encode_session_cursor(created_at: datetime) -> str:
    """Cursor = ISO-8601 created_at of the boundary row."""
    return _utc(created_at).isoformat()


def decode_session_cursor(cursor: str) -> datetime:
    """Parse an ISO-8601 cursor; naive values are taken as UTC.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is unparseable.
    """
    try:
        return _utc(datetime.fromisoformat(cursor.strip().replace("Z", "+00:00")))
    except (ValueError, AttributeError):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None


def _parse_session_id(session_id: str | UUID) -> UUID:
    if isinstance(session_id, UUID):
        return session_id
    try:
        return UUID(session_id.strip())
    except (ValueError, AttributeError):
        raise NotFoundError(ApiErrorCode.E_SESSION_NOT_FOUND, "Chat not found") from None


def get_session_for_owner_or_404(
    db: Session, owner_id: UUID, session_id: str | UUID
) -> ChatSession:
    """Load a session and verify ownership.

    Raises:
        NotFoundError(E_SESSION_NOT_FOUND): If the id is malformed, the session
            doesn't exist, OR the caller is not the owner.
    """
    session = db.get(ChatSession, _parse_session_id(session_id))
    if session is None or session.owner_id != owner_id:
        raise NotFoundError(ApiErrorCode.E_SESSION_NOT_FOUND, "Chat not found")
    return session


def session_to_out(session: ChatSession) -> ChatSessionOut:
    return ChatSessionOut.model_validate(session)


def message_to_out(message: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut.model_validate(message)


# =============================================================================
# Create / Resolve
# =============================================================================


def create_session(db: Session, owner_id: UUID) -> ChatSession:
    """Insert a fresh session with the placeholder title."""
    session = ChatSession(owner_id=owner_id, title=PLACEHOLDER_TITLE, total_messages=0)
    try:
        with transaction(db):
            db.add(session)
    except SQLAlchemyError as e:
        logger.error("chat_session.create_failed", error_type=type(e).__name__)
        raise PersistenceError("Failed to create chat session") from e

    logger.info("chat_session.created", session_id=str(session.id))
    return session


def resolve_session(
    db: Session, owner_id: UUID, session_id: str | None
) -> tuple[ChatSession, bool]:
    """Return (session, is_new).

    Placeholder ids create a new session. Concurrent placeholder requests
    from the same owner each create their own session.
    """
    if is_placeholder_session_id(session_id):
        return create_session(db, owner_id), True
    return get_session_for_owner_or_404(db, owner_id, session_id), False


def load_history(db: Session, session_id: UUID, limit: int = HISTORY_LIMIT) -> list[Turn]:
    """Most recent messages of a session, oldest first, as prompt turns."""
    rows = (
        db.execute(
            select(ChatMessage.role, ChatMessage.content)
            .where(ChatMessage.chat_id == session_id)
            .order_by(ChatMessage.seq.desc())
            .limit(limit)
        )
        .all()
    )
    return [Turn(role=role, content=content) for role, content in reversed(rows)]


# =============================================================================
# Append
# =============================================================================


def append_exchange(
    db: Session,
    owner_id: UUID,
    session_id: UUID,
    *,
    user_content: str,
    assistant_content: str,
    model_used: str | None,
    is_new: bool,
    assistant_tokens: int | None = None,
) -> AppendedExchange:
    """Append a user + assistant message pair in one transaction.

    Also updates last_message_at, increments total_messages by exactly 2,
    records model_used and, for a new session, replaces the placeholder
    title with the first message. Nothing is written if any step fails.

    Raises:
        PersistenceError: On any database failure or if the session is gone.
    """
    try:
        with transaction(db):
            session = db.execute(
                select(ChatSession)
                .where(ChatSession.id == session_id, ChatSession.owner_id == owner_id)
                .with_for_update()
            ).scalar_one_or_none()
            if session is None:
                raise PersistenceError("Chat session no longer exists")

            now = datetime.now(UTC)
            user_message = ChatMessage(
                chat_id=session.id,
                owner_id=owner_id,
                seq=session.total_messages + 1,
                role="user",
                content=user_content,
                token_count=estimate_token_count(user_content),
                created_at=now,
            )
            assistant_message = ChatMessage(
                chat_id=session.id,
                owner_id=owner_id,
                seq=session.total_messages + 2,
                role="assistant",
                content=assistant_content,
                token_count=assistant_tokens or estimate_token_count(assistant_content),
                model_used=model_used,
                created_at=now + timedelta(microseconds=1),
            )
            db.add_all([user_message, assistant_message])

            session.total_messages += 2
            session.last_message_at = assistant_message.created_at
            session.updated_at = now
            if model_used:
                session.model_used = model_used
            if is_new:
                session.title = title_from_message(user_content)
            db.flush()
    except SQLAlchemyError as e:
        logger.error(
            "chat.persist.failed", session_id=str(session_id), error_type=type(e).__name__
        )
        raise PersistenceError() from e

    logger.info(
        "chat.persist.appended",
        session_id=str(session.id),
        total_messages=session.total_messages,
        title_finalized=is_new,
    )
    return AppendedExchange(
        session=session_to_out(session),
        user_message_id=user_message.id,
        assistant_message_id=assistant_message.id,
    )


# =============================================================================
# Read
# =============================================================================


def list_sessions(
    db: Session,
    owner_id: UUID,
    *,
    limit: int = DEFAULT_LIST_LIMIT,
    cursor: str | None = None,
    direction: str = "next",
) -> SessionListResponse:
    """List the owner's sessions newest-first with created_at cursors.

    direction=next returns rows older than the cursor; direction=prev
    returns the rows newer than the cursor that are nearest to it. One
    extra row is fetched to compute has_more without a count query.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR | E_INVALID_REQUEST)
    """
    if direction not in DIRECTIONS:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "direction must be 'next' or 'prev'"
        )
    limit = clamp_limit(limit)

    query = select(ChatSession).where(ChatSession.owner_id == owner_id)
    if cursor:
        boundary = decode_session_cursor(cursor)
        if direction == "next":
            query = query.where(ChatSession.created_at < boundary)
        else:
            query = query.where(ChatSession.created_at > boundary)

    if direction == "prev" and cursor:
        query = query.order_by(ChatSession.created_at.asc(), ChatSession.id.asc())
    else:
        query = query.order_by(ChatSession.created_at.desc(), ChatSession.id.desc())

    rows = list(db.execute(query.limit(limit + 1)).scalars())
    has_more = len(rows) > limit
    rows = rows[:limit]
    if direction == "prev" and cursor:
        rows.reverse()

    return SessionListResponse(
        data=[session_to_out(s) for s in rows],
        pagination=SessionListPagination(
            has_more=has_more,
            next_cursor=encode_session_cursor(rows[-1].created_at) if rows else None,
            prev_cursor=encode_session_cursor(rows[0].created_at) if rows else None,
            limit=limit,
        ),
        cached=False,
    )


def _message_page(db: Session, session_id: UUID, limit: int, offset: int) -> list[ChatMessage]:
    """A page selected newest-first by offset, returned oldest-first."""
    messages = list(
        db.execute(
            select(ChatMessage)
            .where(ChatMessage.chat_id == session_id)
            .order_by(ChatMessage.seq.desc())
            .offset(offset)
            .limit(limit)
        ).scalars()
    )
    messages.reverse()
    return messages


def get_session_detail(
    db: Session,
    owner_id: UUID,
    session_id: str | UUID,
    *,
    limit: int = DEFAULT_DETAIL_LIMIT,
    offset: int = 0,
) -> ChatSessionDetail:
    """Session plus a page of messages.

    The page is selected newest-first by offset and returned oldest-first.
    """
    session = get_session_for_owner_or_404(db, owner_id, session_id)
    limit = clamp_limit(limit)
    offset = max(offset, 0)
    messages = _message_page(db, session.id, limit, offset)

    total = session.total_messages
    return ChatSessionDetail(
        **session_to_out(session).model_dump(),
        messages=[message_to_out(m) for m in messages],
        pagination=MessagePagination(
            limit=limit, offset=offset, total=total, has_more=offset + limit < total
        ),
    )


def count_messages(db: Session, session_id: UUID) -> int:
    return db.scalar(
        select(func.count()).select_from(ChatMessage).where(ChatMessage.chat_id == session_id)
    )


def get_latest_history(
    db: Session,
    owner_id: UUID,
    *,
    limit: int = DEFAULT_DETAIL_LIMIT,
    offset: int = 0,
) -> ChatHistoryResponse:
    """Messages of the owner's most recently updated session, plus a session count.

    An owner without sessions gets no messages and sessionId None.
    """
    limit = clamp_limit(limit)
    offset = max(offset, 0)

    latest = db.execute(
        select(ChatSession)
        .where(ChatSession.owner_id == owner_id)
        .order_by(ChatSession.updated_at.desc(), ChatSession.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    total_sessions = db.scalar(
        select(func.count()).select_from(ChatSession).where(ChatSession.owner_id == owner_id)
    )

    messages = _message_page(db, latest.id, limit, offset) if latest is not None else []
    return ChatHistoryResponse(
        messages=[message_to_out(m) for m in messages],
        session_id=latest.id if latest is not None else None,
        total_sessions=total_sessions or 0,
    )


# =============================================================================
# Update / Delete
# =============================================================================


def validate_title(title: object) -> str:
    """Titles are strings of 1-200 characters after trimming.

    Raises:
        InvalidRequestError(E_INVALID_TITLE)
    """
    if not isinstance(title, str):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TITLE, "Title must be a string")
    title = title.strip()
    if not title:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TITLE, "Title is required")
    if len(title) > MAX_TITLE_CHARS:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_TITLE, "Title is too long")
    return title


def rename_session(
    db: Session, owner_id: UUID, session_id: str | UUID, title: object
) -> ChatSessionOut:
    title = validate_title(title)
    session = get_session_for_owner_or_404(db, owner_id, session_id)
    try:
        with transaction(db):
            session.title = title
            session.updated_at = datetime.now(UTC)
    except SQLAlchemyError as e:
        logger.error("chat_session.rename_failed", error_type=type(e).__name__)
        raise PersistenceError("Failed to update chat session") from e

    logger.info("chat_session.renamed", session_id=str(session.id), title_chars=len(title))
    return session_to_out(session)


def delete_session(db: Session, owner_id: UUID, session_id: str | UUID) -> None:
    """Delete a session and its messages."""
    session = get_session_for_owner_or_404(db, owner_id, session_id)
    try:
        with transaction(db):
            db.delete(session)
    except SQLAlchemyError as e:
        logger.error("chat_session.delete_failed", error_type=type(e).__name__)
        raise PersistenceError("Failed to delete chat session") from e

    logger.info("chat_session.deleted", session_id=str(session_id))
