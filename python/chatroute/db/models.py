"""SQLAlchemy ORM models for chatroute.

Column types are portable (Uuid, DateTime with timezone) so the same models
run against PostgreSQL in production and SQLite in tests. Defaults are
generated in Python rather than by the server for the same reason.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Profile(Base):
    """Identity provider projection: the caller's subscription plan.

    The user ID matches the auth provider's user ID (sub claim).
    """

    __tablename__ = "profiles"

    user_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    subscription_plan: Mapped[str] = mapped_column(Text, nullable=False, default="free")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_plan IN ('free', 'plus', 'pro')",
            name="ck_profiles_subscription_plan",
        ),
    )


class ChatSession(Base):
    """A titled thread of messages owned by one user."""

    __tablename__ = "chat_sessions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="New Chat")
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    model_used: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("total_messages >= 0", name="ck_chat_sessions_total_nonnegative"),
        Index("ix_chat_sessions_owner_created", "owner_id", "created_at"),
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
    )


class ChatMessage(Base):
    """A single user or assistant message in a chat session.

    seq orders messages within a session; it equals the session's
    total_messages at the time the message was appended.
    """

    __tablename__ = "chat_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    chat_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    token_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    model_used: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_chat_messages_seq_positive"),
        CheckConstraint("role IN ('user', 'assistant')", name="ck_chat_messages_role"),
        Index("uix_chat_messages_chat_seq", "chat_id", "seq", unique=True),
    )

    session: Mapped["ChatSession"] = relationship("ChatSession", back_populates="messages")
