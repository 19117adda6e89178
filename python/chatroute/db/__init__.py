"""Database module for chatroute.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from chatroute.db.engine import create_db_engine, get_engine
from chatroute.db.models import Base, ChatMessage, ChatSession, Profile
from chatroute.db.session import create_session_factory, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "create_session_factory",
    "transaction",
    # Models
    "Base",
    "Profile",
    "ChatSession",
    "ChatMessage",
]
