"""Session factory and the commit-or-rollback helper used by services."""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from chatroute.db.engine import get_engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Sessions that neither autoflush nor expire loaded rows on commit.

    Services return ORM rows after committing, so rows must stay readable.
    """
    return sessionmaker(bind=engine or get_engine(), autoflush=False, expire_on_commit=False)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit when the block exits cleanly, roll back and re-raise otherwise.

        with transaction(db):
            db.add(session_row)
            db.add(message_row)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
