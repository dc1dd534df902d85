from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from .session import SessionLocalRental


def get_rental_db() -> Generator:
    db = SessionLocalRental()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
