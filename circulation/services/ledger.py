"""Copy-count bookkeeping for books.

``Book.available_copies`` is the only shared counter with a cross-entity
invariant (``0 <= available_copies <= total_copies``).  All writes to it go
through :class:`AvailabilityLedger`, and every write is a single conditional
UPDATE so that concurrent requests cannot both claim the last copy.

The ledger never commits; callers own the transaction.
"""

import logging

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from circulation.models.models import Book

logger = logging.getLogger("library.ledger")


class AvailabilityLedger:

    def __init__(self, db: Session):
        self.db = db

    def _execute(self, stmt):
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    def take_copy(self, book_id: int) -> bool:
        """Decrement ``available_copies`` if a copy is left.

        Returns False when no row matched, i.e. the book is gone or its last
        copy was taken in the meantime.
        """
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.available_copies > 0)
            .values(available_copies=Book.available_copies - 1)
        )
        taken = self._execute(stmt) == 1
        if taken:
            logger.info(f"Took one copy of book {book_id}")
        return taken

    def release_copy(self, book_id: int) -> bool:
        """Increment ``available_copies``, never past ``total_copies``.

        Returns False if the book does not exist.
        """
        next_available = case(
            (Book.available_copies + 1 > Book.total_copies, Book.total_copies),
            else_=Book.available_copies + 1,
        )
        stmt = update(Book).where(Book.id == book_id).values(available_copies=next_available)
        released = self._execute(stmt) == 1
        if released:
            logger.info(f"Released one copy of book {book_id}")
        return released

    def resize(self, book: Book, total_copies: int) -> None:
        """Change the physical copy count, shifting availability by the same delta."""
        delta = total_copies - book.total_copies
        book.available_copies = min(total_copies, max(0, book.available_copies + delta))
        book.total_copies = total_copies
        logger.info(f"Resized book {book.id} to total={book.total_copies} available={book.available_copies}")

    def refresh(self, book: Book) -> Book:
        """Reload counters written behind the ORM's back by the UPDATEs above."""
        self.db.refresh(book, attribute_names=["total_copies", "available_copies"])
        return book
