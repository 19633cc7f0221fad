"""Borrowing lifecycle: issue, return, patch and delete loans.

A loan for a ``(user, book)`` pair moves ``borrowed -> returned`` exactly
once.  Each operation runs in one transaction on the injected session: the
borrowing row and the book's copy count are written together or not at all.
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from circulation.core.database import utcnow
from circulation.core.errors import (ConflictError, InconsistencyError, NotFoundError,
                                     UnavailableError, ValidationError)
from circulation.models.models import Book, Borrowing, BorrowingStatus, Review, User
from circulation.services.ledger import AvailabilityLedger

logger = logging.getLogger("library.borrowings")

BORROWED = BorrowingStatus.BORROWED.value
RETURNED = BorrowingStatus.RETURNED.value

EDITABLE_FIELDS = {"due_date", "notes", "status"}


def parse_due_date(value, now: datetime, allow_past: bool = False) -> datetime:
    """Resolve ``value`` to a naive UTC datetime.

    Accepts a ``datetime``, a ``date`` (midnight) or an ISO 8601 string.
    Unless ``allow_past`` is set, the calendar date must be today or later.
    """
    if isinstance(value, datetime):
        due = value
    elif isinstance(value, date):
        due = datetime.combine(value, time())
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            due = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError("due_date must be an ISO 8601 date or datetime")
    else:
        raise ValidationError("due_date must be an ISO 8601 date or datetime")

    if due.tzinfo is not None:
        due = due.astimezone(timezone.utc).replace(tzinfo=None)
    if not allow_past and due.date() < now.date():
        raise ValidationError("due_date cannot be in the past")
    return due


class BorrowingLifecycle:
    """Sole writer of ``Borrowing.status``, ``Borrowing.returned_at`` and the
    books' ``available_copies``."""

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock
        self.ledger = AvailabilityLedger(db)

    # ---- helpers
    def get(self, borrowing_id: int) -> Borrowing:
        borrowing = self.db.query(Borrowing).filter(Borrowing.id == borrowing_id).first()
        if not borrowing:
            raise NotFoundError("Borrowing not found")
        return borrowing

    def _abort(self, error, borrowing_id=None, book_id=None):
        self.db.rollback()
        if isinstance(error, InconsistencyError):
            logger.error(f"{error.message} (borrowing={borrowing_id} book={book_id})")
        else:
            logger.warning(f"Rejected: {error.message} (borrowing={borrowing_id} book={book_id})")
        raise error

    def _commit(self, action: str, borrowing_id=None, book_id=None):
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self._abort(InconsistencyError(f"Failed to {action}: {exc.__class__.__name__}",
                                           borrowing_id=borrowing_id, book_id=book_id),
                        borrowing_id, book_id)

    def _take_copy(self, borrowing_id, book_id):
        try:
            taken = self.ledger.take_copy(book_id)
        except SQLAlchemyError as exc:
            self._abort(InconsistencyError(f"Failed to update copy count: {exc.__class__.__name__}",
                                           borrowing_id=borrowing_id, book_id=book_id),
                        borrowing_id, book_id)
        if not taken:
            self._abort(UnavailableError("Book is not available for borrowing"), borrowing_id, book_id)

    def _release_copy(self, borrowing_id, book_id) -> bool:
        try:
            return self.ledger.release_copy(book_id)
        except SQLAlchemyError as exc:
            self._abort(InconsistencyError(f"Failed to update copy count: {exc.__class__.__name__}",
                                           borrowing_id=borrowing_id, book_id=book_id),
                        borrowing_id, book_id)

    def _has_active_loan(self, user_id, book_id, exclude_id=None) -> bool:
        query = self.db.query(Borrowing.id).filter(
            Borrowing.user_id == user_id,
            Borrowing.book_id == book_id,
            Borrowing.status == BORROWED,
        )
        if exclude_id is not None:
            query = query.filter(Borrowing.id != exclude_id)
        return query.first() is not None

    def _set_status(self, borrowing: Borrowing, current: str, target: str, returned_at) -> bool:
        stmt = (
            update(Borrowing)
            .where(Borrowing.id == borrowing.id, Borrowing.status == current)
            .values(status=target, returned_at=returned_at, updated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        try:
            return self.db.execute(stmt).rowcount == 1
        except IntegrityError:
            self._abort(ConflictError("User has already borrowed this book"), borrowing.id, borrowing.book_id)

    def _close(self, borrowing: Borrowing):
        """borrowed -> returned, giving the copy back."""
        if borrowing.status == RETURNED:
            self._abort(ConflictError("Book has already been returned"), borrowing.id, borrowing.book_id)
        if not self._set_status(borrowing, BORROWED, RETURNED, self.clock()):
            self._abort(ConflictError("Book has already been returned"), borrowing.id, borrowing.book_id)
        if not self._release_copy(borrowing.id, borrowing.book_id):
            self._abort(InconsistencyError("Book not found for this borrowing",
                                           borrowing_id=borrowing.id, book_id=borrowing.book_id),
                        borrowing.id, borrowing.book_id)

    def _reopen(self, borrowing: Borrowing):
        """returned -> borrowed, claiming a copy again."""
        if self._has_active_loan(borrowing.user_id, borrowing.book_id, exclude_id=borrowing.id):
            self._abort(ConflictError("User has already borrowed this book"), borrowing.id, borrowing.book_id)
        if not self._set_status(borrowing, RETURNED, BORROWED, None):
            self._abort(ConflictError("Borrowing is already active"), borrowing.id, borrowing.book_id)
        self._take_copy(borrowing.id, borrowing.book_id)

    # ---- operations
    def create(self, user_id: Optional[int], book_id: Optional[int], due_date, notes: Optional[str] = None) -> Borrowing:
        if not user_id or not book_id or due_date in (None, ""):
            raise ValidationError("user_id, book_id, and due_date are required")
        now = self.clock()
        due = parse_due_date(due_date, now)

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        book = self.db.query(Book).filter(Book.id == book_id).first()
        if not book:
            raise NotFoundError("Book not found")
        # an active loan for the pair wins over "no copies left"
        if self._has_active_loan(user_id, book_id):
            self._abort(ConflictError("User has already borrowed this book"), book_id=book_id)
        if book.available_copies <= 0:
            self._abort(UnavailableError("Book is not available for borrowing"), book_id=book_id)

        borrowing = Borrowing(
            user_id=user_id,
            book_id=book_id,
            borrowed_at=now,
            due_date=due,
            notes=notes or None,
            status=BORROWED,
            created_at=now,
            updated_at=now,
        )
        self.db.add(borrowing)
        try:
            self.db.flush()
        except IntegrityError:
            self._abort(ConflictError("User has already borrowed this book"), book_id=book_id)
        except SQLAlchemyError as exc:
            self._abort(InconsistencyError(f"Failed to record borrowing: {exc.__class__.__name__}",
                                           book_id=book_id),
                        book_id=book_id)
        self._take_copy(borrowing.id, book_id)
        self._commit("create borrowing", borrowing.id, book_id)
        self.db.refresh(borrowing)
        logger.info(f"User {user_id} borrowed book {book_id} borrowing {borrowing.id} due {due.isoformat()}")
        return borrowing

    def return_borrowing(self, borrowing_id: int) -> Borrowing:
        borrowing = self.get(borrowing_id)
        book_id = borrowing.book_id
        self._close(borrowing)
        self._commit("return book", borrowing_id, book_id)
        self.db.refresh(borrowing)
        logger.info(f"Borrowing {borrowing_id} returned (book {book_id})")
        return borrowing

    def update(self, borrowing_id: int, changes: dict) -> Borrowing:
        """Patch ``due_date``/``notes``; status changes go through the ledger."""
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Field(s) not editable: {', '.join(unknown)}")
        target = changes.get("status")
        if target is not None:
            try:
                target = BorrowingStatus(target).value
            except ValueError:
                raise ValidationError("status must be 'borrowed' or 'returned'")
        new_due = None
        if "due_date" in changes:
            if changes["due_date"] in (None, ""):
                raise ValidationError("due_date cannot be empty")
            new_due = parse_due_date(changes["due_date"], self.clock(), allow_past=True)

        borrowing = self.get(borrowing_id)
        book_id = borrowing.book_id
        if target is not None and target != borrowing.status:
            if target == RETURNED:
                self._close(borrowing)
            else:
                self._reopen(borrowing)
            logger.info(f"Borrowing {borrowing_id} status changed to {target}")
        if new_due is not None:
            borrowing.due_date = new_due
        if "notes" in changes:
            borrowing.notes = changes["notes"] or None

        self._commit("update borrowing", borrowing_id, book_id)
        self.db.refresh(borrowing)
        logger.info(f"Updated borrowing {borrowing_id} fields={sorted(changes)}")
        return borrowing

    def delete(self, borrowing_id: int) -> dict:
        borrowing = self.get(borrowing_id)
        book_id = borrowing.book_id
        if borrowing.status == BORROWED:
            if not self._release_copy(borrowing_id, book_id):
                logger.warning(f"Book {book_id} missing while deleting active borrowing {borrowing_id}")
        try:
            self.db.execute(
                update(Review)
                .where(Review.borrowing_id == borrowing_id)
                .values(borrowing_id=None)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self._abort(InconsistencyError(f"Failed to detach reviews: {exc.__class__.__name__}",
                                           borrowing_id=borrowing_id, book_id=book_id),
                        borrowing_id, book_id)
        self.db.delete(borrowing)
        self._commit("delete borrowing", borrowing_id, book_id)
        logger.info(f"Deleted borrowing {borrowing_id} (book {book_id})")
        return {"message": "Borrowing deleted successfully"}
