"""Read paths over borrowings: filtered lists, history, overdue and stats."""

from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from circulation.core.database import utcnow
from circulation.core.errors import NotFoundError
from circulation.models.models import Borrowing, BorrowingStatus, loan_is_overdue, overdue_clause


class BorrowingQueryService:

    def __init__(self, db: Session, clock=utcnow):
        self.db = db
        self.clock = clock

    def _joined(self):
        return self.db.query(Borrowing).options(joinedload(Borrowing.user), joinedload(Borrowing.book))

    def list(self, status: Optional[str] = None, user_id: Optional[int] = None,
             book_id: Optional[int] = None, overdue: bool = False) -> List[Borrowing]:
        """Newest first; every given filter must hold."""
        query = self._joined()
        if status:
            query = query.filter(Borrowing.status == BorrowingStatus(status).value)
        if user_id:
            query = query.filter(Borrowing.user_id == user_id)
        if book_id:
            query = query.filter(Borrowing.book_id == book_id)
        if overdue:
            query = query.filter(Borrowing.due_date < self.clock())
        return query.order_by(Borrowing.created_at.desc(), Borrowing.id.desc()).all()

    def list_by_user(self, user_id: int) -> List[Borrowing]:
        return self.list(user_id=user_id)

    def get(self, borrowing_id: int) -> Borrowing:
        borrowing = self._joined().filter(Borrowing.id == borrowing_id).first()
        if not borrowing:
            raise NotFoundError("Borrowing not found")
        return borrowing

    def list_overdue(self) -> List[Borrowing]:
        """Active loans past due, earliest due date first."""
        return (
            self._joined()
            .filter(overdue_clause(self.clock()))
            .order_by(Borrowing.due_date.asc(), Borrowing.id.asc())
            .all()
        )

    def stats(self) -> dict:
        now = self.clock()
        rows = self.db.query(Borrowing.status, Borrowing.due_date).all()
        return {
            "total": len(rows),
            "borrowed": sum(1 for r in rows if r.status == BorrowingStatus.BORROWED.value),
            "returned": sum(1 for r in rows if r.status == BorrowingStatus.RETURNED.value),
            "overdue": sum(1 for r in rows if loan_is_overdue(r, now)),
        }
