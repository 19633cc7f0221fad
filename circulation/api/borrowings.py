from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from circulation.core.database import get_db
from circulation.core.security import ensure_owner_or_staff, get_current_user, require_staff
from circulation.models.models import BorrowingStatus, User
from circulation.schemas import schemas
from circulation.services.borrowings import BorrowingLifecycle
from circulation.services.queries import BorrowingQueryService

router = APIRouter(prefix="/borrowings", tags=["borrowings"])


def get_lifecycle(db: Session = Depends(get_db)) -> BorrowingLifecycle:
    return BorrowingLifecycle(db)


def get_queries(db: Session = Depends(get_db)) -> BorrowingQueryService:
    return BorrowingQueryService(db)


# Fixed paths are registered before "/{borrowing_id}".
@router.get("", response_model=List[schemas.BorrowingListItem])
def list_borrowings(status: Optional[BorrowingStatus] = None,
                    user_id: Optional[int] = None,
                    book_id: Optional[int] = None,
                    overdue: bool = False,
                    _: User = Depends(require_staff),
                    queries: BorrowingQueryService = Depends(get_queries)):
    return queries.list(status=status.value if status else None, user_id=user_id,
                        book_id=book_id, overdue=overdue)


@router.get("/my-borrowings", response_model=List[schemas.BorrowingListItem])
def my_borrowings(current: User = Depends(get_current_user),
                  queries: BorrowingQueryService = Depends(get_queries)):
    return queries.list_by_user(current.id)


@router.get("/overdue/list", response_model=List[schemas.BorrowingListItem])
def overdue_borrowings(_: User = Depends(require_staff),
                       queries: BorrowingQueryService = Depends(get_queries)):
    return queries.list_overdue()


@router.get("/stats/overview", response_model=schemas.BorrowingStats)
def borrowing_stats(_: User = Depends(require_staff),
                    queries: BorrowingQueryService = Depends(get_queries)):
    return queries.stats()


@router.get("/{borrowing_id}", response_model=schemas.BorrowingDetail)
def read_borrowing(borrowing_id: int,
                   current: User = Depends(get_current_user),
                   queries: BorrowingQueryService = Depends(get_queries)):
    borrowing = queries.get(borrowing_id)
    ensure_owner_or_staff(current, borrowing.user_id)
    return borrowing


@router.post("", response_model=schemas.BorrowingDetail, status_code=201)
def create_borrowing(payload: schemas.BorrowingCreate,
                     current: User = Depends(get_current_user),
                     lifecycle: BorrowingLifecycle = Depends(get_lifecycle)):
    # members always borrow for themselves; staff must name the borrower
    user_id = payload.user_id if current.is_staff else current.id
    return lifecycle.create(user_id=user_id, book_id=payload.book_id,
                            due_date=payload.due_date, notes=payload.notes)


@router.patch("/{borrowing_id}/return", response_model=schemas.BorrowingDetail)
def return_borrowing(borrowing_id: int,
                     current: User = Depends(get_current_user),
                     lifecycle: BorrowingLifecycle = Depends(get_lifecycle)):
    borrowing = lifecycle.get(borrowing_id)
    ensure_owner_or_staff(current, borrowing.user_id)
    return lifecycle.return_borrowing(borrowing_id)


@router.patch("/{borrowing_id}", response_model=schemas.BorrowingDetail)
def update_borrowing(borrowing_id: int, payload: schemas.BorrowingUpdate,
                     _: User = Depends(require_staff),
                     lifecycle: BorrowingLifecycle = Depends(get_lifecycle)):
    return lifecycle.update(borrowing_id, payload.model_dump(exclude_unset=True))


@router.delete("/{borrowing_id}", response_model=schemas.MessageOut)
def delete_borrowing(borrowing_id: int,
                     _: User = Depends(require_staff),
                     lifecycle: BorrowingLifecycle = Depends(get_lifecycle)):
    return lifecycle.delete(borrowing_id)
