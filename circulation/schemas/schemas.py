from pydantic import BaseModel, ConfigDict, Field, constr, field_validator
from datetime import datetime
from typing import List, Optional

from circulation.models.models import BorrowingStatus, Role


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Users
# -----------------------------
class UserSummary(ORMModel):
    id: int
    email: str
    name: str
    role: Role


class UserCreate(BaseModel):
    name: constr(min_length=1)
    email: constr(min_length=5)
    role: Role = Role.MEMBER


class UserOut(UserSummary):
    created_at: datetime


# -----------------------------
# Categories & books
# -----------------------------
class CategoryCreate(BaseModel):
    name: Optional[str] = None


class CategoryOut(ORMModel):
    id: int
    name: str
    created_at: datetime


class BookBase(BaseModel):
    title: constr(min_length=1)
    author: constr(min_length=1)
    category_id: Optional[int] = None
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    cover_url: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None


class BookCreate(BookBase):
    total_copies: int = Field(default=1, ge=0)
    available_copies: Optional[int] = Field(default=None, ge=0)


class BookUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[constr(min_length=1)] = None
    author: Optional[constr(min_length=1)] = None
    category_id: Optional[int] = None
    isbn: Optional[str] = None
    published_year: Optional[int] = None
    cover_url: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None
    total_copies: Optional[int] = Field(default=None, ge=0)


class BookBulkCreate(BaseModel):
    books: List[dict] = Field(default_factory=list)


class BookOut(BookBase, ORMModel):
    id: int
    total_copies: int
    available_copies: int
    created_at: datetime
    updated_at: Optional[datetime] = None


class BookBulkOut(BaseModel):
    created: int
    books: List[BookOut]
    errors: List[dict] = Field(default_factory=list)


class BookSummary(ORMModel):
    id: int
    title: str
    author: str
    isbn: Optional[str] = None
    cover_url: Optional[str] = None
    published_year: Optional[int] = None


class BookDetail(BookSummary):
    total_copies: int
    available_copies: int


# -----------------------------
# Borrowings
# -----------------------------
class BorrowingCreate(BaseModel):
    user_id: Optional[int] = None
    book_id: Optional[int] = None
    # parsed by the lifecycle so that a missing or bad value is a 400, not a 422
    due_date: Optional[str] = None
    notes: Optional[str] = None


class BorrowingUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    due_date: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[BorrowingStatus] = None


class BorrowingOut(ORMModel):
    id: int
    user_id: int
    book_id: int
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: BorrowingStatus
    notes: Optional[str] = None
    created_at: datetime
    is_overdue: bool = False


class BorrowingListItem(BorrowingOut):
    user: Optional[UserSummary] = None
    book: Optional[BookSummary] = None


class BorrowingDetail(BorrowingOut):
    user: Optional[UserSummary] = None
    book: Optional[BookDetail] = None


class BorrowingStats(BaseModel):
    total: int
    borrowed: int
    returned: int
    overdue: int


class MessageOut(BaseModel):
    message: str


# -----------------------------
# Reviews
# -----------------------------
class ReviewCreate(BaseModel):
    book_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    borrowing_id: Optional[int] = None

    @field_validator('comment')
    @classmethod
    def blank_comment_is_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class ReviewOut(ORMModel):
    id: int
    user_id: int
    book_id: int
    borrowing_id: Optional[int] = None
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    user: Optional[UserSummary] = None
