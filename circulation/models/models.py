import enum

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, Index, UniqueConstraint, and_, text
from sqlalchemy.orm import relationship

from circulation.core.database import Base, utcnow


class Role(str, enum.Enum):
    ADMIN = "admin"
    LIBRARIAN = "librarian"
    MEMBER = "member"


STAFF_ROLES = (Role.ADMIN.value, Role.LIBRARIAN.value)


class BorrowingStatus(str, enum.Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(String(16), nullable=False, default=Role.MEMBER.value)
    created_at = Column(DateTime, default=utcnow)
    borrowings = relationship("Borrowing", back_populates="user")

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    books = relationship("Book", back_populates="category")


class Book(Base):
    __tablename__ = "books"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    isbn = Column(String, unique=True, index=True, nullable=True)
    published_year = Column(Integer, nullable=True)
    cover_url = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1, index=True)
    rating = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    category = relationship("Category", back_populates="books")
    borrowings = relationship("Borrowing", back_populates="book")

Index('ix_books_title_author', Book.title, Book.author)


class Borrowing(Base):
    __tablename__ = "borrowings"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    borrowed_at = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False, index=True)
    returned_at = Column(DateTime, nullable=True)
    status = Column(String(16), nullable=False, default=BorrowingStatus.BORROWED.value, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    user = relationship("User", back_populates="borrowings")
    book = relationship("Book", back_populates="borrowings")

    @property
    def is_overdue(self):
        return loan_is_overdue(self, utcnow())

# At most one active loan per (user, book).
Index(
    'uq_borrowings_active_loan', Borrowing.user_id, Borrowing.book_id,
    unique=True,
    sqlite_where=text("status = 'borrowed'"),
    postgresql_where=text("status = 'borrowed'"),
)


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_reviews_user_book"),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    borrowing_id = Column(Integer, ForeignKey("borrowings.id", ondelete="SET NULL"), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    user = relationship("User")


def loan_is_overdue(borrowing, now):
    """An active loan whose due date has passed."""
    return borrowing.status == BorrowingStatus.BORROWED.value and borrowing.due_date < now


def overdue_clause(now):
    """SQL form of :func:`loan_is_overdue`."""
    return and_(Borrowing.status == BorrowingStatus.BORROWED.value, Borrowing.due_date < now)
