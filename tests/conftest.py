from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from circulation.core.database import Base, get_db, utcnow
from circulation.core.security import create_access_token
from circulation.main import app
from circulation.models.models import Book, Borrowing, BorrowingStatus, Role, User

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _user(db, name, email, role):
    user = User(name=name, email=email, role=role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db):
    return _user(db, "Ada Admin", "admin@example.com", Role.ADMIN)


@pytest.fixture
def librarian(db):
    return _user(db, "Lena Librarian", "librarian@example.com", Role.LIBRARIAN)


@pytest.fixture
def member(db):
    return _user(db, "Alice", "alice@example.com", Role.MEMBER)


@pytest.fixture
def other_member(db):
    return _user(db, "Bob", "bob@example.com", Role.MEMBER)


@pytest.fixture
def make_book(db):
    def _make(title="Test Book", total=1, available=None, **kw):
        book = Book(title=title, author=kw.pop("author", "Author"), total_copies=total,
                    available_copies=total if available is None else available, **kw)
        db.add(book)
        db.commit()
        db.refresh(book)
        return book
    return _make


@pytest.fixture
def make_borrowing(db):
    """Insert a borrowing row directly, bypassing the lifecycle (for past due dates)."""
    def _make(user, book, due_in_days=7, status=BorrowingStatus.BORROWED, take_copy=True):
        now = utcnow()
        borrowing = Borrowing(
            user_id=user.id, book_id=book.id,
            borrowed_at=now - timedelta(days=14), created_at=now,
            due_date=now + timedelta(days=due_in_days),
            status=status.value,
            returned_at=now if status == BorrowingStatus.RETURNED else None,
        )
        db.add(borrowing)
        if take_copy and status == BorrowingStatus.BORROWED:
            book.available_copies -= 1
        db.commit()
        db.refresh(borrowing)
        return borrowing
    return _make


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def due_in(days):
    return (utcnow() + timedelta(days=days)).date().isoformat()
