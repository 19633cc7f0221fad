import jwt
import pytest

from circulation.cli import issue_token, seed
from circulation.core.config import JWT_ALGORITHM, JWT_SECRET
from circulation.models.models import Book, Category, User


def test_seed_is_idempotent(db):
    seed(db)
    seed(db)
    assert db.query(User).count() == 4
    assert db.query(Category).count() == 2
    books = db.query(Book).all()
    assert len(books) == 3
    assert all(b.available_copies == b.total_copies for b in books)


def test_issue_token(db, client):
    seed(db)
    token = issue_token(db, "Librarian@example.com")
    claims = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    assert claims["role"] == "librarian"
    r = client.get("/borrowings/stats/overview", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    with pytest.raises(LookupError):
        issue_token(db, "nobody@example.com")
