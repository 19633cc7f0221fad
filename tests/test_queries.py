from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from circulation.core.database import utcnow
from circulation.core.errors import NotFoundError
from circulation.models.models import BorrowingStatus, loan_is_overdue
from circulation.services.borrowings import BorrowingLifecycle
from circulation.services.queries import BorrowingQueryService


@pytest.fixture
def five_loans(db, member, other_member, make_book, make_borrowing):
    a = make_book(title="A", total=5)
    b = make_book(title="B", total=5)
    c = make_book(title="C", total=5)
    return {
        "current_1": make_borrowing(member, a, due_in_days=7),
        "current_2": make_borrowing(other_member, a, due_in_days=3),
        "late": make_borrowing(member, b, due_in_days=-2),
        "returned_1": make_borrowing(member, c, due_in_days=-5, status=BorrowingStatus.RETURNED),
        "returned_2": make_borrowing(other_member, b, due_in_days=4, status=BorrowingStatus.RETURNED),
    }


def test_stats_over_fixture(db, five_loans):
    assert BorrowingQueryService(db).stats() == {"total": 5, "borrowed": 3, "returned": 2, "overdue": 1}


def test_stats_empty(db):
    assert BorrowingQueryService(db).stats() == {"total": 0, "borrowed": 0, "returned": 0, "overdue": 0}


def test_overdue_listing_drops_returned_loans(db, five_loans):
    queries = BorrowingQueryService(db)
    assert [b.id for b in queries.list_overdue()] == [five_loans["late"].id]

    BorrowingLifecycle(db).return_borrowing(five_loans["late"].id)
    assert queries.list_overdue() == []
    assert queries.stats()["overdue"] == 0


def test_overdue_listing_earliest_due_first(db, member, other_member, make_book, make_borrowing):
    book = make_book(total=3)
    recent = make_borrowing(member, book, due_in_days=-1)
    oldest = make_borrowing(other_member, book, due_in_days=-10)
    assert [b.id for b in BorrowingQueryService(db).list_overdue()] == [oldest.id, recent.id]


def test_list_newest_first_with_joined_summaries(db, five_loans, member):
    rows = BorrowingQueryService(db).list()
    assert [r.id for r in rows] == sorted((b.id for b in five_loans.values()), reverse=True)
    assert rows[0].user.email in {"alice@example.com", "bob@example.com"}
    assert rows[0].book.title in {"A", "B", "C"}


def test_list_filters_compose(db, five_loans, member):
    queries = BorrowingQueryService(db)
    borrowed = queries.list(status="borrowed")
    assert {b.id for b in borrowed} == {five_loans[k].id for k in ("current_1", "current_2", "late")}

    mine_borrowed = queries.list(status="borrowed", user_id=member.id)
    assert {b.id for b in mine_borrowed} == {five_loans["current_1"].id, five_loans["late"].id}

    by_book = queries.list(book_id=five_loans["late"].book_id)
    assert {b.id for b in by_book} == {five_loans["late"].id, five_loans["returned_2"].id}

    # the overdue filter only looks at the due date
    past_due = queries.list(overdue=True)
    assert {b.id for b in past_due} == {five_loans["late"].id, five_loans["returned_1"].id}
    assert queries.list(overdue=True, status="borrowed")[0].id == five_loans["late"].id


def test_list_by_user(db, five_loans, other_member):
    rows = BorrowingQueryService(db).list_by_user(other_member.id)
    assert {r.id for r in rows} == {five_loans["current_2"].id, five_loans["returned_2"].id}
    assert all(r.user_id == other_member.id for r in rows)


def test_get_by_id(db, five_loans):
    queries = BorrowingQueryService(db)
    row = queries.get(five_loans["late"].id)
    assert row.book.total_copies == 5
    assert row.is_overdue is True
    with pytest.raises(NotFoundError):
        queries.get(12345)


def test_overdue_predicate():
    now = datetime(2026, 1, 10)
    past, future = now - timedelta(seconds=1), now + timedelta(days=1)
    assert loan_is_overdue(SimpleNamespace(status="borrowed", due_date=past), now)
    assert not loan_is_overdue(SimpleNamespace(status="borrowed", due_date=future), now)
    assert not loan_is_overdue(SimpleNamespace(status="borrowed", due_date=now), now)
    assert not loan_is_overdue(SimpleNamespace(status="returned", due_date=past), now)


def test_injected_clock_moves_overdue_boundary(db, five_loans):
    later = utcnow() + timedelta(days=5)
    queries = BorrowingQueryService(db, clock=lambda: later)
    # current_2 (due in 3 days) is now overdue as well
    assert queries.stats()["overdue"] == 2
    assert [b.id for b in queries.list_overdue()] == [five_loans["late"].id, five_loans["current_2"].id]
