from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional
import logging

from circulation.core.database import get_db
from circulation.core.security import get_current_user, require_admin, require_staff
from circulation.models import models
from circulation.schemas import schemas
from circulation.services.ledger import AvailabilityLedger

logger = logging.getLogger("library.catalog")

router = APIRouter()

# -----------------------------
# Auth & users
# -----------------------------
@router.get("/auth/me", response_model=schemas.UserOut, tags=["users"])
def me(current: models.User = Depends(get_current_user)):
    return current

@router.post("/users", response_model=schemas.UserOut, status_code=201, tags=["users"])
def create_user(user_in: schemas.UserCreate, db: Session = Depends(get_db),
                _: models.User = Depends(require_admin)):
    email = user_in.email.strip().lower()
    existing = db.query(models.User).filter(models.User.email == email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = models.User(name=user_in.name.strip(), email=email, role=user_in.role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user id={user.id} email={user.email} role={user.role}")
    return user

@router.get("/users", response_model=List[schemas.UserOut], tags=["users"])
def list_users(limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
               db: Session = Depends(get_db), _: models.User = Depends(require_admin)):
    return db.query(models.User).order_by(models.User.created_at.desc(), models.User.id.desc()).offset(offset).limit(limit).all()

@router.get("/users/{user_id}", response_model=schemas.UserOut, tags=["users"])
def read_user(user_id: int, db: Session = Depends(get_db),
              current: models.User = Depends(get_current_user)):
    if current.role != models.Role.ADMIN.value and current.id != user_id:
        raise HTTPException(status_code=403, detail="Access denied")
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user

# -----------------------------
# Categories
# -----------------------------
@router.get("/books/categories", response_model=List[schemas.CategoryOut], tags=["catalog"])
def list_categories(db: Session = Depends(get_db)):
    return db.query(models.Category).order_by(models.Category.name).all()

@router.post("/books/categories", response_model=schemas.CategoryOut, status_code=201, tags=["catalog"])
def create_category(category_in: schemas.CategoryCreate, db: Session = Depends(get_db),
                    _: models.User = Depends(require_staff)):
    name = (category_in.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    if db.query(models.Category).filter(models.Category.name == name).first():
        raise HTTPException(status_code=400, detail="Category already exists")
    category = models.Category(name=name)
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info(f"Created category id={category.id} name={category.name}")
    return category

# -----------------------------
# Books
# -----------------------------
def _check_isbn(db: Session, isbn: Optional[str], book_id: Optional[int] = None):
    if not isbn:
        return
    query = db.query(models.Book).filter(models.Book.isbn == isbn)
    if book_id is not None:
        query = query.filter(models.Book.id != book_id)
    if query.first():
        raise HTTPException(status_code=400, detail="ISBN already exists")

def _check_category(db: Session, category_id: Optional[int]):
    if category_id and not db.query(models.Category).filter(models.Category.id == category_id).first():
        raise HTTPException(status_code=400, detail="Category not found")

@router.get("/books", response_model=List[schemas.BookOut], tags=["catalog"])
def list_books(search: Optional[str] = Query(None, description="search title or author"),
               category_id: Optional[int] = None,
               limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
               db: Session = Depends(get_db)):
    query = db.query(models.Book)
    if category_id:
        query = query.filter(models.Book.category_id == category_id)
    if search:
        like_q = f"%{search}%"
        query = query.filter((models.Book.title.ilike(like_q)) | (models.Book.author.ilike(like_q)))
    return query.order_by(models.Book.created_at.desc(), models.Book.id.desc()).offset(offset).limit(limit).all()

@router.get("/books/{book_id}", response_model=schemas.BookOut, tags=["catalog"])
def read_book(book_id: int, db: Session = Depends(get_db)):
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book

@router.post("/books", response_model=schemas.BookOut, status_code=201, tags=["catalog"])
def create_book(book_in: schemas.BookCreate, db: Session = Depends(get_db),
                _: models.User = Depends(require_staff)):
    available = book_in.total_copies if book_in.available_copies is None else book_in.available_copies
    if available > book_in.total_copies:
        raise HTTPException(status_code=400, detail="available_copies cannot exceed total_copies")
    _check_isbn(db, book_in.isbn)
    _check_category(db, book_in.category_id)
    data = book_in.model_dump(exclude={"available_copies"})
    data["title"] = data["title"].strip()
    data["author"] = data["author"].strip()
    book = models.Book(**data, available_copies=available)
    db.add(book)
    db.commit()
    db.refresh(book)
    logger.info(f"Created book id={book.id} title={book.title}")
    return book

def _row_problem(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else err.get("msg")

@router.post("/books/bulk", response_model=schemas.BookBulkOut, status_code=201, tags=["catalog"])
def create_books_bulk(payload: schemas.BookBulkCreate, db: Session = Depends(get_db),
                      _: models.User = Depends(require_staff)):
    if not payload.books:
        raise HTTPException(status_code=400, detail="books array is required")
    created, errors, seen_isbns, known_categories = [], [], set(), set()
    for i, row in enumerate(payload.books, start=1):
        try:
            book_in = schemas.BookCreate.model_validate(row)
        except PydanticValidationError as exc:
            errors.append({"row": i, "error": _row_problem(exc)})
            continue
        title, author = book_in.title.strip(), book_in.author.strip()
        if not title or not author:
            errors.append({"row": i, "error": "title and author are required"})
            continue
        total = book_in.total_copies
        available = total if book_in.available_copies is None else book_in.available_copies
        if available > total:
            errors.append({"row": i, "error": "available_copies cannot exceed total_copies"})
            continue
        isbn = book_in.isbn or None
        if isbn and (isbn in seen_isbns or db.query(models.Book).filter(models.Book.isbn == isbn).first()):
            errors.append({"row": i, "error": "ISBN already exists"})
            continue
        category_id = book_in.category_id or None
        if category_id and category_id not in known_categories:
            if not db.query(models.Category).filter(models.Category.id == category_id).first():
                errors.append({"row": i, "error": "Category not found"})
                continue
            known_categories.add(category_id)
        if isbn:
            seen_isbns.add(isbn)
        data = book_in.model_dump(exclude={"available_copies"})
        data.update(title=title, author=author, isbn=isbn, category_id=category_id,
                    cover_url=book_in.cover_url or None, description=book_in.description or None)
        book = models.Book(**data, available_copies=available)
        db.add(book)
        created.append(book)
    if not created:
        raise HTTPException(status_code=400, detail="No valid books to insert")
    db.commit()
    for book in created:
        db.refresh(book)
    logger.info(f"Bulk created {len(created)} books ({len(errors)} rows skipped)")
    return {"created": len(created), "books": [schemas.BookOut.model_validate(b) for b in created], "errors": errors}

@router.patch("/books/{book_id}", response_model=schemas.BookOut, tags=["catalog"])
def update_book(book_id: int, book_upd: schemas.BookUpdate, db: Session = Depends(get_db),
                _: models.User = Depends(require_staff)):
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    data = book_upd.model_dump(exclude_unset=True)
    for k in ("title", "author"):
        if k in data and data[k] is None:
            raise HTTPException(status_code=400, detail=f"{k} cannot be empty")
    if "isbn" in data:
        _check_isbn(db, data["isbn"], book_id=book.id)
    if "category_id" in data:
        _check_category(db, data["category_id"])
    # copy counts are the ledger's business
    if "total_copies" in data:
        total = data.pop("total_copies")
        if total is None:
            raise HTTPException(status_code=400, detail="total_copies cannot be empty")
        AvailabilityLedger(db).resize(book, total)
    for k, v in data.items():
        setattr(book, k, v)
    db.add(book)
    db.commit()
    db.refresh(book)
    logger.info(f"Updated book id={book.id}")
    return book

@router.delete("/books/{book_id}", response_model=schemas.MessageOut, tags=["catalog"])
def delete_book(book_id: int, db: Session = Depends(get_db),
                _: models.User = Depends(require_staff)):
    book = db.query(models.Book).filter(models.Book.id == book_id).first()
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    # prevent deletion when active loans exist
    active_loans = db.query(models.Borrowing).filter(
        models.Borrowing.book_id == book.id,
        models.Borrowing.status == models.BorrowingStatus.BORROWED.value,
    ).count()
    if active_loans > 0:
        raise HTTPException(status_code=409, detail="Cannot delete book with active loans")
    db.query(models.Review).filter(models.Review.book_id == book.id).delete(synchronize_session=False)
    db.query(models.Borrowing).filter(models.Borrowing.book_id == book.id).delete(synchronize_session=False)
    db.delete(book)
    db.commit()
    logger.info(f"Deleted book id={book_id}")
    return {"message": "Book deleted successfully"}

# -----------------------------
# Reviews
# -----------------------------
@router.get("/reviews/book/{book_id}", response_model=List[schemas.ReviewOut], tags=["reviews"])
def list_reviews(book_id: int, db: Session = Depends(get_db)):
    return (
        db.query(models.Review)
        .options(joinedload(models.Review.user))
        .filter(models.Review.book_id == book_id)
        .order_by(models.Review.created_at.desc(), models.Review.id.desc())
        .all()
    )

@router.post("/reviews", response_model=schemas.ReviewOut, status_code=201, tags=["reviews"])
def upsert_review(review_in: schemas.ReviewCreate, db: Session = Depends(get_db),
                  current: models.User = Depends(get_current_user)):
    if not db.query(models.Book).filter(models.Book.id == review_in.book_id).first():
        raise HTTPException(status_code=404, detail="Book not found")
    if review_in.borrowing_id is not None:
        borrowing = db.query(models.Borrowing).filter(models.Borrowing.id == review_in.borrowing_id).first()
        if not borrowing or borrowing.user_id != current.id or borrowing.book_id != review_in.book_id:
            raise HTTPException(status_code=400, detail="borrowing_id does not match this user and book")
    review = db.query(models.Review).filter(
        models.Review.user_id == current.id, models.Review.book_id == review_in.book_id
    ).first()
    if review is None:
        review = models.Review(user_id=current.id, book_id=review_in.book_id)
        db.add(review)
    review.rating = review_in.rating
    review.comment = review_in.comment
    review.borrowing_id = review_in.borrowing_id
    db.commit()
    db.refresh(review)
    logger.info(f"User {current.id} reviewed book {review.book_id} rating={review.rating}")
    return review

@router.delete("/reviews/{review_id}", response_model=schemas.MessageOut, tags=["reviews"])
def delete_review(review_id: int, db: Session = Depends(get_db),
                  _: models.User = Depends(require_staff)):
    review = db.query(models.Review).filter(models.Review.id == review_id).first()
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    db.delete(review)
    db.commit()
    logger.info(f"Deleted review id={review_id}")
    return {"message": "deleted"}
