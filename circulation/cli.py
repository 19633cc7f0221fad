"""Small admin utilities: create tables, seed demo data, issue dev tokens."""

import argparse
import logging
import sys

from sqlalchemy.orm import Session

from circulation.core.config import configure_logging
from circulation.core.database import Base, SessionLocal, engine
from circulation.core.security import create_access_token
from circulation.models.models import Book, Category, Role, User

logger = logging.getLogger("library")


def seed(db: Session) -> None:
    """Insert demo users, categories and books unless they already exist."""
    if db.query(User).count() == 0:
        db.add_all([
            User(name='Ada Admin', email='admin@example.com', role=Role.ADMIN.value),
            User(name='Lena Librarian', email='librarian@example.com', role=Role.LIBRARIAN.value),
            User(name='Alice', email='alice@example.com', role=Role.MEMBER.value),
            User(name='Bob', email='bob@example.com', role=Role.MEMBER.value),
        ])
    if db.query(Category).count() == 0:
        db.add_all([Category(name='Engineering'), Category(name='Fiction')])
        db.flush()
    if db.query(Book).count() == 0:
        engineering = db.query(Category).filter(Category.name == 'Engineering').first()
        db.add_all([
            Book(title='Data Engineering with Python', author='J. Reader', isbn='978-1111111111',
                 category_id=engineering.id if engineering else None,
                 total_copies=3, available_copies=3),
            Book(title='Designing Data-Intensive Applications', author='Martin Kleppmann', isbn='978-0980000000',
                 category_id=engineering.id if engineering else None,
                 total_copies=2, available_copies=2),
            Book(title='The Left Hand of Darkness', author='Ursula K. Le Guin', isbn='978-0441478125',
                 total_copies=1, available_copies=1),
        ])
    db.commit()
    logger.info('Seeded sample data')


def issue_token(db: Session, email: str) -> str:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        raise LookupError(f"No user with email {email}")
    return create_access_token(user)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='library-admin', description='Library circulation utilities')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('initdb', help='Create tables')
    sub.add_parser('seed', help='Create tables and seed sample data')
    token = sub.add_parser('token', help='Print a bearer token for an existing user')
    token.add_argument('email')
    args = parser.parse_args(argv)

    configure_logging()
    Base.metadata.create_all(bind=engine)
    if args.command == 'initdb':
        logger.info('Database tables created')
        return 0

    db = SessionLocal()
    try:
        if args.command == 'seed':
            seed(db)
        elif args.command == 'token':
            try:
                print(issue_token(db, args.email))
            except LookupError as exc:
                print(exc, file=sys.stderr)
                return 1
    finally:
        db.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
