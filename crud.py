import math
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import errors
import lending
from models import Book, Transaction, User, STATUS_APPROVED, STATUS_PENDING, TYPE_ISSUE
from schemas import BookCreate, BookUpdate, ProfileUpdate
from admin_schemas import UserUpdate


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 1


# --- Book CRUD ---
def add_book(book_data: BookCreate, added_by: Optional[int], db: Session) -> Book:
    # Guard against duplicates before hitting DB constraints
    if book_data.isbn:
        exists = db.query(Book).filter(Book.isbn == book_data.isbn).first()
        if exists:
            raise ValueError("A book with this ISBN already exists.")

    data = book_data.model_dump()
    # a new book starts fully on the shelf unless told otherwise
    available = data.pop("available_copies", None)
    if available is None:
        available = data["total_copies"]
    if available > data["total_copies"]:
        raise ValueError("Available copies cannot exceed total copies.")

    new_book = Book(**data, available_copies=available, added_by=added_by, is_active=True)
    db.add(new_book)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Convert DB error to clear message for API layer
        msg = str(e.orig) if getattr(e, 'orig', None) else str(e)
        raise ValueError(msg)
    db.refresh(new_book)
    return new_book


def get_book_by_id(book_id: int, db: Session, include_inactive: bool = False) -> Optional[Book]:
    query = db.query(Book).filter(Book.id == book_id)
    if not include_inactive:
        query = query.filter(Book.is_active.is_(True))
    return query.first()


def get_books_filtered(
    db: Session,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
) -> Tuple[List[Book], int]:
    """Return one page of active books plus the total match count.

    search matches title, author or genre, case-insensitively.
    """
    query = db.query(Book).filter(Book.is_active.is_(True))
    if search:
        like = f"%{search}%"
        query = query.filter(
            (Book.title.ilike(like))
            | (Book.author.ilike(like))
            | (Book.genre.ilike(like))
        )
    total = query.count()
    page = max(page, 1)
    books = query.order_by(Book.created_at.desc(), Book.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return books, total


def search_books(q: str, db: Session) -> List[Book]:
    like = f"%{q}%"
    return (
        db.query(Book)
        .filter(Book.is_active.is_(True))
        .filter(
            or_(
                Book.title.ilike(like),
                Book.author.ilike(like),
                Book.genre.ilike(like),
                Book.description.ilike(like),
            )
        )
        .all()
    )


def update_book(book_id: int, book_data: BookUpdate, db: Session) -> Optional[Book]:
    book = get_book_by_id(book_id, db)
    if not book:
        return None
    data = book_data.model_dump(exclude_unset=True)

    if data.get("isbn") and data["isbn"] != book.isbn:
        exists = db.query(Book).filter(Book.isbn == data["isbn"]).first()
        if exists:
            raise ValueError("A book with this ISBN already exists.")

    # Copies out on loan stay out on loan: resizing the stock moves the shelf count.
    new_total = data.pop("total_copies", None)
    if new_total is not None and new_total != book.total_copies:
        new_available = book.available_copies + (new_total - book.total_copies)
        if new_available < 0:
            raise ValueError(
                f"Cannot reduce total copies below the {book.issued_copies} currently issued."
            )
        book.total_copies = new_total
        book.available_copies = new_available

    for key, value in data.items():
        setattr(book, key, value)
    db.add(book)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        msg = str(e.orig) if getattr(e, 'orig', None) else str(e)
        raise ValueError(msg)
    db.refresh(book)
    return book


def deactivate_book(book_id: int, db: Session) -> Book:
    """Soft-delete a book; refused while any copy is out on an active issue."""
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise errors.BookNotFound()
    if lending.count_active_issues(db, book_id=book.id) > 0:
        raise errors.BookHasActiveIssues()
    book.is_active = False
    db.add(book)
    db.commit()
    db.refresh(book)
    return book


# --- User CRUD ---
def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == email.lower()).first()


def get_users(db: Session, page: int = 1, limit: int = 10, search: Optional[str] = None) -> Tuple[List[User], int]:
    query = db.query(User)
    if search:
        like = f"%{search}%"
        query = query.filter(
            (User.first_name.ilike(like))
            | (User.last_name.ilike(like))
            | (User.email.ilike(like))
        )
    total = query.count()
    page = max(page, 1)
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return users, total


# null for these means "leave as is"; phone_number/address may be cleared
REQUIRED_USER_FIELDS = {"first_name", "last_name", "role", "is_active"}


def _user_changes(data: dict) -> dict:
    return {
        key: value
        for key, value in data.items()
        if value is not None or key not in REQUIRED_USER_FIELDS
    }


def _save_user(user: User, changes: dict, db: Session) -> User:
    for key, value in changes.items():
        setattr(user, key, value)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        msg = str(e.orig) if getattr(e, 'orig', None) else str(e)
        raise ValueError(msg)
    db.refresh(user)
    return user


def update_profile(user: User, profile: ProfileUpdate, db: Session) -> User:
    return _save_user(user, _user_changes(profile.model_dump(exclude_unset=True)), db)


def update_user(user_id: int, user_data: UserUpdate, db: Session) -> Optional[User]:
    user = get_user_by_id(user_id, db)
    if not user:
        return None
    data = _user_changes(user_data.model_dump(exclude_unset=True))
    if "role" in data:
        data["role"] = getattr(data["role"], "value", data["role"])
    # deactivating through an update obeys the same guard as deleting
    if data.get("is_active") is False and user.is_active:
        if lending.count_active_issues(db, member_id=user.id) > 0:
            raise errors.MemberHasActiveIssues(
                "Cannot deactivate user with active book issues. Please return all books first."
            )
    return _save_user(user, data, db)


def deactivate_user(user_id: int, db: Session) -> User:
    """Soft-delete a member; refused while they hold an active issue."""
    user = get_user_by_id(user_id, db)
    if not user:
        raise errors.MemberNotFound()
    if lending.count_active_issues(db, member_id=user.id) > 0:
        raise errors.MemberHasActiveIssues()
    user.is_active = False
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# --- Transaction queries ---
def get_transaction_by_id(txn_id: int, db: Session) -> Optional[Transaction]:
    return db.query(Transaction).filter(Transaction.id == txn_id).first()


def list_transactions(
    db: Session,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    txn_type: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Transaction], int]:
    """Newest-first page of transactions, optionally scoped to one user."""
    query = db.query(Transaction)
    if user_id is not None:
        query = query.filter(Transaction.user_id == user_id)
    if status:
        query = query.filter(Transaction.status == status)
    if txn_type:
        query = query.filter(Transaction.type == txn_type)
    total = query.count()
    page = max(page, 1)
    items = (
        query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def list_transactions_for_user(user_id: int, db: Session, limit: Optional[int] = None) -> List[Transaction]:
    query = (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


# --- Reports ---
def dashboard_stats(db: Session, now: Optional[datetime] = None) -> dict:
    """Aggregated counts for the admin dashboard."""
    now = now or datetime.utcnow()
    active_issues = db.query(Transaction).filter(
        Transaction.type == TYPE_ISSUE,
        Transaction.status == STATUS_APPROVED,
        Transaction.returned_at.is_(None),
    )
    stats = {}
    stats['total_users'] = db.query(User).filter(User.is_active.is_(True)).count()
    stats['total_books'] = db.query(Book).filter(Book.is_active.is_(True)).count()
    stats['total_transactions'] = db.query(Transaction).count()
    stats['pending_requests'] = db.query(Transaction).filter(Transaction.status == STATUS_PENDING).count()
    stats['active_issues'] = active_issues.count()
    stats['overdue_issues'] = active_issues.filter(Transaction.due_date < now).count()
    available = db.query(func.coalesce(func.sum(Book.available_copies), 0)).filter(Book.is_active.is_(True)).scalar()
    stats['available_books'] = int(available or 0)
    stats['recent_transactions'] = (
        db.query(Transaction)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(5)
        .all()
    )
    return stats
