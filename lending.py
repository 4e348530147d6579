"""
Book-lending workflow.

Issue and return requests move through ``pending -> approved/rejected``; an
approved return is then completed, which puts the copy back on the shelf and
prices any overdue fine. These functions are the only writers of a book's
copy counters and of a member's issued-book entries.

Every operation validates its preconditions before the first write and then
commits Book, User and Transaction changes together, rolling back on failure.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

import errors
from models import (
    Book,
    Transaction,
    User,
    STATUS_APPROVED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_REJECTED,
    TYPE_ISSUE,
    TYPE_RETURN,
)

logger = logging.getLogger(__name__)

LOAN_PERIOD_DAYS = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
FINE_PER_DAY = float(os.getenv("FINE_PER_DAY", "2"))

DECISIONS = (STATUS_APPROVED, STATUS_REJECTED)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def _get_member(member_id: int, db: Session) -> User:
    member = db.query(User).filter(User.id == member_id).first()
    if not member:
        raise errors.MemberNotFound()
    return member


def _require_admin(user_id: int, db: Session) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active or not user.is_admin:
        logger.warning("User %s attempted an admin-only lending transition", user_id)
        raise errors.NotAuthorized()
    return user


def _get_transaction(transaction_id: int, db: Session) -> Transaction:
    txn = db.query(Transaction).filter(Transaction.id == transaction_id).first()
    if not txn:
        raise errors.TransactionNotFound()
    return txn


# --- Ledger queries ---
def find_active_issue(member_id: int, book_id: int, db: Session) -> Optional[Transaction]:
    """Return the approved, unreturned issue transaction for (member, book), if any."""
    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == member_id,
            Transaction.book_id == book_id,
            Transaction.type == TYPE_ISSUE,
            Transaction.status == STATUS_APPROVED,
            Transaction.returned_at.is_(None),
        )
        .order_by(Transaction.id.desc())
        .first()
    )


def count_active_issues(db: Session, book_id: Optional[int] = None, member_id: Optional[int] = None) -> int:
    query = db.query(Transaction).filter(
        Transaction.type == TYPE_ISSUE,
        Transaction.status == STATUS_APPROVED,
        Transaction.returned_at.is_(None),
    )
    if book_id is not None:
        query = query.filter(Transaction.book_id == book_id)
    if member_id is not None:
        query = query.filter(Transaction.user_id == member_id)
    return query.count()


def _find_open_request(member_id: int, book_id: int, txn_type: str, statuses, db: Session) -> Optional[Transaction]:
    return (
        db.query(Transaction)
        .filter(
            Transaction.user_id == member_id,
            Transaction.book_id == book_id,
            Transaction.type == txn_type,
            Transaction.status.in_(statuses),
        )
        .first()
    )


# --- Book availability ---
def issue_book_copy(book_id: int, db: Session) -> Book:
    """Take one copy off the shelf.

    Conditional update, so two approvals racing for the last copy cannot
    both succeed.
    """
    updated = (
        db.query(Book)
        .filter(Book.id == book_id, Book.is_active.is_(True), Book.available_copies > 0)
        .update(
            {Book.available_copies: Book.available_copies - 1, Book.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        raise errors.BookUnavailable()
    book = db.query(Book).filter(Book.id == book_id).first()
    db.refresh(book)
    return book


def return_book_copy(book_id: int, db: Session) -> Book:
    """Put one issued copy back on the shelf."""
    updated = (
        db.query(Book)
        .filter(Book.id == book_id, Book.available_copies < Book.total_copies)
        .update(
            {Book.available_copies: Book.available_copies + 1, Book.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
    )
    if not updated:
        raise errors.NoIssuedCopies()
    book = db.query(Book).filter(Book.id == book_id).first()
    db.refresh(book)
    return book


# --- Workflow ---
def request_issue(member_id: int, book_id: int, db: Session, notes: Optional[str] = None) -> Transaction:
    _get_member(member_id, db)
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book or not book.is_available():
        logger.warning("Issue request by user %s for unavailable book %s", member_id, book_id)
        raise errors.BookUnavailable()

    if find_active_issue(member_id, book_id, db):
        raise errors.DuplicateIssue()
    if _find_open_request(member_id, book_id, TYPE_ISSUE, [STATUS_PENDING], db):
        raise errors.DuplicateIssue("You already requested this book")

    # No copy is reserved here; availability is enforced again on approval.
    txn = Transaction(
        user_id=member_id,
        book_id=book_id,
        type=TYPE_ISSUE,
        status=STATUS_PENDING,
        requested_at=datetime.utcnow(),
        notes=notes,
    )
    db.add(txn)
    _commit(db)
    db.refresh(txn)
    logger.info("Issue request %s created: user=%s book=%s", txn.id, member_id, book_id)
    return txn


def decide(
    transaction_id: int,
    outcome: str,
    decider_id: int,
    db: Session,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transaction:
    """Approve or reject a pending transaction.

    Approving an issue takes a copy off the shelf, stamps the loan period and
    records the issue on the member. Approving a return only marks it ready
    for completion.
    """
    if outcome not in DECISIONS:
        raise errors.InvalidStateError(f"Unsupported decision '{outcome}'")
    decider = _require_admin(decider_id, db)
    txn = _get_transaction(transaction_id, db)
    if txn.status != STATUS_PENDING:
        raise errors.TransactionNotPending()

    now = now or datetime.utcnow()
    try:
        if outcome == STATUS_APPROVED and txn.type == TYPE_ISSUE:
            if find_active_issue(txn.user_id, txn.book_id, db):
                raise errors.DuplicateIssue("User already has this book issued")
            issue_book_copy(txn.book_id, db)
            txn.issued_at = now
            txn.due_date = now + timedelta(days=LOAN_PERIOD_DAYS)
            member = _get_member(txn.user_id, db)
            member.record_issue(txn.book_id, txn.issued_at, txn.due_date)

        txn.status = outcome
        txn.approved_by = decider.id
        txn.notes = notes or txn.notes
        _commit(db)
    except errors.LendingError:
        db.rollback()
        raise
    db.refresh(txn)
    logger.info("Transaction %s (%s) %s by admin %s", txn.id, txn.type, outcome, decider.id)
    return txn


def request_return(member_id: int, book_id: int, db: Session, notes: Optional[str] = None) -> Transaction:
    _get_member(member_id, db)
    if not find_active_issue(member_id, book_id, db):
        logger.warning("Return request by user %s without active issue of book %s", member_id, book_id)
        raise errors.NoActiveIssue()
    if _find_open_request(member_id, book_id, TYPE_RETURN, [STATUS_PENDING, STATUS_APPROVED], db):
        raise errors.ReturnAlreadyRequested()

    # the issue transaction stays untouched until the return completes
    txn = Transaction(
        user_id=member_id,
        book_id=book_id,
        type=TYPE_RETURN,
        status=STATUS_PENDING,
        requested_at=datetime.utcnow(),
        notes=notes,
    )
    db.add(txn)
    _commit(db)
    db.refresh(txn)
    logger.info("Return request %s created: user=%s book=%s", txn.id, member_id, book_id)
    return txn


def complete_return(
    return_transaction_id: int,
    admin_id: int,
    db: Session,
    now: Optional[datetime] = None,
) -> Transaction:
    """Finish an approved return: restock the copy, close the issue and price any fine."""
    admin = _require_admin(admin_id, db)
    txn = _get_transaction(return_transaction_id, db)
    if txn.type != TYPE_RETURN or txn.status != STATUS_APPROVED:
        raise errors.InvalidTransactionState()

    issue = find_active_issue(txn.user_id, txn.book_id, db)
    if issue is None:
        raise errors.NoActiveIssue()

    now = now or datetime.utcnow()
    try:
        return_book_copy(txn.book_id, db)

        fine = issue.assess_fine(now, FINE_PER_DAY)
        issue.returned_at = now

        member = _get_member(txn.user_id, db)
        if member.record_return(txn.book_id, now) is None:
            logger.warning("User %s had no open issued-book entry for book %s", txn.user_id, txn.book_id)

        txn.status = STATUS_COMPLETED
        txn.returned_at = now
        _commit(db)
    except errors.LendingError:
        db.rollback()
        raise
    db.refresh(txn)
    if fine:
        logger.info("Return %s completed by admin %s; overdue fine %.2f on issue %s", txn.id, admin.id, fine, issue.id)
    else:
        logger.info("Return %s completed by admin %s", txn.id, admin.id)
    return txn


def delete_transaction(transaction_id: int, admin_id: int, db: Session) -> None:
    _require_admin(admin_id, db)
    txn = _get_transaction(transaction_id, db)
    if txn.is_active_issue:
        raise errors.ActiveIssueCannotBeDeleted()
    db.delete(txn)
    _commit(db)
    logger.info("Transaction %s deleted by admin %s", transaction_id, admin_id)
