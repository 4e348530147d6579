import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from database import Base

# Role / type / status values stored as plain strings
ROLE_USER = "user"
ROLE_ADMIN = "admin"

TYPE_ISSUE = "issue"
TYPE_RETURN = "return"

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_COMPLETED = "completed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=True)
    hashed_password = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone_number = Column(String, nullable=True)
    address = Column(String, nullable=True)
    role = Column(String, default=ROLE_USER, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # one entry per issue ever granted, oldest first
    issued_books = relationship(
        "IssuedBook",
        back_populates="user",
        order_by="IssuedBook.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == ROLE_ADMIN

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def record_issue(self, book_id: int, issued_at: datetime, due_date: datetime) -> "IssuedBook":
        """Append an issued-book entry. Only the lending workflow calls this."""
        entry = IssuedBook(book_id=book_id, issued_at=issued_at, due_date=due_date, returned=False)
        self.issued_books.append(entry)
        return entry

    def record_return(self, book_id: int, returned_at: datetime) -> Optional["IssuedBook"]:
        """Mark the most recent unreturned entry for book_id as returned."""
        for entry in reversed(self.issued_books):
            if entry.book_id == book_id and not entry.returned:
                entry.returned = True
                entry.returned_at = returned_at
                return entry
        return None

    def current_issues(self):
        return [entry for entry in self.issued_books if not entry.returned]


class IssuedBook(Base):
    __tablename__ = "issued_books"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), index=True, nullable=False)
    issued_at = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    returned = Column(Boolean, default=False, nullable=False)
    returned_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="issued_books")
    book = relationship("Book")


class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("total_copies >= 1", name="ck_books_total_copies"),
        CheckConstraint("available_copies >= 0", name="ck_books_available_nonnegative"),
        CheckConstraint("available_copies <= total_copies", name="ck_books_available_le_total"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=False, index=True)
    genre = Column(String, nullable=False, index=True)
    isbn = Column(String, unique=True, index=True, nullable=True)
    description = Column(Text, nullable=True)
    publisher = Column(String, nullable=True)
    published_date = Column(Date, nullable=True)
    pages = Column(Integer, nullable=True)
    cover_image = Column(String, nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True, nullable=False)
    added_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def issued_copies(self) -> int:
        # derived, never stored
        return (self.total_copies or 0) - (self.available_copies or 0)

    def is_available(self) -> bool:
        return bool(self.is_active) and (self.available_copies or 0) > 0


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("fine_amount >= 0", name="ck_transactions_fine_nonnegative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), index=True, nullable=False)
    type = Column(String, nullable=False, index=True)  # issue / return
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    issued_at = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=True)
    returned_at = Column(DateTime, nullable=True)
    requested_at = Column(DateTime, default=datetime.utcnow)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(String, nullable=True)
    fine_amount = Column(Float, default=0.0, nullable=False)
    fine_paid = Column(Boolean, default=False, nullable=False)
    is_overdue = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", foreign_keys=[user_id])
    book = relationship("Book")
    approver = relationship("User", foreign_keys=[approved_by])

    @property
    def is_active_issue(self) -> bool:
        return (
            self.type == TYPE_ISSUE
            and self.status == STATUS_APPROVED
            and self.returned_at is None
        )

    def assess_fine(self, now: datetime, fine_per_day: float) -> float:
        """Flag the issue overdue and price the fine when its due date has passed.

        Charged per started day late. Leaves a non-overdue transaction untouched.
        """
        if self.due_date is None or self.due_date >= now:
            return self.fine_amount or 0.0
        days_overdue = math.ceil((now - self.due_date) / timedelta(days=1))
        self.is_overdue = True
        self.fine_amount = days_overdue * fine_per_day
        return self.fine_amount
