from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional


class TransactionType(str, Enum):
    ISSUE = "issue"
    RETURN = "return"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


# --- Books ---
class BookBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    author: str = Field(..., min_length=1, max_length=200)
    genre: str = Field(..., min_length=1, max_length=100)
    isbn: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    publisher: Optional[str] = Field(None, max_length=200)
    published_date: Optional[date] = None
    pages: Optional[int] = Field(None, gt=0)
    cover_image: Optional[str] = None


class BookCreate(BookBase):
    total_copies: int = Field(1, ge=1)
    # defaults to total_copies
    available_copies: Optional[int] = Field(None, ge=0)


class BookUpdate(BaseModel):
    # all fields optional; copy counters only move through total_copies
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    author: Optional[str] = Field(None, min_length=1, max_length=200)
    genre: Optional[str] = Field(None, min_length=1, max_length=100)
    isbn: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    publisher: Optional[str] = Field(None, max_length=200)
    published_date: Optional[date] = None
    pages: Optional[int] = Field(None, gt=0)
    cover_image: Optional[str] = None
    total_copies: Optional[int] = Field(None, ge=1)


class BookOut(BookBase):
    id: int
    total_copies: int
    available_copies: int
    issued_copies: int
    is_active: bool
    added_by: Optional[int] = None
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class BookPage(BaseModel):
    books: List[BookOut]
    total_pages: int
    current_page: int
    total: int


class BookSummary(BaseModel):
    id: int
    title: str
    author: str
    model_config = ConfigDict(from_attributes=True)


# --- Members ---
class UserSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    model_config = ConfigDict(from_attributes=True)


class ApproverSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    model_config = ConfigDict(from_attributes=True)


class IssuedBookOut(BaseModel):
    book_id: int
    book: Optional[BookSummary] = None
    issued_at: datetime
    due_date: datetime
    returned: bool
    returned_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ProfileOut(BaseModel):
    id: int
    email: str
    username: Optional[str] = None
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    role: str
    is_active: bool
    created_at: Optional[datetime] = None
    issued_books: List[IssuedBookOut] = []
    model_config = ConfigDict(from_attributes=True)


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None


# --- Transactions ---
class IssueRequest(BaseModel):
    book_id: int
    notes: Optional[str] = Field(None, max_length=500)


class ReturnRequest(BaseModel):
    book_id: int
    notes: Optional[str] = Field(None, max_length=500)


class StatusUpdate(BaseModel):
    status: Literal["approved", "rejected"]
    notes: Optional[str] = Field(None, max_length=500)


class TransactionOut(BaseModel):
    id: int
    user: UserSummary
    book: BookSummary
    approver: Optional[ApproverSummary] = None
    type: TransactionType
    status: TransactionStatus
    issued_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    requested_at: Optional[datetime] = None
    notes: Optional[str] = None
    fine_amount: float = 0.0
    fine_paid: bool = False
    is_overdue: bool = False
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class TransactionPage(BaseModel):
    transactions: List[TransactionOut]
    total_pages: int
    current_page: int
    total: int


class CompletedReturn(BaseModel):
    message: str
    transaction: TransactionOut
