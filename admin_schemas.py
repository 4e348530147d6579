from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import List, Optional
from enum import Enum

from schemas import ProfileOut, TransactionOut

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

# User Management Schemas
class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    phone_number: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None

class UserResponse(BaseModel):
    id: int
    email: EmailStr
    username: Optional[str] = None
    first_name: str
    last_name: str
    role: UserRole
    is_active: bool
    phone_number: Optional[str] = None
    address: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class UserPage(BaseModel):
    users: List[UserResponse]
    total_pages: int
    current_page: int
    total: int

class UserDetail(BaseModel):
    user: ProfileOut
    transactions: List[TransactionOut]

# Dashboard
class DashboardStats(BaseModel):
    total_users: int
    total_books: int
    total_transactions: int
    pending_requests: int
    active_issues: int
    overdue_issues: int
    available_books: int
    recent_transactions: List[TransactionOut]
