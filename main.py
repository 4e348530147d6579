import logging
import os
from datetime import datetime
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from schemas import BookCreate, BookOut, BookPage, BookUpdate
from schemas import IssueRequest, ReturnRequest, StatusUpdate
from schemas import TransactionOut, TransactionPage, TransactionStatus, TransactionType, CompletedReturn
from schemas import ProfileOut, ProfileUpdate
from crud import add_book, get_book_by_id, get_books_filtered, search_books, update_book, deactivate_book
from crud import get_transaction_by_id, list_transactions, list_transactions_for_user, update_profile, page_count
from database import get_db, engine, Base, SessionLocal
import models  # ensure models are imported so tables are registered
import errors
import lending
from auth import router as auth_router
from admin import router as admin_router
import auth_utils

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("library")


app = FastAPI(title="Library Lending API")

origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in origins if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600
)

@app.middleware("http")
async def log_requests(request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response

app.include_router(auth_router)
app.include_router(admin_router)


def seed_admin(db: Session) -> Optional[models.User]:
    """Create the default admin account if no user holds that email yet."""
    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.com")
    admin_password = os.getenv("ADMIN_PASSWORD", "admin123")
    admin_user = db.query(models.User).filter(models.User.email == admin_email).first()
    if admin_user:
        return None
    admin_user = models.User(
        email=admin_email,
        hashed_password=auth_utils.get_password_hash(admin_password),
        first_name="Admin",
        last_name="User",
        role=models.ROLE_ADMIN,
        created_at=datetime.utcnow()
    )
    db.add(admin_user)
    db.commit()
    db.refresh(admin_user)
    logger.info("Created default admin user with email: %s", admin_email)
    return admin_user


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()


def lending_http_error(exc: errors.LendingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Basic health check endpoint. Returns DB connectivity and basic counts."""
    try:
        db.execute(text("SELECT 1"))
        total = db.query(models.Book).filter(models.Book.is_active.is_(True)).count()
        users = db.query(models.User).count()
        return {"status": "ok", "database": "connected", "total_books": total, "total_users": users}
    except Exception as e:
        logger.exception("Health check failed")
        return {"status": "error", "database": "disconnected", "detail": str(e)}


# Books endpoints
@app.get("/books", response_model=BookPage)
def list_books(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Retrieve active books with pagination.
    - **page**: 1-based page number
    - **limit**: Maximum number of records to return
    - **search**: matches title, author or genre
    """
    books, total = get_books_filtered(db, page=page, limit=limit, search=search)
    return {"books": books, "total_pages": page_count(total, limit), "current_page": page, "total": total}


@app.get("/books/search", response_model=List[BookOut])
def search(q: Optional[str] = None, db: Session = Depends(get_db)):
    if not q:
        raise HTTPException(status_code=400, detail="Search query required")
    return search_books(q, db)


@app.get("/books/{book_id}", response_model=BookOut)
def retrieve_book(book_id: int, db: Session = Depends(get_db)):
    b = get_book_by_id(book_id, db)
    if not b:
        raise HTTPException(status_code=404, detail="Book not found")
    return b


@app.post("/books", response_model=BookOut, status_code=status.HTTP_201_CREATED)
def create_book(book: BookCreate, db: Session = Depends(get_db), admin: models.User = Depends(auth_utils.get_admin_user)):
    try:
        return add_book(book, admin.id, db)
    except ValueError as e:
        logger.warning("Error creating book: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@app.put("/books/{book_id}", response_model=BookOut)
def modify_book(book_id: int, book: BookUpdate, db: Session = Depends(get_db), _admin: models.User = Depends(auth_utils.get_admin_user)):
    try:
        updated = update_book(book_id, book, db)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not updated:
        raise HTTPException(status_code=404, detail="Book not found")
    return updated


@app.delete("/books/{book_id}")
def remove_book(book_id: int, db: Session = Depends(get_db), _admin: models.User = Depends(auth_utils.get_admin_user)):
    try:
        deactivate_book(book_id, db)
    except errors.LendingError as e:
        raise lending_http_error(e)
    return {"message": "Book deleted successfully"}


# Transactions endpoints
@app.get("/transactions", response_model=TransactionPage)
def list_txns(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[TransactionStatus] = None,
    type: Optional[TransactionType] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.get_current_active_user),
):
    """Admins see every transaction, members only their own."""
    user_id = None if current_user.is_admin else current_user.id
    items, total = list_transactions(
        db,
        user_id=user_id,
        status=status.value if status else None,
        txn_type=type.value if type else None,
        page=page,
        limit=limit,
    )
    return {"transactions": items, "total_pages": page_count(total, limit), "current_page": page, "total": total}


@app.post("/transactions/request", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def request_book(payload: IssueRequest, db: Session = Depends(get_db), current_user: models.User = Depends(auth_utils.get_current_active_user)):
    try:
        return lending.request_issue(current_user.id, payload.book_id, db, notes=payload.notes)
    except errors.LendingError as e:
        raise lending_http_error(e)


@app.post("/transactions/return", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def return_book(payload: ReturnRequest, db: Session = Depends(get_db), current_user: models.User = Depends(auth_utils.get_current_active_user)):
    try:
        return lending.request_return(current_user.id, payload.book_id, db, notes=payload.notes)
    except errors.LendingError as e:
        raise lending_http_error(e)


@app.get("/transactions/{txn_id}", response_model=TransactionOut)
def retrieve_txn(txn_id: int, db: Session = Depends(get_db), current_user: models.User = Depends(auth_utils.get_current_active_user)):
    t = get_transaction_by_id(txn_id, db)
    if not t:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if not current_user.is_admin and t.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not authorized to view this transaction")
    return t


@app.put("/transactions/{txn_id}/status", response_model=TransactionOut)
def update_txn_status(txn_id: int, payload: StatusUpdate, db: Session = Depends(get_db), admin: models.User = Depends(auth_utils.get_admin_user)):
    try:
        return lending.decide(txn_id, payload.status, admin.id, db, notes=payload.notes)
    except errors.LendingError as e:
        raise lending_http_error(e)


@app.put("/transactions/{txn_id}/complete", response_model=CompletedReturn)
def complete_txn(txn_id: int, db: Session = Depends(get_db), admin: models.User = Depends(auth_utils.get_admin_user)):
    try:
        txn = lending.complete_return(txn_id, admin.id, db)
    except errors.LendingError as e:
        raise lending_http_error(e)
    return {"message": "Return completed successfully", "transaction": txn}


@app.delete("/transactions/{txn_id}")
def remove_txn(txn_id: int, db: Session = Depends(get_db), admin: models.User = Depends(auth_utils.get_admin_user)):
    try:
        lending.delete_transaction(txn_id, admin.id, db)
    except errors.LendingError as e:
        raise lending_http_error(e)
    return {"message": "Transaction deleted successfully"}


# Member self-service
@app.get("/users/profile", response_model=ProfileOut)
def get_profile(current_user: models.User = Depends(auth_utils.get_current_active_user)):
    return current_user


@app.put("/users/profile", response_model=ProfileOut)
def modify_profile(profile: ProfileUpdate, db: Session = Depends(get_db), current_user: models.User = Depends(auth_utils.get_current_active_user)):
    try:
        return update_profile(current_user, profile, db)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/users/transactions", response_model=List[TransactionOut])
def my_transactions(db: Session = Depends(get_db), current_user: models.User = Depends(auth_utils.get_current_active_user)):
    return list_transactions_for_user(current_user.id, db)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True
    )
