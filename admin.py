from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

import models, auth_utils, crud, errors
from database import get_db
import admin_schemas as schemas

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(auth_utils.get_admin_user)],
    responses={404: {"description": "Not found"}},
)

# User Management Endpoints
@router.get("/users", response_model=schemas.UserPage)
def read_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    users, total = crud.get_users(db, page=page, limit=limit, search=search)
    return {
        "users": users,
        "total_pages": crud.page_count(total, limit),
        "current_page": page,
        "total": total,
    }

@router.get("/users/{user_id}", response_model=schemas.UserDetail)
def read_user(user_id: int, db: Session = Depends(get_db)):
    db_user = crud.get_user_by_id(user_id, db)
    if db_user is None:
        raise HTTPException(status_code=404, detail="User not found")
    transactions = crud.list_transactions_for_user(db_user.id, db, limit=10)
    return {"user": db_user, "transactions": transactions}

@router.put("/users/{user_id}", response_model=schemas.UserResponse)
def update_user(
    user_id: int,
    user: schemas.UserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.get_admin_user),
):
    if user_id == current_user.id and user.role == schemas.UserRole.USER:
        raise HTTPException(status_code=400, detail="Cannot remove your own admin role")
    try:
        db_user = crud.update_user(user_id, user, db)
    except errors.LendingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if db_user is None:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s updated by admin %s", user_id, current_user.id)
    return db_user

@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth_utils.get_admin_user),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot delete yourself")
    try:
        crud.deactivate_user(user_id, db)
    except errors.LendingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    logger.info("User %s deactivated by admin %s", user_id, current_user.id)
    return {"message": "User deleted successfully"}

# Dashboard
@router.get("/stats", response_model=schemas.DashboardStats)
def dashboard_stats(db: Session = Depends(get_db)):
    return crud.dashboard_stats(db)
