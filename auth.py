from datetime import datetime, timedelta
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import models, schemas, auth_schemas, auth_utils, crud
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=auth_schemas.UserInDB, status_code=status.HTTP_201_CREATED)
def register(user: auth_schemas.UserCreate, db: Session = Depends(get_db)):
    # Check if user already exists
    if crud.get_user_by_email(user.email, db):
        raise HTTPException(status_code=400, detail="Email already registered")
    if user.username and db.query(models.User).filter(models.User.username == user.username).first():
        raise HTTPException(status_code=400, detail="Username already taken")

    # Create new user
    hashed_password = auth_utils.get_password_hash(user.password)
    db_user = models.User(
        email=user.email,
        username=user.username,
        hashed_password=hashed_password,
        first_name=user.first_name,
        last_name=user.last_name,
        role=models.ROLE_USER,
        created_at=datetime.utcnow()
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info("Registered user %s", db_user.email)
    return db_user

@router.post("/login", response_model=auth_schemas.Token)
def login(login_data: auth_schemas.UserLogin, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(login_data.email, db)
    if not user or not auth_utils.verify_password(login_data.password, user.hashed_password):
        logger.warning("Failed login for %s", login_data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")

    role_str = auth_utils.role_of(user)

    # Create access token including role/scopes
    access_token_expires = timedelta(minutes=auth_utils.ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = auth_utils.create_access_token(
        data={"sub": user.email, "role": role_str},
        expires_delta=access_token_expires
    )

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user_id": user.id,
        "email": user.email,
        "role": role_str
    }

@router.get("/me", response_model=schemas.ProfileOut)
def read_users_me(current_user: models.User = Depends(auth_utils.get_current_active_user)):
    return current_user

@router.post("/logout")
def logout():
    # Tokens are stateless; the client discards it
    return {"message": "Successfully logged out"}
