"""
Promote an existing user to the admin role.

Usage:
    python elevate_user.py someone@example.com
"""

import logging
import sys
from typing import Optional

from sqlalchemy.orm import Session

from database import SessionLocal
import crud
import models

logger = logging.getLogger(__name__)


def promote(email: str, db: Session) -> Optional[models.User]:
    """Give the user with this email the admin role and reactivate them.

    Returns None when no such user exists.
    """
    user = crud.get_user_by_email(email, db)
    if not user:
        logger.warning("User not found: %s", email)
        return None
    user.role = models.ROLE_ADMIN
    user.is_active = True
    db.commit()
    db.refresh(user)
    logger.info("User promoted to admin: %s", email)
    return user


def run(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("Usage: python elevate_user.py <email>")
        return 2
    db = SessionLocal()
    try:
        return 0 if promote(argv[0], db) else 1
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    sys.exit(run())
