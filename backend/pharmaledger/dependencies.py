"""
Request dependencies.

Authentication happens upstream; the acting user arrives as the X-User-Id
header and must be an active user in this database.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from pharmaledger.database import get_db
from pharmaledger.models import User

logger = logging.getLogger(__name__)


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )
    user = db.query(User).filter(User.id == user_id).first()
    if not user or user.is_active is False:
        logger.warning(f"Rejected request for unknown or inactive user {x_user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
        )
    return user
