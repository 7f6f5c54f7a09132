"""User administration routes."""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr
from sqlalchemy import or_
from sqlalchemy.orm import Session

from exam_eval.api.auth import UserResponse
from exam_eval.db import get_db
from exam_eval.dependencies import require_admin, require_admin_or_spoc
from exam_eval.exceptions import DuplicateUser, NotFoundError, ValidationError
from exam_eval.models import User, UserRole
from exam_eval.security import hash_password
from exam_eval.services.otp import MIN_PASSWORD_LENGTH

logger = logging.getLogger(__name__)

router = APIRouter()


# === Schemas ===

class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    section: Optional[str] = None
    is_active: Optional[bool] = None


class PasswordReset(BaseModel):
    new_password: str


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


# === Endpoints ===

@router.get("")
async def list_users(
    role: Optional[UserRole] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    query = db.query(User).filter(User.is_active.is_(True))
    if role is not None:
        query = query.filter(User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(User.name.ilike(pattern), User.email.ilike(pattern), User.roll_no.ilike(pattern))
        )
    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "users": [UserResponse.model_validate(u) for u in users],
        "pagination": {"current": page, "pages": math.ceil(total / limit), "total": total},
    }


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    return _get_user(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    user = _get_user(db, user_id)
    if payload.email is not None:
        email = payload.email.strip().lower()
        clash = db.query(User).filter(User.email == email, User.id != user.id).first()
        if clash is not None:
            raise DuplicateUser("Email already in use")
        user.email = email
    if payload.name is not None:
        if not payload.name.strip():
            raise ValidationError("Name cannot be empty")
        user.name = payload.name.strip()
    if payload.section is not None:
        user.section = payload.section
    if payload.is_active is not None:
        user.is_active = payload.is_active
    db.commit()
    db.refresh(user)
    return user


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Deactivate the account; the row and the user's papers are kept."""
    user = _get_user(db, user_id)
    user.is_active = False
    db.commit()
    logger.info("User %s deactivated by %s", user.id, current_user.id)
    return {"message": "User deactivated successfully"}


@router.put("/{user_id}/reset-password")
async def reset_user_password(
    user_id: int,
    payload: PasswordReset,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    if len(payload.new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    user = _get_user(db, user_id)
    user.password_hash = hash_password(payload.new_password)
    db.commit()
    logger.info("Password for user %s reset by %s", user.id, current_user.id)
    return {"message": "Password reset successfully"}
