"""Registration and login, including the OTP step for elevated roles."""

import logging
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_eval.config import Settings
from exam_eval.exceptions import (
    DuplicateUser,
    InvalidCredentials,
    InvalidOtp,
    OtpRequired,
    ValidationError,
)
from exam_eval.models import User, UserRole
from exam_eval.security import create_access_token, hash_password, verify_password
from exam_eval.services.otp import MIN_PASSWORD_LENGTH, OtpService

logger = logging.getLogger(__name__)


def requires_otp(role: UserRole, settings: Settings) -> bool:
    """Whether ``role`` must pass an OTP round-trip to register or log in."""
    return UserRole(role).value in settings.otp_roles


def register(
    db: Session,
    otp_service: OtpService,
    settings: Settings,
    *,
    email: str,
    password: str,
    role: UserRole,
    name: str,
    roll_no: Optional[str] = None,
    section: Optional[str] = None,
    otp: Optional[str] = None,
) -> User:
    email = (email or "").strip().lower()
    name = (name or "").strip()
    roll_no = (roll_no or "").strip() or None

    if not email or not password or not name or role is None:
        raise ValidationError("All fields are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role == UserRole.STUDENT and not roll_no:
        raise ValidationError("Roll number is required for students")
    if role != UserRole.STUDENT:
        roll_no = None

    conditions = [User.email == email]
    if roll_no:
        conditions.append(User.roll_no == roll_no)
    if db.query(User).filter(or_(*conditions)).first():
        raise DuplicateUser()

    otp_needed = requires_otp(role, settings)
    if otp_needed and not otp_service.check_otp(email, otp):
        raise InvalidOtp()

    user = User(
        email=email,
        password_hash=hash_password(password),
        role=role,
        name=name,
        roll_no=roll_no,
        section=section,
    )
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateUser() from exc
    # spend the code only once the insert is known to succeed
    if otp_needed and not otp_service.verify_otp(email, otp):
        db.rollback()
        raise InvalidOtp()
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s with role %s", user.id, role.value)
    return user


def authenticate(
    db: Session,
    otp_service: OtpService,
    settings: Settings,
    email: str,
    password: str,
    otp: Optional[str] = None,
) -> User:
    """Check credentials, then the OTP for roles that need one.

    Unknown, inactive and wrong-password all raise the same
    ``InvalidCredentials``. A wrong password never consumes an OTP.
    """
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = db.query(User).filter(User.email == email, User.is_active.is_(True)).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        raise InvalidCredentials()

    if requires_otp(user.role, settings):
        if not otp:
            raise OtpRequired()
        if not otp_service.verify_otp(email, otp):
            logger.info("Failed OTP for user %s", user.id)
            raise InvalidOtp()
    return user


def login(
    db: Session,
    otp_service: OtpService,
    settings: Settings,
    email: str,
    password: str,
    otp: Optional[str] = None,
) -> Tuple[str, User]:
    user = authenticate(db, otp_service, settings, email, password, otp)
    return create_access_token(user, settings), user
