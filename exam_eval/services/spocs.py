"""SPOC profiles and the students they manage."""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_eval.exceptions import (
    AlreadyExists,
    DuplicateUser,
    InvalidUser,
    NotFoundError,
    ValidationError,
)
from exam_eval.models import AccessLevel, Spoc, Subject, User, UserRole
from exam_eval.security import hash_password
from exam_eval.services.otp import MIN_PASSWORD_LENGTH

logger = logging.getLogger(__name__)


def get_spoc(db: Session, spoc_id: int) -> Spoc:
    spoc = db.get(Spoc, spoc_id)
    if spoc is None:
        raise NotFoundError("SPOC not found", code="SPOC_NOT_FOUND")
    return spoc


def create_spoc(
    db: Session,
    user_id: int,
    department: str,
    access_level: AccessLevel = AccessLevel.DEPARTMENT,
) -> Spoc:
    """Attach a SPOC profile to an existing spoc-role user."""

    if not (department or "").strip():
        raise ValidationError("Department is required")
    user = db.get(User, user_id)
    if user is None or user.role != UserRole.SPOC:
        raise InvalidUser("Invalid user or user is not a SPOC")
    if db.query(Spoc).filter(Spoc.user_id == user_id).first():
        raise AlreadyExists("SPOC profile already exists")

    spoc = Spoc(user_id=user_id, department=department.strip(), access_level=access_level)
    db.add(spoc)
    db.commit()
    db.refresh(spoc)
    logger.info("Created SPOC profile %s for user %s", spoc.id, user_id)
    return spoc


def create_spoc_with_user(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    department: str,
    access_level: AccessLevel = AccessLevel.DEPARTMENT,
    subjects: Optional[List[str]] = None,
) -> Spoc:
    """Create the spoc user, its profile and subject links in one transaction."""

    email = (email or "").strip().lower()
    name = (name or "").strip()
    if not email or not name or not password or not (department or "").strip():
        raise ValidationError("name, email, password and department are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if db.query(User).filter(User.email == email).first():
        raise DuplicateUser()

    linked: List[Subject] = []
    for subject_name in subjects or []:
        subject = db.query(Subject).filter(Subject.name == subject_name).first()
        if subject is None:
            raise ValidationError(f"Unknown subject: {subject_name}")
        linked.append(subject)

    user = User(
        email=email,
        password_hash=hash_password(password),
        role=UserRole.SPOC,
        name=name,
    )
    spoc = Spoc(user=user, department=department.strip(), access_level=access_level)
    db.add_all([user, spoc])
    for subject in linked:
        if user not in subject.spocs:
            subject.spocs.append(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateUser() from exc
    db.refresh(spoc)
    logger.info("Created SPOC user %s with profile %s", user.id, spoc.id)
    return spoc


def active_students(spoc: Spoc) -> List[User]:
    return [student for student in spoc.managed_students if student.is_active]


def add_student(db: Session, spoc: Spoc, student_id: int) -> Spoc:
    student = db.get(User, student_id)
    if student is None or student.role != UserRole.STUDENT:
        raise NotFoundError("Student not found", code="STUDENT_NOT_FOUND")
    if student not in spoc.managed_students:
        spoc.managed_students.append(student)
        db.commit()
    db.refresh(spoc)
    return spoc


def remove_student(db: Session, spoc: Spoc, student_id: int) -> Spoc:
    student = db.get(User, student_id)
    if student is not None and student in spoc.managed_students:
        spoc.managed_students.remove(student)
        db.commit()
    db.refresh(spoc)
    return spoc
