"""Subjects and the admins/SPOCs attached to them."""

from typing import List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from exam_eval.db import get_db
from exam_eval.dependencies import get_current_user, require_admin
from exam_eval.exceptions import AlreadyExists, NotFoundError, ValidationError
from exam_eval.models import Subject, User, UserRole

router = APIRouter()


# === Schemas ===

class SubjectCreate(BaseModel):
    name: str
    admin_ids: List[int]
    spoc_ids: List[int] = []


class MemberIds(BaseModel):
    user_ids: List[int]


class MemberBrief(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class SubjectResponse(BaseModel):
    id: int
    name: str
    admins: List[MemberBrief] = []
    spocs: List[MemberBrief] = []

    class Config:
        from_attributes = True


def _users_with_role(db: Session, ids: List[int], role: UserRole) -> List[User]:
    """Load ``ids``; every one must exist with ``role``."""

    unique_ids = list(dict.fromkeys(ids))
    if not unique_ids:
        return []
    users = db.query(User).filter(User.id.in_(unique_ids), User.role == role).all()
    if len(users) != len(unique_ids):
        raise ValidationError(f"All ids must refer to {role.value} users")
    return users


def _get_subject(db: Session, subject_id: int) -> Subject:
    subject = db.get(Subject, subject_id)
    if subject is None:
        raise NotFoundError("Subject not found", code="SUBJECT_NOT_FOUND")
    return subject


def _add_members(collection: List[User], users: List[User]) -> None:
    for user in users:
        if user not in collection:
            collection.append(user)


# === Endpoints ===

@router.post("", response_model=SubjectResponse, status_code=status.HTTP_201_CREATED)
async def create_subject(
    payload: SubjectCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    name = payload.name.strip()
    if not name or not payload.admin_ids:
        raise ValidationError("Subject name and at least one admin are required")
    if db.query(Subject).filter(Subject.name == name).first():
        raise AlreadyExists("Subject already exists")

    subject = Subject(name=name)
    subject.admins = _users_with_role(db, payload.admin_ids, UserRole.ADMIN)
    subject.spocs = _users_with_role(db, payload.spoc_ids, UserRole.SPOC)
    db.add(subject)
    db.commit()
    db.refresh(subject)
    return subject


@router.post("/{subject_id}/assign-spocs", response_model=SubjectResponse)
async def assign_spocs(
    subject_id: int,
    payload: MemberIds,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    subject = _get_subject(db, subject_id)
    _add_members(subject.spocs, _users_with_role(db, payload.user_ids, UserRole.SPOC))
    db.commit()
    db.refresh(subject)
    return subject


@router.post("/{subject_id}/assign-admins", response_model=SubjectResponse)
async def assign_admins(
    subject_id: int,
    payload: MemberIds,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    subject = _get_subject(db, subject_id)
    _add_members(subject.admins, _users_with_role(db, payload.user_ids, UserRole.ADMIN))
    db.commit()
    db.refresh(subject)
    return subject


@router.get("", response_model=List[SubjectResponse])
async def list_subjects(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return db.query(Subject).order_by(Subject.name).all()
