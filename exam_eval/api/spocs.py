"""SPOC profile, managed-student and report routes."""

import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from exam_eval.db import get_db
from exam_eval.dependencies import require_admin, require_admin_or_spoc, require_view_reports
from exam_eval.exceptions import Forbidden
from exam_eval.models import AccessLevel, Spoc, User, UserRole
from exam_eval.services import reports, spocs as spoc_service

router = APIRouter()


# === Schemas ===

class SpocCreate(BaseModel):
    user_id: int
    department: str
    access_level: AccessLevel = AccessLevel.DEPARTMENT


class SpocCreateWithUser(BaseModel):
    name: str
    email: EmailStr
    password: str
    department: str
    access_level: AccessLevel = AccessLevel.DEPARTMENT
    subjects: List[str] = []


class SpocUpdate(BaseModel):
    department: Optional[str] = None
    access_level: Optional[AccessLevel] = None
    is_active: Optional[bool] = None


class StudentAdd(BaseModel):
    student_id: int


class SpocUserBrief(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class StudentBrief(BaseModel):
    id: int
    name: str
    email: str
    roll_no: Optional[str] = None
    section: Optional[str] = None

    class Config:
        from_attributes = True


class SpocResponse(BaseModel):
    id: int
    user_id: int
    department: str
    access_level: AccessLevel
    is_active: bool
    created_at: datetime
    user: Optional[SpocUserBrief] = None

    class Config:
        from_attributes = True


def _load_visible_spoc(db: Session, spoc_id: int, current_user: User) -> Spoc:
    spoc = spoc_service.get_spoc(db, spoc_id)
    if current_user.role == UserRole.SPOC and spoc.user_id != current_user.id:
        raise Forbidden("Access denied")
    return spoc


# === Endpoints ===

@router.post("", response_model=SpocResponse, status_code=status.HTTP_201_CREATED)
async def create_spoc(
    payload: SpocCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return spoc_service.create_spoc(db, payload.user_id, payload.department, payload.access_level)


@router.post("/full", response_model=SpocResponse, status_code=status.HTTP_201_CREATED)
async def create_spoc_with_user(
    payload: SpocCreateWithUser,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Create the spoc account and its profile together."""
    return spoc_service.create_spoc_with_user(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        department=payload.department,
        access_level=payload.access_level,
        subjects=payload.subjects,
    )


@router.get("")
async def list_spocs(
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    query = db.query(Spoc).filter(Spoc.is_active.is_(True))
    if department:
        query = query.filter(Spoc.department == department)
    total = query.count()
    items = query.order_by(Spoc.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "spocs": [SpocResponse.model_validate(s) for s in items],
        "pagination": {"current": page, "pages": math.ceil(total / limit), "total": total},
    }


@router.get("/{spoc_id}", response_model=SpocResponse)
async def get_spoc(
    spoc_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    return _load_visible_spoc(db, spoc_id, current_user)


@router.put("/{spoc_id}", response_model=SpocResponse)
async def update_spoc(
    spoc_id: int,
    payload: SpocUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    spoc = spoc_service.get_spoc(db, spoc_id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(spoc, field, value)
    db.commit()
    db.refresh(spoc)
    return spoc


@router.get("/{spoc_id}/students")
async def list_students(
    spoc_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    spoc = _load_visible_spoc(db, spoc_id, current_user)
    students = spoc_service.active_students(spoc)
    total = len(students)
    start = (page - 1) * limit
    return {
        "students": [StudentBrief.model_validate(s) for s in students[start:start + limit]],
        "pagination": {"current": page, "pages": math.ceil(total / limit), "total": total},
    }


@router.post("/{spoc_id}/students")
async def add_student(
    spoc_id: int,
    payload: StudentAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    spoc = _load_visible_spoc(db, spoc_id, current_user)
    spoc_service.add_student(db, spoc, payload.student_id)
    return {"message": "Student added successfully"}


@router.delete("/{spoc_id}/students/{student_id}")
async def remove_student(
    spoc_id: int,
    student_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    spoc = _load_visible_spoc(db, spoc_id, current_user)
    spoc_service.remove_student(db, spoc, student_id)
    return {"message": "Student removed successfully"}


@router.get("/{spoc_id}/reports", dependencies=[Depends(require_view_reports)])
async def spoc_reports(
    spoc_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    subject: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
) -> Dict[str, Any]:
    spoc = _load_visible_spoc(db, spoc_id, current_user)
    return reports.build_spoc_report(db, spoc, start_date, end_date, subject)
