"""Teacher profiles and paper assignment."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from exam_eval.db import get_db
from exam_eval.dependencies import require_admin, require_admin_or_spoc, require_staff
from exam_eval.exceptions import AlreadyExists, ConflictError, InvalidUser, NotFoundError, ValidationError
from exam_eval.models import PaperStatus, Teacher, User, UserRole
from exam_eval.services.papers import get_paper

router = APIRouter()


# === Schemas ===

class TeacherCreate(BaseModel):
    user_id: int
    employee_id: str
    subjects: List[str] = []


class TeacherUpdate(BaseModel):
    subjects: Optional[List[str]] = None
    is_active: Optional[bool] = None


class PaperAssign(BaseModel):
    paper_id: int


class TeacherUserBrief(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class TeacherResponse(BaseModel):
    id: int
    user_id: int
    employee_id: str
    subjects: List[str]
    is_active: bool
    created_at: datetime
    user: Optional[TeacherUserBrief] = None
    assigned_paper_ids: List[int] = []

    class Config:
        from_attributes = True


def _to_response(teacher: Teacher) -> TeacherResponse:
    response = TeacherResponse.model_validate(teacher)
    response.assigned_paper_ids = [paper.id for paper in teacher.assigned_papers]
    return response


def _get_teacher(db: Session, teacher_id: int) -> Teacher:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None:
        raise NotFoundError("Teacher not found", code="TEACHER_NOT_FOUND")
    return teacher


# === Endpoints ===

@router.post("", response_model=TeacherResponse, status_code=status.HTTP_201_CREATED)
async def create_teacher(
    payload: TeacherCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    employee_id = payload.employee_id.strip()
    if not employee_id:
        raise ValidationError("employee_id is required")
    user = db.get(User, payload.user_id)
    if user is None or user.role != UserRole.TEACHER:
        raise InvalidUser("Invalid user or user is not a teacher")
    if db.query(Teacher).filter(Teacher.user_id == user.id).first():
        raise AlreadyExists("Teacher profile already exists")
    if db.query(Teacher).filter(Teacher.employee_id == employee_id).first():
        raise ConflictError("Employee ID already in use", code="DUPLICATE_EMPLOYEE_ID")

    teacher = Teacher(user_id=user.id, employee_id=employee_id, subjects=list(payload.subjects))
    db.add(teacher)
    db.commit()
    db.refresh(teacher)
    return _to_response(teacher)


@router.get("", response_model=List[TeacherResponse])
async def list_teachers(
    subject: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    teachers = db.query(Teacher).filter(Teacher.is_active.is_(True)).order_by(Teacher.id).all()
    if subject:
        # subjects is a JSON list; filtered here to stay portable across backends
        teachers = [t for t in teachers if subject in (t.subjects or [])]
    return [_to_response(t) for t in teachers]


@router.get("/{teacher_id}", response_model=TeacherResponse)
async def get_teacher(
    teacher_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    return _to_response(_get_teacher(db, teacher_id))


@router.put("/{teacher_id}", response_model=TeacherResponse)
async def update_teacher(
    teacher_id: int,
    payload: TeacherUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    teacher = _get_teacher(db, teacher_id)
    if payload.subjects is not None:
        teacher.subjects = list(payload.subjects)
    if payload.is_active is not None:
        teacher.is_active = payload.is_active
    db.commit()
    db.refresh(teacher)
    return _to_response(teacher)


@router.post("/{teacher_id}/assign-paper", response_model=TeacherResponse)
async def assign_paper(
    teacher_id: int,
    payload: PaperAssign,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    """Put the paper in the teacher's review queue."""
    teacher = _get_teacher(db, teacher_id)
    paper = get_paper(db, payload.paper_id)
    if paper not in teacher.assigned_papers:
        teacher.assigned_papers.append(paper)
    paper.status = PaperStatus.TEACHER_REVIEWING
    db.commit()
    db.refresh(teacher)
    return _to_response(teacher)
