"""Paper upload, review and result routes."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from exam_eval.config import Settings
from exam_eval.db import get_db
from exam_eval.dependencies import (
    get_app_settings,
    get_current_user,
    get_grading_queue,
    require_admin_or_spoc,
    require_staff,
)
from exam_eval.models import PaperStatus, User
from exam_eval.services import papers as paper_service
from exam_eval.services.grading_queue import GradingQueue
from exam_eval.services.papers import FinalGradeInput, TeacherReviewInput

router = APIRouter()


# === Schemas ===

class AiGrade(BaseModel):
    score: float
    feedback: Optional[str] = None
    model: Optional[str] = None
    graded_at: Optional[datetime] = None
    breakdown: List[Dict[str, Any]] = []


class TeacherReview(BaseModel):
    reviewer_id: int
    corrections: Optional[str] = None
    status: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class FinalGrade(BaseModel):
    score: float
    feedback: Optional[str] = None
    graded_by: Optional[int] = None
    graded_at: Optional[datetime] = None


class PaperResponse(BaseModel):
    id: int
    student_id: int
    roll_no: str
    student_name: str
    section: Optional[str]
    title: str
    subject: str
    exam_date: date
    max_marks: int
    rubric_json: Dict[str, Any]
    original_file_name: str
    status: PaperStatus
    submitted_by: int
    ai_grade: Optional[AiGrade] = None
    teacher_review: Optional[TeacherReview] = None
    final_grade: Optional[FinalGrade] = None
    grading_attempts: int
    grading_error: Optional[str] = None
    uploaded_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ResultResponse(BaseModel):
    id: int
    title: str
    subject: str
    exam_date: date
    max_marks: int
    ai_grade: Optional[AiGrade] = None
    final_grade: Optional[FinalGrade] = None

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    status: PaperStatus
    teacher_review: Optional[TeacherReviewInput] = None
    final_grade: Optional[FinalGradeInput] = None


# === Endpoints ===

@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_paper(
    roll_no: str = Form(...),
    subject: str = Form(...),
    exam_date: date = Form(...),
    max_marks: int = Form(...),
    title: str = Form(...),
    rubric: Optional[str] = Form(None),
    question_paper: Optional[UploadFile] = File(None),
    answer_sheet: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    queue: GradingQueue = Depends(get_grading_queue),
    current_user: User = Depends(require_admin_or_spoc),
):
    """Store both files and queue the paper for AI grading."""
    paper = await paper_service.upload(
        db,
        settings,
        current_user,
        roll_no=roll_no,
        subject=subject,
        exam_date=exam_date,
        max_marks=max_marks,
        title=title,
        rubric=rubric,
        question_paper=question_paper,
        answer_sheet=answer_sheet,
    )
    # snapshot before queueing; inline workers may grade immediately
    body = PaperResponse.model_validate(paper).model_dump(mode="json")
    paper_service.enqueue_grading(db, queue, paper)
    return {"message": "Paper uploaded successfully", "paper": body}


@router.get("")
async def list_papers(
    status_filter: Optional[PaperStatus] = Query(None, alias="status"),
    subject: Optional[str] = None,
    roll_no: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    papers, pagination = paper_service.list_papers(
        db, current_user, status_filter, subject, roll_no, page, limit
    )
    return {
        "papers": [PaperResponse.model_validate(p) for p in papers],
        "pagination": pagination,
    }


@router.get("/results/{roll_no}", response_model=List[ResultResponse])
async def get_results(roll_no: str, db: Session = Depends(get_db)):
    """Released results for a roll number. No authentication."""
    return paper_service.get_results(db, roll_no)


@router.get("/{paper_id}", response_model=PaperResponse)
async def get_paper(
    paper_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    paper = paper_service.get_paper(db, paper_id)
    paper_service.ensure_can_view(current_user, paper)
    return paper


@router.get("/{paper_id}/download")
async def download_paper(
    paper_id: int,
    kind: str = Query("answer"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    paper = paper_service.get_paper(db, paper_id)
    paper_service.ensure_can_view(current_user, paper)
    path = paper_service.paper_file(paper, kind)
    question_name, _, answer_name = paper.original_file_name.partition("|")
    filename = (answer_name or question_name) if kind == "answer" else question_name
    return FileResponse(path, filename=filename or path.name)


@router.put("/{paper_id}/status", response_model=PaperResponse)
async def update_status(
    paper_id: int,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
):
    return paper_service.update_status(
        db,
        paper_id,
        current_user,
        payload.status,
        teacher_review=payload.teacher_review,
        final_grade=payload.final_grade,
    )


@router.post("/{paper_id}/regrade")
async def regrade_paper(
    paper_id: int,
    db: Session = Depends(get_db),
    queue: GradingQueue = Depends(get_grading_queue),
    current_user: User = Depends(require_admin_or_spoc),
):
    """Resubmit an ``uploaded`` paper whose grading failed or never ran."""
    paper = paper_service.regrade(db, queue, paper_id)
    return {"message": "Paper queued for grading", "paper": PaperResponse.model_validate(paper)}
