"""Paper lifecycle: upload, background grading, review and release.

Only ``uploaded -> ai_graded`` is automatic. ``run_grading_pipeline`` is the
job the ``GradingQueue`` executes; every later transition goes through
``update_status`` and is made by a person.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi import UploadFile
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from exam_eval.config import Settings
from exam_eval.db import SessionFactory, session_scope
from exam_eval.exceptions import Forbidden, NotFoundError, StudentNotFound, ValidationError
from exam_eval.models import Paper, PaperStatus, ReviewStatus, Teacher, User, UserRole, teacher_papers
from exam_eval.services.grading import Grader, GradingCriteria
from exam_eval.services.grading_queue import GradingQueue, QueueUnavailable
from exam_eval.services.ocr import TextExtractor
from exam_eval.utils.storage import (
    ALLOWED_PAPER_EXTENSIONS,
    generate_file_name,
    has_allowed_extension,
    save_upload_file,
)

logger = logging.getLogger(__name__)

STATUS_ROLES = (UserRole.TEACHER, UserRole.ADMIN, UserRole.SPOC)
FINAL_GRADE_ROLES = (UserRole.TEACHER, UserRole.ADMIN)


class TeacherReviewInput(BaseModel):
    corrections: Optional[str] = None
    status: ReviewStatus


class FinalGradeInput(BaseModel):
    score: float
    feedback: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_rubric(rubric: Optional[str]) -> Dict[str, Any]:
    """JSON object strings are kept as-is; anything else becomes ``{"text": ...}``."""

    if not rubric or not rubric.strip():
        return {}
    try:
        parsed = json.loads(rubric)
    except json.JSONDecodeError:
        return {"text": rubric}
    if isinstance(parsed, dict):
        return parsed
    return {"text": rubric}


def _check_file(upload: Optional[UploadFile], field: str) -> UploadFile:
    if upload is None or not upload.filename:
        raise ValidationError("Both question paper and answer sheet are required")
    if not has_allowed_extension(upload.filename):
        raise ValidationError(
            f"Invalid file type for {field}",
            details={"allowed": list(ALLOWED_PAPER_EXTENSIONS)},
        )
    return upload


def get_paper(db: Session, paper_id: int) -> Paper:
    paper = db.get(Paper, paper_id)
    if paper is None:
        raise NotFoundError("Paper not found", code="PAPER_NOT_FOUND")
    return paper


def ensure_can_view(user: User, paper: Paper) -> None:
    """Students may only see their own papers."""

    if user.role == UserRole.STUDENT and paper.student_id != user.id:
        raise Forbidden("Access denied")


async def upload(
    db: Session,
    settings: Settings,
    uploader: User,
    *,
    roll_no: str,
    subject: str,
    exam_date: date,
    max_marks: int,
    title: str,
    rubric: Optional[str],
    question_paper: Optional[UploadFile],
    answer_sheet: Optional[UploadFile],
) -> Paper:
    """Validate, store both files and create the paper in ``uploaded``.

    Grading is not started here; the caller submits the id to the queue with
    :func:`enqueue_grading` once it has what it needs from the new row.
    """
    roll_no = (roll_no or "").strip()
    subject = (subject or "").strip()
    title = (title or "").strip()
    if not roll_no or not subject or not title:
        raise ValidationError("roll_no, subject and title are required")
    if max_marks is None or max_marks <= 0:
        raise ValidationError("max_marks must be greater than 0")

    question_paper = _check_file(question_paper, "question_paper")
    answer_sheet = _check_file(answer_sheet, "answer_sheet")

    student = (
        db.query(User)
        .filter(
            User.roll_no == roll_no,
            User.role == UserRole.STUDENT,
            User.is_active.is_(True),
        )
        .first()
    )
    if student is None:
        raise StudentNotFound(roll_no)

    upload_dir = Path(settings.upload_dir)
    question_path = upload_dir / generate_file_name(question_paper.filename, prefix="question")
    answer_path = upload_dir / generate_file_name(answer_sheet.filename, prefix="answer")
    await save_upload_file(question_paper, question_path, max_bytes=settings.max_upload_bytes)
    try:
        await save_upload_file(answer_sheet, answer_path, max_bytes=settings.max_upload_bytes)
    except Exception:
        question_path.unlink(missing_ok=True)
        raise

    paper = Paper(
        student_id=student.id,
        roll_no=student.roll_no,
        student_name=student.name,
        section=student.section,
        title=title,
        subject=subject,
        exam_date=exam_date,
        max_marks=max_marks,
        rubric_json=parse_rubric(rubric),
        question_paper_path=str(question_path),
        answer_paper_path=str(answer_path),
        original_file_name=f"{question_paper.filename}|{answer_sheet.filename}",
        status=PaperStatus.UPLOADED,
        submitted_by=uploader.id,
    )
    db.add(paper)
    db.commit()
    db.refresh(paper)
    logger.info("Paper %s uploaded for %s by user %s", paper.id, roll_no, uploader.id)
    return paper


def enqueue_grading(db: Session, queue: GradingQueue, paper: Paper) -> bool:
    """Hand the paper to the grading queue.

    A full or closed queue does not fail the upload: the paper stays ``uploaded`` with
    the reason in ``grading_error`` so it can be regraded later.
    """
    paper_id = paper.id
    try:
        queue.submit(paper_id)
    except QueueUnavailable as exc:
        logger.warning("Paper %s not queued for grading: %s", paper_id, exc.message)
        paper = db.get(Paper, paper_id)
        paper.grading_error = exc.message
        db.commit()
        return False
    # inline workers write the row through their own session
    db.expire(paper)
    return True


def run_grading_pipeline(
    paper_id: int,
    session_factory: SessionFactory,
    extractor: TextExtractor,
    grader: Grader,
) -> None:
    """OCR both files, grade the combined text, store the AI grade.

    Exceptions propagate so the queue can retry.
    """
    with session_scope(session_factory) as db:
        paper = db.get(Paper, paper_id)
        if paper is None:
            logger.warning("Paper %s vanished before grading", paper_id)
            return
        if paper.status != PaperStatus.UPLOADED:
            logger.info("Skipping grading for paper %s in status %s", paper_id, paper.status.value)
            return
        paper.grading_attempts = (paper.grading_attempts or 0) + 1
        question_path = Path(paper.question_paper_path)
        answer_path = Path(paper.answer_paper_path)
        criteria = GradingCriteria(
            subject=paper.subject,
            max_marks=paper.max_marks,
            rubric=paper.rubric_json or {},
        )

    logger.info("Grading paper %s", paper_id)
    question = extractor.extract_text(question_path)
    answer = extractor.extract_text(answer_path)
    combined = f"Questions:\n{question.text}\n\nAnswers:\n{answer.text}"
    result = grader.grade(combined, criteria)
    score = min(max(result.score, 0.0), float(criteria.max_marks))

    with session_scope(session_factory) as db:
        paper = db.get(Paper, paper_id)
        if paper is None or paper.status != PaperStatus.UPLOADED:
            # a person moved the paper on while we were grading
            logger.info("Discarding late AI grade for paper %s", paper_id)
            return
        paper.ocr_text = combined
        paper.ai_score = score
        paper.ai_feedback = result.feedback
        paper.ai_model = result.model
        paper.ai_graded_at = _now()
        paper.ai_breakdown_json = [item.model_dump() for item in result.breakdown]
        paper.grading_error = None
        paper.status = PaperStatus.AI_GRADED
    logger.info("Paper %s AI graded: %s/%s", paper_id, score, criteria.max_marks)


def mark_grading_failed(
    session_factory: SessionFactory, paper_id: int, error: Exception, attempts: int
) -> None:
    """``on_failure`` hook for the queue: record why grading gave up."""

    with session_scope(session_factory) as db:
        paper = db.get(Paper, paper_id)
        if paper is None:
            return
        paper.grading_error = str(error) or error.__class__.__name__
        paper.grading_attempts = max(paper.grading_attempts or 0, attempts)
    logger.warning("Paper %s left in uploaded after %s failed attempt(s)", paper_id, attempts)


def regrade(db: Session, queue: GradingQueue, paper_id: int) -> Paper:
    paper = get_paper(db, paper_id)
    if paper.status != PaperStatus.UPLOADED:
        raise ValidationError(
            f"Only uploaded papers can be regraded (status is {paper.status.value})"
        )
    paper.grading_error = None
    db.commit()
    try:
        queue.submit(paper.id)
    except QueueUnavailable as exc:
        paper.grading_error = exc.message
        db.commit()
        raise
    db.refresh(paper)
    return paper


def update_status(
    db: Session,
    paper_id: int,
    user: User,
    status: PaperStatus,
    teacher_review: Optional[TeacherReviewInput] = None,
    final_grade: Optional[FinalGradeInput] = None,
) -> Paper:
    if user.role not in STATUS_ROLES:
        raise Forbidden()
    if teacher_review is not None and user.role != UserRole.TEACHER:
        raise Forbidden("Only teachers can attach a teacher review")
    if final_grade is not None and user.role not in FINAL_GRADE_ROLES:
        raise Forbidden("Only teachers and admins can assign a final grade")
    paper = get_paper(db, paper_id)
    if final_grade is not None and not 0 <= final_grade.score <= paper.max_marks:
        raise ValidationError(f"Final score must be between 0 and {paper.max_marks}")

    if teacher_review is not None:
        paper.reviewer_id = user.id
        paper.review_corrections = teacher_review.corrections
        paper.review_status = teacher_review.status
        paper.reviewed_at = _now()

    if final_grade is not None:
        paper.final_score = final_grade.score
        paper.final_feedback = final_grade.feedback
        paper.graded_by = user.id
        paper.final_graded_at = _now()

    previous = paper.status
    paper.status = PaperStatus(status)
    db.commit()
    db.refresh(paper)
    logger.info(
        "Paper %s status %s -> %s by user %s",
        paper.id, previous.value, paper.status.value, user.id,
    )
    return paper


def get_results(db: Session, roll_no: str) -> List[Paper]:
    papers = (
        db.query(Paper)
        .filter(Paper.roll_no == roll_no, Paper.status == PaperStatus.RELEASED)
        .order_by(Paper.exam_date.desc(), Paper.id.desc())
        .all()
    )
    if not papers:
        raise NotFoundError("No results found for this roll number", code="RESULTS_NOT_FOUND")
    return papers


def list_papers(
    db: Session,
    requester: User,
    status: Optional[PaperStatus] = None,
    subject: Optional[str] = None,
    roll_no: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Paper], Dict[str, int]]:
    query = db.query(Paper)

    if requester.role == UserRole.STUDENT:
        query = query.filter(Paper.student_id == requester.id)
    elif requester.role == UserRole.TEACHER:
        conditions = [Paper.reviewer_id == requester.id]
        teacher = db.query(Teacher).filter(Teacher.user_id == requester.id).first()
        if teacher is not None:
            assigned = select(teacher_papers.c.paper_id).where(
                teacher_papers.c.teacher_id == teacher.id
            )
            conditions.append(Paper.id.in_(assigned))
            if teacher.subjects:
                conditions.append(Paper.subject.in_(teacher.subjects))
        query = query.filter(or_(*conditions))

    if status is not None:
        query = query.filter(Paper.status == status)
    if subject:
        query = query.filter(Paper.subject == subject)
    if roll_no:
        query = query.filter(Paper.roll_no == roll_no)

    page = max(page, 1)
    limit = max(limit, 1)
    total = query.count()
    papers = (
        query.order_by(Paper.created_at.desc(), Paper.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    pagination = {"current": page, "pages": math.ceil(total / limit), "total": total}
    return papers, pagination


def paper_file(paper: Paper, kind: str) -> Path:
    if kind not in ("answer", "question"):
        raise ValidationError("kind must be 'answer' or 'question'")
    path = Path(paper.answer_paper_path if kind == "answer" else paper.question_paper_path)
    if not path.is_file():
        raise NotFoundError("File not found", code="FILE_NOT_FOUND")
    return path
