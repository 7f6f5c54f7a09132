"""Paper model: one uploaded exam (question paper + answer sheet) for one student."""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Date, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from exam_eval.db import Base
from exam_eval.models.enums import PaperStatus, ReviewStatus


class Paper(Base):
    """Central workflow entity.

    Papers are never deleted, only moved along ``PaperStatus``. Each grading
    stage owns a group of columns that stays NULL until that stage has run:

    - AI grade: ``ai_*``
    - teacher review: ``reviewer_id`` / ``review_*`` / ``reviewed_at``
    - final grade: ``final_*`` / ``graded_by``
    """

    __tablename__ = "papers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # student, denormalized at upload time
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    roll_no: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    student_name: Mapped[str] = mapped_column(String(100), nullable=False)
    section: Mapped[Optional[str]] = mapped_column(String(50))

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    exam_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    max_marks: Mapped[int] = mapped_column(Integer, nullable=False)
    # {"criterion": {"points": 10, "description": "..."}} or {"text": "..."}
    rubric_json: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    question_paper_path: Mapped[str] = mapped_column(String(512), nullable=False)
    answer_paper_path: Mapped[str] = mapped_column(String(512), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(512), nullable=False)

    ocr_text: Mapped[Optional[str]] = mapped_column(Text)

    ai_score: Mapped[Optional[float]] = mapped_column(Float)
    ai_feedback: Mapped[Optional[str]] = mapped_column(Text)
    ai_model: Mapped[Optional[str]] = mapped_column(String(50))
    ai_graded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # [{"question": "Question 1", "score": 7.5, "max_score": 10, "feedback": "..."}]
    ai_breakdown_json: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON)

    reviewer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), index=True)
    review_corrections: Mapped[Optional[str]] = mapped_column(Text)
    review_status: Mapped[Optional[ReviewStatus]] = mapped_column(Enum(ReviewStatus))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    final_score: Mapped[Optional[float]] = mapped_column(Float)
    final_feedback: Mapped[Optional[str]] = mapped_column(Text)
    graded_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    final_graded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    status: Mapped[PaperStatus] = mapped_column(
        Enum(PaperStatus), default=PaperStatus.UPLOADED, nullable=False, index=True
    )
    submitted_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    # grading pipeline bookkeeping, for manual retry
    grading_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    grading_error: Mapped[Optional[str]] = mapped_column(Text)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    student = relationship("User", foreign_keys=[student_id])

    @property
    def ai_grade(self) -> Optional[Dict[str, Any]]:
        if self.ai_score is None:
            return None
        return {
            "score": self.ai_score,
            "feedback": self.ai_feedback,
            "model": self.ai_model,
            "graded_at": self.ai_graded_at,
            "breakdown": self.ai_breakdown_json or [],
        }

    @property
    def teacher_review(self) -> Optional[Dict[str, Any]]:
        if self.reviewer_id is None:
            return None
        return {
            "reviewer_id": self.reviewer_id,
            "corrections": self.review_corrections,
            "status": self.review_status.value if self.review_status else None,
            "reviewed_at": self.reviewed_at,
        }

    @property
    def final_grade(self) -> Optional[Dict[str, Any]]:
        if self.final_score is None:
            return None
        return {
            "score": self.final_score,
            "feedback": self.final_feedback,
            "graded_by": self.graded_by,
            "graded_at": self.final_graded_at,
        }

    def __repr__(self) -> str:
        return f"<Paper(id={self.id}, roll_no={self.roll_no}, status={self.status.value})>"
