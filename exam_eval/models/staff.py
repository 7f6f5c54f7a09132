"""Teacher and SPOC profiles, each bound one-to-one to a ``User``."""

from datetime import datetime, timezone
from typing import List

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from exam_eval.db import Base
from exam_eval.models.enums import AccessLevel

# Composite primary keys give set semantics: a student is managed at most once per SPOC
spoc_students = Table(
    "spoc_students",
    Base.metadata,
    Column("spoc_id", ForeignKey("spocs.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

teacher_papers = Table(
    "teacher_papers",
    Base.metadata,
    Column("teacher_id", ForeignKey("teachers.id", ondelete="CASCADE"), primary_key=True),
    Column("paper_id", ForeignKey("papers.id", ondelete="CASCADE"), primary_key=True),
)


class Teacher(Base):
    __tablename__ = "teachers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    employee_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)

    # subject names, e.g. ["Mathematics", "Physics"]
    subjects: Mapped[List[str]] = mapped_column(JSON, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
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

    user = relationship("User")
    assigned_papers = relationship("Paper", secondary=teacher_papers, order_by="Paper.id")

    def __repr__(self) -> str:
        return f"<Teacher(id={self.id}, user_id={self.user_id}, employee_id={self.employee_id})>"


class Spoc(Base):
    """Single Point of Contact profile.

    A SPOC reviews AI-graded results for the students it manages before release.
    """

    __tablename__ = "spocs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    department: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    access_level: Mapped[AccessLevel] = mapped_column(
        Enum(AccessLevel), default=AccessLevel.DEPARTMENT, nullable=False
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
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

    user = relationship("User")
    managed_students = relationship("User", secondary=spoc_students, order_by="User.name")

    def __repr__(self) -> str:
        return f"<Spoc(id={self.id}, user_id={self.user_id}, department={self.department})>"
