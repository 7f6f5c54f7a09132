"""SQLAlchemy models."""

from exam_eval.models.enums import AccessLevel, PaperStatus, ReviewStatus, TicketStatus
from exam_eval.models.paper import Paper
from exam_eval.models.roles import ROLE_PERMISSIONS, UserRole
from exam_eval.models.staff import Spoc, Teacher, spoc_students, teacher_papers
from exam_eval.models.subject import Subject, Ticket, subject_admins, subject_spocs
from exam_eval.models.user import User

__all__ = [
    "AccessLevel",
    "PaperStatus",
    "ReviewStatus",
    "TicketStatus",
    "ROLE_PERMISSIONS",
    "UserRole",
    "User",
    "Teacher",
    "Spoc",
    "Subject",
    "Ticket",
    "Paper",
    "spoc_students",
    "teacher_papers",
    "subject_admins",
    "subject_spocs",
]
