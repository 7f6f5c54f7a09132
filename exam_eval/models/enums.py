"""Workflow enums: paper lifecycle, review outcome, SPOC scope, ticket status."""

import enum


class PaperStatus(str, enum.Enum):
    """Paper lifecycle, in order.

    Only ``UPLOADED -> AI_GRADED`` happens automatically (grading pipeline);
    every other change is made by a person through the status update endpoint.
    """
    UPLOADED = "uploaded"
    AI_GRADED = "ai_graded"
    TEACHER_REVIEWING = "teacher_reviewing"
    TEACHER_CORRECTED = "teacher_corrected"
    FINAL_GRADED = "final_graded"
    RELEASED = "released"


class ReviewStatus(str, enum.Enum):
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


class AccessLevel(str, enum.Enum):
    """How far a SPOC's authority reaches."""
    DEPARTMENT = "department"
    INSTITUTION = "institution"


class TicketStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
