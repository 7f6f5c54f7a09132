"""Aggregate statistics over a SPOC's managed students."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from exam_eval.models import Paper, Spoc

GRADE_BANDS = [
    (90, "A+"),
    (80, "A"),
    (70, "B+"),
    (60, "B"),
    (50, "C+"),
    (40, "C"),
    (30, "D"),
]
FAIL_GRADE = "F"
RECENT_PAPERS_LIMIT = 20


def grade_letter(percentage: float) -> str:
    for threshold, letter in GRADE_BANDS:
        if percentage >= threshold:
            return letter
    return FAIL_GRADE


def _recent_entry(paper: Paper) -> Dict[str, Any]:
    return {
        "id": paper.id,
        "title": paper.title,
        "subject": paper.subject,
        "roll_no": paper.roll_no,
        "student_name": paper.student_name,
        "exam_date": paper.exam_date,
        "status": paper.status.value,
        "final_score": paper.final_score,
        "max_marks": paper.max_marks,
    }


def summarize_papers(papers: Iterable[Paper], total_students: int) -> Dict[str, Any]:
    """Counts, average final score, grade histogram and the most recent papers.

    Only papers with a final grade contribute to ``average_score`` and
    ``grades_distribution``.
    """
    papers = list(papers)
    by_status: Dict[str, int] = {}
    by_subject: Dict[str, int] = {}
    distribution = {letter: 0 for _, letter in GRADE_BANDS}
    distribution[FAIL_GRADE] = 0
    final_scores: List[float] = []

    for paper in papers:
        by_status[paper.status.value] = by_status.get(paper.status.value, 0) + 1
        by_subject[paper.subject] = by_subject.get(paper.subject, 0) + 1
        if paper.final_score is None:
            continue
        final_scores.append(paper.final_score)
        percentage = paper.final_score / paper.max_marks * 100 if paper.max_marks else 0
        distribution[grade_letter(percentage)] += 1

    average = round(sum(final_scores) / len(final_scores), 2) if final_scores else 0
    recent = sorted(papers, key=lambda p: (p.exam_date, p.id), reverse=True)

    return {
        "total_papers": len(papers),
        "total_students": total_students,
        "papers_by_status": by_status,
        "papers_by_subject": by_subject,
        "average_score": average,
        "grades_distribution": distribution,
        "recent_papers": [_recent_entry(p) for p in recent[:RECENT_PAPERS_LIMIT]],
    }


def build_spoc_report(
    db: Session,
    spoc: Spoc,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    subject: Optional[str] = None,
) -> Dict[str, Any]:
    student_ids = [student.id for student in spoc.managed_students]
    if not student_ids:
        return summarize_papers([], 0)

    query = db.query(Paper).filter(Paper.student_id.in_(student_ids))
    if start_date is not None:
        query = query.filter(Paper.exam_date >= start_date)
    if end_date is not None:
        query = query.filter(Paper.exam_date <= end_date)
    if subject:
        query = query.filter(Paper.subject == subject)
    return summarize_papers(query.all(), len(student_ids))
