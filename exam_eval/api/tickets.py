"""Student questions routed to the SPOCs of a subject."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from exam_eval.db import get_db
from exam_eval.dependencies import require_admin_or_spoc, require_student
from exam_eval.exceptions import Forbidden, NotFoundError, ValidationError
from exam_eval.models import Subject, Ticket, TicketStatus, User, UserRole, subject_spocs

router = APIRouter()


# === Schemas ===

class TicketCreate(BaseModel):
    subject_id: int
    question: str


class TicketRespond(BaseModel):
    response: str
    status: TicketStatus = TicketStatus.RESOLVED


class TicketResponse(BaseModel):
    id: int
    user_id: int
    subject_id: int
    question: str
    status: TicketStatus
    responder_id: Optional[int] = None
    response: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _spoc_subject_ids(user: User):
    return select(subject_spocs.c.subject_id).where(subject_spocs.c.user_id == user.id)


# === Endpoints ===

@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student),
):
    question = payload.question.strip()
    if not question:
        raise ValidationError("Question is required")
    if db.get(Subject, payload.subject_id) is None:
        raise NotFoundError("Subject not found", code="SUBJECT_NOT_FOUND")

    ticket = Ticket(user_id=current_user.id, subject_id=payload.subject_id, question=question)
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


@router.get("/my", response_model=List[TicketResponse])
async def my_tickets(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student),
):
    return (
        db.query(Ticket)
        .filter(Ticket.user_id == current_user.id)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )


@router.get("", response_model=List[TicketResponse])
async def list_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    """Admins see every ticket; a SPOC sees tickets for their subjects only."""
    query = db.query(Ticket)
    if current_user.role == UserRole.SPOC:
        query = query.filter(Ticket.subject_id.in_(_spoc_subject_ids(current_user)))
    if status_filter is not None:
        query = query.filter(Ticket.status == status_filter)
    return query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


@router.put("/{ticket_id}/respond", response_model=TicketResponse)
async def respond_ticket(
    ticket_id: int,
    payload: TicketRespond,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin_or_spoc),
):
    ticket = db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket not found", code="TICKET_NOT_FOUND")
    if current_user.role == UserRole.SPOC and current_user not in ticket.subject.spocs:
        raise Forbidden("Not assigned to this subject")
    if not payload.response.strip():
        raise ValidationError("Response is required")

    ticket.response = payload.response.strip()
    ticket.status = payload.status
    ticket.responder_id = current_user.id
    db.commit()
    db.refresh(ticket)
    return ticket
