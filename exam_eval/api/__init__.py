"""API route package."""

from fastapi import APIRouter

from exam_eval.api import auth, otp, papers, spocs, subjects, teachers, tickets, users

router = APIRouter(prefix="/api")

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(otp.router, prefix="/otp", tags=["otp"])
router.include_router(papers.router, prefix="/papers", tags=["papers"])
router.include_router(spocs.router, prefix="/spoc", tags=["spoc"])
router.include_router(teachers.router, prefix="/teachers", tags=["teachers"])
router.include_router(subjects.router, prefix="/subjects", tags=["subjects"])
router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
router.include_router(users.router, prefix="/users", tags=["users"])
