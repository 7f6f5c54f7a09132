"""One-time password routes."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from exam_eval.db import get_db
from exam_eval.dependencies import get_otp_service
from exam_eval.services.otp import OtpService

router = APIRouter()


# === Schemas ===

class SendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str
    new_password: str


# === Endpoints ===

@router.post("/send-otp")
async def send_otp(payload: SendOtpRequest, otp_service: OtpService = Depends(get_otp_service)):
    await otp_service.send_otp(payload.email)
    return {"message": "OTP sent successfully"}


@router.post("/verify-otp")
async def verify_otp(payload: VerifyOtpRequest, otp_service: OtpService = Depends(get_otp_service)):
    if otp_service.verify_otp(payload.email, payload.otp):
        return {"valid": True, "message": "OTP verified successfully"}
    return JSONResponse(status_code=400, content={"valid": False, "message": "Invalid OTP"})


@router.post("/reset-password")
async def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    otp_service: OtpService = Depends(get_otp_service),
):
    otp_service.reset_password(db, payload.email, payload.otp, payload.new_password)
    return {"message": "Password reset successfully"}
