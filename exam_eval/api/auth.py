"""Registration, login and session routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from exam_eval.config import Settings
from exam_eval.db import get_db
from exam_eval.dependencies import get_app_settings, get_current_user, get_otp_service
from exam_eval.models import User, UserRole
from exam_eval.security import create_access_token
from exam_eval.services import auth as auth_service
from exam_eval.services.otp import OtpService

router = APIRouter()

TOKEN_COOKIE = "token"


# === Schemas ===

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    role: UserRole
    name: str
    roll_no: Optional[str] = None
    section: Optional[str] = None
    otp: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    otp: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    email: str
    role: UserRole
    name: str
    roll_no: Optional[str] = None
    section: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    message: str
    token: str
    user: UserResponse


def _set_token_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        max_age=int(settings.token_lifetime.total_seconds()),
    )


# === Endpoints ===

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
    otp_service: OtpService = Depends(get_otp_service),
    settings: Settings = Depends(get_app_settings),
):
    """Create an account; elevated roles must present a verified OTP."""
    user = auth_service.register(
        db,
        otp_service,
        settings,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        name=payload.name,
        roll_no=payload.roll_no,
        section=payload.section,
        otp=payload.otp,
    )
    token = create_access_token(user, settings)
    _set_token_cookie(response, token, settings)
    return {"message": "User registered successfully", "token": token, "user": user}


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    otp_service: OtpService = Depends(get_otp_service),
    settings: Settings = Depends(get_app_settings),
):
    token, user = auth_service.login(
        db, otp_service, settings, payload.email, payload.password, payload.otp
    )
    _set_token_cookie(response, token, settings)
    return {"message": "Login successful", "token": token, "user": user}


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout")
async def logout(response: Response):
    """Clear the session cookie. Issued tokens stay valid until they expire."""
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out successfully"}
