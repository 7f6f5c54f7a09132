"""FastAPI dependencies: app-scoped services, the current user and role gates."""

from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from exam_eval.config import Settings
from exam_eval.db import get_db
from exam_eval.exceptions import AuthenticationError, Forbidden, InvalidToken
from exam_eval.models import User, UserRole
from exam_eval.models.roles import has_permission, is_valid_role
from exam_eval.security import decode_access_token
from exam_eval.services.grading_queue import GradingQueue
from exam_eval.services.otp import OtpService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_otp_service(request: Request) -> OtpService:
    return request.app.state.otp_service


def get_mailer(request: Request):
    return request.app.state.mailer


def get_grading_queue(request: Request) -> GradingQueue:
    return request.app.state.grading_queue


def _extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get("token")


async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    """Resolve the bearer token (header first, then the ``token`` cookie)."""
    token = _extract_token(request, authorization)
    if not token:
        raise AuthenticationError("Authentication required", code="NO_TOKEN")

    payload = decode_access_token(token, settings)
    user = db.get(User, payload["userId"])
    if user is None or not user.is_active:
        raise InvalidToken("Invalid or inactive user")
    return user


def require_role(*allowed: UserRole) -> Callable[..., User]:
    """Dependency factory: the current user, if their role is in ``allowed``."""

    allowed_values = {UserRole(role).value for role in allowed}

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        role = current_user.role.value if isinstance(current_user.role, UserRole) else current_user.role
        if not is_valid_role(role) or role not in allowed_values:
            raise Forbidden(details={"required": sorted(allowed_values), "role": role})
        return current_user

    return checker


def require_permission(permission: str) -> Callable[..., User]:
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user.role, permission):
            raise Forbidden(details={"permission": permission})
        return current_user

    return checker


require_admin = require_role(UserRole.ADMIN)
require_student = require_role(UserRole.STUDENT)
require_admin_or_spoc = require_role(UserRole.ADMIN, UserRole.SPOC)
require_staff = require_role(UserRole.ADMIN, UserRole.TEACHER, UserRole.SPOC)
require_view_reports = require_permission("view_reports")
