"""Roles and the static role -> permission table."""

import enum
from typing import Dict, FrozenSet, Union


class UserRole(str, enum.Enum):
    """User roles."""
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    SPOC = "spoc"


ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.ADMIN: frozenset({"manage_users", "manage_roles", "view_reports"}),
    UserRole.TEACHER: frozenset({"create_papers", "grade_papers", "view_reports"}),
    UserRole.STUDENT: frozenset({"submit_papers", "view_results"}),
    UserRole.SPOC: frozenset({"manage_students", "view_reports"}),
}

_DISPLAY_NAMES = {
    UserRole.ADMIN: "Administrator",
    UserRole.TEACHER: "Teacher",
    UserRole.STUDENT: "Student",
    UserRole.SPOC: "Single Point of Contact",
}

_DESCRIPTIONS = {
    UserRole.ADMIN: "Has full access to manage the system and users.",
    UserRole.TEACHER: "Can create and grade papers, and view reports.",
    UserRole.STUDENT: "Can submit papers and view their results.",
    UserRole.SPOC: "Manages students and views reports.",
}


def is_valid_role(role: Union[str, UserRole, None]) -> bool:
    if isinstance(role, UserRole):
        return True
    return role in {r.value for r in UserRole}


def get_role_permissions(role: Union[str, UserRole]) -> FrozenSet[str]:
    if not is_valid_role(role):
        return frozenset()
    return ROLE_PERMISSIONS[UserRole(role)]


def has_permission(role: Union[str, UserRole], permission: str) -> bool:
    return permission in get_role_permissions(role)


def role_display_name(role: Union[str, UserRole]) -> str:
    return _DISPLAY_NAMES[UserRole(role)] if is_valid_role(role) else "Unknown Role"


def role_description(role: Union[str, UserRole]) -> str:
    return _DESCRIPTIONS[UserRole(role)] if is_valid_role(role) else "No description available."
