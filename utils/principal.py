from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


ROLES = ("student", "teacher", "admin")
ROLE_ID_CLAIMS = {"student": "studentId", "teacher": "teacherId", "admin": "adminId"}
PLURAL_ROLES = {"student": "students", "teacher": "teachers", "admin": "admins"}


class InvalidClaims(ValueError):
    pass


@dataclass(frozen=True)
class StudentPrincipal:
    student_id: str
    enrollment_id: Optional[int] = None
    class_id: Optional[int] = None
    display_name: Optional[str] = None
    roll_number: Optional[str] = None
    role: str = "student"

    @property
    def id(self) -> str:
        return self.student_id


@dataclass(frozen=True)
class TeacherPrincipal:
    teacher_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: str = "teacher"

    @property
    def id(self) -> str:
        return self.teacher_id


@dataclass(frozen=True)
class AdminPrincipal:
    admin_id: str
    display_name: Optional[str] = None
    mobile: Optional[str] = None
    role: str = "admin"

    @property
    def id(self) -> str:
        return self.admin_id


Principal = Union[StudentPrincipal, TeacherPrincipal, AdminPrincipal]


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidClaims(f"expected integer claim, got {value!r}")


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    """Build the tagged principal; exactly one role id must be present and match ``role``."""
    role = claims.get("role")
    if role not in ROLES:
        raise InvalidClaims(f"unknown role {role!r}")
    present = [name for name in ROLE_ID_CLAIMS.values() if claims.get(name) not in (None, "")]
    expected = ROLE_ID_CLAIMS[role]
    if present != [expected]:
        raise InvalidClaims(f"role {role} requires exactly {expected}, got {present}")
    role_id = str(claims[expected])
    name = claims.get("name")
    if role == "student":
        return StudentPrincipal(
            student_id=role_id,
            enrollment_id=_opt_int(claims.get("enrollmentId")),
            class_id=_opt_int(claims.get("classId")),
            display_name=name,
            roll_number=claims.get("rollNumber"),
        )
    if role == "teacher":
        return TeacherPrincipal(teacher_id=role_id, display_name=name, email=claims.get("email"))
    return AdminPrincipal(admin_id=role_id, display_name=name, mobile=claims.get("mobile"))


def claims_for(principal: Principal) -> Dict[str, Any]:
    """Inverse of :func:`principal_from_claims`, used when issuing tokens."""
    claims: Dict[str, Any] = {
        "id": principal.id,
        "role": principal.role,
        ROLE_ID_CLAIMS[principal.role]: principal.id,
    }
    if principal.display_name:
        claims["name"] = principal.display_name
    if isinstance(principal, StudentPrincipal):
        if principal.enrollment_id is not None:
            claims["enrollmentId"] = principal.enrollment_id
        if principal.class_id is not None:
            claims["classId"] = principal.class_id
        if principal.roll_number:
            claims["rollNumber"] = principal.roll_number
    elif isinstance(principal, TeacherPrincipal) and principal.email:
        claims["email"] = principal.email
    elif isinstance(principal, AdminPrincipal) and principal.mobile:
        claims["mobile"] = principal.mobile
    return claims


def recipient_types_for(principal: Principal) -> list[str]:
    """Notification recipient types addressed to this principal."""
    return [principal.role, PLURAL_ROLES[principal.role], "all"]
