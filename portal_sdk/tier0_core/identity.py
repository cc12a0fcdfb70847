"""
portal_sdk.tier0_core.identity
───────────────────────────────
Normalized principals and the institutional email policy used to provision
a profile the first time an identity signs in.

Students sign in with ``<rollno>@<student domain>``; staff sign in with
``<id>@<staff domain>``, where the local part decides between teacher,
placement officer (``tp``) and admin (``admin``).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


# ── Domain model ─────────────────────────────────────────────────────────────

class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    PLACEMENT_OFFICER = "placement-officer"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: str | "Role") -> "Role":
        if isinstance(value, Role):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("tp-officer", "tp_officer", "placement_officer"):
            return cls.PLACEMENT_OFFICER
        return cls(normalized)

    @property
    def rank(self) -> int:
        return _ROLE_HIERARCHY.index(self)


_ROLE_HIERARCHY = [Role.STUDENT, Role.TEACHER, Role.PLACEMENT_OFFICER, Role.ADMIN]


@dataclass(frozen=True)
class Principal:
    """The resolved, store-backed identity of the current user."""
    id: str
    email: str
    role: Role
    display_name: str
    department: str | None = None
    employee_id: str | None = None
    roll_number: str | None = None
    designation: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    is_active: bool = True

    def has_role(self, *roles: Role | str) -> bool:
        return self.role in {Role.parse(r) for r in roles}

    def at_least(self, role: Role | str) -> bool:
        return self.role.rank >= Role.parse(role).rank

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Principal":
        return cls(
            id=str(record["id"]),
            email=record.get("email") or "",
            role=Role.parse(record.get("role") or Role.STUDENT),
            display_name=record.get("name") or "",
            department=record.get("department") or None,
            employee_id=record.get("employee_id") or None,
            roll_number=record.get("roll_number") or None,
            designation=record.get("designation") or None,
            phone=record.get("phone") or None,
            avatar_url=record.get("avatar_url") or None,
            is_active=record.get("is_active", True) is not False,
        )


@dataclass(frozen=True)
class Identity:
    """What the identity provider knows about a signed-in user."""
    id: str
    email: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class AuthSession:
    identity: Identity
    access_token: str | None = None
    expires_at: float | None = None  # unix seconds

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at < now


# ── Email policy ──────────────────────────────────────────────────────────────

_DEPARTMENTS = {
    "CE": "Computer Engineering",
    "IT": "Information Technology",
    "EC": "Electronics & Communication",
    "ME": "Mechanical Engineering",
    "CL": "Civil Engineering",
    "CH": "Chemical Engineering",
    "EE": "Electrical Engineering",
    "IC": "Instrumentation & Control",
    "CS": "Computer Science",
}
_DEFAULT_DEPARTMENT = "Computer Engineering"
_ROLL_PATTERN = re.compile(r"(\d{2})([A-Z]{2})", re.IGNORECASE)

_STAFF_PROFILES = {
    Role.TEACHER: ("Computer Engineering", "Faculty"),
    Role.PLACEMENT_OFFICER: ("Training & Placement", "T&P Officer"),
    Role.ADMIN: ("Administration", "System Administrator"),
}


@dataclass(frozen=True)
class EmailPolicy:
    student_domain: str = "charusat.edu.in"
    staff_domain: str = "charusat.ac.in"

    def _split(self, email: str) -> tuple[str, str]:
        local, _, domain = email.strip().lower().partition("@")
        return local, domain

    def is_institutional(self, email: str | None) -> bool:
        if not email:
            return False
        _, domain = self._split(email)
        return domain in (self.student_domain, self.staff_domain)

    def role_for(self, email: str | None) -> Role | None:
        if not email:
            return None
        local, domain = self._split(email)
        if domain == self.student_domain:
            return Role.STUDENT
        if domain == self.staff_domain:
            if "admin" in local:
                return Role.ADMIN
            if "tp" in local:
                return Role.PLACEMENT_OFFICER
            return Role.TEACHER
        return None

    @staticmethod
    def display_name(email: str, metadata: Mapping[str, Any] | None = None) -> str:
        full_name = (metadata or {}).get("full_name") or (metadata or {}).get("name")
        if full_name:
            return str(full_name)
        local = email.split("@", 1)[0]
        return re.sub(r"[._]+", " ", local).strip().title()

    @staticmethod
    def department_for(email: str) -> str:
        match = _ROLL_PATTERN.search(email)
        if match:
            return _DEPARTMENTS.get(match.group(2).upper(), _DEFAULT_DEPARTMENT)
        return _DEFAULT_DEPARTMENT

    def new_profile(self, identity: Identity, now: datetime | None = None) -> dict[str, Any] | None:
        """Build the ``users`` row for a first-time sign-in, or None if the domain is not allowed."""
        email = (identity.email or "").strip()
        role = self.role_for(email)
        if role is None:
            return None
        local = email.split("@", 1)[0]
        stamp = (now or datetime.now(tz=timezone.utc)).isoformat()
        record: dict[str, Any] = {
            "id": identity.id,
            "email": email,
            "name": self.display_name(email, identity.metadata),
            "role": role.value,
            "avatar_url": identity.metadata.get("avatar_url"),
            "phone": None,
            "is_active": True,
            "created_at": stamp,
            "updated_at": stamp,
        }
        if role is Role.STUDENT:
            record.update(
                department=self.department_for(email),
                roll_number=local.upper(),
                employee_id=None,
                designation=None,
            )
        else:
            department, designation = _STAFF_PROFILES[role]
            record.update(
                department=department,
                roll_number=None,
                employee_id=local.upper(),
                designation=designation,
            )
        return record


__all__ = ["Role", "Principal", "Identity", "AuthSession", "EmailPolicy"]
