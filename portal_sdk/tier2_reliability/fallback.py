"""
portal_sdk.tier2_reliability.fallback
─────────────────────────────────────────
Standardized fallback behavior for read paths. When the backend is absent,
partially migrated, or failing, reads return a deterministic substitute
dataset wrapped in a ``fallback`` outcome instead of surfacing an error.

Write paths never use this module: fabricating a successful write would
mislead the user.
"""
from __future__ import annotations

import copy
from typing import Any, Awaitable, Callable, TypeVar

from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier0_core.metrics import read_fallbacks
from portal_sdk.tier1_runtime.result import Outcome, fallback, ok

T = TypeVar("T")

logger = get_logger("portal_sdk.fallback")

DATASET_VERSION = "2024.1"
BACKEND_UNAVAILABLE = "backend_unavailable"


async def with_fallback(
    resource: str,
    fetch: Callable[[], Awaitable[T]],
    substitute: Callable[[], T],
) -> Outcome[T]:
    """
    Await *fetch*; on any exception log it and return ``substitute()`` as a
    ``fallback`` outcome.

    Usage::

        outcome = await with_fallback(
            "certificates",
            lambda: cache.get_or_fetch(key, ttl, load),
            lambda: FallbackDataset.certificates(student_id),
        )
    """
    try:
        value = await fetch()
    except Exception as exc:
        reason = str(getattr(exc, "code", "") or type(exc).__name__)
        logger.warning(
            "read.fallback",
            resource=resource,
            reason=reason,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        read_fallbacks(resource=resource, reason=reason).inc()
        return fallback(substitute(), reason)
    return ok(value)


def unavailable(resource: str, substitute: Callable[[], T]) -> Outcome[T]:
    """Outcome for a read issued while no backend is configured."""
    read_fallbacks(resource=resource, reason=BACKEND_UNAVAILABLE).inc()
    return fallback(substitute(), BACKEND_UNAVAILABLE)


# ── Dataset ───────────────────────────────────────────────────────────────────

_STUDENT_NAME = "John Doe"
_STUDENT_EMAIL = "john.doe@charusat.edu.in"

_REPORTS: tuple[dict[str, Any], ...] = (
    {
        "id": 1,
        "week_number": 1,
        "title": "Week 1 - Project Setup and Onboarding",
        "description": "Completed project setup, team introductions, and initial training sessions.",
        "status": "approved",
        "grade": "A",
        "submitted_date": "2024-01-08T10:00:00Z",
        "feedback": "Great start! Good documentation of setup process.",
        "file_name": "week1_report.pdf",
    },
    {
        "id": 2,
        "week_number": 2,
        "title": "Week 2 - Learning Phase",
        "description": "Focused on learning new technologies and understanding project requirements.",
        "status": "pending",
        "submitted_date": "2024-01-15T14:30:00Z",
        "file_name": "week2_report.pdf",
    },
    {
        "id": 3,
        "week_number": 3,
        "title": "Week 3 - First Development Tasks",
        "description": "Started implementing components and working on actual project tasks.",
        "status": "revision_required",
        "submitted_date": "2024-01-22T09:15:00Z",
        "feedback": "Good progress, but please add more technical details.",
        "file_name": "week3_report.pdf",
    },
)

_NOC_REQUESTS: tuple[dict[str, Any], ...] = (
    {
        "id": 1,
        "student_name": _STUDENT_NAME,
        "student_email": _STUDENT_EMAIL,
        "company_name": "TechCorp Solutions",
        "position": "Software Development Intern",
        "duration": "6 months",
        "start_date": "2024-02-01",
        "status": "approved",
        "submitted_date": "2024-01-10T10:30:00Z",
        "approved_date": "2024-01-15T14:20:00Z",
        "feedback": "All documents are in order. NOC approved.",
        "documents": ["offer_letter.pdf", "company_profile.pdf"],
    },
    {
        "id": 2,
        "student_name": _STUDENT_NAME,
        "student_email": _STUDENT_EMAIL,
        "company_name": "DataTech Analytics",
        "position": "Data Science Intern",
        "duration": "4 months",
        "start_date": "2024-03-01",
        "status": "pending",
        "submitted_date": "2024-01-20T09:15:00Z",
        "documents": ["offer_letter.pdf"],
    },
)

_CERTIFICATES: tuple[dict[str, Any], ...] = (
    {
        "id": 1,
        "student_name": _STUDENT_NAME,
        "student_email": _STUDENT_EMAIL,
        "title": "Software Development Intern",
        "company_name": "TechCorp Solutions",
        "start_date": "2023-06-01",
        "end_date": "2023-11-30",
        "status": "approved",
        "upload_date": "2023-12-05T16:45:00Z",
        "approved_by": "Dr. Sarah Wilson",
        "file_name": "techcorp_certificate.pdf",
    },
    {
        "id": 2,
        "student_name": _STUDENT_NAME,
        "student_email": _STUDENT_EMAIL,
        "title": "Frontend Developer Intern",
        "company_name": "WebTech Studios",
        "start_date": "2023-01-15",
        "end_date": "2023-04-15",
        "status": "pending",
        "upload_date": "2023-04-20T10:30:00Z",
        "file_name": "webtech_certificate.pdf",
    },
)

_OPPORTUNITIES: tuple[dict[str, Any], ...] = (
    {
        "id": 1, "title": "Full Stack Development Intern", "company_name": "InnovateX Solutions",
        "location": "Bangalore", "duration": "6 months", "job_type": "Paid Internship",
        "stipend": "₹25,000/month", "positions": 5, "status": "active",
        "posted_date": "2024-01-05T09:00:00Z",
    },
    {
        "id": 2, "title": "Mobile App Development Intern", "company_name": "MobileFirst Tech",
        "location": "Mumbai", "duration": "4 months", "job_type": "Paid Internship",
        "stipend": "₹22,000/month", "positions": 3, "status": "active",
        "posted_date": "2024-01-08T11:30:00Z",
    },
    {
        "id": 3, "title": "Data Science Intern", "company_name": "DataMine Analytics",
        "location": "Pune", "duration": "6 months", "job_type": "Paid Internship",
        "stipend": "₹28,000/month", "positions": 4, "status": "active",
        "posted_date": "2024-01-03T14:15:00Z",
    },
    {
        "id": 4, "title": "UI/UX Design Intern", "company_name": "DesignCraft Studio",
        "location": "Ahmedabad", "duration": "3 months", "job_type": "Paid Internship",
        "stipend": "₹20,000/month", "positions": 2, "status": "active",
        "posted_date": "2024-01-10T10:45:00Z",
    },
    {
        "id": 5, "title": "DevOps Engineer Intern", "company_name": "CloudOps Technologies",
        "location": "Hyderabad", "duration": "5 months", "job_type": "Paid Internship",
        "stipend": "₹30,000/month", "positions": 3, "status": "active",
        "posted_date": "2024-01-07T13:20:00Z",
    },
)


def _owned(rows: tuple[dict[str, Any], ...], student_id: str) -> list[dict[str, Any]]:
    return [{**copy.deepcopy(row), "student_id": student_id} for row in rows]


def _count(rows: list[dict[str, Any]], *statuses: str) -> int:
    return sum(1 for row in rows if row.get("status") in statuses)


def summarize_student(
    noc_requests: list[dict[str, Any]],
    reports: list[dict[str, Any]],
    certificates: list[dict[str, Any]],
    opportunities: list[dict[str, Any]],
) -> dict[str, Any]:
    """Dashboard stats for one student; shared by live and fallback reads."""
    activity = [
        {
            "id": f"noc-{row.get('id')}",
            "type": "noc",
            "title": f"NOC Request - {row.get('company_name')}",
            "status": row.get("status"),
            "created_at": row.get("submitted_date"),
        }
        for row in noc_requests[:3]
    ] + [
        {
            "id": f"report-{row.get('id')}",
            "type": "report",
            "title": row.get("title"),
            "status": row.get("status"),
            "created_at": row.get("submitted_date"),
        }
        for row in reports[:3]
    ] + [
        {
            "id": f"cert-{row.get('id')}",
            "type": "certificate",
            "title": f"{row.get('title')} Certificate",
            "status": row.get("status"),
            "created_at": row.get("upload_date"),
        }
        for row in certificates[:3]
    ]
    activity.sort(key=lambda item: str(item["created_at"] or ""), reverse=True)
    return {
        "noc_requests": {
            "total": len(noc_requests),
            "pending": _count(noc_requests, "pending"),
            "approved": _count(noc_requests, "approved"),
            "rejected": _count(noc_requests, "rejected"),
        },
        "reports": {
            "total": len(reports),
            "submitted": _count(reports, "pending", "submitted"),
            "reviewed": _count(reports, "approved", "revision_required"),
            "recent": reports[:5],
        },
        "certificates": {
            "total": len(certificates),
            "pending": _count(certificates, "pending"),
            "approved": _count(certificates, "approved"),
            "recent": certificates[:5],
        },
        "opportunities": {
            "total": len(opportunities),
            "recent": opportunities[:5],
        },
        "recent_activity": activity[:6],
    }


def summarize_placement(
    noc_requests: list[dict[str, Any]],
    reports: list[dict[str, Any]],
    certificates: list[dict[str, Any]],
    opportunities: list[dict[str, Any]],
) -> dict[str, Any]:
    """Cross-student stats for the placement officer dashboard."""
    return {
        "stats": {
            "total_nocs": len(noc_requests),
            "pending_nocs": _count(noc_requests, "pending"),
            "approved_nocs": _count(noc_requests, "approved"),
            "rejected_nocs": _count(noc_requests, "rejected"),
            "active_opportunities": _count(opportunities, "active"),
            "companies": len({row.get("company_name") for row in opportunities}),
            "pending_reports": _count(reports, "pending"),
            "pending_certificates": _count(certificates, "pending"),
        },
        "pending_items": {
            "noc_requests": [r for r in noc_requests if r.get("status") == "pending"][:10],
            "weekly_reports": [r for r in reports if r.get("status") == "pending"][:10],
            "certificates": [r for r in certificates if r.get("status") == "pending"][:10],
        },
    }


class FallbackDataset:
    """Static substitute records, one accessor per resource. Every call returns fresh copies."""

    version = DATASET_VERSION

    @staticmethod
    def weekly_reports(student_id: str) -> list[dict[str, Any]]:
        return _owned(_REPORTS, student_id)

    @staticmethod
    def noc_requests(student_id: str) -> list[dict[str, Any]]:
        return _owned(_NOC_REQUESTS, student_id)

    @staticmethod
    def certificates(student_id: str) -> list[dict[str, Any]]:
        return _owned(_CERTIFICATES, student_id)

    @staticmethod
    def opportunities() -> list[dict[str, Any]]:
        return copy.deepcopy(list(_OPPORTUNITIES))

    @classmethod
    def student_dashboard(cls, student_id: str) -> dict[str, Any]:
        return summarize_student(
            cls.noc_requests(student_id),
            cls.weekly_reports(student_id),
            cls.certificates(student_id),
            cls.opportunities(),
        )

    @classmethod
    def placement_dashboard(cls) -> dict[str, Any]:
        sample = "fallback-student"
        return summarize_placement(
            cls.noc_requests(sample),
            cls.weekly_reports(sample),
            cls.certificates(sample),
            cls.opportunities(),
        )


__all__ = [
    "with_fallback", "unavailable", "FallbackDataset", "DATASET_VERSION",
    "BACKEND_UNAVAILABLE", "summarize_student", "summarize_placement",
]
