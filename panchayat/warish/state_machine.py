"""Transition table for warish applications.

Every status change is expressed as a command object. ``next_status`` checks
the edge against the table, evaluates the command's guard and returns the
target status; it never mutates the application row, the service layer does
that after a successful check.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import ClassVar, Union

from panchayat.core.config import WorkflowSettings
from panchayat.core.models import ApplicationStatus
from panchayat.core.utils import add_months
from panchayat.warish.errors import ConflictError, InvalidTransition, ValidationError


@dataclass(frozen=True)
class AssignStaff:
    staff_id: str

    label: ClassVar[str] = "assign"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        if not (self.staff_id or "").strip():
            raise ValidationError("A staff reference is required to assign an application")

    def note(self) -> str:
        return f"assigned to {self.staff_id}"


@dataclass(frozen=True)
class BeginReview:
    document_count: int
    field_report: str = ""

    label: ClassVar[str] = "review"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        if self.document_count < 1:
            raise InvalidTransition(
                current,
                ApplicationStatus.UNDER_REVIEW,
                "at least one document must be uploaded",
            )

    def note(self) -> str:
        report = (self.field_report or "").strip()
        return f"review started; field report: {report}" if report else "review started"


@dataclass(frozen=True)
class Approve:
    memo_number: str | None
    memo_date: date | None

    label: ClassVar[str] = "approve"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        has_number = bool((self.memo_number or "").strip())
        has_date = self.memo_date is not None
        if has_number != has_date:
            raise ValidationError("Memo number and memo date must be supplied together")
        if not has_number:
            raise ValidationError("Memo number and memo date are required to approve")

    def note(self) -> str:
        return f"approved with memo {self.memo_number} dated {self.memo_date.isoformat()}"


@dataclass(frozen=True)
class Reject:
    remark: str

    label: ClassVar[str] = "reject"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        remark = (self.remark or "").strip()
        if len(remark) < settings.rejection_remark_min_length:
            raise ValidationError(
                f"Rejection remark must have at least {settings.rejection_remark_min_length} characters"
            )

    def note(self) -> str:
        return f"rejected: {self.remark.strip()}"


@dataclass(frozen=True)
class Renew:
    today: date
    renew_date: date | None

    label: ClassVar[str] = "renew"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        if self.renew_date is None:
            raise InvalidTransition(current, ApplicationStatus.RENEWED, "no renewal date recorded")
        if self.today < self.renew_date:
            raise InvalidTransition(
                current,
                ApplicationStatus.RENEWED,
                f"renewal opens on {self.renew_date.isoformat()}",
            )

    def note(self) -> str:
        return f"renewed on {self.today.isoformat()}"


@dataclass(frozen=True)
class IssueCertificate:
    has_certificate: bool

    label: ClassVar[str] = "issue_certificate"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        if self.has_certificate:
            raise ConflictError("A certificate has already been issued for this application")

    def note(self) -> str:
        return "certificate generated"


@dataclass(frozen=True)
class AdminReopen:
    remark: str

    label: ClassVar[str] = "admin_reopen"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        if not (self.remark or "").strip():
            raise ValidationError("A remark is required to reopen a rejected application")

    def note(self) -> str:
        return f"reopened by administrative override: {self.remark.strip()}"


@dataclass(frozen=True)
class ReopenForCorrection:
    request_id: int

    label: ClassVar[str] = "reopen_for_correction"

    def check(self, current: ApplicationStatus, settings: WorkflowSettings) -> None:
        return None

    def note(self) -> str:
        return f"reopened for correction request #{self.request_id}"


Command = Union[
    AssignStaff,
    BeginReview,
    Approve,
    Reject,
    Renew,
    IssueCertificate,
    AdminReopen,
    ReopenForCorrection,
]

DECIDED_STATUSES = frozenset(
    {ApplicationStatus.APPROVED, ApplicationStatus.REJECTED, ApplicationStatus.RENEWED}
)
CERTIFIABLE_STATUSES = frozenset({ApplicationStatus.APPROVED, ApplicationStatus.RENEWED})

COMMAND_EDGES: dict[type, tuple[frozenset[ApplicationStatus], ApplicationStatus]] = {
    AssignStaff: (frozenset({ApplicationStatus.SUBMITTED}), ApplicationStatus.ASSIGNED),
    BeginReview: (frozenset({ApplicationStatus.ASSIGNED}), ApplicationStatus.UNDER_REVIEW),
    Approve: (frozenset({ApplicationStatus.UNDER_REVIEW}), ApplicationStatus.APPROVED),
    Reject: (frozenset({ApplicationStatus.UNDER_REVIEW}), ApplicationStatus.REJECTED),
    Renew: (frozenset({ApplicationStatus.APPROVED}), ApplicationStatus.RENEWED),
    IssueCertificate: (CERTIFIABLE_STATUSES, ApplicationStatus.CERTIFICATE_GENERATED),
    AdminReopen: (frozenset({ApplicationStatus.REJECTED}), ApplicationStatus.UNDER_REVIEW),
    # Rejected applications only come back through AdminReopen.
    ReopenForCorrection: (CERTIFIABLE_STATUSES, ApplicationStatus.UNDER_REVIEW),
}

TRANSITIONS: dict[ApplicationStatus, set[ApplicationStatus]] = {status: set() for status in ApplicationStatus}
for _sources, _target in COMMAND_EDGES.values():
    for _source in _sources:
        TRANSITIONS[_source].add(_target)


def next_status(
    current: ApplicationStatus,
    command: Command,
    settings: WorkflowSettings,
) -> ApplicationStatus:
    try:
        sources, target = COMMAND_EDGES[type(command)]
    except KeyError as exc:
        raise ValidationError(f"Unknown command {type(command).__name__}") from exc
    if current not in sources:
        raise InvalidTransition(current, target)
    command.check(current, settings)
    return target


def renewal_date(base: date, months: int = 6) -> date:
    """Return the date from which a decision may be renewed.

    The window is ``months`` after ``base`` and never runs past the 1st of
    January that follows ``base``. The cap is anchored on ``base`` (the memo
    date, or the renewal day) rather than on the calendar year the code runs
    in, so re-running the calculation later gives the same answer.
    """
    return min(add_months(base, months), date(base.year + 1, 1, 1))
