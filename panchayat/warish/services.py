from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from panchayat.core.extensions import db
from panchayat.core.models import (
    CERTIFICATE_DOCUMENT_TYPE,
    SUPPORTED_DOCUMENT_TYPES,
    ApplicationStatus,
    CorrectionOutcome,
    CorrectionRequest,
    CorrectionStatus,
    DocumentKind,
    FamilyMember,
    LivingStatus,
    StaffUser,
    WarishApplication,
    WarishDocument,
    utcnow,
)
from panchayat.core.utils import clean_text
from panchayat.warish.certificate import certificate_lines, certificate_pdf
from panchayat.warish.collaborators import notify_safely, storage, workflow_settings
from panchayat.warish.errors import (
    AssignmentLocked,
    ConflictError,
    CorruptHierarchy,
    DepthExceeded,
    NotFoundError,
    NotReviewable,
    ValidationError,
)
from panchayat.warish.lineage import LineageNode, build_lineage, payload_depth
from panchayat.warish.state_machine import (
    CERTIFIABLE_STATUSES,
    DECIDED_STATUSES,
    AdminReopen,
    Approve,
    AssignStaff,
    BeginReview,
    Command,
    IssueCertificate,
    Reject,
    ReopenForCorrection,
    Renew,
    next_status,
    renewal_date,
)

logger = logging.getLogger(__name__)

ACK_PREFIX = "ACK/LH"
VERIFIED_REMARK = "Manually verified"
REJECTED_REMARK = "Manually rejected"
BULK_VERIFIED_REMARK = "Verified in bulk"
CERTIFICATE_REMARK = "System generated certificate"
CONCURRENT_UPDATE_MESSAGE = "Application was modified by another request; reload and retry"
ACK_TAKEN_MESSAGE = "Acknowledgment code was taken by a concurrent submission; retry"


def _parse_iso_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = clean_text(value)
    if not raw:
        raise ValidationError(f"Missing {field_name}")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid date format for {field_name}") from exc


def _parse_optional_iso_date(value: Any, field_name: str) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _parse_iso_date(value, field_name)


def _required(field_name: str, max_length: int = 120) -> Callable[[Any], str]:
    def parse(value: Any) -> str:
        text = clean_text(value)
        if not text:
            raise ValidationError(f"Missing {field_name}")
        if len(text) > max_length:
            raise ValidationError(f"{field_name} cannot exceed {max_length} characters")
        return text

    return parse


def _optional(field_name: str, max_length: int = 120) -> Callable[[Any], str | None]:
    def parse(value: Any) -> str | None:
        text = clean_text(value)
        if len(text) > max_length:
            raise ValidationError(f"{field_name} cannot exceed {max_length} characters")
        return text or None

    return parse


def _parse_living_status(value: Any) -> LivingStatus:
    raw = clean_text(value).upper() or LivingStatus.ALIVE.value
    try:
        return LivingStatus[raw]
    except KeyError as exc:
        raise ValidationError("living_status must be ALIVE or DECEASED") from exc


def _date_parser(field_name: str) -> Callable[[Any], date]:
    return lambda value: _parse_iso_date(value, field_name)


CORRECTABLE_APPLICATION_FIELDS: dict[str, Callable[[Any], Any]] = {
    "applicant_name": _required("applicant_name"),
    "applicant_mobile": _optional("applicant_mobile", 20),
    "relation_with_deceased": _required("relation_with_deceased", 60),
    "deceased_name": _required("deceased_name"),
    "father_name": _optional("father_name"),
    "spouse_name": _optional("spouse_name"),
    "village_name": _optional("village_name"),
    "post_office": _optional("post_office"),
    "date_of_death": _date_parser("date_of_death"),
    "reporting_date": _date_parser("reporting_date"),
}
CORRECTABLE_MEMBER_FIELDS: dict[str, Callable[[Any], Any]] = {
    "name": _required("name"),
    "relation": _required("relation", 60),
    "living_status": _parse_living_status,
    "gender": _optional("gender", 20),
    "spouse_name": _optional("spouse_name"),
}


def _display(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(getattr(value, "value", value))


def _get_application(application_id: int, for_update: bool = False) -> WarishApplication:
    query = WarishApplication.query.filter_by(id=application_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    application = query.first()
    if not application:
        raise NotFoundError(f"Application {application_id} not found")
    return application


def _get_document(document_id: int) -> WarishDocument:
    document = db.session.get(WarishDocument, document_id)
    if not document:
        raise NotFoundError(f"Document {document_id} not found")
    return document


def _get_assignable_staff(staff_code: str) -> StaffUser:
    staff = StaffUser.query.filter_by(staff_code=staff_code).first()
    if not staff:
        raise NotFoundError(f"Staff {staff_code} not found")
    if not staff.is_active:
        raise ValidationError(f"Staff {staff_code} is disabled and cannot take applications")
    return staff


def _document_count(application_id: int) -> int:
    return (
        db.session.query(func.count(WarishDocument.id))
        .filter(WarishDocument.application_id == application_id)
        .filter(WarishDocument.kind == DocumentKind.SUPPORTING_PROOF)
        .scalar()
    )


def _certificate_document(application_id: int) -> WarishDocument | None:
    return WarishDocument.query.filter_by(
        application_id=application_id,
        kind=DocumentKind.CERTIFICATE_OUTPUT,
    ).first()


def _members_of(application_id: int) -> list[FamilyMember]:
    return (
        FamilyMember.query.filter_by(application_id=application_id)
        .order_by(FamilyMember.id.asc())
        .all()
    )


def _append_audit(application: WarishApplication, headline: str, actor: str | None, note: str) -> None:
    now = utcnow()
    line = f"[{now.isoformat(timespec='seconds')}] {headline} by {actor or 'system'}: {note}"
    application.remarks = f"{application.remarks}\n{line}" if application.remarks else line
    application.updated_at = now


def _apply_command(application: WarishApplication, command: Command, actor: str | None) -> ApplicationStatus:
    previous = application.status
    target = next_status(previous, command, workflow_settings())
    _append_audit(application, f"{previous.value} -> {target.value}", actor, command.note())
    application.status = target
    logger.info(
        "Application %s moved %s -> %s (%s) by %s",
        application.acknowledgment_code,
        previous.value,
        target.value,
        command.label,
        actor or "system",
    )
    return previous


def _commit(conflict_message: str = CONCURRENT_UPDATE_MESSAGE) -> None:
    try:
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        logger.warning("Commit rejected (%s): %s", exc.__class__.__name__, conflict_message)
        raise ConflictError(conflict_message) from exc


def _next_acknowledgment_code(year: int) -> str:
    prefix = f"{ACK_PREFIX}/{year}/"
    codes = (
        db.session.query(WarishApplication.acknowledgment_code)
        .filter(WarishApplication.acknowledgment_code.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (code,) in codes:
        suffix = code.rsplit("/", 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:04d}"


def _application_fields(payload: dict[str, Any]) -> dict[str, Any]:
    fields = {
        name: parser(payload.get(name))
        for name, parser in CORRECTABLE_APPLICATION_FIELDS.items()
        if name not in {"date_of_death", "reporting_date"}
    }
    fields["date_of_death"] = _parse_iso_date(payload.get("date_of_death"), "date_of_death")
    reporting = payload.get("reporting_date")
    fields["reporting_date"] = (
        _parse_iso_date(reporting, "reporting_date") if clean_text(reporting) else date.today()
    )
    if fields["reporting_date"] < fields["date_of_death"]:
        raise ValidationError("Reporting date cannot precede the date of death")
    if fields["date_of_death"] > date.today():
        raise ValidationError("Date of death cannot be in the future")
    return fields


def _member_fields(item: dict[str, Any]) -> dict[str, Any]:
    fields = {name: parser(item.get(name)) for name, parser in CORRECTABLE_MEMBER_FIELDS.items()}
    if not fields["spouse_name"]:
        fields["spouse_name"] = _optional("husband_name")(item.get("husband_name"))
    return fields


def _check_payload_depth(members: list) -> None:
    depth = payload_depth(members)
    max_depth = workflow_settings().lineage_max_depth
    if max_depth is not None and depth > max_depth:
        raise DepthExceeded(f"Family tree has {depth} generations; the limit is {max_depth}")


def _create_members(application_id: int, members: list[dict[str, Any]]) -> list[FamilyMember]:
    created: list[FamilyMember] = []
    # Parents are flushed before their children so the child rows get a real parent id.
    stack: list[tuple[dict[str, Any], int | None]] = [(item, None) for item in reversed(members)]
    while stack:
        item, parent_id = stack.pop()
        member = FamilyMember(application_id=application_id, parent_id=parent_id, **_member_fields(item))
        db.session.add(member)
        db.session.flush()
        created.append(member)
        for child in reversed(item.get("children") or []):
            stack.append((child, member.id))
    return created


def submit_application(payload: dict[str, Any], submitted_by: str | None = None) -> WarishApplication:
    fields = _application_fields(payload)
    members = payload.get("family_members") or []
    _check_payload_depth(members)

    code = _next_acknowledgment_code(date.today().year)
    application = WarishApplication(
        acknowledgment_code=code,
        status=ApplicationStatus.SUBMITTED,
        submitted_by=clean_text(submitted_by) or None,
        **fields,
    )
    _append_audit(application, "submitted", submitted_by or fields["applicant_name"], "application received")
    db.session.add(application)
    try:
        db.session.flush()
        _create_members(application.id, members)
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Acknowledgment code %s is already taken", code)
        raise ConflictError(ACK_TAKEN_MESSAGE) from exc
    _commit(ACK_TAKEN_MESSAGE)

    logger.info("Application %s submitted for %s", application.acknowledgment_code, application.deceased_name)
    notify_safely(
        application.applicant_mobile,
        "warish.submitted",
        {"acknowledgment_code": application.acknowledgment_code},
    )
    return application


def get_application(application_id: int) -> WarishApplication:
    return _get_application(application_id)


def get_application_by_ack(acknowledgment_code: str) -> WarishApplication:
    code = clean_text(acknowledgment_code)
    if not code:
        raise ValidationError("Missing acknowledgment code")
    application = WarishApplication.query.filter_by(acknowledgment_code=code).first()
    if not application:
        raise NotFoundError(f"No application with acknowledgment code {code}")
    return application


def search_applications(filters: dict[str, str]) -> list[WarishApplication]:
    query = WarishApplication.query.order_by(WarishApplication.created_at.desc(), WarishApplication.id.desc())

    text_filters = (
        ("deceased_name", WarishApplication.deceased_name),
        ("acknowledgment_code", WarishApplication.acknowledgment_code),
        ("applicant_name", WarishApplication.applicant_name),
        ("memo_number", WarishApplication.memo_number),
    )
    conditions = []
    for key, column in text_filters:
        value = clean_text(filters.get(key))
        if value:
            conditions.append(func.lower(column).contains(value.lower()))
    if conditions:
        query = query.filter(or_(*conditions))

    status = clean_text(filters.get("status")).upper()
    if status:
        if status not in ApplicationStatus.__members__:
            return []
        query = query.filter(WarishApplication.status == ApplicationStatus[status])
    staff_id = clean_text(filters.get("assigned_staff_id"))
    if staff_id:
        query = query.filter(WarishApplication.assigned_staff_id == staff_id)
    return query.all()


def latest_memo_sequence(year: int) -> int:
    """Highest leading memo sequence among memo numbers ending in ``/<year>``, or 0."""
    if year < 1900 or year > 9999:
        raise ValidationError("Year must have four digits")
    memos = (
        db.session.query(WarishApplication.memo_number)
        .filter(WarishApplication.memo_number.like(f"%/{year}"))
        .all()
    )
    highest = 0
    for (memo,) in memos:
        head = memo.split("/", 1)[0].strip()
        if head.isdigit():
            highest = max(highest, int(head))
    return highest


def assign_staff(application_id: int, staff_id: str, acting_staff: str | None = None) -> WarishApplication:
    staff_ref = clean_text(staff_id)
    application = _get_application(application_id, for_update=True)
    if staff_ref and application.assigned_staff_id == staff_ref:
        return application

    if application.status not in (ApplicationStatus.SUBMITTED, ApplicationStatus.ASSIGNED):
        raise AssignmentLocked(
            f"Application {application.acknowledgment_code} is {application.status.value}; "
            "staff can only change before review starts"
        )
    command = AssignStaff(staff_ref)
    command.check(application.status, workflow_settings())
    _get_assignable_staff(staff_ref)

    if application.status == ApplicationStatus.SUBMITTED:
        _apply_command(application, command, acting_staff)
    else:
        _append_audit(application, "reassigned", acting_staff, f"{application.assigned_staff_id} -> {staff_ref}")
    application.assigned_staff_id = staff_ref
    _commit()

    notify_safely(
        staff_ref,
        "warish.assigned",
        {"application_id": application.id, "acknowledgment_code": application.acknowledgment_code},
    )
    return application


def begin_review(application_id: int, staff_id: str | None, field_report: str = "") -> WarishApplication:
    application = _get_application(application_id, for_update=True)
    command = BeginReview(document_count=_document_count(application.id), field_report=clean_text(field_report))
    _apply_command(application, command, staff_id)
    _commit()
    return application


def approve_application(
    application_id: int,
    memo_number: str | None,
    memo_date: Any,
    staff_id: str | None,
) -> WarishApplication:
    settings = workflow_settings()
    application = _get_application(application_id, for_update=True)
    number = clean_text(memo_number) or None
    command = Approve(memo_number=number, memo_date=_parse_optional_iso_date(memo_date, "memo_date"))
    next_status(application.status, command, settings)

    clash = WarishApplication.query.filter(
        WarishApplication.memo_number == number,
        WarishApplication.id != application.id,
    ).first()
    if clash:
        raise ValidationError(f"Memo number {number} is already used by {clash.acknowledgment_code}")

    _apply_command(application, command, staff_id)
    application.memo_number = number
    application.memo_date = command.memo_date
    application.approval_year = str(command.memo_date.year)
    application.renew_date = renewal_date(command.memo_date, settings.renewal_months)
    _commit("Memo number or application changed concurrently; reload and retry")

    notify_safely(
        application.applicant_mobile,
        "warish.approved",
        {"acknowledgment_code": application.acknowledgment_code, "memo_number": number},
    )
    return application


def reject_application(application_id: int, remark: str, staff_id: str | None) -> WarishApplication:
    application = _get_application(application_id, for_update=True)
    _apply_command(application, Reject(remark=clean_text(remark)), staff_id)
    _commit()
    notify_safely(
        application.applicant_mobile,
        "warish.rejected",
        {"acknowledgment_code": application.acknowledgment_code},
    )
    return application


def renew_application(application_id: int, staff_id: str | None, today: date | None = None) -> WarishApplication:
    settings = workflow_settings()
    today = today or date.today()
    application = _get_application(application_id, for_update=True)
    _apply_command(application, Renew(today=today, renew_date=application.renew_date), staff_id)
    application.renew_date = renewal_date(today, settings.renewal_months)
    _commit()
    notify_safely(
        application.applicant_mobile,
        "warish.renewed",
        {"acknowledgment_code": application.acknowledgment_code, "renew_date": application.renew_date.isoformat()},
    )
    return application


def admin_reopen(application_id: int, remark: str, staff_id: str | None) -> WarishApplication:
    application = _get_application(application_id, for_update=True)
    _apply_command(application, AdminReopen(remark=clean_text(remark)), staff_id)
    _commit()
    return application


def upload_document(
    application_id: int,
    doc_type: str,
    content: bytes,
    mime_type: str,
    filename: str,
    staff_id: str | None,
) -> WarishDocument:
    settings = workflow_settings()
    application = _get_application(application_id)
    if application.status == ApplicationStatus.CERTIFICATE_GENERATED:
        raise ValidationError("Documents cannot be added once the certificate has been issued")

    doc_type = clean_text(doc_type).lower()
    allowed = SUPPORTED_DOCUMENT_TYPES.get(doc_type)
    if allowed is None:
        raise ValidationError(f"Unsupported document type. Supported: {', '.join(sorted(SUPPORTED_DOCUMENT_TYPES))}")
    if not content:
        raise ValidationError("The uploaded file is empty")
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB limit")
    mime_type = clean_text(mime_type).lower()
    if mime_type not in allowed:
        raise ValidationError(f"{doc_type} accepts only {', '.join(allowed)}")

    filename = clean_text(filename) or f"{doc_type}.bin"
    stored = storage().upload(content, mime_type, f"warish_documents/{application.id}/{doc_type}", filename)
    document = WarishDocument(
        application_id=application.id,
        kind=DocumentKind.SUPPORTING_PROOF,
        doc_type=doc_type,
        mime_type=mime_type,
        filename=filename,
        storage_url=stored.url,
        storage_id=stored.storage_id,
        verified=False,
        uploaded_by=staff_id,
    )
    try:
        db.session.add(document)
        db.session.commit()
    except Exception:
        db.session.rollback()
        storage().discard(stored.storage_id)
        raise
    logger.info("Document %s (%s) stored for application %s", document.id, doc_type, application.acknowledgment_code)
    return document


def _set_verification(document_id: int, verified: bool, remark: str, staff_id: str | None) -> WarishDocument:
    document = _get_document(document_id)
    if document.kind == DocumentKind.CERTIFICATE_OUTPUT:
        raise ValidationError("Generated certificates cannot be verified or rejected manually")
    if document.verified == verified and document.remarks == remark:
        return document

    now = utcnow()
    document.verified = verified
    document.remarks = remark
    document.verified_at = now
    document.verified_by = staff_id
    document.updated_at = now
    db.session.commit()
    return document


def verify_document(document_id: int, staff_id: str | None) -> WarishDocument:
    return _set_verification(document_id, True, VERIFIED_REMARK, staff_id)


def reject_document(document_id: int, staff_id: str | None) -> WarishDocument:
    return _set_verification(document_id, False, REJECTED_REMARK, staff_id)


def verify_all_documents(application_id: int, staff_id: str | None) -> int:
    application = _get_application(application_id)
    pending = WarishDocument.query.filter_by(
        application_id=application.id,
        kind=DocumentKind.SUPPORTING_PROOF,
        verified=False,
    ).all()
    now = utcnow()
    for document in pending:
        document.verified = True
        document.remarks = BULK_VERIFIED_REMARK
        document.verified_at = now
        document.verified_by = staff_id
        document.updated_at = now
    db.session.commit()
    return len(pending)


def can_issue_certificate(application_id: int) -> bool:
    application = _get_application(application_id)
    if application.status not in CERTIFIABLE_STATUSES:
        return False
    return _certificate_document(application.id) is None


def issue_certificate(application_id: int, staff_id: str | None) -> WarishDocument:
    settings = workflow_settings()
    application = _get_application(application_id, for_update=True)
    existing = _certificate_document(application.id)
    if existing is not None:
        raise ConflictError(f"Certificate already issued as document {existing.id}")
    command = IssueCertificate(has_certificate=False)
    next_status(application.status, command, settings)

    lineage = build_lineage(_members_of(application.id), settings.lineage_max_depth)
    issued_on = date.today()
    lines = certificate_lines(application, lineage, settings.office_name, issued_on)
    pdf = certificate_pdf(lines, settings.certificate_font_path)
    filename = f"warish-certificate-{application.id}.pdf"
    stored = storage().upload(pdf, "application/pdf", f"warish_certificates/{application.id}", filename)

    try:
        now = utcnow()
        document = WarishDocument(
            application_id=application.id,
            kind=DocumentKind.CERTIFICATE_OUTPUT,
            doc_type=CERTIFICATE_DOCUMENT_TYPE,
            mime_type="application/pdf",
            filename=filename,
            storage_url=stored.url,
            storage_id=stored.storage_id,
            verified=True,
            remarks=CERTIFICATE_REMARK,
            verified_at=now,
            verified_by=staff_id,
            uploaded_by=staff_id,
        )
        db.session.add(document)
        _apply_command(application, command, staff_id)
        _commit("A certificate was issued concurrently for this application")
    except Exception:
        db.session.rollback()
        storage().discard(stored.storage_id)
        raise

    notify_safely(
        application.applicant_mobile,
        "warish.certificate_generated",
        {"acknowledgment_code": application.acknowledgment_code, "document_id": document.id},
    )
    return document


def lineage_tree(
    application_id: int | None = None,
    certificate_id: int | None = None,
    max_depth: int | None = None,
) -> list[LineageNode]:
    if (application_id is None) == (certificate_id is None):
        raise ValidationError("Provide exactly one of application_id or certificate_id")
    if certificate_id is not None:
        document = db.session.get(WarishDocument, certificate_id)
        if not document or document.kind != DocumentKind.CERTIFICATE_OUTPUT:
            raise NotFoundError(f"Certificate {certificate_id} not found")
        application_id = document.application_id
    else:
        _get_application(application_id)
    if max_depth is not None and max_depth < 1:
        raise ValidationError("max_depth must be at least 1")
    limit = max_depth if max_depth is not None else workflow_settings().lineage_max_depth
    return build_lineage(_members_of(application_id), limit)


def _ensure_tree_editable(application: WarishApplication) -> None:
    if application.status == ApplicationStatus.CERTIFICATE_GENERATED:
        raise ValidationError("The family tree is frozen once the certificate has been issued")


def capture_family_tree(application_id: int, members: list, staff_id: str | None = None) -> list[FamilyMember]:
    application = _get_application(application_id, for_update=True)
    _ensure_tree_editable(application)
    if FamilyMember.query.filter_by(application_id=application.id).first():
        raise ValidationError("Family tree already captured; add members one by one instead")
    _check_payload_depth(members)
    created = _create_members(application.id, members)
    _append_audit(application, "family tree captured", staff_id, f"{len(created)} members")
    _commit()
    return created


def _member_depth(member: FamilyMember) -> int:
    depth = 1
    seen = {member.id}
    current = member
    while current.parent_id is not None:
        if current.parent_id in seen:
            raise CorruptHierarchy(f"Family member {current.id} sits in a parent cycle")
        seen.add(current.parent_id)
        current = db.session.get(FamilyMember, current.parent_id)
        if current is None:
            raise CorruptHierarchy(f"Family member {member.id} has a dangling ancestor")
        depth += 1
    return depth


def add_family_member(application_id: int, payload: dict[str, Any], staff_id: str | None = None) -> FamilyMember:
    application = _get_application(application_id, for_update=True)
    _ensure_tree_editable(application)
    fields = _member_fields(payload)

    parent_raw = clean_text(payload.get("parent_id"))
    parent_id = None
    depth = 1
    if parent_raw:
        if not parent_raw.isdigit():
            raise ValidationError("parent_id must be a number")
        parent = db.session.get(FamilyMember, int(parent_raw))
        if not parent or parent.application_id != application.id:
            raise ValidationError(f"Parent member {parent_raw} does not belong to this application")
        parent_id = parent.id
        depth = _member_depth(parent) + 1
    max_depth = workflow_settings().lineage_max_depth
    if max_depth is not None and depth > max_depth:
        raise DepthExceeded(f"Adding this member would reach depth {depth}; the limit is {max_depth}")

    member = FamilyMember(application_id=application.id, parent_id=parent_id, **fields)
    db.session.add(member)
    _append_audit(application, "family member added", staff_id, f"{fields['name']} ({fields['relation']})")
    _commit()
    return member


def create_correction_request(
    application_id: int,
    description: str,
    requested_by: str,
    field_name: str | None = None,
    proposed_value: Any = None,
    family_member_id: int | None = None,
) -> CorrectionRequest:
    application = _get_application(application_id)
    if application.status not in DECIDED_STATUSES:
        raise NotReviewable(
            f"Corrections can be requested only after a decision; application is {application.status.value}"
        )
    description = clean_text(description)
    if not description:
        raise ValidationError("Missing description")
    if len(description) > 1000:
        raise ValidationError("description cannot exceed 1000 characters")
    requester = clean_text(requested_by)
    if not requester:
        raise ValidationError("Missing requested_by")

    member = None
    if family_member_id is not None:
        member = db.session.get(FamilyMember, family_member_id)
        if not member or member.application_id != application.id:
            raise NotFoundError(f"Family member {family_member_id} not found on this application")

    field = clean_text(field_name) or None
    proposed = clean_text(proposed_value) or None
    current_value = None
    if field:
        parsers = CORRECTABLE_MEMBER_FIELDS if member else CORRECTABLE_APPLICATION_FIELDS
        parser = parsers.get(field)
        if parser is None:
            raise ValidationError(f"Field '{field}' cannot be corrected. Allowed: {', '.join(parsers)}")
        parser(proposed)
        current_value = _display(getattr(member or application, field))
        duplicate = CorrectionRequest.query.filter_by(
            application_id=application.id,
            family_member_id=member.id if member else None,
            field_name=field,
            status=CorrectionStatus.PENDING,
        ).first()
        if duplicate:
            raise ConflictError(f"Correction request #{duplicate.id} for {field} is still pending")
    elif proposed:
        raise ValidationError("A proposed value needs a field_name")

    request = CorrectionRequest(
        application_id=application.id,
        family_member_id=member.id if member else None,
        description=description,
        field_name=field,
        current_value=current_value,
        proposed_value=proposed,
        status=CorrectionStatus.PENDING,
        requested_by=requester,
    )
    db.session.add(request)
    db.session.commit()
    logger.info("Correction request %s opened on %s", request.id, application.acknowledgment_code)
    return request


def resolve_correction_request(
    request_id: int,
    resolution: str,
    resolved_by: str | None,
    apply: bool = False,
    reopen: bool = False,
) -> CorrectionRequest:
    """Close a pending correction request.

    ``apply`` writes the proposed value to the application or family member;
    ``reopen`` sends the application back to review. The outcome is APPLIED
    when the value was written, NOTED when the request only reopened review,
    and DECLINED otherwise.
    """
    request = db.session.get(CorrectionRequest, request_id)
    if not request:
        raise NotFoundError(f"Correction request {request_id} not found")
    if request.status != CorrectionStatus.PENDING:
        raise ValidationError(f"Correction request {request_id} has already been resolved")
    resolution = clean_text(resolution)
    if not resolution:
        raise ValidationError("Missing resolution")

    application = _get_application(request.application_id, for_update=True)
    reopen_command = ReopenForCorrection(request_id=request.id)
    if reopen:
        next_status(application.status, reopen_command, workflow_settings())
    if apply:
        if not request.field_name:
            raise ValidationError("This request does not name a field to change")
        if application.status == ApplicationStatus.CERTIFICATE_GENERATED:
            raise NotReviewable("The certificate has been issued; corrections can no longer be applied")
        target = request.family_member or application
        parsers = CORRECTABLE_MEMBER_FIELDS if request.family_member else CORRECTABLE_APPLICATION_FIELDS
        value = parsers[request.field_name](request.proposed_value)
        try:
            setattr(target, request.field_name, value)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        _append_audit(
            application,
            f"correction #{request.id} applied",
            resolved_by,
            f"{request.field_name}: {request.current_value} -> {request.proposed_value}",
        )
    if reopen:
        _apply_command(application, reopen_command, resolved_by)

    if apply:
        request.outcome = CorrectionOutcome.APPLIED
    elif reopen:
        request.outcome = CorrectionOutcome.NOTED
    else:
        request.outcome = CorrectionOutcome.DECLINED
    request.status = CorrectionStatus.RESOLVED
    request.resolution = resolution
    request.resolved_by = resolved_by
    request.resolved_at = utcnow()
    _commit()

    notify_safely(
        request.requested_by,
        "warish.correction_resolved",
        {"request_id": request.id, "outcome": request.outcome.value},
    )
    return request


def list_correction_requests(application_id: int, status: str | None = None) -> list[CorrectionRequest]:
    application = _get_application(application_id)
    query = CorrectionRequest.query.filter_by(application_id=application.id)
    status = clean_text(status).upper()
    if status:
        if status not in CorrectionStatus.__members__:
            raise ValidationError("status must be PENDING or RESOLVED")
        query = query.filter(CorrectionRequest.status == CorrectionStatus[status])
    return query.order_by(CorrectionRequest.requested_at.asc(), CorrectionRequest.id.asc()).all()
