from __future__ import annotations

import logging
from datetime import date, datetime

from flask import jsonify, request
from flask_login import current_user, login_required
from werkzeug.exceptions import HTTPException

from panchayat.core.extensions import db
from panchayat.core.models import CorrectionRequest, FamilyMember, WarishApplication, WarishDocument
from panchayat.core.permissions import require_role, require_staff
from panchayat.core.utils import clean_text, http_error, json_error
from panchayat.warish import warish_bp
from panchayat.warish.errors import ValidationError, WarishError
from panchayat.warish.services import (
    add_family_member,
    admin_reopen,
    approve_application,
    assign_staff,
    begin_review,
    can_issue_certificate,
    capture_family_tree,
    create_correction_request,
    get_application,
    get_application_by_ack,
    issue_certificate,
    lineage_tree,
    list_correction_requests,
    reject_application,
    reject_document,
    renew_application,
    resolve_correction_request,
    search_applications,
    submit_application,
    upload_document,
    verify_all_documents,
    verify_document,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "Validation": 400,
    "NotFound": 404,
    "InvalidTransition": 409,
    "AssignmentLocked": 409,
    "NotReviewable": 409,
    "Conflict": 409,
    "DepthExceeded": 422,
    "CorruptHierarchy": 422,
    "StorageTimeout": 503,
    "StorageFailure": 502,
}


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def application_payload(application: WarishApplication, include_remarks: bool = True) -> dict[str, object]:
    payload = {
        "id": application.id,
        "acknowledgment_code": application.acknowledgment_code,
        "status": application.status.value,
        "applicant_name": application.applicant_name,
        "applicant_mobile": application.applicant_mobile,
        "relation_with_deceased": application.relation_with_deceased,
        "deceased_name": application.deceased_name,
        "date_of_death": _iso(application.date_of_death),
        "reporting_date": _iso(application.reporting_date),
        "father_name": application.father_name,
        "spouse_name": application.spouse_name,
        "village_name": application.village_name,
        "post_office": application.post_office,
        "assigned_staff_id": application.assigned_staff_id,
        "memo_number": application.memo_number,
        "memo_date": _iso(application.memo_date),
        "approval_year": application.approval_year,
        "renew_date": _iso(application.renew_date),
        "created_at": _iso(application.created_at),
        "updated_at": _iso(application.updated_at),
    }
    if include_remarks:
        payload["remarks"] = application.remarks
    return payload


def document_payload(document: WarishDocument) -> dict[str, object]:
    return {
        "id": document.id,
        "application_id": document.application_id,
        "kind": document.kind.value,
        "doc_type": document.doc_type,
        "mime_type": document.mime_type,
        "filename": document.filename,
        "storage_url": document.storage_url,
        "verified": document.verified,
        "remarks": document.remarks,
        "verified_at": _iso(document.verified_at),
        "verified_by": document.verified_by,
        "uploaded_by": document.uploaded_by,
    }


def member_payload(member: FamilyMember) -> dict[str, object]:
    return {
        "id": member.id,
        "parent_id": member.parent_id,
        "name": member.name,
        "relation": member.relation,
        "living_status": member.living_status.value,
        "gender": member.gender,
        "spouse_name": member.spouse_name,
    }


def correction_payload(correction: CorrectionRequest) -> dict[str, object]:
    return {
        "id": correction.id,
        "application_id": correction.application_id,
        "family_member_id": correction.family_member_id,
        "description": correction.description,
        "field_name": correction.field_name,
        "current_value": correction.current_value,
        "proposed_value": correction.proposed_value,
        "status": correction.status.value,
        "outcome": correction.outcome.value if correction.outcome else None,
        "resolution": correction.resolution,
        "requested_by": correction.requested_by,
        "resolved_by": correction.resolved_by,
        "requested_at": _iso(correction.requested_at),
        "resolved_at": _iso(correction.resolved_at),
    }


def _ok(data: object, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _actor() -> str:
    return current_user.staff_code


def _flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return clean_text(value).lower() in {"1", "true", "yes", "on"}


@warish_bp.errorhandler(WarishError)
def handle_warish_error(exc: WarishError):
    db.session.rollback()
    status = ERROR_STATUS.get(exc.kind, 500)
    if status >= 500:
        logger.error("%s: %s", exc.kind, exc.message)
    error = exc.to_dict()
    return json_error(error.pop("kind"), error.pop("message"), status, **error)


@warish_bp.errorhandler(Exception)
def handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return http_error(exc)
    db.session.rollback()
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return json_error("Internal", "An internal error occurred", 500)


@warish_bp.post("/applications")
def submit():
    submitted_by = current_user.staff_code if current_user.is_authenticated else None
    application = submit_application(_body(), submitted_by)
    return _ok(application_payload(application), 201)


@warish_bp.get("/applications/ack")
def get_by_ack():
    # Public status lookup; audit remarks stay internal.
    application = get_application_by_ack(request.args.get("code", ""))
    return _ok(application_payload(application, include_remarks=False))


@warish_bp.get("/applications")
@login_required
@require_staff
def search():
    filters = {
        "deceased_name": request.args.get("deceased_name", "").strip(),
        "acknowledgment_code": request.args.get("acknowledgment_code", "").strip(),
        "applicant_name": request.args.get("applicant_name", "").strip(),
        "memo_number": request.args.get("memo_number", "").strip(),
        "status": request.args.get("status", "").strip(),
        "assigned_staff_id": request.args.get("assigned_staff_id", "").strip(),
    }
    rows = search_applications(filters)
    return _ok([application_payload(row, include_remarks=False) for row in rows])


@warish_bp.get("/applications/<int:application_id>")
@login_required
@require_staff
def detail(application_id: int):
    application = get_application(application_id)
    data = application_payload(application)
    data["documents"] = [document_payload(doc) for doc in application.documents]
    data["certificate_eligible"] = can_issue_certificate(application.id)
    return _ok(data)


@warish_bp.post("/applications/<int:application_id>/assign")
@login_required
@require_staff
def assign(application_id: int):
    application = assign_staff(application_id, _body().get("staff_id"), _actor())
    return _ok(application_payload(application))


@warish_bp.post("/applications/<int:application_id>/review")
@login_required
@require_staff
def review(application_id: int):
    application = begin_review(application_id, _actor(), _body().get("field_report") or "")
    return _ok(application_payload(application))


@warish_bp.post("/applications/<int:application_id>/approve")
@login_required
@require_staff
def approve(application_id: int):
    data = _body()
    application = approve_application(application_id, data.get("memo_number"), data.get("memo_date"), _actor())
    return _ok(application_payload(application))


@warish_bp.post("/applications/<int:application_id>/reject")
@login_required
@require_staff
def reject(application_id: int):
    application = reject_application(application_id, _body().get("remark") or "", _actor())
    return _ok(application_payload(application))


@warish_bp.post("/applications/<int:application_id>/renew")
@login_required
@require_staff
def renew(application_id: int):
    application = renew_application(application_id, _actor())
    return _ok(application_payload(application))


@warish_bp.post("/applications/<int:application_id>/reopen")
@login_required
@require_role("admin")
def reopen(application_id: int):
    application = admin_reopen(application_id, _body().get("remark") or "", _actor())
    return _ok(application_payload(application))


@warish_bp.get("/applications/<int:application_id>/eligibility")
@login_required
@require_staff
def eligibility(application_id: int):
    return _ok({"application_id": application_id, "eligible": can_issue_certificate(application_id)})


@warish_bp.post("/applications/<int:application_id>/certificate")
@login_required
@require_staff
def certificate(application_id: int):
    document = issue_certificate(application_id, _actor())
    return _ok(document_payload(document), 201)


@warish_bp.post("/applications/<int:application_id>/documents")
@login_required
@require_staff
def upload(application_id: int):
    file = request.files.get("file")
    if file is None or not file.filename:
        raise ValidationError("Attach a file in the 'file' field")
    document = upload_document(
        application_id,
        request.form.get("doc_type", ""),
        file.read(),
        file.mimetype or "",
        file.filename,
        _actor(),
    )
    return _ok(document_payload(document), 201)


@warish_bp.post("/applications/<int:application_id>/documents/verify-all")
@login_required
@require_staff
def verify_all(application_id: int):
    count = verify_all_documents(application_id, _actor())
    return _ok({"application_id": application_id, "verified": count})


@warish_bp.post("/documents/<int:document_id>/verify")
@login_required
@require_staff
def verify(document_id: int):
    return _ok(document_payload(verify_document(document_id, _actor())))


@warish_bp.post("/documents/<int:document_id>/reject")
@login_required
@require_staff
def reject_doc(document_id: int):
    return _ok(document_payload(reject_document(document_id, _actor())))


@warish_bp.get("/applications/<int:application_id>/lineage")
@login_required
@require_staff
def application_lineage(application_id: int):
    roots = lineage_tree(application_id=application_id, max_depth=request.args.get("max_depth", type=int))
    return _ok([root.to_dict() for root in roots])


@warish_bp.get("/certificates/<int:certificate_id>/lineage")
@login_required
@require_staff
def certificate_lineage(certificate_id: int):
    roots = lineage_tree(certificate_id=certificate_id, max_depth=request.args.get("max_depth", type=int))
    return _ok([root.to_dict() for root in roots])


@warish_bp.post("/applications/<int:application_id>/family-tree")
@login_required
@require_staff
def family_tree(application_id: int):
    members = capture_family_tree(application_id, _body().get("family_members"), _actor())
    return _ok([member_payload(member) for member in members], 201)


@warish_bp.post("/applications/<int:application_id>/family-members")
@login_required
@require_staff
def family_member(application_id: int):
    member = add_family_member(application_id, _body(), _actor())
    return _ok(member_payload(member), 201)


@warish_bp.get("/applications/<int:application_id>/corrections")
@login_required
@require_staff
def corrections(application_id: int):
    rows = list_correction_requests(application_id, request.args.get("status"))
    return _ok([correction_payload(row) for row in rows])


@warish_bp.post("/applications/<int:application_id>/corrections")
@login_required
@require_staff
def correction_create(application_id: int):
    data = _body()
    member_raw = clean_text(data.get("family_member_id"))
    if member_raw and not member_raw.isdigit():
        raise ValidationError("family_member_id must be a number")
    correction = create_correction_request(
        application_id,
        data.get("description") or "",
        _actor(),
        field_name=data.get("field_name"),
        proposed_value=data.get("proposed_value"),
        family_member_id=int(member_raw) if member_raw else None,
    )
    return _ok(correction_payload(correction), 201)


@warish_bp.post("/corrections/<int:request_id>/resolve")
@login_required
@require_staff
def correction_resolve(request_id: int):
    data = _body()
    correction = resolve_correction_request(
        request_id,
        data.get("resolution") or "",
        _actor(),
        apply=_flag(data.get("apply")),
        reopen=_flag(data.get("reopen")),
    )
    return _ok(correction_payload(correction))
