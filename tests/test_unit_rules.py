from __future__ import annotations

import glob
from dataclasses import dataclass
from datetime import date

import pytest

from panchayat.core.config import WorkflowSettings
from panchayat.core.models import ApplicationStatus, LivingStatus, WarishApplication
from panchayat.core.utils import add_months
from panchayat.warish.errors import (
    ConflictError,
    CorruptHierarchy,
    DepthExceeded,
    InvalidTransition,
    ValidationError,
)
from panchayat.warish.certificate import certificate_lines, certificate_pdf
from panchayat.warish.collaborators import LocalFileStorage
from panchayat.warish.lineage import build_lineage, payload_depth
from panchayat.warish.state_machine import (
    TRANSITIONS,
    AdminReopen,
    Approve,
    AssignStaff,
    BeginReview,
    IssueCertificate,
    Reject,
    ReopenForCorrection,
    Renew,
    next_status,
    renewal_date,
)

SETTINGS = WorkflowSettings()


@dataclass
class Member:
    id: int
    parent_id: int | None
    name: str = "x"
    relation: str = "Son"
    living_status: LivingStatus = LivingStatus.ALIVE


def test_transition_table_matches_lifecycle():
    assert TRANSITIONS[ApplicationStatus.SUBMITTED] == {ApplicationStatus.ASSIGNED}
    assert TRANSITIONS[ApplicationStatus.ASSIGNED] == {ApplicationStatus.UNDER_REVIEW}
    assert TRANSITIONS[ApplicationStatus.UNDER_REVIEW] == {
        ApplicationStatus.APPROVED,
        ApplicationStatus.REJECTED,
    }
    assert TRANSITIONS[ApplicationStatus.APPROVED] == {
        ApplicationStatus.RENEWED,
        ApplicationStatus.CERTIFICATE_GENERATED,
        ApplicationStatus.UNDER_REVIEW,
    }
    assert TRANSITIONS[ApplicationStatus.REJECTED] == {ApplicationStatus.UNDER_REVIEW}
    assert TRANSITIONS[ApplicationStatus.CERTIFICATE_GENERATED] == set()


def test_happy_path_edges():
    assert next_status(ApplicationStatus.SUBMITTED, AssignStaff("staff-1"), SETTINGS) == ApplicationStatus.ASSIGNED
    assert next_status(ApplicationStatus.ASSIGNED, BeginReview(1), SETTINGS) == ApplicationStatus.UNDER_REVIEW
    assert (
        next_status(ApplicationStatus.UNDER_REVIEW, Approve("12/25", date(2025, 5, 1)), SETTINGS)
        == ApplicationStatus.APPROVED
    )
    assert (
        next_status(ApplicationStatus.APPROVED, IssueCertificate(False), SETTINGS)
        == ApplicationStatus.CERTIFICATE_GENERATED
    )


def test_edges_outside_table_raise_invalid_transition():
    with pytest.raises(InvalidTransition) as exc:
        next_status(ApplicationStatus.SUBMITTED, Approve("1/2025", date(2025, 1, 1)), SETTINGS)
    assert exc.value.current == ApplicationStatus.SUBMITTED
    assert exc.value.target == ApplicationStatus.APPROVED

    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.CERTIFICATE_GENERATED, ReopenForCorrection(1), SETTINGS)
    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.REJECTED, ReopenForCorrection(1), SETTINGS)
    assert next_status(ApplicationStatus.RENEWED, ReopenForCorrection(1), SETTINGS) == ApplicationStatus.UNDER_REVIEW
    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.UNDER_REVIEW, AdminReopen("fix it"), SETTINGS)
    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.SUBMITTED, IssueCertificate(False), SETTINGS)


def test_review_requires_a_document():
    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.ASSIGNED, BeginReview(0), SETTINGS)


def test_approve_needs_memo_number_and_date_together():
    with pytest.raises(ValidationError):
        next_status(ApplicationStatus.UNDER_REVIEW, Approve("12/25", None), SETTINGS)
    with pytest.raises(ValidationError):
        next_status(ApplicationStatus.UNDER_REVIEW, Approve(None, date(2025, 1, 1)), SETTINGS)
    with pytest.raises(ValidationError):
        next_status(ApplicationStatus.UNDER_REVIEW, Approve(None, None), SETTINGS)


def test_reject_remark_length_is_configurable():
    with pytest.raises(ValidationError):
        next_status(ApplicationStatus.UNDER_REVIEW, Reject("too short"), SETTINGS)
    assert (
        next_status(ApplicationStatus.UNDER_REVIEW, Reject("Heir proof missing"), SETTINGS)
        == ApplicationStatus.REJECTED
    )
    lenient = WorkflowSettings(rejection_remark_min_length=3)
    assert next_status(ApplicationStatus.UNDER_REVIEW, Reject("dup"), lenient) == ApplicationStatus.REJECTED


def test_renew_opens_on_renew_date():
    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.APPROVED, Renew(date(2025, 6, 30), date(2025, 7, 1)), SETTINGS)
    with pytest.raises(InvalidTransition):
        next_status(ApplicationStatus.APPROVED, Renew(date(2025, 6, 30), None), SETTINGS)
    assert (
        next_status(ApplicationStatus.APPROVED, Renew(date(2025, 7, 1), date(2025, 7, 1)), SETTINGS)
        == ApplicationStatus.RENEWED
    )


def test_issue_certificate_twice_conflicts():
    with pytest.raises(ConflictError):
        next_status(ApplicationStatus.RENEWED, IssueCertificate(True), SETTINGS)


def test_admin_reopen_needs_remark():
    with pytest.raises(ValidationError):
        next_status(ApplicationStatus.REJECTED, AdminReopen("  "), SETTINGS)
    assert next_status(ApplicationStatus.REJECTED, AdminReopen("new proof"), SETTINGS) == ApplicationStatus.UNDER_REVIEW


def test_renewal_date_caps_at_next_january():
    assert renewal_date(date(2025, 3, 15)) == date(2025, 9, 15)
    assert renewal_date(date(2025, 8, 20)) == date(2026, 1, 1)
    assert renewal_date(date(2025, 7, 1)) == date(2026, 1, 1)
    assert renewal_date(date(2025, 6, 30)) == date(2025, 12, 30)


def test_add_months_clamps_day():
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)


def test_workflow_settings_from_config_rejects_zero_depth():
    with pytest.raises(ValueError):
        WorkflowSettings.from_config({"WARISH_LINEAGE_MAX_DEPTH": 0})
    settings = WorkflowSettings.from_config({"WARISH_LINEAGE_MAX_DEPTH": "4", "WARISH_OFFICE_NAME": "Raipur GP"})
    assert settings.lineage_max_depth == 4
    assert settings.office_name == "Raipur GP"


def test_build_lineage_orders_siblings_and_depths():
    members = [Member(1, None), Member(2, None), Member(3, 2), Member(4, 3), Member(5, 2)]
    roots = build_lineage(members)
    assert [root.id for root in roots] == [1, 2]
    assert [child.id for child in roots[1].children] == [3, 5]
    assert [(node.id, node.depth) for node in roots[1].walk()] == [(2, 1), (3, 2), (4, 3), (5, 2)]
    assert roots[1].to_dict()["children"][0]["children"][0]["id"] == 4


def test_build_lineage_depth_limit_fails_loudly():
    chain = [Member(1, None), Member(2, 1), Member(3, 2), Member(4, 3)]
    assert len(list(build_lineage(chain, max_depth=4)[0].walk())) == 4
    with pytest.raises(DepthExceeded):
        build_lineage(chain, max_depth=3)
    with pytest.raises(ValueError):
        build_lineage(chain, max_depth=0)


def test_build_lineage_detects_cycles_and_dangling_parents():
    with pytest.raises(CorruptHierarchy):
        build_lineage([Member(1, None), Member(2, 3), Member(3, 2)])
    with pytest.raises(CorruptHierarchy):
        build_lineage([Member(1, 1)])
    with pytest.raises(CorruptHierarchy):
        build_lineage([Member(1, None), Member(2, 99)])
    with pytest.raises(CorruptHierarchy):
        build_lineage([Member(1, None), Member(1, None)])


def test_build_lineage_handles_deep_chains_iteratively():
    chain = [Member(1, None)] + [Member(i, i - 1) for i in range(2, 5001)]
    roots = build_lineage(chain)
    payload = roots[0].to_dict()
    depth = 0
    while payload["children"]:
        payload = payload["children"][0]
        depth += 1
    assert depth == 4999


def test_payload_depth_validates_shape():
    assert payload_depth([]) == 0
    assert payload_depth([{"name": "a", "children": [{"name": "b", "children": [{"name": "c"}]}]}]) == 3
    with pytest.raises(ValidationError):
        payload_depth([{"name": "a", "children": "b"}])
    with pytest.raises(ValidationError):
        payload_depth({"name": "a"})


def test_reporting_date_cannot_precede_death(app):
    with app.app_context():
        with pytest.raises(ValueError):
            WarishApplication(
                acknowledgment_code="ACK/LH/2026/9999",
                applicant_name="A",
                deceased_name="B",
                date_of_death=date(2026, 5, 2),
                reporting_date=date(2026, 5, 1),
            )


def test_local_file_storage_sanitises_paths(tmp_path):
    storage = LocalFileStorage(tmp_path)
    stored = storage.upload(b"%PDF", "application/pdf", "warish_documents/7/../affidavit", "../../etc/passwd.pdf")
    assert stored.storage_id.startswith("warish_documents/7/affidavit/")
    assert stored.url == f"/storage/{stored.storage_id}"
    assert (tmp_path / stored.storage_id).read_bytes() == b"%PDF"
    storage.delete(stored.storage_id)
    assert not (tmp_path / stored.storage_id).exists()


def test_certificate_pdf_lists_heirs():
    application = WarishApplication(
        acknowledgment_code="ACK/LH/2026/0042",
        applicant_name="Rina Das",
        relation_with_deceased="Daughter",
        deceased_name="Haren Das",
        date_of_death=date(2026, 1, 2),
        reporting_date=date(2026, 1, 9),
        memo_number="3/GP/2026",
        memo_date=date(2026, 2, 1),
    )
    roots = build_lineage([Member(1, None, "Maya (Das)", "Wife"), Member(2, 1, "Tina", "Daughter", LivingStatus.DECEASED)])
    lines = certificate_lines(application, roots, "Kashipur GP", date(2026, 2, 3))
    assert "  Maya (Das) - Wife" in lines
    assert "    Tina - Daughter (deceased)" in lines
    assert certificate_pdf(lines).startswith(b"%PDF-")


def test_certificate_pdf_refuses_names_the_core_font_cannot_print():
    lines = ["Kashipur GP - Legal Heir (Warish) Certificate", "Legal heirs:", "  রিয়া পাল - Daughter"]
    with pytest.raises(ValidationError) as exc:
        certificate_pdf(lines)
    assert "রিয়া পাল - Daughter" in exc.value.message
    assert "WARISH_CERTIFICATE_FONT" in exc.value.message


def test_certificate_pdf_embeds_configured_unicode_font():
    fonts = sorted(glob.glob("/usr/share/fonts/**/*Bengali*.ttf", recursive=True))
    if not fonts:
        pytest.skip("no Bengali TrueType font installed")
    pdf = certificate_pdf(["Legal heirs:", "  রিয়া পাল - Daughter"], fonts[0])
    assert pdf.startswith(b"%PDF-")
    assert b"/FontFile2" in pdf


def test_workflow_settings_rejects_missing_certificate_font(tmp_path):
    with pytest.raises(ValueError):
        WorkflowSettings.from_config({"WARISH_CERTIFICATE_FONT": str(tmp_path / "missing.ttf")})
    font = tmp_path / "office.ttf"
    font.write_bytes(b"\0")
    assert WorkflowSettings.from_config({"WARISH_CERTIFICATE_FONT": str(font)}).certificate_font_path == str(font)
    assert WorkflowSettings.from_config({}).certificate_font_path is None
