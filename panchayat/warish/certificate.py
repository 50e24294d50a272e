from __future__ import annotations

from datetime import date

from fpdf import FPDF

from panchayat.core.models import LivingStatus, WarishApplication
from panchayat.warish.errors import ValidationError
from panchayat.warish.lineage import LineageNode

CORE_FONT = "helvetica"
EMBEDDED_FONT = "CertificateFont"
CORE_FONT_ENCODING = "latin-1"


def _outside_core_font(lines: list[str]) -> list[str]:
    rejected = []
    for line in lines:
        try:
            line.encode(CORE_FONT_ENCODING)
        except UnicodeEncodeError:
            rejected.append(line.strip())
    return rejected


def certificate_pdf(lines: list[str], font_path: str | None = None) -> bytes:
    """Render ``lines`` one per row on a single A4 page.

    With ``font_path`` the TrueType font is embedded and every script it covers
    (Bengali names included) is written as given. Without it the built-in
    Helvetica is used, which only covers Latin-1, and any line outside that
    range is refused with ``ValidationError`` rather than printed with
    characters missing.
    """
    pdf = FPDF(format="A4")
    pdf.set_title("Legal Heir (Warish) Certificate")
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()
    if font_path:
        pdf.add_font(EMBEDDED_FONT, "", font_path)
        pdf.set_font(EMBEDDED_FONT, size=12)
    else:
        rejected = _outside_core_font(lines)
        if rejected:
            raise ValidationError(
                "Certificate text needs a Unicode font; set WARISH_CERTIFICATE_FONT to a TrueType file. "
                f"Affected: {', '.join(rejected)}"
            )
        pdf.set_font(CORE_FONT, size=12)

    pdf.set_font_size(14)
    pdf.cell(0, 10, lines[0], new_x="LMARGIN", new_y="NEXT")
    pdf.set_font_size(12)
    for line in lines[1:]:
        pdf.cell(0, 8, line, new_x="LMARGIN", new_y="NEXT")
    return bytes(pdf.output())


def certificate_lines(
    application: WarishApplication,
    lineage: list[LineageNode],
    office_name: str,
    issued_on: date,
) -> list[str]:
    lines = [
        f"{office_name} - Legal Heir (Warish) Certificate",
        f"Memo number: {application.memo_number or '-'}",
        f"Memo date: {application.memo_date.isoformat() if application.memo_date else '-'}",
        f"Acknowledgment: {application.acknowledgment_code}",
        f"Deceased: {application.deceased_name}",
        f"Date of death: {application.date_of_death.isoformat()}",
        f"Applicant: {application.applicant_name} ({application.relation_with_deceased or '-'})",
        f"Village: {application.village_name or '-'}  Post office: {application.post_office or '-'}",
        "Legal heirs:",
    ]
    for root in lineage:
        for node in root.walk():
            member = node.member
            marker = " (deceased)" if member.living_status == LivingStatus.DECEASED else ""
            indent = "  " * node.depth
            lines.append(f"{indent}{member.name} - {member.relation}{marker}")
    if not lineage:
        lines.append("  -")
    lines.append(f"Issued: {issued_on.isoformat()}")
    return lines
