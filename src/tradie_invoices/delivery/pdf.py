"""Tax invoice PDF rendering with ReportLab."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from io import BytesIO
from xml.sax.saxutils import escape

import structlog
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from tradie_invoices.backend.records import BusinessProfile
from tradie_invoices.invoicing.models import UNIT_LABELS, InvoiceDraft
from tradie_invoices.invoicing.totals import (
    InvoiceTotals,
    format_currency,
    line_total,
    totals_for,
)
from tradie_invoices.invoicing.validation import format_abn

logger = structlog.get_logger(__name__)


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "Title": ParagraphStyle("InvTitle", parent=base["Title"], fontSize=20, alignment=2),
        "Business": ParagraphStyle("Business", parent=base["Heading2"], spaceAfter=2),
        "Section": ParagraphStyle(
            "Section", parent=base["Heading4"], textColor=colors.grey, spaceAfter=2
        ),
        "Body": ParagraphStyle("InvBody", parent=base["BodyText"], fontSize=9, leading=12),
        "Right": ParagraphStyle(
            "InvRight", parent=base["BodyText"], fontSize=9, leading=12, alignment=2
        ),
        "Small": ParagraphStyle(
            "Small", parent=base["BodyText"], fontSize=8, textColor=colors.grey
        ),
    }


def _p(text: str | None, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(text or ""), style)


def _format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def _format_quantity(quantity: Decimal) -> str:
    return f"{quantity.normalize():f}"


def _header(
    draft: InvoiceDraft,
    profile: BusinessProfile,
    invoice_number: str | None,
    st: dict[str, ParagraphStyle],
    width: float,
) -> Table:
    business = [_p(profile.trading_name, st["Business"])]
    if profile.business_name:
        business.append(_p(profile.business_name, st["Body"]))
    if profile.abn:
        business.append(_p(f"ABN: {format_abn(profile.abn)}", st["Body"]))
    if profile.address:
        business.append(_p(profile.address, st["Body"]))

    meta = [Paragraph("<b>TAX INVOICE</b>", st["Title"])]
    if invoice_number:
        meta.append(_p(f"#{invoice_number}", st["Right"]))
    meta.append(_p(f"Date: {_format_date(draft.invoice.invoice_date)}", st["Right"]))
    meta.append(_p(f"Due: {_format_date(draft.invoice.due_date)}", st["Right"]))

    table = Table([[business, meta]], colWidths=[0.55 * width, 0.45 * width])
    table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    return table


def _bill_to(draft: InvoiceDraft, st: dict[str, ParagraphStyle], width: float) -> Table:
    customer = draft.customer
    bill_to = [_p("Bill To", st["Section"]), _p(customer.name, st["Body"])]
    bill_to += [_p(email, st["Body"]) for email in customer.emails]
    if customer.address:
        bill_to.append(_p(customer.address, st["Body"]))
    if customer.abn:
        bill_to.append(_p(f"ABN: {format_abn(customer.abn)}", st["Body"]))

    job: list[Paragraph] = []
    if draft.invoice.job_address:
        job = [_p("Job Location", st["Section"]), _p(draft.invoice.job_address, st["Body"])]

    table = Table([[bill_to, job]], colWidths=[0.5 * width, 0.5 * width])
    table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
    return table


def _line_items(draft: InvoiceDraft, st: dict[str, ParagraphStyle], width: float) -> Table:
    price_heading = "Price (inc GST)" if draft.invoice.prices_include_gst else "Price"
    rows: list[list[object]] = [["Description", "Qty", "Unit", price_heading, "Total"]]
    for item in draft.line_items:
        rows.append(
            [
                _p(item.description, st["Body"]),
                _format_quantity(item.quantity),
                UNIT_LABELS[item.unit],
                format_currency(item.unit_price),
                format_currency(line_total(item)),
            ]
        )

    table = Table(
        rows,
        colWidths=[0.46 * width, 0.1 * width, 0.1 * width, 0.16 * width, 0.18 * width],
        repeatRows=1,
        hAlign="LEFT",
    )
    table.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 9),
                ("FONT", (1, 1), (-1, -1), "Helvetica", 9),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("LINEBELOW", (0, 0), (-1, 0), 0.75, colors.black),
                ("LINEBELOW", (0, 1), (-1, -1), 0.25, colors.lightgrey),
            ]
        )
    )
    return table


def _totals(
    draft: InvoiceDraft, totals: InvoiceTotals, st: dict[str, ParagraphStyle], width: float
) -> Table:
    shown = totals.rounded()
    gst_enabled = draft.invoice.gst_enabled
    subtotal_label = "Subtotal (ex GST)" if gst_enabled and shown.prices_include_gst else "Subtotal"

    rows: list[list[str]] = [[subtotal_label, format_currency(shown.exclusive_subtotal)]]
    if gst_enabled:
        rows.append(["GST (10%)", format_currency(shown.gst_amount)])
    rows.append(
        [
            "Total (inc GST)" if gst_enabled else "Total",
            f"{format_currency(shown.total)} AUD",
        ]
    )

    table = Table(rows, colWidths=[0.25 * width, 0.2 * width], hAlign="RIGHT")
    table.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, -2), "Helvetica", 9),
                ("FONT", (0, -1), (-1, -1), "Helvetica-Bold", 11),
                ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                ("LINEABOVE", (0, -1), (-1, -1), 0.75, colors.black),
            ]
        )
    )
    return table


def _payment_details(profile: BusinessProfile, st: dict[str, ParagraphStyle]) -> list[Paragraph]:
    lines = []
    if profile.bank_bsb:
        lines.append(f"BSB: {profile.bank_bsb}")
    if profile.bank_account:
        lines.append(f"Account: {profile.bank_account}")
    if profile.payid:
        lines.append(f"PayID: {profile.payid}")
    if profile.payment_link:
        lines.append(f"Pay online: {profile.payment_link}")
    if not lines:
        return []
    return [_p("Payment Details", st["Section"]), *(_p(line, st["Body"]) for line in lines)]


def render_invoice_pdf(
    draft: InvoiceDraft,
    profile: BusinessProfile,
    invoice_number: str | None = None,
    totals: InvoiceTotals | None = None,
) -> bytes:
    """Render ``draft`` as an A4 tax invoice and return the PDF bytes.

    Totals default to ``totals_for(draft)`` so the PDF always shows the
    same figures as the editor and the email.
    """
    totals = totals or totals_for(draft)
    st = _styles()
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
        title=f"Invoice {invoice_number}" if invoice_number else "Invoice",
        author=profile.trading_name,
    )
    width = float(doc.width)

    story: list[object] = [
        _header(draft, profile, invoice_number, st, width),
        Spacer(1, 8 * mm),
        _bill_to(draft, st, width),
        Spacer(1, 6 * mm),
        _line_items(draft, st, width),
        Spacer(1, 4 * mm),
        _totals(draft, totals, st, width),
    ]
    if draft.invoice.gst_enabled:
        note = (
            "All prices shown include GST"
            if totals.prices_include_gst
            else "All prices shown exclude GST"
        )
        story.append(_p(note, st["Small"]))

    payment = _payment_details(profile, st)
    if payment:
        story += [Spacer(1, 8 * mm), *payment]

    notes = draft.notes or profile.default_footer_note
    if notes:
        story += [Spacer(1, 6 * mm), _p("Notes", st["Section"]), _p(notes, st["Body"])]

    doc.build(story)
    pdf = buffer.getvalue()
    logger.debug("pdf_rendered", invoice_number=invoice_number, size=len(pdf))
    return pdf
