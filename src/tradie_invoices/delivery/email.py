"""Invoice and reminder emails sent through the Resend API."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from html import escape
from typing import Any

import httpx
import structlog

from tradie_invoices.config import get_settings
from tradie_invoices.invoicing.errors import UpstreamError
from tradie_invoices.invoicing.models import UNIT_LABELS, InvoiceDraft
from tradie_invoices.invoicing.totals import (
    InvoiceTotals,
    format_currency,
    line_total,
    totals_for,
)

logger = structlog.get_logger(__name__)


class EmailDeliveryError(UpstreamError):
    """The email provider did not accept the message."""

    default_user_message = "Failed to send the email. Please try again."


@dataclass(frozen=True)
class EmailLine:
    description: str
    quantity: Decimal
    unit: str
    unit_price: Decimal | None
    line_total: Decimal | None


@dataclass(frozen=True)
class InvoiceEmail:
    """Everything an invoice or reminder email shows."""

    to: list[str]
    invoice_number: str
    business_name: str
    customer_name: str
    invoice_date: date
    due_date: date
    totals: InvoiceTotals
    gst_enabled: bool
    pdf: bytes
    reply_to: str | None = None
    lines: list[EmailLine] = field(default_factory=list)
    abn: str | None = None
    payment_link: str | None = None

    @classmethod
    def from_draft(
        cls,
        draft: InvoiceDraft,
        invoice_number: str,
        business_name: str,
        pdf: bytes,
        **kwargs: Any,
    ) -> InvoiceEmail:
        """Build the summary from a draft so the email matches the PDF."""
        return cls(
            to=[e.strip() for e in draft.customer.emails if e.strip()],
            invoice_number=invoice_number,
            business_name=business_name,
            customer_name=draft.customer.name,
            invoice_date=draft.invoice.invoice_date,
            due_date=draft.invoice.due_date,
            totals=totals_for(draft),
            gst_enabled=draft.invoice.gst_enabled,
            pdf=pdf,
            lines=[
                EmailLine(
                    description=item.description,
                    quantity=item.quantity,
                    unit=UNIT_LABELS[item.unit],
                    unit_price=item.unit_price,
                    line_total=line_total(item),
                )
                for item in draft.line_items
            ],
            **kwargs,
        )


def _format_date(value: date) -> str:
    return f"{value.day} {value.strftime('%B %Y')}"


def render_summary_html(message: InvoiceEmail, heading: str, status_text: str) -> str:
    """Plain HTML body listing the line items and totals."""
    shown = message.totals.rounded()
    rows = "".join(
        "<tr>"
        f"<td>{escape(line.description)} "
        f"<small>({line.quantity.normalize():f} {escape(line.unit)} x "
        f"{format_currency(line.unit_price)})</small></td>"
        f'<td align="right">{format_currency(line.line_total)}</td>'
        "</tr>"
        for line in message.lines
    )
    figures = [("Subtotal", format_currency(shown.exclusive_subtotal))]
    if message.gst_enabled:
        figures.append(("GST (10%)", format_currency(shown.gst_amount)))
    total = format_currency(shown.total)
    figures.append(("<strong>Total</strong>", f"<strong>{total} AUD</strong>"))
    totals = "".join(
        f'<tr><td>{label}</td><td align="right">{value}</td></tr>' for label, value in figures
    )

    payment = ""
    if message.payment_link:
        link = escape(message.payment_link, quote=True)
        payment = f'<p><a href="{link}">Pay this invoice</a></p>'
    abn = f"<p><small>ABN: {escape(message.abn)}</small></p>" if message.abn else ""

    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\"></head><body>"
        f"<h2>{escape(heading)}</h2>"
        f"<p>Hi {escape(message.customer_name)},</p>"
        f"<p>Invoice {escape(message.invoice_number)} dated "
        f"{_format_date(message.invoice_date)}. {escape(status_text)}.</p>"
        f"<table width=\"100%\">{rows}</table>"
        f"<table width=\"100%\">{totals}</table>"
        f"{payment}"
        "<p>The invoice is attached as a PDF.</p>"
        f"<p>{escape(message.business_name)}</p>{abn}"
        "</body></html>"
    )


class ResendClient:
    """Async client for the Resend email API."""

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.resend_api_key.get_secret_value()
        self._from_email = from_email or settings.resend_from_email
        self.base_url = (base_url or settings.resend_api_url).rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def send(
        self,
        to: list[str],
        subject: str,
        html: str,
        sender_name: str,
        reply_to: str | None = None,
        attachments: list[tuple[str, bytes]] | None = None,
    ) -> str:
        """Send one email and return the provider's message id.

        Messages are not retried here: a timed-out request may still have
        been delivered.

        Raises:
            EmailDeliveryError: If there are no recipients or the provider
                rejects the request.
        """
        if not to:
            raise EmailDeliveryError(
                "No recipients", user_message="Add a customer email address before sending"
            )

        payload: dict[str, Any] = {
            "from": f"{sender_name} <{self._from_email}>",
            "to": to,
            "subject": subject,
            "html": html,
        }
        if reply_to:
            payload["reply_to"] = reply_to
        if attachments:
            payload["attachments"] = [
                {"filename": name, "content": base64.b64encode(content).decode("ascii")}
                for name, content in attachments
            ]

        client = await self._get_client()
        try:
            response = await client.post("/emails", json=payload, headers=self._get_headers())
        except httpx.RequestError as e:
            logger.error("email_request_failed", error=str(e))
            raise EmailDeliveryError(f"Email request failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = {"raw": response.text[:500]}
            logger.error("email_rejected", status_code=response.status_code, detail=detail)
            raise EmailDeliveryError(
                f"Email API error: {response.status_code}", details=detail
            )

        message_id = str(response.json().get("id", ""))
        logger.info("email_sent", recipients=len(to), message_id=message_id)
        return message_id

    async def send_invoice_email(self, message: InvoiceEmail) -> str:
        html = render_summary_html(
            message,
            heading=f"Invoice from {message.business_name}",
            status_text=f"Due {_format_date(message.due_date)}",
        )
        return await self.send(
            to=message.to,
            subject=f"Invoice {message.invoice_number} from {message.business_name}",
            html=html,
            sender_name=message.business_name,
            reply_to=message.reply_to,
            attachments=[(f"Invoice-{message.invoice_number}.pdf", message.pdf)],
        )

    async def send_reminder_email(self, message: InvoiceEmail, days_overdue: int) -> str:
        """Send a payment reminder; the wording depends on whether it is overdue."""
        if days_overdue > 0:
            subject = f"Reminder: Invoice {message.invoice_number} is {days_overdue} days overdue"
            status_text = f"Overdue by {days_overdue} days"
        else:
            subject = f"Reminder: Invoice {message.invoice_number} from {message.business_name}"
            status_text = f"Due {_format_date(message.due_date)}"

        html = render_summary_html(
            message,
            heading=f"Payment reminder from {message.business_name}",
            status_text=status_text,
        )
        return await self.send(
            to=message.to,
            subject=subject,
            html=html,
            sender_name=message.business_name,
            reply_to=message.reply_to,
            attachments=[(f"Invoice-{message.invoice_number}.pdf", message.pdf)],
        )
