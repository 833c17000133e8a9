"""Tests for PDF rendering and email delivery."""

import base64
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from tradie_invoices.delivery import (
    EmailDeliveryError,
    InvoiceEmail,
    ResendClient,
    render_invoice_pdf,
)
from tradie_invoices.delivery.email import render_summary_html
from tradie_invoices.invoicing.errors import UpstreamError


@pytest.fixture
def message(sendable_draft):
    return InvoiceEmail.from_draft(
        sendable_draft,
        invoice_number="INV-0042",
        business_name="Sparky Bros",
        pdf=b"%PDF-1.4 test",
        reply_to="owner@sparky.example",
        abn="51 824 753 556",
        payment_link="https://pay.example.com/sparky",
    )


@pytest.fixture
def mailer():
    return ResendClient(api_key="re_key", from_email="invoices@sparky.example")


def _http_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body or {}
    response.text = ""
    return response


class TestRenderInvoicePdf:
    """Tests for render_invoice_pdf."""

    def test_renders_pdf(self, sendable_draft, business_profile):
        pdf = render_invoice_pdf(sendable_draft, business_profile, "INV-0042")

        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000

    def test_renders_unpriced_and_inclusive(self, sample_draft, business_profile):
        invoice = sample_draft.invoice.model_copy(update={"prices_include_gst": True})
        draft = sample_draft.model_copy(update={"invoice": invoice, "notes": "Gate <code> & co"})

        assert render_invoice_pdf(draft, business_profile).startswith(b"%PDF")

    def test_minimal_profile(self, sendable_draft):
        from tradie_invoices.backend import BusinessProfile

        profile = BusinessProfile(id="p", trading_name="Solo Tradie", gst_registered=False)
        invoice = sendable_draft.invoice.model_copy(update={"gst_enabled": False})
        draft = sendable_draft.model_copy(update={"invoice": invoice})

        assert render_invoice_pdf(draft, profile, "INV-0001").startswith(b"%PDF")


class TestInvoiceEmail:
    def test_from_draft_uses_totals(self, message):
        assert message.to == ["john@example.com"]
        assert message.totals.total == Decimal("250.25")
        assert message.lines[0].unit == "hr"
        assert message.lines[1].line_total == Decimal("37.50")

    def test_summary_html(self, message):
        html = render_summary_html(message, "Invoice from Sparky Bros", "Due 24 March 2025")

        assert "Hi John Smith" in html
        assert "$250.25 AUD" in html
        assert "GST (10%)" in html
        assert 'href="https://pay.example.com/sparky"' in html
        assert "ABN: 51 824 753 556" in html

    def test_summary_escapes_html(self, sendable_draft):
        customer = sendable_draft.customer.model_copy(update={"name": "<b>Bob</b>"})
        draft = sendable_draft.model_copy(update={"customer": customer})
        message = InvoiceEmail.from_draft(draft, "INV-1", "Biz", b"")

        assert "<b>Bob</b>" not in render_summary_html(message, "h", "s")


class TestResendClient:
    """Tests for ResendClient."""

    @pytest.mark.asyncio
    async def test_send_invoice_email(self, mailer, message):
        http = AsyncMock()
        http.post = AsyncMock(return_value=_http_response(200, {"id": "msg-1"}))

        with patch.object(mailer, "_get_client", AsyncMock(return_value=http)):
            message_id = await mailer.send_invoice_email(message)

        assert message_id == "msg-1"
        payload = http.post.call_args.kwargs["json"]
        assert payload["from"] == "Sparky Bros <invoices@sparky.example>"
        assert payload["to"] == ["john@example.com"]
        assert payload["reply_to"] == "owner@sparky.example"
        assert payload["subject"] == "Invoice INV-0042 from Sparky Bros"
        attachment = payload["attachments"][0]
        assert attachment["filename"] == "Invoice-INV-0042.pdf"
        assert base64.b64decode(attachment["content"]) == b"%PDF-1.4 test"
        headers = http.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer re_key"

    @pytest.mark.asyncio
    async def test_overdue_reminder_subject(self, mailer, message):
        http = AsyncMock()
        http.post = AsyncMock(return_value=_http_response(200, {"id": "msg-2"}))

        with patch.object(mailer, "_get_client", AsyncMock(return_value=http)):
            await mailer.send_reminder_email(message, days_overdue=5)

        payload = http.post.call_args.kwargs["json"]
        assert payload["subject"] == "Reminder: Invoice INV-0042 is 5 days overdue"
        assert "Overdue by 5 days" in payload["html"]

    @pytest.mark.asyncio
    async def test_rejected_message(self, mailer, message):
        http = AsyncMock()
        http.post = AsyncMock(return_value=_http_response(422, {"message": "invalid from"}))

        with patch.object(mailer, "_get_client", AsyncMock(return_value=http)):
            with pytest.raises(EmailDeliveryError) as exc_info:
                await mailer.send_invoice_email(message)

        assert isinstance(exc_info.value, UpstreamError)
        assert exc_info.value.details == {"message": "invalid from"}

    @pytest.mark.asyncio
    async def test_network_failure_not_retried(self, mailer, message):
        http = AsyncMock()
        http.post = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with patch.object(mailer, "_get_client", AsyncMock(return_value=http)):
            with pytest.raises(EmailDeliveryError):
                await mailer.send_invoice_email(message)

        http.post.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_recipients(self, mailer):
        with pytest.raises(EmailDeliveryError):
            await mailer.send(to=[], subject="s", html="h", sender_name="Biz")

    def test_due_date_formatting(self, message):
        html = render_summary_html(message, "h", "s")

        assert message.invoice_date == date(2025, 3, 10)
        assert "10 March 2025" in html
