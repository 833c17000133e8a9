"""Save and send flows that take a draft out of its session.

Saving and sending share one persistence path keyed by the session's draft
id, so retrying a save after a network failure updates the same invoice row
instead of creating another one. Sending is two-phase: the invoice is
persisted first and only marked ``sent`` once the email has gone out.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from tradie_invoices.backend import (
    AuthenticationError,
    BackendError,
    BusinessProfile,
    InvoiceRecord,
    InvoiceStatus,
    LineItemRecord,
    ReminderSettings,
    SavedInvoice,
    SupabaseClient,
)
from tradie_invoices.config import get_settings
from tradie_invoices.delivery import InvoiceEmail, ResendClient, render_invoice_pdf
from tradie_invoices.invoicing.classification import classify_item
from tradie_invoices.invoicing.errors import (
    InvoiceError,
    InvoiceValidationError,
    NotFoundError,
    UpstreamError,
)
from tradie_invoices.invoicing.models import (
    Customer,
    InvoiceDraft,
    InvoiceMeta,
    LineItem,
    Unit,
)
from tradie_invoices.invoicing.reminders import ReminderType, days_past_due, reminder_due_today
from tradie_invoices.invoicing.session import DraftSession, DraftSessionStore
from tradie_invoices.invoicing.totals import is_sendable, line_total, totals_for

logger = structlog.get_logger(__name__)

_CLOSED_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})
_OPEN_STATUSES = frozenset({InvoiceStatus.SENT, InvoiceStatus.OVERDUE})


@dataclass(frozen=True)
class ReminderOutcome:
    """Result of sending a payment reminder."""

    invoice_id: str
    recipients: list[str]
    days_overdue: int
    recorded: bool


@dataclass
class ReminderSweep:
    """What one pass of automatic reminders did."""

    sent: list[str] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InvoiceStats:
    """Invoice counts per status with outstanding and paid amounts."""

    counts: dict[str, int]
    total_outstanding: Decimal
    total_paid: Decimal


def summarise_invoices(records: Iterable[InvoiceRecord]) -> InvoiceStats:
    """Count invoices by status and total what is owed and what has been paid."""
    counts = {status.value: 0 for status in InvoiceStatus}
    outstanding = paid = Decimal("0")
    for record in records:
        counts[record.status.value] += 1
        if record.status in _OPEN_STATUSES:
            outstanding += record.total
        elif record.status is InvoiceStatus.PAID:
            paid += record.total
    return InvoiceStats(counts=counts, total_outstanding=outstanding, total_paid=paid)


def _decimal_or_none(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def invoice_row(
    draft: InvoiceDraft,
    invoice_id: str,
    profile_id: str,
    transcript: str | None = None,
) -> dict[str, Any]:
    """Header columns for the invoice table, with totals from compute_totals."""
    totals = totals_for(draft).rounded()
    return {
        "id": invoice_id,
        "business_profile_id": profile_id,
        "invoice_number": draft.invoice.invoice_number,
        "invoice_date": draft.invoice.invoice_date.isoformat(),
        "due_date": draft.invoice.due_date.isoformat(),
        "customer_name": draft.customer.name,
        "customer_emails": draft.customer.emails,
        "customer_abn": draft.customer.abn,
        "customer_address": draft.customer.address,
        "job_address": draft.invoice.job_address,
        "subtotal": float(totals.subtotal),
        "gst_amount": float(totals.gst_amount),
        "total": float(totals.total),
        "gst_enabled": draft.invoice.gst_enabled,
        "prices_include_gst": bool(draft.invoice.prices_include_gst),
        "notes": draft.notes,
        "voice_transcript": transcript,
    }


def line_item_rows(draft: InvoiceDraft, invoice_id: str) -> list[dict[str, Any]]:
    """Line item rows in display order. Unpriced items keep a null price."""
    return [
        {
            "invoice_id": invoice_id,
            "description": item.description,
            "quantity": float(item.quantity),
            "unit": item.unit.value,
            "unit_price": _decimal_or_none(item.unit_price),
            "item_type": item.item_type.value,
            "line_total": _decimal_or_none(line_total(item)),
            "sort_order": index,
        }
        for index, item in enumerate(draft.line_items)
    ]


def draft_from_record(record: InvoiceRecord, items: list[LineItemRecord]) -> InvoiceDraft:
    """Rebuild an editable draft from persisted rows."""
    line_items = []
    for row in sorted(items, key=lambda r: r.sort_order):
        unit = row.unit or Unit.EACH
        line_items.append(
            LineItem(
                description=row.description,
                quantity=row.quantity,
                unit=unit,
                unit_price=row.unit_price,
                item_type=row.item_type or classify_item(row.description, unit),
            )
        )
    return InvoiceDraft(
        customer=Customer(
            name=record.customer_name or "Customer",
            emails=record.customer_emails,
            address=record.customer_address,
            abn=record.customer_abn,
        ),
        invoice=InvoiceMeta(
            invoice_number=record.invoice_number,
            invoice_date=record.invoice_date,
            due_date=record.due_date,
            job_address=record.job_address,
            gst_enabled=record.gst_enabled,
            prices_include_gst=record.prices_include_gst,
        ),
        line_items=line_items,
        notes=record.notes,
    )


def validate_for_save(session: DraftSession) -> None:
    """Raise InvoiceValidationError when the draft cannot be stored yet."""
    if not session.draft.customer.name.strip():
        raise InvoiceValidationError("Customer name is required")
    for index, item in enumerate(session.draft.line_items, start=1):
        if not item.description.strip():
            raise InvoiceValidationError(f"Line item {index} needs a description")


class InvoiceWorkflow:
    """Persists, renders and emails invoices for the signed-in user."""

    def __init__(
        self,
        backend: SupabaseClient,
        mailer: ResendClient,
        sessions: DraftSessionStore | None = None,
    ):
        self._backend = backend
        self._mailer = mailer
        self._sessions = sessions
        self._settings = get_settings()

    async def _call(self, action: str, coro: Any) -> Any:
        """Await a backend call, converting failures to UpstreamError.

        Authentication failures are passed through unchanged.
        """
        try:
            return await coro
        except AuthenticationError:
            raise
        except BackendError as e:
            logger.error(
                "backend_call_failed", action=action, status_code=e.status_code, error=str(e)
            )
            raise UpstreamError(f"{action} failed: {e}", details=e.details) from e

    async def _require_profile(self, profile_id: str | None) -> BusinessProfile:
        if not profile_id:
            raise NotFoundError(
                "No business profile selected",
                user_message="Create or select a business profile first",
            )
        profile = await self._call(
            "load_profile", self._backend.get_business_profile(profile_id)
        )
        if profile is None:
            raise NotFoundError(
                f"Business profile {profile_id} not found",
                user_message="Create a business profile first",
            )
        return profile

    async def _persist(self, session: DraftSession, profile: BusinessProfile) -> SavedInvoice:
        """Write header, line items and photos under the session's draft id."""
        invoice_id = session.draft_id
        existing = await self._call("load_invoice", self._backend.get_invoice(invoice_id))

        number = session.invoice_number or (existing.invoice_number if existing else None)
        if not number:
            number = await self._call(
                "reserve_invoice_number", self._backend.reserve_invoice_number(profile.id)
            )
        # Remember the number so a retried save reuses it
        session.invoice_number = number

        draft = session.draft.model_copy(
            update={
                "invoice": session.draft.invoice.model_copy(update={"invoice_number": number})
            }
        )
        row = invoice_row(draft, invoice_id, profile.id, session.transcript)
        if existing is None:
            row["status"] = InvoiceStatus.DRAFT.value

        await self._call("save_invoice", self._backend.upsert_invoice(row))
        await self._call(
            "save_line_items",
            self._backend.replace_line_items(invoice_id, line_item_rows(draft, invoice_id)),
        )
        await self._call("save_photos", self._backend.replace_photos(invoice_id, session.photos))

        session.set_draft(draft)
        session.dirty = False
        logger.info(
            "invoice_saved",
            invoice_id=invoice_id,
            invoice_number=number,
            line_items=len(draft.line_items),
        )
        return SavedInvoice(invoice_id=invoice_id, invoice_number=number)

    def _clear(self, session: DraftSession) -> None:
        if self._sessions is not None:
            self._sessions.clear(session.draft_id, session.user_id)

    async def _render_pdf(
        self, draft: InvoiceDraft, profile: BusinessProfile, invoice_number: str
    ) -> bytes:
        return await asyncio.to_thread(render_invoice_pdf, draft, profile, invoice_number)

    async def _store_pdf(self, invoice_id: str, pdf: bytes) -> None:
        """Keep a copy of the sent PDF. Failure here does not undo the send."""
        try:
            user_id = await self._backend.current_user_id()
            path = f"{user_id}/{invoice_id}.pdf"
            await self._backend.upload_object(
                self._settings.pdf_bucket, path, pdf, "application/pdf", upsert=True
            )
        except BackendError as e:
            logger.warning("pdf_upload_failed", invoice_id=invoice_id, error=str(e))

    async def _email(
        self,
        draft: InvoiceDraft,
        profile: BusinessProfile,
        invoice_number: str,
        reply_to: str | None,
    ) -> bytes:
        pdf = await self._render_pdf(draft, profile, invoice_number)
        message = InvoiceEmail.from_draft(
            draft,
            invoice_number=invoice_number,
            business_name=profile.trading_name,
            pdf=pdf,
            reply_to=reply_to,
            abn=profile.abn,
            payment_link=profile.payment_link,
        )
        await self._mailer.send_invoice_email(message)
        return pdf

    # === Draft flows ===

    async def save_draft(self, session: DraftSession) -> SavedInvoice:
        """Persist the draft as an invoice with status ``draft``.

        Raises:
            InvoiceValidationError: If the customer name or a description is blank.
            NotFoundError: If no usable business profile is selected.
            UpstreamError: If the backend fails; the session is kept for retry.
        """
        validate_for_save(session)
        profile = await self._require_profile(session.selected_profile_id)
        saved = await self._persist(session, profile)
        self._clear(session)
        return saved

    async def send_draft(self, session: DraftSession, reply_to: str | None = None) -> SavedInvoice:
        """Persist, email and mark the invoice as sent.

        If the email fails the invoice stays a draft and the session is kept,
        so the user can fix the problem and send again.
        """
        validate_for_save(session)
        if not is_sendable(session.draft):
            raise InvoiceValidationError(
                "Add a price to every line item and at least one customer email before sending"
            )
        profile = await self._require_profile(session.selected_profile_id)
        saved = await self._persist(session, profile)

        pdf = await self._email(session.draft, profile, saved.invoice_number, reply_to)
        await self._call(
            "mark_sent",
            self._backend.update_invoice_status(saved.invoice_id, InvoiceStatus.SENT),
        )
        logger.info(
            "invoice_sent", invoice_id=saved.invoice_id, invoice_number=saved.invoice_number
        )

        await self._store_pdf(saved.invoice_id, pdf)
        self._clear(session)
        return saved

    # === Persisted invoice flows ===

    async def _load_record(self, invoice_id: str) -> InvoiceRecord:
        record = await self._call("load_invoice", self._backend.get_invoice(invoice_id))
        if record is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", user_message="Invoice not found")
        return record

    async def load_draft(self, invoice_id: str) -> tuple[InvoiceDraft, InvoiceRecord]:
        """Load a saved invoice as a draft together with its header row."""
        record = await self._load_record(invoice_id)
        items = await self._call(
            "load_line_items", self._backend.get_invoice_line_items(invoice_id)
        )
        return draft_from_record(record, items), record

    async def render_pdf(self, invoice_id: str) -> tuple[bytes, str]:
        """Render a saved invoice. Returns the PDF and its invoice number."""
        draft, record = await self.load_draft(invoice_id)
        profile = await self._require_profile(record.business_profile_id)
        pdf = await self._render_pdf(draft, profile, record.invoice_number)
        return pdf, record.invoice_number

    async def send_invoice(self, invoice_id: str, reply_to: str | None = None) -> SavedInvoice:
        """Email an already saved invoice and mark it sent."""
        draft, record = await self.load_draft(invoice_id)
        if record.status in _CLOSED_STATUSES:
            raise InvoiceValidationError(f"Cannot send a {record.status.value} invoice")
        if not is_sendable(draft):
            raise InvoiceValidationError(
                "Add a price to every line item and at least one customer email before sending"
            )
        profile = await self._require_profile(record.business_profile_id)

        pdf = await self._email(draft, profile, record.invoice_number, reply_to)
        if record.status is InvoiceStatus.DRAFT:
            await self._call(
                "mark_sent", self._backend.update_invoice_status(invoice_id, InvoiceStatus.SENT)
            )
        logger.info("invoice_sent", invoice_id=invoice_id, invoice_number=record.invoice_number)

        await self._store_pdf(invoice_id, pdf)
        return SavedInvoice(invoice_id=invoice_id, invoice_number=record.invoice_number)

    async def send_reminder(
        self,
        invoice_id: str,
        reply_to: str | None = None,
        reminder_type: ReminderType = ReminderType.MANUAL,
        today: date | None = None,
    ) -> ReminderOutcome:
        """Email a payment reminder for a saved invoice.

        Raises:
            InvoiceValidationError: If the invoice is paid, cancelled or has
                no customer email.
        """
        draft, record = await self.load_draft(invoice_id)
        if record.status in _CLOSED_STATUSES:
            raise InvoiceValidationError("Cannot send reminder for paid or cancelled invoice")
        recipients = [e.strip() for e in draft.customer.emails if e.strip()]
        if not recipients:
            raise InvoiceValidationError("No customer email addresses")

        profile = await self._require_profile(record.business_profile_id)
        days_overdue = days_past_due(record.due_date, today or date.today())

        pdf = await self._render_pdf(draft, profile, record.invoice_number)
        message = InvoiceEmail.from_draft(
            draft,
            invoice_number=record.invoice_number,
            business_name=profile.trading_name,
            pdf=pdf,
            reply_to=reply_to,
            abn=profile.abn,
            payment_link=profile.payment_link,
        )
        await self._mailer.send_reminder_email(message, days_overdue)

        try:
            recorded = await self._backend.record_reminder(
                invoice_id, reminder_type.value, days_overdue
            )
        except BackendError as e:
            logger.warning("reminder_not_recorded", invoice_id=invoice_id, error=str(e))
            recorded = False

        if days_overdue > 0 and record.status is InvoiceStatus.SENT:
            await self._call(
                "mark_overdue",
                self._backend.update_invoice_status(invoice_id, InvoiceStatus.OVERDUE),
            )

        logger.info(
            "reminder_sent",
            invoice_id=invoice_id,
            reminder_type=reminder_type.value,
            days_overdue=days_overdue,
            recorded=recorded,
        )
        return ReminderOutcome(
            invoice_id=invoice_id,
            recipients=recipients,
            days_overdue=days_overdue,
            recorded=recorded,
        )

    async def update_overdue(self, today: date | None = None) -> int:
        """Mark sent invoices past their due date as overdue."""
        updated = await self._call(
            "update_overdue", self._backend.mark_overdue(today or date.today())
        )
        logger.info("overdue_invoices_updated", count=updated)
        return updated

    async def reminder_settings(self, profile_id: str) -> ReminderSettings:
        """The profile's reminder schedule, or the defaults when none is stored."""
        try:
            settings = await self._backend.get_reminder_settings(profile_id)
        except BackendError as e:
            logger.warning("reminder_settings_unavailable", profile_id=profile_id, error=str(e))
            settings = None
        return settings or ReminderSettings()

    # === Status changes ===

    async def _change_status(self, record: InvoiceRecord, status: InvoiceStatus) -> InvoiceRecord:
        updated = await self._call(
            "update_status", self._backend.update_invoice_status(record.id, status)
        )
        logger.info(
            "invoice_status_changed",
            invoice_id=record.id,
            old_status=record.status.value,
            new_status=status.value,
        )
        return updated or record.model_copy(update={"status": status})

    async def mark_paid(self, invoice_id: str) -> InvoiceRecord:
        """Record payment of a sent or overdue invoice.

        Raises:
            InvoiceValidationError: If the invoice is a draft, paid or cancelled.
        """
        record = await self._load_record(invoice_id)
        if record.status not in _OPEN_STATUSES:
            raise InvoiceValidationError(
                f"Cannot mark a {record.status.value} invoice as paid",
                user_message="Only sent or overdue invoices can be marked as paid",
            )
        return await self._change_status(record, InvoiceStatus.PAID)

    async def cancel(self, invoice_id: str) -> InvoiceRecord:
        """Cancel an unpaid invoice. There is no way back from cancelled."""
        record = await self._load_record(invoice_id)
        if record.status in _CLOSED_STATUSES:
            raise InvoiceValidationError(f"Cannot cancel a {record.status.value} invoice")
        return await self._change_status(record, InvoiceStatus.CANCELLED)

    async def invoice_stats(self) -> InvoiceStats:
        records = await self._call("list_invoices", self._backend.list_invoices())
        return summarise_invoices(records)

    # === Automatic reminders ===

    async def _due_reminder(
        self,
        record: InvoiceRecord,
        today: date,
        schedules: dict[str, ReminderSettings | None],
    ) -> ReminderType | None:
        """The automatic reminder to send for ``record`` today, if any."""
        profile_id = record.business_profile_id
        if not profile_id:
            return None
        if profile_id not in schedules:
            schedules[profile_id] = await self._call(
                "load_reminder_settings", self._backend.get_reminder_settings(profile_id)
            )
        schedule = schedules[profile_id]
        if schedule is None:
            return None
        reminder_type = reminder_due_today(schedule, record.due_date, today)
        if reminder_type is None:
            return None
        already_sent = await self._call(
            "check_reminder_log",
            self._backend.reminder_sent_on(record.id, reminder_type.value, today),
        )
        return None if already_sent else reminder_type

    async def process_reminders(self, today: date | None = None) -> ReminderSweep:
        """Send the automatic payment reminders that fall on ``today``.

        Every sent or overdue invoice is checked against its business
        profile's stored reminder schedule. Profiles without a stored
        schedule get no automatic reminders, and nothing is sent when the
        reminder tables are not installed. A reminder type goes out at most
        once a day per invoice. A failure on one invoice is collected in
        ``errors`` and the sweep carries on.
        """
        today = today or date.today()
        sweep = ReminderSweep()
        if not await self._call("check_reminders", self._backend.supports_reminders()):
            logger.info("reminder_sweep_skipped", reason="reminder tables not installed")
            return sweep

        invoices = await self._call("list_open_invoices", self._backend.list_open_invoices())
        schedules: dict[str, ReminderSettings | None] = {}
        for record in invoices:
            try:
                reminder_type = await self._due_reminder(record, today, schedules)
                if reminder_type is None:
                    sweep.skipped += 1
                    continue
                await self.send_reminder(record.id, reminder_type=reminder_type, today=today)
            except InvoiceError as e:
                logger.warning("automatic_reminder_failed", invoice_id=record.id, error=str(e))
                sweep.errors.append(f"{record.invoice_number}: {e}")
                continue
            sweep.sent.append(record.invoice_number)

        logger.info(
            "reminder_sweep_finished",
            sent=len(sweep.sent),
            skipped=sweep.skipped,
            errors=len(sweep.errors),
        )
        return sweep

    # === Public payment page ===

    async def payment_details(self, invoice_id: str) -> tuple[InvoiceRecord, BusinessProfile]:
        """The invoice and the payee's bank details for the payment page.

        Drafts have not been issued to anyone, so they are reported as not found.
        """
        record = await self._load_record(invoice_id)
        if record.status is InvoiceStatus.DRAFT:
            raise NotFoundError(
                f"Invoice {invoice_id} has not been issued", user_message="Invoice not found"
            )
        profile = await self._require_profile(record.business_profile_id)
        return record, profile
