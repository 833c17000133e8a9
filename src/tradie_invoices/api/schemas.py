"""Request and response bodies for the HTTP API."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from tradie_invoices.backend.records import BusinessProfile, InvoiceRecord, InvoiceStatus, Photo
from tradie_invoices.invoicing.models import Amount, InvoiceDraft, ItemType, LineItem, Unit
from tradie_invoices.invoicing.reminders import ReminderType
from tradie_invoices.invoicing.session import DraftSession
from tradie_invoices.invoicing.totals import InvoiceTotals
from tradie_invoices.invoicing.validation import format_bsb
from tradie_invoices.workflow import InvoiceStats


class RequestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# === Drafts ===


class DraftCreate(RequestModel):
    transcript: str
    business_profile_id: str | None = None


class ManualDraftCreate(RequestModel):
    business_profile_id: str | None = None


class CustomerPatch(RequestModel):
    name: str | None = None
    emails: list[str] | None = None
    address: str | None = None
    abn: str | None = None


class InvoiceMetaPatch(RequestModel):
    invoice_date: date | None = None
    due_date: date | None = None
    job_address: str | None = None
    gst_enabled: bool | None = None
    prices_include_gst: bool | None = None


class NotesUpdate(RequestModel):
    notes: str | None = None


class ProfileSelect(RequestModel):
    business_profile_id: str


class LineItemInput(RequestModel):
    """A line as edited in the UI; the description may still be empty."""

    description: str = ""
    quantity: Amount = Field(default=Decimal("1"), ge=0)
    unit: Unit = Unit.EACH
    unit_price: Amount | None = Field(default=None, ge=0)
    item_type: ItemType = ItemType.LABOUR

    def to_line_item(self) -> LineItem:
        if self.description.strip():
            return LineItem(**self.model_dump())
        return LineItem.model_construct(**self.model_dump())


class CatalogItemAdd(RequestModel):
    material_id: str


class CorrectionCreate(RequestModel):
    correction_text: str


class SendRequest(RequestModel):
    reply_to: str | None = None


class ReminderRequest(RequestModel):
    reply_to: str | None = None
    reminder_type: ReminderType = ReminderType.MANUAL


class TotalsOut(BaseModel):
    subtotal: Amount
    exclusive_subtotal: Amount
    gst_amount: Amount
    total: Amount
    has_missing_prices: bool
    prices_include_gst: bool

    @classmethod
    def from_totals(cls, totals: InvoiceTotals) -> TotalsOut:
        shown = totals.rounded()
        return cls(
            subtotal=shown.subtotal,
            exclusive_subtotal=shown.exclusive_subtotal,
            gst_amount=shown.gst_amount,
            total=shown.total,
            has_missing_prices=shown.has_missing_prices,
            prices_include_gst=shown.prices_include_gst,
        )


class DraftOut(BaseModel):
    draft_id: str
    draft: InvoiceDraft
    totals: TotalsOut
    is_sendable: bool
    has_missing_prices: bool
    selected_profile_id: str | None = None
    invoice_number: str | None = None
    photos: list[Photo] = Field(default_factory=list)
    correction_pending: bool = False

    @classmethod
    def from_session(cls, session: DraftSession) -> DraftOut:
        totals = session.totals
        return cls(
            draft_id=session.draft_id,
            draft=session.draft,
            totals=TotalsOut.from_totals(totals),
            is_sendable=session.is_sendable,
            has_missing_prices=totals.has_missing_prices,
            selected_profile_id=session.selected_profile_id,
            invoice_number=session.invoice_number,
            photos=session.photos,
            correction_pending=session.correction_pending,
        )


class CorrectionOut(DraftOut):
    changes_summary: list[str] = Field(default_factory=list)


class SavedOut(BaseModel):
    invoice_id: str
    invoice_number: str
    status: str


class ReminderOut(BaseModel):
    invoice_id: str
    recipients: list[str]
    days_overdue: int
    recorded: bool
    message: str


class OverdueOut(BaseModel):
    updated: int


class StatsOut(BaseModel):
    counts: dict[str, int]
    total_outstanding: Amount
    total_paid: Amount

    @classmethod
    def from_stats(cls, stats: InvoiceStats) -> StatsOut:
        return cls(
            counts=stats.counts,
            total_outstanding=stats.total_outstanding,
            total_paid=stats.total_paid,
        )


class ReminderSweepOut(BaseModel):
    sent: list[str]
    skipped: int
    errors: list[str]


class PaymentDetailsOut(BaseModel):
    """What a customer sees on the public payment page."""

    invoice_number: str
    status: InvoiceStatus
    trading_name: str
    customer_name: str | None
    invoice_date: date
    due_date: date
    total: Amount
    bank_bsb: str | None
    bank_account: str | None
    payid: str | None
    payment_link: str | None

    @classmethod
    def build(cls, record: InvoiceRecord, profile: BusinessProfile) -> PaymentDetailsOut:
        return cls(
            invoice_number=record.invoice_number,
            status=record.status,
            trading_name=profile.business_name or profile.trading_name,
            customer_name=record.customer_name,
            invoice_date=record.invoice_date,
            due_date=record.due_date,
            total=record.total,
            bank_bsb=format_bsb(profile.bank_bsb) if profile.bank_bsb else None,
            bank_account=profile.bank_account,
            payid=profile.payid,
            payment_link=profile.payment_link,
        )


# === Catalog ===


class ProfileIn(RequestModel):
    trading_name: str = Field(min_length=1)
    business_name: str | None = None
    abn: str | None = None
    address: str | None = None
    gst_registered: bool = True
    default_hourly_rate: Amount | None = Field(default=None, ge=0)
    bank_bsb: str | None = None
    bank_account: str | None = None
    payid: str | None = None
    payment_link: str | None = None
    default_footer_note: str | None = None
    is_default: bool = False
    logo_url: str | None = None


class ProfileUpdate(RequestModel):
    trading_name: str | None = Field(default=None, min_length=1)
    business_name: str | None = None
    abn: str | None = None
    address: str | None = None
    gst_registered: bool | None = None
    default_hourly_rate: Amount | None = Field(default=None, ge=0)
    bank_bsb: str | None = None
    bank_account: str | None = None
    payid: str | None = None
    payment_link: str | None = None
    default_footer_note: str | None = None
    is_default: bool | None = None
    logo_url: str | None = None


class ClientIn(RequestModel):
    name: str = Field(min_length=1)
    emails: list[str] = Field(default_factory=list)
    phone: str | None = None
    address: str | None = None
    notes: str | None = None


class ClientUpdate(RequestModel):
    name: str | None = Field(default=None, min_length=1)
    emails: list[str] | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None


class MaterialIn(RequestModel):
    name: str = Field(min_length=1)
    description: str | None = None
    default_unit: Unit = Unit.EACH
    default_unit_price: Amount | None = Field(default=None, ge=0)
    category: str | None = None


class MaterialUpdate(RequestModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    default_unit: Unit | None = None
    default_unit_price: Amount | None = Field(default=None, ge=0)
    category: str | None = None
