"""Row models for records stored in the hosted Postgres backend."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from tradie_invoices.invoicing.models import Amount, ItemType, Unit


def _none_to_list(value: object) -> object:
    return [] if value is None else value


EmailList = Annotated[list[str], BeforeValidator(_none_to_list)]


class Record(BaseModel):
    """Base for backend rows; unknown columns are ignored."""

    model_config = ConfigDict(extra="ignore")


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class BusinessProfile(Record):
    """A trading identity invoices are issued under."""

    id: str
    user_id: str | None = None
    trading_name: str
    business_name: str | None = None
    abn: str | None = None
    address: str | None = None
    gst_registered: bool = True
    default_hourly_rate: Amount | None = None
    bank_bsb: str | None = None
    bank_account: str | None = None
    payid: str | None = None
    payment_link: str | None = None
    default_footer_note: str | None = None
    is_default: bool = False
    logo_url: str | None = None


class StoredCustomer(Record):
    """A previously saved client."""

    id: str
    user_id: str | None = None
    name: str
    emails: EmailList = Field(default_factory=list)
    phone: str | None = None
    address: str | None = None
    notes: str | None = None


class Material(Record):
    """An entry in the user's materials catalog."""

    id: str
    user_id: str | None = None
    name: str
    description: str | None = None
    default_unit: Unit = Unit.EACH
    default_unit_price: Amount | None = None
    category: str | None = None
    is_active: bool = True


class InvoiceRecord(Record):
    """A persisted invoice header."""

    id: str
    user_id: str | None = None
    business_profile_id: str | None = None
    client_id: str | None = None
    invoice_number: str
    status: InvoiceStatus = InvoiceStatus.DRAFT
    invoice_date: date
    due_date: date
    customer_name: str | None = None
    customer_emails: EmailList = Field(default_factory=list)
    customer_abn: str | None = None
    customer_address: str | None = None
    job_address: str | None = None
    subtotal: Amount = Decimal("0")
    gst_amount: Amount = Decimal("0")
    total: Amount = Decimal("0")
    gst_enabled: bool = True
    prices_include_gst: bool | None = None
    notes: str | None = None
    voice_transcript: str | None = None


class LineItemRecord(Record):
    """A persisted invoice line."""

    id: str | None = None
    invoice_id: str
    description: str
    quantity: Amount
    unit: Unit | None = None
    unit_price: Amount | None = None
    item_type: ItemType | None = None
    line_total: Amount | None = None
    sort_order: int = 0


class Photo(Record):
    """A job photo uploaded against a draft."""

    id: str
    storage_path: str
    filename: str
    url: str | None = None


class SavedInvoice(BaseModel):
    """Identifiers returned after a draft is persisted."""

    invoice_id: str
    invoice_number: str


class ReminderSettings(Record):
    """Automatic payment reminder schedule for a business profile."""

    auto_remind_before_days: int | None = 2
    auto_remind_on_due: bool = True
    auto_remind_after_days: list[int] = Field(default_factory=lambda: [7, 14])
