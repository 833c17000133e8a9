"""Hosted backend access: Postgres rows, object storage and auth."""

from tradie_invoices.backend.records import (
    BusinessProfile,
    InvoiceRecord,
    InvoiceStatus,
    LineItemRecord,
    Material,
    Photo,
    ReminderSettings,
    SavedInvoice,
    StoredCustomer,
)
from tradie_invoices.backend.supabase_api import (
    AuthenticationError,
    BackendError,
    RateLimitError,
    SupabaseClient,
    format_invoice_number,
)

__all__ = [
    "AuthenticationError",
    "BackendError",
    "BusinessProfile",
    "InvoiceRecord",
    "InvoiceStatus",
    "LineItemRecord",
    "Material",
    "Photo",
    "RateLimitError",
    "ReminderSettings",
    "SavedInvoice",
    "StoredCustomer",
    "SupabaseClient",
    "format_invoice_number",
]
