"""PDF rendering and email delivery for invoices."""

from tradie_invoices.delivery.email import (
    EmailDeliveryError,
    EmailLine,
    InvoiceEmail,
    ResendClient,
)
from tradie_invoices.delivery.pdf import render_invoice_pdf

__all__ = [
    "EmailDeliveryError",
    "EmailLine",
    "InvoiceEmail",
    "ResendClient",
    "render_invoice_pdf",
]
