"""Invoice draft and totals engine."""

from tradie_invoices.invoicing.classification import (
    classify_item,
    classify_line_item,
    classify_line_items,
)
from tradie_invoices.invoicing.corrections import (
    CorrectionGuard,
    CorrectionReconciler,
    CorrectionResult,
    diff_drafts,
)
from tradie_invoices.invoicing.customers import CustomerResolver, enrich_customer, match_customer
from tradie_invoices.invoicing.drafting import DraftGenerator
from tradie_invoices.invoicing.errors import (
    CorrectionInProgressError,
    CorrectionRejectedError,
    InvoiceError,
    InvoiceValidationError,
    NotFoundError,
    SchemaViolationError,
    UpstreamError,
)
from tradie_invoices.invoicing.models import (
    CorrectionRequest,
    Customer,
    InvoiceDraft,
    InvoiceMeta,
    ItemType,
    LineItem,
    Unit,
    parse_draft_payload,
)
from tradie_invoices.invoicing.session import DraftSession, DraftSessionStore
from tradie_invoices.invoicing.totals import (
    GST_RATE,
    InvoiceTotals,
    compute_totals,
    is_sendable,
    line_total,
    totals_for,
)

__all__ = [
    # Model
    "Customer",
    "CorrectionRequest",
    "InvoiceDraft",
    "InvoiceMeta",
    "ItemType",
    "LineItem",
    "Unit",
    "parse_draft_payload",
    # Classification & totals
    "classify_item",
    "classify_line_item",
    "classify_line_items",
    "GST_RATE",
    "InvoiceTotals",
    "compute_totals",
    "is_sendable",
    "line_total",
    "totals_for",
    # Drafting, corrections & customers
    "DraftGenerator",
    "CorrectionGuard",
    "CorrectionReconciler",
    "CorrectionResult",
    "diff_drafts",
    "CustomerResolver",
    "enrich_customer",
    "match_customer",
    # Sessions
    "DraftSession",
    "DraftSessionStore",
    # Errors
    "InvoiceError",
    "InvoiceValidationError",
    "NotFoundError",
    "SchemaViolationError",
    "CorrectionRejectedError",
    "UpstreamError",
    "CorrectionInProgressError",
]
