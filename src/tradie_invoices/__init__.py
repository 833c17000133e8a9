"""Tradie Invoices - voice-driven invoicing for Australian tradespeople."""

__version__ = "0.1.0"

from tradie_invoices.config import configure_logging, get_settings
from tradie_invoices.invoicing import (
    CorrectionReconciler,
    CustomerResolver,
    DraftGenerator,
    DraftSession,
    DraftSessionStore,
    InvoiceDraft,
    InvoiceTotals,
    LineItem,
    compute_totals,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "configure_logging",
    "get_settings",
    # Engine
    "InvoiceDraft",
    "LineItem",
    "InvoiceTotals",
    "compute_totals",
    "DraftGenerator",
    "CorrectionReconciler",
    "CustomerResolver",
    "DraftSession",
    "DraftSessionStore",
]
