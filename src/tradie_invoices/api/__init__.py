"""HTTP API for drafting, editing and sending invoices."""

from tradie_invoices.api.app import build_app, create_app

__all__ = ["build_app", "create_app"]
