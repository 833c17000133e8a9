"""Configuration module for the invoicing service."""

from tradie_invoices.config.logging import configure_logging, get_logger
from tradie_invoices.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "configure_logging", "get_logger"]
