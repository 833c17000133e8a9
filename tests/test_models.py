"""Tests for the draft model and strict payload parsing."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from tradie_invoices.invoicing.errors import SchemaViolationError
from tradie_invoices.invoicing.models import (
    InvoiceDraft,
    ItemType,
    LineItem,
    Unit,
    parse_draft_payload,
)


class TestInvoiceDraft:
    """Tests for InvoiceDraft."""

    def test_empty_draft_dates(self):
        draft = InvoiceDraft.empty(date(2025, 1, 30), due_days=14)

        assert draft.invoice.invoice_date == date(2025, 1, 30)
        assert draft.invoice.due_date == date(2025, 2, 13)
        assert draft.customer.name == "Customer"
        assert draft.line_items == []
        assert draft.invoice.gst_enabled is True

    def test_to_wire_uses_numbers(self, sample_draft):
        """Amounts serialise as JSON numbers and dates as ISO strings."""
        wire = sample_draft.to_wire()

        assert wire["line_items"][0]["unit_price"] == 95.0
        assert wire["line_items"][1]["unit_price"] is None
        assert wire["invoice"]["invoice_date"] == "2025-03-10"
        assert wire["line_items"][0]["unit"] == "hr"

    def test_line_item_rejects_negative_quantity(self):
        with pytest.raises(ValidationError):
            LineItem(description="Labour", quantity=Decimal("-1"))

    def test_line_item_requires_description(self):
        with pytest.raises(ValidationError):
            LineItem(description="")

    def test_blank_line_item(self):
        item = LineItem.blank()

        assert item.description == ""
        assert item.unit_price is None
        assert item.item_type is ItemType.LABOUR
        assert item.unit is Unit.EACH

    def test_item_type_toggle(self):
        assert ItemType.LABOUR.toggled() is ItemType.MATERIAL
        assert ItemType.MATERIAL.toggled() is ItemType.LABOUR


class TestParseDraftPayload:
    """Tests for parse_draft_payload."""

    def test_parses_dict(self, draft_payload, sample_draft):
        assert parse_draft_payload(draft_payload) == sample_draft

    def test_parses_json_text(self, draft_payload, sample_draft):
        import json

        assert parse_draft_payload(json.dumps(draft_payload)) == sample_draft

    def test_invalid_json(self):
        with pytest.raises(SchemaViolationError):
            parse_draft_payload("{not json")

    def test_non_object(self):
        with pytest.raises(SchemaViolationError, match="JSON object"):
            parse_draft_payload("[1, 2]")

    def test_unknown_field_rejected(self, draft_payload):
        draft_payload["line_items"][0]["discount"] = 5

        with pytest.raises(SchemaViolationError) as exc_info:
            parse_draft_payload(draft_payload)

        assert exc_info.value.details
        assert exc_info.value.retryable is True

    def test_unknown_unit_rejected(self, draft_payload):
        draft_payload["line_items"][0]["unit"] = "fortnight"

        with pytest.raises(SchemaViolationError):
            parse_draft_payload(draft_payload)

    def test_missing_invoice_rejected(self, draft_payload):
        del draft_payload["invoice"]

        with pytest.raises(SchemaViolationError):
            parse_draft_payload(draft_payload)
