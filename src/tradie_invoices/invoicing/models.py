"""Invoice draft data model.

The draft is the in-memory representation of an invoice-in-progress. The
same models validate LLM responses at the boundary, so every model forbids
unknown fields.
"""

from __future__ import annotations

import json
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic import ValidationError as PydanticValidationError

from tradie_invoices.invoicing.errors import SchemaViolationError

# Decimals travel as JSON numbers so the LLM sees 50, not "50"
Amount = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


class Unit(str, Enum):
    """Units of measure for line items."""

    HOUR = "hr"
    EACH = "ea"
    METRE = "m"
    SQUARE_METRE = "m2"
    CUBIC_METRE = "m3"
    KILOGRAM = "kg"
    LITRE = "l"


UNIT_LABELS: dict[Unit, str] = {
    Unit.HOUR: "hr",
    Unit.EACH: "ea",
    Unit.METRE: "m",
    Unit.SQUARE_METRE: "m²",
    Unit.CUBIC_METRE: "m³",
    Unit.KILOGRAM: "kg",
    Unit.LITRE: "L",
}


class ItemType(str, Enum):
    """Labour vs material tagging for line items."""

    LABOUR = "labour"
    MATERIAL = "material"

    def toggled(self) -> ItemType:
        return ItemType.MATERIAL if self is ItemType.LABOUR else ItemType.LABOUR


class DraftModel(BaseModel):
    """Base model: strict about unknown fields, immutable by convention."""

    model_config = ConfigDict(extra="forbid")


class LineItem(DraftModel):
    """A single billable line.

    ``unit_price`` of ``None`` means the price is unknown and must be filled
    in before sending; it is not the same as zero.
    """

    description: str = Field(min_length=1)
    quantity: Amount = Field(default=Decimal("1"), ge=0)
    unit: Unit = Unit.EACH
    unit_price: Amount | None = None
    item_type: ItemType = ItemType.LABOUR

    @classmethod
    def blank(cls) -> LineItem:
        """An empty row for the user to fill in.

        Built without validation because the description starts out empty;
        it must be filled in before the draft is saved.
        """
        return cls.model_construct(
            description="",
            quantity=Decimal("1"),
            unit=Unit.EACH,
            unit_price=None,
            item_type=ItemType.LABOUR,
        )


class Customer(DraftModel):
    """Customer details as extracted from speech or typed in."""

    name: str = "Customer"
    emails: list[str] = Field(default_factory=list)
    address: str | None = None
    abn: str | None = None


class InvoiceMeta(DraftModel):
    """Invoice header fields."""

    invoice_number: str | None = None
    invoice_date: date
    due_date: date
    job_address: str | None = None
    gst_enabled: bool = True
    prices_include_gst: bool | None = None


class InvoiceDraft(DraftModel):
    """Root aggregate for an invoice that has not been finalised."""

    customer: Customer = Field(default_factory=Customer)
    invoice: InvoiceMeta
    line_items: list[LineItem] = Field(default_factory=list)
    notes: str | None = None
    changes_summary: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls, today: date, due_days: int = 14) -> InvoiceDraft:
        """Return a blank draft dated today."""
        return cls(
            invoice=InvoiceMeta(
                invoice_date=today,
                due_date=today + timedelta(days=due_days),
            )
        )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON shape exchanged with the LLM and the API."""
        return self.model_dump(mode="json")


class CorrectionRequest(DraftModel):
    """A correction instruction paired with the draft it applies to."""

    draft: InvoiceDraft
    correction_text: str = Field(min_length=1)


def parse_draft_payload(raw: str | dict[str, Any]) -> InvoiceDraft:
    """Strictly parse an LLM response into an InvoiceDraft.

    Raises:
        SchemaViolationError: If the payload is not JSON or does not match
            the draft schema (including unknown fields).
    """
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise SchemaViolationError(f"Response is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise SchemaViolationError(
            f"Response must be a JSON object, got {type(data).__name__}"
        )

    try:
        return InvoiceDraft.model_validate(data)
    except PydanticValidationError as e:
        raise SchemaViolationError(
            "Response does not match the invoice schema",
            details=e.errors(include_url=False),
        ) from e
