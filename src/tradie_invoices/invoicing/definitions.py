"""JSON schema and system prompts for invoice drafting and correction.

The schema is written for strict structured output: every object forbids
additional properties and lists all of its keys as required, with optional
values expressed as ``anyOf [..., null]``. Responses are still re-validated
locally against the pydantic models.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from tradie_invoices.invoicing.classification import describe_rules
from tradie_invoices.invoicing.models import ItemType, Unit


def _nullable(schema: dict[str, Any], description: str | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {"anyOf": [schema, {"type": "null"}]}
    if description:
        result["description"] = description
    return result


INVOICE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "customer": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "name": {"type": "string", "description": "Customer name"},
                "emails": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Customer email addresses",
                },
                "address": _nullable({"type": "string"}, "Customer address if mentioned"),
                "abn": _nullable({"type": "string"}, "Customer ABN if mentioned"),
            },
            "required": ["name", "emails", "address", "abn"],
        },
        "invoice": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "invoice_number": _nullable(
                    {"type": "string"}, "Assigned invoice number, null for new drafts"
                ),
                "invoice_date": {
                    "type": "string",
                    "description": "Invoice date in YYYY-MM-DD format",
                },
                "due_date": {"type": "string", "description": "Due date in YYYY-MM-DD format"},
                "job_address": _nullable({"type": "string"}, "Job site address"),
                "gst_enabled": {"type": "boolean", "description": "Whether GST applies"},
                "prices_include_gst": _nullable(
                    {"type": "boolean"}, "Whether line item prices already include GST"
                ),
            },
            "required": [
                "invoice_number",
                "invoice_date",
                "due_date",
                "job_address",
                "gst_enabled",
                "prices_include_gst",
            ],
        },
        "line_items": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "description": {"type": "string"},
                    "quantity": {"type": "number"},
                    "unit": {"type": "string", "enum": [u.value for u in Unit]},
                    "unit_price": _nullable(
                        {"type": "number"}, "Price per unit - null if not stated"
                    ),
                    "item_type": {
                        "type": "string",
                        "enum": [t.value for t in ItemType],
                        "description": "Whether this is a labour or material line item",
                    },
                },
                "required": ["description", "quantity", "unit", "unit_price", "item_type"],
            },
        },
        "notes": _nullable({"type": "string"}),
        "changes_summary": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["customer", "invoice", "line_items", "notes", "changes_summary"],
}

DRAFT_SCHEMA_NAME = "invoice_draft"
CORRECTION_SCHEMA_NAME = "invoice_updated"


def build_draft_system_prompt(
    today: date,
    due_days: int = 14,
    default_hourly_rate: Decimal | None = None,
) -> str:
    """System prompt for turning a transcript into a new draft."""
    due_date = today + timedelta(days=due_days)
    rate_hint = (
        f"\nBusiness default hourly rate: ${default_hourly_rate}/hr\n"
        if default_hourly_rate is not None
        else ""
    )
    return f"""You are an invoice drafting assistant for Australian tradies.

RULES:
1. Return ONLY valid JSON matching the schema
2. Currency is always AUD
3. NEVER invent prices - set unit_price to null if not explicitly stated
4. Default invoice_date to "{today.isoformat()}"
5. Default due_date to "{due_date.isoformat()}" ({due_days} days)
6. Default gst_enabled to true, prices_include_gst to null, invoice_number to null
7. Common units: hr (hours), ea (each), m (metres)
8. Parse quantities carefully - "2 hours" = quantity: 2, unit: "hr"
9. If customer name not stated, use "Customer"
10. If email not stated, use empty array []
{rate_hint}
{describe_rules()}

changes_summary should be empty array for initial drafts."""


CORRECTION_SYSTEM_PROMPT = f"""You update existing invoice JSON based on user correction requests.

RULES:
1. Return ONLY valid JSON matching the schema
2. PRESERVE all fields unless explicitly requested to change
3. NEVER change unit_price unless user explicitly states a new price
4. NEVER change quantities unless user explicitly requests it
5. NEVER add new line items unless user explicitly requests it
6. NEVER remove line items unless user explicitly requests it
7. NEVER change item_type unless the user explicitly asks to reclassify an item
8. New line items get an item_type from the rules below
9. Populate changes_summary with one human-readable entry per change made,
   or an empty array if nothing changed

{describe_rules()}

Example changes_summary entries:
- "Changed labour hours from 2 to 2.5"
- "Removed callout fee line item"
- "Updated customer name to John Smith"
- "Split labour into two items: install and testing"
- "Changed customer email to new@example.com\""""


def build_draft_user_prompt(transcript: str) -> str:
    return f'Create an invoice from this voice input:\n\n"{transcript}"'


def build_correction_user_prompt(current_invoice_json: str, correction_text: str) -> str:
    return (
        f"Current invoice:\n{current_invoice_json}\n\n"
        f'Change request:\n"{correction_text}"'
    )
