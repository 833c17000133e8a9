"""Pytest configuration and fixtures."""

import json
import os
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-test-key")
os.environ.setdefault("RESEND_API_KEY", "re_test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test")

from tradie_invoices.backend import BusinessProfile, StoredCustomer  # noqa: E402
from tradie_invoices.clients.openai_client import OpenAIResponse  # noqa: E402
from tradie_invoices.invoicing.models import (  # noqa: E402
    Customer,
    InvoiceDraft,
    InvoiceMeta,
    ItemType,
    LineItem,
    Unit,
)

TODAY = date(2025, 3, 10)


def make_llm(*payloads):
    """Fake structured LLM client returning ``payloads`` in order."""
    llm = AsyncMock()
    llm.generate_structured = AsyncMock(
        side_effect=[
            OpenAIResponse(
                content=p if isinstance(p, str) else json.dumps(p),
                stop_reason="end_turn",
                usage={"input_tokens": 10, "output_tokens": 20},
            )
            for p in payloads
        ]
    )
    return llm


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def sample_draft():
    """Draft with a priced labour line and an unpriced material line."""
    return InvoiceDraft(
        customer=Customer(name="John Smith", emails=["john@example.com"]),
        invoice=InvoiceMeta(invoice_date=TODAY, due_date=date(2025, 3, 24)),
        line_items=[
            LineItem(
                description="Labour",
                quantity=Decimal("2"),
                unit=Unit.HOUR,
                unit_price=Decimal("95"),
                item_type=ItemType.LABOUR,
            ),
            LineItem(
                description="Copper pipe",
                quantity=Decimal("3"),
                unit=Unit.METRE,
                unit_price=None,
                item_type=ItemType.MATERIAL,
            ),
        ],
    )


@pytest.fixture
def sendable_draft(sample_draft):
    """Every item priced and a recipient present."""
    items = list(sample_draft.line_items)
    items[1] = items[1].model_copy(update={"unit_price": Decimal("12.50")})
    return sample_draft.model_copy(update={"line_items": items})


@pytest.fixture
def draft_payload(sample_draft):
    """The sample draft as the LLM would return it."""
    return sample_draft.to_wire()


@pytest.fixture
def business_profile():
    return BusinessProfile(
        id="profile-1",
        user_id="user-1",
        trading_name="Sparky Bros",
        business_name="Sparky Bros Pty Ltd",
        abn="51 824 753 556",
        address="1 Main St, Brisbane QLD 4000",
        gst_registered=True,
        default_hourly_rate=Decimal("95"),
        bank_bsb="062-000",
        bank_account="12345678",
        payid="pay@sparky.example",
        payment_link="https://pay.example.com/sparky",
        default_footer_note="Thanks for your business",
        is_default=True,
    )


@pytest.fixture
def stored_customers():
    return [
        StoredCustomer(id="c-1", name="John", emails=["john@example.com"]),
        StoredCustomer(
            id="c-2",
            name="John Smith-Jones Pty Ltd",
            emails=["accounts@smithjones.example"],
            address="9 Side St",
        ),
    ]


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.post = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def llm_factory():
    """Build fake LLM clients from canned payloads."""
    return make_llm
