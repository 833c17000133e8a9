"""Tests for customer resolution."""

from unittest.mock import AsyncMock

import pytest

from tradie_invoices.backend import BackendError, StoredCustomer
from tradie_invoices.invoicing.customers import (
    CustomerResolver,
    enrich_customer,
    match_customer,
)
from tradie_invoices.invoicing.models import Customer


class TestMatchCustomer:
    """Tests for the tie-break heuristic."""

    def test_exact_match_wins(self, stored_customers):
        """Searching 'John' returns 'John', not the longer company name."""
        john = stored_customers[0]

        assert match_customer("john", [john], stored_customers) is john

    def test_shortest_containing_name(self, stored_customers):
        assert match_customer("Smith", [], stored_customers) is stored_customers[1]

    def test_shortest_wins_without_exact(self):
        candidates = [
            StoredCustomer(id="1", name="Jo Bloggs Plumbing"),
            StoredCustomer(id="2", name="Jo Bloggs"),
        ]

        assert match_customer("Bloggs", [], candidates).id == "2"

    def test_equal_length_keeps_name_order(self):
        candidates = [
            StoredCustomer(id="1", name="Ann Lee"),
            StoredCustomer(id="2", name="Ann Kim"),
        ]

        assert match_customer("Ann", [], candidates).id == "1"

    def test_two_exact_matches_fall_back(self):
        """Duplicate exact names are ambiguous, so the substring rule applies."""
        dupes = [StoredCustomer(id="1", name="Sam"), StoredCustomer(id="2", name="sam")]

        assert match_customer("Sam", dupes, dupes).id == "1"

    def test_no_match(self, stored_customers):
        assert match_customer("Zed", [], stored_customers) is None
        assert match_customer("   ", [], stored_customers) is None

    def test_limit_applies(self):
        candidates = [
            StoredCustomer(id="1", name="Acme Electrical Services"),
            StoredCustomer(id="2", name="Acme"),
        ]

        assert match_customer("Acme", [], candidates, limit=1).id == "1"


class TestEnrichCustomer:
    def test_backfills_missing_fields(self, sample_draft, stored_customers):
        draft = sample_draft.model_copy(update={"customer": Customer(name="John Smith-Jones")})

        enriched = enrich_customer(draft, stored_customers[1])

        assert enriched.customer.emails == ["accounts@smithjones.example"]
        assert enriched.customer.address == "9 Side St"
        assert draft.customer.emails == []

    def test_keeps_spoken_details(self, sample_draft, stored_customers):
        enriched = enrich_customer(sample_draft, stored_customers[1])

        assert enriched.customer.emails == ["john@example.com"]
        assert enriched.customer.address == "9 Side St"


class TestCustomerResolver:
    """Tests for CustomerResolver."""

    @pytest.mark.asyncio
    async def test_exact_lookup_short_circuits(self, stored_customers):
        backend = AsyncMock()
        backend.find_customers_by_name = AsyncMock(return_value=[stored_customers[0]])
        resolver = CustomerResolver(backend)

        match = await resolver.resolve("John")

        assert match is stored_customers[0]
        backend.find_customers_by_name.assert_awaited_once_with("John", exact=True, limit=2)

    @pytest.mark.asyncio
    async def test_falls_back_to_substring(self, stored_customers):
        backend = AsyncMock()
        backend.find_customers_by_name = AsyncMock(side_effect=[[], [stored_customers[1]]])
        resolver = CustomerResolver(backend, limit=3)

        match = await resolver.resolve("Smith-Jones")

        assert match is stored_customers[1]
        backend.find_customers_by_name.assert_awaited_with("Smith-Jones", exact=False, limit=3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", [None, "", "  ", "Customer"])
    async def test_placeholder_names_skip_lookup(self, name):
        backend = AsyncMock()
        resolver = CustomerResolver(backend)

        assert await resolver.resolve(name) is None
        backend.find_customers_by_name.assert_not_called()

    @pytest.mark.asyncio
    async def test_backend_failure_is_no_match(self):
        backend = AsyncMock()
        backend.find_customers_by_name = AsyncMock(side_effect=BackendError("down", 503))
        resolver = CustomerResolver(backend)

        assert await resolver.resolve("John") is None

    @pytest.mark.asyncio
    async def test_enrich_draft(self, sample_draft, stored_customers):
        draft = sample_draft.model_copy(update={"customer": Customer(name="Smith-Jones")})
        backend = AsyncMock()
        backend.find_customers_by_name = AsyncMock(side_effect=[[], [stored_customers[1]]])

        enriched = await CustomerResolver(backend).enrich(draft)

        assert enriched.customer.name == "Smith-Jones"
        assert enriched.customer.emails == ["accounts@smithjones.example"]
