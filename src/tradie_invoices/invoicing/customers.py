"""Best-effort lookup of previously stored customers by spoken name.

Names come out of speech, so the lookup is a heuristic: a case-insensitive
exact match wins outright, otherwise the shortest stored name containing the
search term is taken ("John" is preferred over "John Smith-Jones Pty Ltd").
Not finding anyone is a normal outcome and never stops drafting.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

import structlog

from tradie_invoices.invoicing.models import InvoiceDraft

if TYPE_CHECKING:
    from tradie_invoices.backend.records import StoredCustomer

logger = structlog.get_logger(__name__)

PLACEHOLDER_NAME = "Customer"
DEFAULT_MATCH_LIMIT = 5


class CustomerLookup(Protocol):
    """The part of the backend the resolver needs."""

    async def find_customers_by_name(
        self, name: str, exact: bool = False, limit: int = 10
    ) -> list[StoredCustomer]: ...


def _normalise(name: str) -> str:
    return " ".join(name.split()).casefold()


def match_customer(
    term: str,
    exact_matches: Sequence[StoredCustomer],
    candidates: Sequence[StoredCustomer],
    limit: int = DEFAULT_MATCH_LIMIT,
) -> StoredCustomer | None:
    """Pick the best stored customer for ``term``.

    Args:
        term: Name as extracted from the transcript.
        exact_matches: Customers whose name equals ``term`` ignoring case.
        candidates: Customers whose name contains ``term``, in name order.
        limit: How many substring candidates are considered.

    Returns:
        The single exact match, else the shortest containing name, else None.
    """
    needle = _normalise(term)
    if not needle:
        return None

    exact = [c for c in exact_matches if _normalise(c.name) == needle]
    if len(exact) == 1:
        return exact[0]

    containing = [c for c in candidates if needle in _normalise(c.name)][:limit]
    if not containing:
        return None
    # min() keeps the first of equal lengths, so name order breaks ties
    return min(containing, key=lambda c: len(c.name.strip()))


def enrich_customer(draft: InvoiceDraft, match: StoredCustomer) -> InvoiceDraft:
    """Backfill empty contact details on the draft from a stored customer.

    Anything the transcript already provided is kept as is.
    """
    customer = draft.customer
    update: dict[str, object] = {}
    if not customer.emails and match.emails:
        update["emails"] = list(match.emails)
    if not customer.address and match.address:
        update["address"] = match.address
    if not update:
        return draft
    return draft.model_copy(update={"customer": customer.model_copy(update=update)})


class CustomerResolver:
    """Resolve drafted customer names against the user's saved clients."""

    def __init__(self, backend: CustomerLookup, limit: int = DEFAULT_MATCH_LIMIT):
        self._backend = backend
        self._limit = limit

    async def resolve(self, name: str | None) -> StoredCustomer | None:
        """Return the best stored match for ``name``, or None.

        Never raises: backend failures are logged and treated as no match.
        """
        if not name or not name.strip() or name.strip() == PLACEHOLDER_NAME:
            return None

        term = name.strip()
        try:
            exact = await self._backend.find_customers_by_name(term, exact=True, limit=2)
            if len(exact) == 1:
                match = match_customer(term, exact, [], self._limit)
            else:
                candidates = await self._backend.find_customers_by_name(
                    term, exact=False, limit=self._limit
                )
                match = match_customer(term, exact, candidates, self._limit)
        except Exception as e:
            logger.warning("customer_lookup_failed", name=term, error=str(e))
            return None

        if match is None:
            logger.debug("customer_not_found", name=term)
        else:
            logger.info("customer_matched", name=term, customer_id=match.id)
        return match

    async def enrich(self, draft: InvoiceDraft) -> InvoiceDraft:
        """Resolve the draft's customer and backfill what is missing."""
        match = await self.resolve(draft.customer.name)
        if match is None:
            return draft
        return enrich_customer(draft, match)
