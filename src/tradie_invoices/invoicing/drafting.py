"""Turn a dictated job description into a new invoice draft."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import structlog

from tradie_invoices.clients.base import LLMClientError, StructuredLLMClient
from tradie_invoices.config import get_settings
from tradie_invoices.invoicing.classification import classify_line_items
from tradie_invoices.invoicing.customers import PLACEHOLDER_NAME, CustomerResolver
from tradie_invoices.invoicing.definitions import (
    DRAFT_SCHEMA_NAME,
    INVOICE_SCHEMA,
    build_draft_system_prompt,
    build_draft_user_prompt,
)
from tradie_invoices.invoicing.errors import (
    InvoiceValidationError,
    SchemaViolationError,
    UpstreamError,
)
from tradie_invoices.invoicing.models import InvoiceDraft, parse_draft_payload

logger = structlog.get_logger(__name__)


class DraftGenerator:
    """Generates drafts through a structured-output LLM.

    The LLM only proposes; the response is re-validated against the draft
    model, every line item is re-classified locally and the customer is
    enriched from saved clients when a resolver is available.
    """

    def __init__(
        self,
        llm: StructuredLLMClient,
        resolver: CustomerResolver | None = None,
        due_days: int | None = None,
    ):
        self._llm = llm
        self._resolver = resolver
        self._due_days = due_days if due_days is not None else get_settings().default_due_days

    async def generate(
        self,
        transcript: str,
        default_hourly_rate: Decimal | None = None,
        today: date | None = None,
    ) -> InvoiceDraft:
        """Draft an invoice from ``transcript``.

        Raises:
            InvoiceValidationError: If the transcript is blank.
            SchemaViolationError: If the LLM response does not fit the schema.
            UpstreamError: If the LLM call itself fails.
        """
        if not transcript or not transcript.strip():
            raise InvoiceValidationError("No transcript provided")

        today = today or date.today()
        system_prompt = build_draft_system_prompt(today, self._due_days, default_hourly_rate)

        try:
            response = await self._llm.generate_structured(
                system_prompt=system_prompt,
                user_prompt=build_draft_user_prompt(transcript.strip()),
                schema_name=DRAFT_SCHEMA_NAME,
                schema=INVOICE_SCHEMA,
            )
        except LLMClientError as e:
            logger.error("draft_generation_failed", provider=e.provider, error=str(e))
            raise UpstreamError(str(e), details=e.details) from e

        try:
            draft = parse_draft_payload(response.content)
        except SchemaViolationError:
            logger.warning("draft_schema_violation", stop_reason=response.stop_reason)
            raise

        draft = self._post_process(draft)
        if self._resolver is not None:
            draft = await self._resolver.enrich(draft)

        logger.info(
            "draft_generated",
            line_items=len(draft.line_items),
            missing_prices=sum(1 for i in draft.line_items if i.unit_price is None),
        )
        return draft

    def _post_process(self, draft: InvoiceDraft) -> InvoiceDraft:
        customer = draft.customer
        if not customer.name.strip():
            customer = customer.model_copy(update={"name": PLACEHOLDER_NAME})
        return draft.model_copy(
            update={
                "customer": customer,
                "line_items": classify_line_items(draft.line_items),
                "changes_summary": [],
            }
        )
