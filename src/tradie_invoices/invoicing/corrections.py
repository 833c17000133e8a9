"""Apply natural-language corrections to a draft through the LLM.

The LLM is told to change only what the user asked for, but that is a prompt
constraint, not a guarantee. Every response is therefore re-validated against
the draft model and compared with the draft it replaces; a response that
touches prices, quantities, the item list or item types without the
correction text asking for it is rejected as a whole. The input draft is
never modified, so a failed correction leaves the session exactly as it was.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from tradie_invoices.clients.base import LLMClientError, StructuredLLMClient
from tradie_invoices.invoicing.classification import classify_line_item
from tradie_invoices.invoicing.definitions import (
    CORRECTION_SCHEMA_NAME,
    CORRECTION_SYSTEM_PROMPT,
    INVOICE_SCHEMA,
    build_correction_user_prompt,
)
from tradie_invoices.invoicing.errors import (
    CorrectionRejectedError,
    InvoiceValidationError,
    SchemaViolationError,
    UpstreamError,
)
from tradie_invoices.invoicing.models import (
    CorrectionRequest,
    InvoiceDraft,
    LineItem,
    parse_draft_payload,
)

logger = structlog.get_logger(__name__)


class ChangeKind(str, Enum):
    """What a single difference between two drafts touches."""

    FIELD = "field"
    PRICE = "price"
    QUANTITY = "quantity"
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    ITEM_TYPE = "item_type"


@dataclass(frozen=True)
class FieldChange:
    """One difference between the current and the corrected draft."""

    path: str
    kind: ChangeKind
    before: Any = None
    after: Any = None


@dataclass(frozen=True)
class CorrectionResult:
    """A replacement draft plus what changed."""

    draft: InvoiceDraft
    changes_summary: list[str] = field(default_factory=list)
    changes: tuple[FieldChange, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.changes)


@dataclass(frozen=True)
class ItemPairing:
    """How line items of two drafts correspond to each other."""

    matched: tuple[tuple[int, int], ...]
    removed: tuple[int, ...]
    added: tuple[int, ...]


def _key(description: str) -> str:
    return " ".join(description.split()).casefold()


def pair_line_items(before: list[LineItem], after: list[LineItem]) -> ItemPairing:
    """Match line items of ``before`` to ``after``.

    With equal counts items are matched by position, so an edited
    description is still the same item. Otherwise items are matched by
    description, and the leftovers count as removed or added.
    """
    if len(before) == len(after):
        return ItemPairing(
            matched=tuple((i, i) for i in range(len(before))),
            removed=(),
            added=(),
        )

    unused = list(range(len(after)))
    matched: list[tuple[int, int]] = []
    removed: list[int] = []
    for old_index, old_item in enumerate(before):
        key = _key(old_item.description)
        new_index = next((j for j in unused if _key(after[j].description) == key), None)
        if new_index is None:
            removed.append(old_index)
        else:
            unused.remove(new_index)
            matched.append((old_index, new_index))
    return ItemPairing(matched=tuple(matched), removed=tuple(removed), added=tuple(unused))


def _compare_fields(
    prefix: str, before: dict[str, Any], after: dict[str, Any]
) -> list[FieldChange]:
    return [
        FieldChange(f"{prefix}.{name}", ChangeKind.FIELD, before[name], after[name])
        for name in before
        if before[name] != after[name]
    ]


def _compare_items(index: int, old: LineItem, new: LineItem) -> list[FieldChange]:
    path = f"line_items[{index}]"
    changes = []
    if old.description != new.description or old.unit != new.unit:
        changes.append(
            FieldChange(
                path,
                ChangeKind.FIELD,
                (old.description, old.unit.value),
                (new.description, new.unit.value),
            )
        )
    if old.quantity != new.quantity:
        changes.append(
            FieldChange(f"{path}.quantity", ChangeKind.QUANTITY, old.quantity, new.quantity)
        )
    if old.unit_price != new.unit_price:
        changes.append(
            FieldChange(f"{path}.unit_price", ChangeKind.PRICE, old.unit_price, new.unit_price)
        )
    if old.item_type != new.item_type:
        changes.append(
            FieldChange(f"{path}.item_type", ChangeKind.ITEM_TYPE, old.item_type, new.item_type)
        )
    return changes


def diff_drafts(before: InvoiceDraft, after: InvoiceDraft) -> list[FieldChange]:
    """Structural differences between two drafts, ignoring changes_summary."""
    changes = _compare_fields(
        "customer", before.customer.model_dump(), after.customer.model_dump()
    )
    changes += _compare_fields("invoice", before.invoice.model_dump(), after.invoice.model_dump())
    if before.notes != after.notes:
        changes.append(FieldChange("notes", ChangeKind.FIELD, before.notes, after.notes))

    pairing = pair_line_items(before.line_items, after.line_items)
    for old_index, new_index in pairing.matched:
        changes += _compare_items(
            new_index, before.line_items[old_index], after.line_items[new_index]
        )
    for old_index in pairing.removed:
        item = before.line_items[old_index]
        changes.append(
            FieldChange(f"line_items[{old_index}]", ChangeKind.ITEM_REMOVED, item.description)
        )
    for new_index in pairing.added:
        item = after.line_items[new_index]
        changes.append(
            FieldChange(f"line_items[{new_index}]", ChangeKind.ITEM_ADDED, None, item.description)
        )
    return changes


_EMAIL = re.compile(r"\S+@\S+")
_NUMBER_WORDS = (
    r"one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|twenty|"
    r"half|quarter|double|twice|triple|dozen"
)

# Wording that licenses each kind of change
_LICENCES: dict[ChangeKind, re.Pattern[str]] = {
    ChangeKind.PRICE: re.compile(
        r"\$|\b(price[sd]?|pricing|rates?|costs?|charge[sd]?|dollars?|bucks|cents?|fees?|free|"
        r"cheaper|dearer|discount\w*|unpriced|each|per)\b"
        r"|\d\s*(an?|\/)\s*(hour|hr|metre|m|item|piece|kg|litre)\b",
        re.IGNORECASE,
    ),
    ChangeKind.QUANTITY: re.compile(
        rf"\d|\b({_NUMBER_WORDS}|hours?|hrs?|quantity|qty|more|less|fewer|extra|another)\b",
        re.IGNORECASE,
    ),
    ChangeKind.ITEM_ADDED: re.compile(
        r"\b(add\w*|include\w*|plus|also|another|extra|new|split\w*|separate\w*|"
        r"break\w*|replace\w*|swap\w*|put)\b",
        re.IGNORECASE,
    ),
    ChangeKind.ITEM_REMOVED: re.compile(
        r"\b(remove\w*|delete\w*|drop\w*|take|get rid|without|no|don'?t|"
        r"combine\w*|merge\w*|replace\w*|swap\w*|split\w*|scrap\w*|cancel\w*)\b",
        re.IGNORECASE,
    ),
    ChangeKind.ITEM_TYPE: re.compile(
        r"\b(labou?rs?|materials?|reclassif\w*|classif\w*|type)\b", re.IGNORECASE
    ),
}


class CorrectionGuard:
    """Checks a corrected draft against what the correction text asked for."""

    def __init__(self, correction_text: str):
        # Email addresses often contain digits, which would license anything
        self._text = _EMAIL.sub(" ", correction_text)

    def permits(self, kind: ChangeKind) -> bool:
        pattern = _LICENCES.get(kind)
        return pattern is None or pattern.search(self._text) is not None

    def violations(self, changes: list[FieldChange]) -> list[FieldChange]:
        return [change for change in changes if not self.permits(change.kind)]

    def check(self, changes: list[FieldChange], changes_summary: list[str]) -> None:
        """Raise CorrectionRejectedError if the changes were not asked for.

        Raises:
            CorrectionRejectedError: On an unrequested price, quantity, item
                list or item type change, or on changes with no summary.
        """
        violations = self.violations(changes)
        if violations:
            raise CorrectionRejectedError(
                "Correction changed fields it was not asked to change",
                details=[
                    {
                        "path": v.path,
                        "kind": v.kind.value,
                        "before": str(v.before),
                        "after": str(v.after),
                    }
                    for v in violations
                ],
            )
        if changes and not [s for s in changes_summary if s.strip()]:
            raise CorrectionRejectedError(
                "Correction changed the draft without summarising the changes",
                details=[{"path": c.path, "kind": c.kind.value} for c in changes],
            )


def _restore_blank_rows(
    corrected: InvoiceDraft, original: InvoiceDraft, indexes: list[int]
) -> InvoiceDraft:
    """Reinsert unfilled rows of ``original`` at their old positions."""
    if not indexes:
        return corrected
    items = list(corrected.line_items)
    for index in indexes:
        items.insert(min(index, len(items)), original.line_items[index])
    return corrected.model_copy(update={"line_items": items})


class CorrectionReconciler:
    """Applies corrections via the LLM and verifies the result."""

    def __init__(self, llm: StructuredLLMClient):
        self._llm = llm

    async def apply(self, draft: InvoiceDraft, correction_text: str) -> CorrectionResult:
        """Return the corrected draft for ``correction_text``.

        ``draft`` is left untouched whatever happens; callers swap in
        ``result.draft`` only when this returns.

        Raises:
            InvoiceValidationError: If the correction text is blank.
            SchemaViolationError: If the response does not fit the schema.
            CorrectionRejectedError: If the response changes more than asked.
            UpstreamError: If the LLM call fails.
        """
        if not correction_text or not correction_text.strip():
            raise InvoiceValidationError("Please describe the correction")

        # Unfilled rows are not valid draft items; they are held back and reinserted
        blank_rows = [i for i, item in enumerate(draft.line_items) if not item.description.strip()]
        filled = [item for item in draft.line_items if item.description.strip()]
        request = CorrectionRequest(
            draft=draft.model_copy(update={"changes_summary": [], "line_items": filled}),
            correction_text=correction_text.strip(),
        )
        current_json = json.dumps(request.draft.to_wire(), indent=2)

        try:
            response = await self._llm.generate_structured(
                system_prompt=CORRECTION_SYSTEM_PROMPT,
                user_prompt=build_correction_user_prompt(current_json, request.correction_text),
                schema_name=CORRECTION_SCHEMA_NAME,
                schema=INVOICE_SCHEMA,
            )
        except LLMClientError as e:
            logger.error("correction_failed", provider=e.provider, error=str(e))
            raise UpstreamError(str(e), details=e.details) from e

        try:
            updated = parse_draft_payload(response.content)
        except SchemaViolationError:
            logger.warning("correction_schema_violation", stop_reason=response.stop_reason)
            raise

        updated = self._classify_added_items(request.draft, updated)
        changes = diff_drafts(request.draft, updated)

        try:
            CorrectionGuard(request.correction_text).check(changes, updated.changes_summary)
        except CorrectionRejectedError as e:
            logger.warning("correction_rejected", reason=str(e), violations=e.details)
            raise

        summary = [s.strip() for s in updated.changes_summary if s.strip()] if changes else []
        updated = _restore_blank_rows(
            updated.model_copy(update={"changes_summary": summary}), draft, blank_rows
        )

        logger.info("correction_applied", changes=len(changes), summary=summary)
        return CorrectionResult(draft=updated, changes_summary=summary, changes=tuple(changes))

    @staticmethod
    def _classify_added_items(before: InvoiceDraft, after: InvoiceDraft) -> InvoiceDraft:
        """Tag items the correction introduced using the classification rules."""
        pairing = pair_line_items(before.line_items, after.line_items)
        if not pairing.added:
            return after
        items = list(after.line_items)
        for index in pairing.added:
            items[index] = classify_line_item(items[index])
        return after.model_copy(update={"line_items": items})
