"""Session-scoped state for an invoice that is being edited.

A ``DraftSession`` owns one draft from the moment it is created (from a
transcript, manually, or by reopening a saved invoice) until it is saved,
sent or abandoned. Edits replace the draft value rather than mutating it, so
a draft handed to a slow collaborator (the LLM, the PDF renderer) never
changes underneath it.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tradie_invoices.invoicing.classification import classify_line_item
from tradie_invoices.invoicing.errors import (
    CorrectionInProgressError,
    InvoiceValidationError,
    NotFoundError,
)
from tradie_invoices.invoicing.models import InvoiceDraft, LineItem
from tradie_invoices.invoicing.totals import InvoiceTotals, is_sendable, totals_for

if TYPE_CHECKING:
    from tradie_invoices.backend.records import Material, Photo
    from tradie_invoices.invoicing.corrections import CorrectionReconciler, CorrectionResult

logger = structlog.get_logger(__name__)

# Idle sessions older than this are discarded
DEFAULT_SESSION_TTL_SECONDS = 12 * 60 * 60.0


def _patched(model: BaseModel, patch: dict[str, Any]) -> Any:
    """Return ``model`` with ``patch`` applied, type-checked but not business-validated."""
    try:
        return type(model).model_validate({**model.model_dump(), **patch})
    except PydanticValidationError as e:
        raise InvoiceValidationError(
            "Invalid field update",
            details=e.errors(include_url=False),
        ) from e


class DraftSession:
    """The editable state of one invoice-in-progress."""

    def __init__(
        self,
        user_id: str,
        draft: InvoiceDraft,
        draft_id: str | None = None,
        transcript: str | None = None,
        selected_profile_id: str | None = None,
        photos: Iterable[Photo] = (),
        invoice_number: str | None = None,
    ):
        self.draft_id = draft_id or str(uuid.uuid4())
        self.user_id = user_id
        self.draft = draft
        self.transcript = transcript
        self.selected_profile_id = selected_profile_id
        self.photos: list[Photo] = list(photos)
        self.invoice_number = invoice_number or draft.invoice.invoice_number
        self.dirty = False
        self.last_used = 0.0
        self._correction_pending = False

    def _replace(self, draft: InvoiceDraft) -> InvoiceDraft:
        self.draft = draft
        self.dirty = True
        return draft

    # === Derived values ===

    @property
    def totals(self) -> InvoiceTotals:
        return totals_for(self.draft)

    @property
    def is_sendable(self) -> bool:
        return is_sendable(self.draft)

    @property
    def correction_pending(self) -> bool:
        return self._correction_pending

    # === Edits ===

    def set_draft(self, draft: InvoiceDraft) -> InvoiceDraft:
        return self._replace(draft)

    def update_customer(self, patch: dict[str, Any]) -> InvoiceDraft:
        """Apply a partial update to the customer block."""
        customer = _patched(self.draft.customer, patch)
        return self._replace(self.draft.model_copy(update={"customer": customer}))

    def update_invoice_meta(self, patch: dict[str, Any]) -> InvoiceDraft:
        """Apply a partial update to the invoice header."""
        meta = _patched(self.draft.invoice, patch)
        return self._replace(self.draft.model_copy(update={"invoice": meta}))

    def replace_line_items(self, items: Iterable[LineItem]) -> InvoiceDraft:
        return self._replace(self.draft.model_copy(update={"line_items": list(items)}))

    def set_notes(self, notes: str | None) -> InvoiceDraft:
        return self._replace(self.draft.model_copy(update={"notes": notes or None}))

    def add_line_item(self) -> InvoiceDraft:
        """Append an empty, unpriced labour line."""
        items = [*self.draft.line_items, LineItem.blank()]
        return self._replace(self.draft.model_copy(update={"line_items": items}))

    def remove_line_item(self, index: int) -> InvoiceDraft:
        """Remove the line at ``index``. Out-of-range indexes are ignored."""
        if not 0 <= index < len(self.draft.line_items):
            return self.draft
        items = [item for i, item in enumerate(self.draft.line_items) if i != index]
        return self._replace(self.draft.model_copy(update={"line_items": items}))

    def toggle_item_type(self, index: int) -> InvoiceDraft:
        """Flip a line between labour and material.

        This is the user overriding the classification rules, so the rules
        are not re-applied here.
        """
        if not 0 <= index < len(self.draft.line_items):
            return self.draft
        items = list(self.draft.line_items)
        item = items[index]
        items[index] = item.model_copy(update={"item_type": item.item_type.toggled()})
        return self._replace(self.draft.model_copy(update={"line_items": items}))

    def add_catalog_item(self, material: Material) -> InvoiceDraft:
        """Append a line from the materials catalog."""
        item = classify_line_item(
            LineItem(
                description=material.name,
                unit=material.default_unit,
                unit_price=material.default_unit_price,
            )
        )
        return self._replace(
            self.draft.model_copy(update={"line_items": [*self.draft.line_items, item]})
        )

    def acknowledge_changes(self) -> InvoiceDraft:
        """Clear the last correction's summary once it has been shown."""
        if not self.draft.changes_summary:
            return self.draft
        return self._replace(self.draft.model_copy(update={"changes_summary": []}))

    # === Photos ===

    def add_photo(self, photo: Photo) -> None:
        self.photos.append(photo)
        self.dirty = True

    def remove_photo(self, photo_id: str) -> None:
        self.photos = [p for p in self.photos if p.id != photo_id]
        self.dirty = True

    # === Corrections ===

    async def apply_correction(
        self, reconciler: CorrectionReconciler, correction_text: str
    ) -> CorrectionResult:
        """Run a correction and swap in its result.

        Only one correction may be in flight per session. If the correction
        fails for any reason the current draft is kept.

        Raises:
            CorrectionInProgressError: If another correction is still running.
        """
        if self._correction_pending:
            raise CorrectionInProgressError(
                f"Correction already in progress for draft {self.draft_id}"
            )

        self._correction_pending = True
        try:
            result = await reconciler.apply(self.draft, correction_text)
        finally:
            self._correction_pending = False

        self._replace(result.draft)
        return result


class DraftSessionStore:
    """In-process registry of open draft sessions, scoped per user.

    A session untouched for ``ttl_seconds`` is dropped the next time the
    store is used, unless a correction is still running against it.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, DraftSession] = {}
        self._ttl = ttl_seconds
        self._clock = clock

    def _evict_idle(self) -> None:
        cutoff = self._clock() - self._ttl
        expired = [
            draft_id
            for draft_id, session in self._sessions.items()
            if session.last_used < cutoff and not session.correction_pending
        ]
        for draft_id in expired:
            del self._sessions[draft_id]
        if expired:
            logger.info("draft_sessions_expired", count=len(expired))

    def __len__(self) -> int:
        return len(self._sessions)

    def create(
        self,
        user_id: str,
        draft: InvoiceDraft,
        draft_id: str | None = None,
        transcript: str | None = None,
        selected_profile_id: str | None = None,
        photos: Iterable[Photo] = (),
    ) -> DraftSession:
        """Open a session for ``draft``, replacing any with the same id."""
        session = DraftSession(
            user_id=user_id,
            draft=draft,
            draft_id=draft_id,
            transcript=transcript,
            selected_profile_id=selected_profile_id,
            photos=photos,
        )
        self._evict_idle()
        existing = self._sessions.get(session.draft_id)
        if existing is not None and existing.user_id != user_id:
            raise NotFoundError(f"Draft {session.draft_id} not found")
        session.last_used = self._clock()
        self._sessions[session.draft_id] = session
        logger.debug("draft_session_created", draft_id=session.draft_id, user_id=user_id)
        return session

    def get(self, draft_id: str, user_id: str) -> DraftSession:
        """Return the user's session.

        Raises:
            NotFoundError: If there is no such session for this user.
        """
        self._evict_idle()
        session = self._sessions.get(draft_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError(
                f"Draft {draft_id} not found",
                user_message="This draft is no longer available. Please start a new invoice.",
            )
        session.last_used = self._clock()
        return session

    def clear(self, draft_id: str, user_id: str) -> None:
        """Discard a session. Clearing an unknown draft is a no-op."""
        session = self._sessions.get(draft_id)
        if session is not None and session.user_id == user_id:
            del self._sessions[draft_id]
            logger.debug("draft_session_cleared", draft_id=draft_id)
