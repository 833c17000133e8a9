"""Draft editing endpoints."""

import uuid
from datetime import date

import structlog
from fastapi import APIRouter, Depends, File, UploadFile

from tradie_invoices.api.dependencies import (
    CurrentUser,
    get_backend,
    get_current_user,
    get_draft_generator,
    get_draft_session,
    get_reconciler,
    get_session_store,
    get_workflow,
)
from tradie_invoices.api.schemas import (
    CatalogItemAdd,
    CorrectionCreate,
    CorrectionOut,
    CustomerPatch,
    DraftCreate,
    DraftOut,
    InvoiceMetaPatch,
    LineItemInput,
    ManualDraftCreate,
    NotesUpdate,
    ProfileSelect,
    SavedOut,
    SendRequest,
)
from tradie_invoices.backend import Photo, SupabaseClient
from tradie_invoices.config import get_settings
from tradie_invoices.invoicing.corrections import CorrectionReconciler
from tradie_invoices.invoicing.drafting import DraftGenerator
from tradie_invoices.invoicing.errors import InvoiceValidationError, NotFoundError
from tradie_invoices.invoicing.models import InvoiceDraft
from tradie_invoices.invoicing.session import DraftSession, DraftSessionStore
from tradie_invoices.workflow import InvoiceWorkflow

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/drafts", tags=["drafts"])


async def _default_profile_id(backend: SupabaseClient, profile_id: str | None) -> str | None:
    if profile_id:
        return profile_id
    profiles = await backend.list_business_profiles()
    return profiles[0].id if profiles else None


@router.post("", response_model=DraftOut, status_code=201)
async def create_draft(
    body: DraftCreate,
    user: CurrentUser = Depends(get_current_user),
    backend: SupabaseClient = Depends(get_backend),
    generator: DraftGenerator = Depends(get_draft_generator),
    sessions: DraftSessionStore = Depends(get_session_store),
) -> DraftOut:
    """Draft an invoice from a voice transcript."""
    profile_id = await _default_profile_id(backend, body.business_profile_id)
    hourly_rate = None
    if profile_id:
        profile = await backend.get_business_profile(profile_id)
        hourly_rate = profile.default_hourly_rate if profile else None

    draft = await generator.generate(body.transcript, default_hourly_rate=hourly_rate)
    session = sessions.create(
        user.id, draft, transcript=body.transcript, selected_profile_id=profile_id
    )
    return DraftOut.from_session(session)


@router.post("/manual", response_model=DraftOut, status_code=201)
async def create_manual_draft(
    body: ManualDraftCreate,
    user: CurrentUser = Depends(get_current_user),
    backend: SupabaseClient = Depends(get_backend),
    sessions: DraftSessionStore = Depends(get_session_store),
) -> DraftOut:
    """Start an empty draft for typing in by hand."""
    profile_id = await _default_profile_id(backend, body.business_profile_id)
    draft = InvoiceDraft.empty(date.today(), get_settings().default_due_days)
    session = sessions.create(user.id, draft, selected_profile_id=profile_id)
    return DraftOut.from_session(session)


@router.post("/from-invoice/{invoice_id}", response_model=DraftOut, status_code=201)
async def reopen_invoice(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    workflow: InvoiceWorkflow = Depends(get_workflow),
    sessions: DraftSessionStore = Depends(get_session_store),
) -> DraftOut:
    """Open a saved invoice for editing; saving updates the same invoice."""
    draft, record = await workflow.load_draft(invoice_id)
    session = sessions.create(
        user.id,
        draft,
        draft_id=record.id,
        transcript=record.voice_transcript,
        selected_profile_id=record.business_profile_id,
    )
    return DraftOut.from_session(session)


@router.get("/{draft_id}", response_model=DraftOut)
async def get_draft(session: DraftSession = Depends(get_draft_session)) -> DraftOut:
    return DraftOut.from_session(session)


@router.delete("/{draft_id}", status_code=204)
async def discard_draft(
    session: DraftSession = Depends(get_draft_session),
    sessions: DraftSessionStore = Depends(get_session_store),
) -> None:
    sessions.clear(session.draft_id, session.user_id)


@router.patch("/{draft_id}/customer", response_model=DraftOut)
async def update_customer(
    body: CustomerPatch, session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.update_customer(body.model_dump(exclude_unset=True))
    return DraftOut.from_session(session)


@router.patch("/{draft_id}/invoice", response_model=DraftOut)
async def update_invoice_meta(
    body: InvoiceMetaPatch, session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.update_invoice_meta(body.model_dump(exclude_unset=True))
    return DraftOut.from_session(session)


@router.patch("/{draft_id}/notes", response_model=DraftOut)
async def update_notes(
    body: NotesUpdate, session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.set_notes(body.notes)
    return DraftOut.from_session(session)


@router.put("/{draft_id}/profile", response_model=DraftOut)
async def select_profile(
    body: ProfileSelect,
    session: DraftSession = Depends(get_draft_session),
    backend: SupabaseClient = Depends(get_backend),
) -> DraftOut:
    if await backend.get_business_profile(body.business_profile_id) is None:
        raise NotFoundError(f"Business profile {body.business_profile_id} not found")
    session.selected_profile_id = body.business_profile_id
    return DraftOut.from_session(session)


@router.put("/{draft_id}/line-items", response_model=DraftOut)
async def replace_line_items(
    body: list[LineItemInput], session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.replace_line_items(item.to_line_item() for item in body)
    return DraftOut.from_session(session)


@router.post("/{draft_id}/line-items", response_model=DraftOut)
async def add_line_item(session: DraftSession = Depends(get_draft_session)) -> DraftOut:
    session.add_line_item()
    return DraftOut.from_session(session)


@router.delete("/{draft_id}/line-items/{index}", response_model=DraftOut)
async def remove_line_item(
    index: int, session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.remove_line_item(index)
    return DraftOut.from_session(session)


@router.post("/{draft_id}/line-items/{index}/toggle-type", response_model=DraftOut)
async def toggle_item_type(
    index: int, session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.toggle_item_type(index)
    return DraftOut.from_session(session)


@router.post("/{draft_id}/catalog-items", response_model=DraftOut)
async def add_catalog_item(
    body: CatalogItemAdd,
    session: DraftSession = Depends(get_draft_session),
    backend: SupabaseClient = Depends(get_backend),
) -> DraftOut:
    material = await backend.get_material(body.material_id)
    if material is None or not material.is_active:
        raise NotFoundError(f"Material {body.material_id} not found")
    session.add_catalog_item(material)
    return DraftOut.from_session(session)


@router.post("/{draft_id}/corrections", response_model=CorrectionOut)
async def apply_correction(
    body: CorrectionCreate,
    session: DraftSession = Depends(get_draft_session),
    reconciler: CorrectionReconciler = Depends(get_reconciler),
) -> CorrectionOut:
    """Apply a spoken or typed correction. On failure the draft is unchanged."""
    result = await session.apply_correction(reconciler, body.correction_text)
    return CorrectionOut(
        **DraftOut.from_session(session).model_dump(exclude={"draft"}),
        draft=session.draft,
        changes_summary=result.changes_summary,
    )


@router.post("/{draft_id}/changes/ack", response_model=DraftOut)
async def acknowledge_changes(session: DraftSession = Depends(get_draft_session)) -> DraftOut:
    session.acknowledge_changes()
    return DraftOut.from_session(session)


@router.post("/{draft_id}/photos", response_model=DraftOut)
async def upload_photo(
    file: UploadFile = File(...),
    session: DraftSession = Depends(get_draft_session),
    backend: SupabaseClient = Depends(get_backend),
) -> DraftOut:
    """Attach a job photo, stored under the draft's id."""
    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise InvoiceValidationError("Photos must be images")
    content = await file.read()
    if not content:
        raise InvoiceValidationError("The uploaded photo is empty")

    settings = get_settings()
    photo_id = str(uuid.uuid4())
    filename = file.filename or f"{photo_id}.jpg"
    path = f"{session.user_id}/{session.draft_id}/{photo_id}-{filename}"
    await backend.upload_object(settings.photo_bucket, path, content, content_type)
    url = await backend.create_signed_url(
        settings.photo_bucket, path, settings.signed_url_ttl_seconds
    )

    session.add_photo(Photo(id=photo_id, storage_path=path, filename=filename, url=url))
    logger.info("photo_attached", draft_id=session.draft_id, size=len(content))
    return DraftOut.from_session(session)


@router.delete("/{draft_id}/photos/{photo_id}", response_model=DraftOut)
async def remove_photo(
    photo_id: str, session: DraftSession = Depends(get_draft_session)
) -> DraftOut:
    session.remove_photo(photo_id)
    return DraftOut.from_session(session)


@router.post("/{draft_id}/save", response_model=SavedOut)
async def save_draft(
    session: DraftSession = Depends(get_draft_session),
    workflow: InvoiceWorkflow = Depends(get_workflow),
) -> SavedOut:
    saved = await workflow.save_draft(session)
    return SavedOut(
        invoice_id=saved.invoice_id, invoice_number=saved.invoice_number, status="draft"
    )


@router.post("/{draft_id}/send", response_model=SavedOut)
async def send_draft(
    body: SendRequest | None = None,
    session: DraftSession = Depends(get_draft_session),
    user: CurrentUser = Depends(get_current_user),
    workflow: InvoiceWorkflow = Depends(get_workflow),
) -> SavedOut:
    reply_to = (body.reply_to if body else None) or user.email
    saved = await workflow.send_draft(session, reply_to=reply_to)
    return SavedOut(
        invoice_id=saved.invoice_id, invoice_number=saved.invoice_number, status="sent"
    )
