"""Endpoints for saved invoices."""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from tradie_invoices.api.dependencies import (
    CurrentUser,
    get_backend,
    get_current_user,
    get_workflow,
)
from tradie_invoices.api.schemas import (
    OverdueOut,
    ReminderOut,
    ReminderRequest,
    ReminderSweepOut,
    SavedOut,
    SendRequest,
    StatsOut,
)
from tradie_invoices.backend import InvoiceRecord, InvoiceStatus, SupabaseClient
from tradie_invoices.invoicing.errors import NotFoundError
from tradie_invoices.workflow import InvoiceWorkflow

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.get("", response_model=list[InvoiceRecord])
async def list_invoices(
    status: InvoiceStatus | None = None,
    backend: SupabaseClient = Depends(get_backend),
) -> list[InvoiceRecord]:
    return await backend.list_invoices(status)


@router.post("/update-overdue", response_model=OverdueOut)
async def update_overdue(workflow: InvoiceWorkflow = Depends(get_workflow)) -> OverdueOut:
    return OverdueOut(updated=await workflow.update_overdue())


@router.get("/stats", response_model=StatsOut)
async def invoice_stats(workflow: InvoiceWorkflow = Depends(get_workflow)) -> StatsOut:
    """Counts per status and the amounts outstanding and paid."""
    return StatsOut.from_stats(await workflow.invoice_stats())


@router.post("/process-reminders", response_model=ReminderSweepOut)
async def process_reminders(
    workflow: InvoiceWorkflow = Depends(get_workflow),
) -> ReminderSweepOut:
    """Send today's scheduled reminders for the caller's open invoices."""
    sweep = await workflow.process_reminders()
    return ReminderSweepOut(sent=sweep.sent, skipped=sweep.skipped, errors=sweep.errors)


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: str, backend: SupabaseClient = Depends(get_backend)
) -> dict[str, Any]:
    """Invoice header with its line items."""
    record = await backend.get_invoice(invoice_id)
    if record is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", user_message="Invoice not found")
    items = await backend.get_invoice_line_items(invoice_id)
    return {
        "invoice": record.model_dump(mode="json"),
        "line_items": [item.model_dump(mode="json") for item in items],
    }


@router.post("/{invoice_id}/send", response_model=SavedOut)
async def send_invoice(
    invoice_id: str,
    body: SendRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    workflow: InvoiceWorkflow = Depends(get_workflow),
) -> SavedOut:
    reply_to = (body.reply_to if body else None) or user.email
    saved = await workflow.send_invoice(invoice_id, reply_to=reply_to)
    return SavedOut(invoice_id=saved.invoice_id, invoice_number=saved.invoice_number, status="sent")


@router.post("/{invoice_id}/remind", response_model=ReminderOut)
async def send_reminder(
    invoice_id: str,
    body: ReminderRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    workflow: InvoiceWorkflow = Depends(get_workflow),
) -> ReminderOut:
    body = body or ReminderRequest()
    outcome = await workflow.send_reminder(
        invoice_id,
        reply_to=body.reply_to or user.email,
        reminder_type=body.reminder_type,
    )
    return ReminderOut(
        invoice_id=outcome.invoice_id,
        recipients=outcome.recipients,
        days_overdue=outcome.days_overdue,
        recorded=outcome.recorded,
        message=f"Reminder sent to {', '.join(outcome.recipients)}",
    )


@router.get("/{invoice_id}/pdf")
async def download_pdf(
    invoice_id: str, workflow: InvoiceWorkflow = Depends(get_workflow)
) -> Response:
    pdf, invoice_number = await workflow.render_pdf(invoice_id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="Invoice-{invoice_number}.pdf"'},
    )


@router.post("/{invoice_id}/paid", response_model=InvoiceRecord)
async def mark_paid(
    invoice_id: str, workflow: InvoiceWorkflow = Depends(get_workflow)
) -> InvoiceRecord:
    return await workflow.mark_paid(invoice_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceRecord)
async def cancel_invoice(
    invoice_id: str, workflow: InvoiceWorkflow = Depends(get_workflow)
) -> InvoiceRecord:
    return await workflow.cancel(invoice_id)
