"""Public payment page data.

Customers open the link from their invoice email without signing in, so
these routes read through the service role client.
"""

from fastapi import APIRouter, Depends

from tradie_invoices.api.dependencies import get_public_workflow
from tradie_invoices.api.schemas import PaymentDetailsOut
from tradie_invoices.workflow import InvoiceWorkflow

router = APIRouter(prefix="/api/pay", tags=["payments"])


@router.get("/{invoice_id}", response_model=PaymentDetailsOut)
async def payment_details(
    invoice_id: str, workflow: InvoiceWorkflow = Depends(get_public_workflow)
) -> PaymentDetailsOut:
    record, profile = await workflow.payment_details(invoice_id)
    return PaymentDetailsOut.build(record, profile)
