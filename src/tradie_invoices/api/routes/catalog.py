"""Business profiles, saved clients and the materials catalog."""

from typing import Any

from fastapi import APIRouter, Depends

from tradie_invoices.api.dependencies import get_backend, get_workflow
from tradie_invoices.api.schemas import (
    ClientIn,
    ClientUpdate,
    MaterialIn,
    MaterialUpdate,
    ProfileIn,
    ProfileUpdate,
)
from tradie_invoices.backend import (
    BusinessProfile,
    Material,
    ReminderSettings,
    StoredCustomer,
    SupabaseClient,
)
from tradie_invoices.invoicing.errors import InvoiceValidationError, NotFoundError
from tradie_invoices.invoicing.validation import (
    format_abn,
    format_bsb,
    validate_abn,
    validate_bsb,
)
from tradie_invoices.workflow import InvoiceWorkflow

router = APIRouter(tags=["catalog"])


def _clean_profile(data: dict[str, Any]) -> dict[str, Any]:
    """Check and normalise the ABN and BSB before they are stored."""
    if data.get("abn"):
        if not validate_abn(data["abn"]):
            raise InvoiceValidationError(f"Invalid ABN: {data['abn']}")
        data["abn"] = format_abn(data["abn"])
    if data.get("bank_bsb"):
        if not validate_bsb(data["bank_bsb"]):
            raise InvoiceValidationError(f"Invalid BSB: {data['bank_bsb']}")
        data["bank_bsb"] = format_bsb(data["bank_bsb"])
    return data


# === Business Profiles ===


@router.get("/api/profiles", response_model=list[BusinessProfile])
async def list_profiles(backend: SupabaseClient = Depends(get_backend)) -> list[BusinessProfile]:
    return await backend.list_business_profiles()


@router.post("/api/profiles", response_model=BusinessProfile, status_code=201)
async def create_profile(
    body: ProfileIn, backend: SupabaseClient = Depends(get_backend)
) -> BusinessProfile:
    return await backend.create_business_profile(_clean_profile(body.model_dump(mode="json")))


@router.get("/api/profiles/{profile_id}", response_model=BusinessProfile)
async def get_profile(
    profile_id: str, backend: SupabaseClient = Depends(get_backend)
) -> BusinessProfile:
    profile = await backend.get_business_profile(profile_id)
    if profile is None:
        raise NotFoundError(f"Business profile {profile_id} not found")
    return profile


@router.patch("/api/profiles/{profile_id}", response_model=BusinessProfile)
async def update_profile(
    profile_id: str, body: ProfileUpdate, backend: SupabaseClient = Depends(get_backend)
) -> BusinessProfile:
    data = _clean_profile(body.model_dump(mode="json", exclude_unset=True))
    profile = await backend.update_business_profile(profile_id, data)
    if profile is None:
        raise NotFoundError(f"Business profile {profile_id} not found")
    return profile


@router.delete("/api/profiles/{profile_id}", status_code=204)
async def delete_profile(profile_id: str, backend: SupabaseClient = Depends(get_backend)) -> None:
    await backend.delete_business_profile(profile_id)


@router.get("/api/profiles/{profile_id}/reminders", response_model=ReminderSettings)
async def get_reminder_settings(
    profile_id: str, workflow: InvoiceWorkflow = Depends(get_workflow)
) -> ReminderSettings:
    return await workflow.reminder_settings(profile_id)


@router.put("/api/profiles/{profile_id}/reminders", response_model=ReminderSettings)
async def save_reminder_settings(
    profile_id: str,
    body: ReminderSettings,
    backend: SupabaseClient = Depends(get_backend),
) -> ReminderSettings:
    if not await backend.save_reminder_settings(profile_id, body):
        raise InvoiceValidationError(
            "reminder_settings table is not installed",
            user_message="Payment reminders aren't set up for this account",
        )
    return body


# === Clients ===


@router.get("/api/clients", response_model=list[StoredCustomer])
async def list_clients(
    q: str | None = None, backend: SupabaseClient = Depends(get_backend)
) -> list[StoredCustomer]:
    if q:
        return await backend.find_customers_by_name(q, limit=20)
    return await backend.list_customers()


@router.post("/api/clients", response_model=StoredCustomer, status_code=201)
async def create_client(
    body: ClientIn, backend: SupabaseClient = Depends(get_backend)
) -> StoredCustomer:
    return await backend.create_customer(body.model_dump(mode="json"))


@router.get("/api/clients/{client_id}", response_model=StoredCustomer)
async def get_client(
    client_id: str, backend: SupabaseClient = Depends(get_backend)
) -> StoredCustomer:
    customer = await backend.get_customer(client_id)
    if customer is None:
        raise NotFoundError(f"Client {client_id} not found", user_message="Client not found")
    return customer


@router.patch("/api/clients/{client_id}", response_model=StoredCustomer)
async def update_client(
    client_id: str, body: ClientUpdate, backend: SupabaseClient = Depends(get_backend)
) -> StoredCustomer:
    customer = await backend.update_customer(
        client_id, body.model_dump(mode="json", exclude_unset=True)
    )
    if customer is None:
        raise NotFoundError(f"Client {client_id} not found", user_message="Client not found")
    return customer


@router.delete("/api/clients/{client_id}", status_code=204)
async def delete_client(client_id: str, backend: SupabaseClient = Depends(get_backend)) -> None:
    """Delete a client that no invoice refers to."""
    if await backend.invoices_exist_for_customer(client_id):
        raise InvoiceValidationError(
            f"Client {client_id} has invoices",
            user_message="This client has invoices and can't be deleted",
        )
    await backend.delete_customer(client_id)


# === Materials ===


@router.get("/api/materials", response_model=list[Material])
async def list_materials(
    q: str | None = None, backend: SupabaseClient = Depends(get_backend)
) -> list[Material]:
    if q:
        return await backend.search_materials(q)
    return await backend.list_materials()


@router.post("/api/materials", response_model=Material, status_code=201)
async def create_material(
    body: MaterialIn, backend: SupabaseClient = Depends(get_backend)
) -> Material:
    return await backend.create_material(body.model_dump(mode="json"))


@router.patch("/api/materials/{material_id}", response_model=Material)
async def update_material(
    material_id: str, body: MaterialUpdate, backend: SupabaseClient = Depends(get_backend)
) -> Material:
    material = await backend.update_material(
        material_id, body.model_dump(mode="json", exclude_unset=True)
    )
    if material is None:
        raise NotFoundError(f"Material {material_id} not found")
    return material


@router.delete("/api/materials/{material_id}", status_code=204)
async def delete_material(
    material_id: str, backend: SupabaseClient = Depends(get_backend)
) -> None:
    if await backend.deactivate_material(material_id) is None:
        raise NotFoundError(f"Material {material_id} not found")
