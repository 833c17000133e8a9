"""Request-scoped dependencies for the HTTP API."""

from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tradie_invoices.backend import SupabaseClient
from tradie_invoices.clients import StructuredLLMClient, get_llm_client
from tradie_invoices.config import get_settings
from tradie_invoices.delivery import ResendClient
from tradie_invoices.invoicing.corrections import CorrectionReconciler
from tradie_invoices.invoicing.customers import CustomerResolver
from tradie_invoices.invoicing.drafting import DraftGenerator
from tradie_invoices.invoicing.session import DraftSession, DraftSessionStore
from tradie_invoices.workflow import InvoiceWorkflow

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str | None = None


async def get_backend(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AsyncIterator[SupabaseClient]:
    """Backend client acting as the caller, so row level security applies."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    client = SupabaseClient(access_token=credentials.credentials)
    try:
        yield client
    finally:
        await client.close()


async def get_current_user(backend: SupabaseClient = Depends(get_backend)) -> CurrentUser:
    user = await backend.get_user()
    structlog.contextvars.bind_contextvars(user_id=str(user["id"]))
    return CurrentUser(id=str(user["id"]), email=user.get("email"))


def get_session_store(request: Request) -> DraftSessionStore:
    return request.app.state.sessions


def get_llm(request: Request) -> StructuredLLMClient:
    """Shared LLM client, created on first use."""
    if request.app.state.llm is None:
        request.app.state.llm = get_llm_client()
    return request.app.state.llm


def get_mailer(request: Request) -> ResendClient:
    if request.app.state.mailer is None:
        request.app.state.mailer = ResendClient()
    return request.app.state.mailer


def get_draft_generator(
    llm: StructuredLLMClient = Depends(get_llm),
    backend: SupabaseClient = Depends(get_backend),
) -> DraftGenerator:
    resolver = CustomerResolver(backend, limit=get_settings().customer_match_limit)
    return DraftGenerator(llm, resolver=resolver)


def get_reconciler(llm: StructuredLLMClient = Depends(get_llm)) -> CorrectionReconciler:
    return CorrectionReconciler(llm)


def get_workflow(
    backend: SupabaseClient = Depends(get_backend),
    mailer: ResendClient = Depends(get_mailer),
    sessions: DraftSessionStore = Depends(get_session_store),
) -> InvoiceWorkflow:
    return InvoiceWorkflow(backend, mailer, sessions)


async def get_service_backend() -> AsyncIterator[SupabaseClient]:
    """Backend client with the service role key, for routes without a signed-in user."""
    client = SupabaseClient.service()
    try:
        yield client
    finally:
        await client.close()


def get_public_workflow(
    backend: SupabaseClient = Depends(get_service_backend),
    mailer: ResendClient = Depends(get_mailer),
) -> InvoiceWorkflow:
    return InvoiceWorkflow(backend, mailer)


def get_draft_session(
    draft_id: str,
    user: CurrentUser = Depends(get_current_user),
    sessions: DraftSessionStore = Depends(get_session_store),
) -> DraftSession:
    return sessions.get(draft_id, user.id)
