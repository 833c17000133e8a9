"""Tests for the HTTP API."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from tradie_invoices.api import create_app
from tradie_invoices.api.app import status_for
from tradie_invoices.api.dependencies import (
    CurrentUser,
    get_backend,
    get_current_user,
    get_llm,
    get_mailer,
    get_public_workflow,
    get_workflow,
)
from tradie_invoices.backend import (
    AuthenticationError,
    BackendError,
    InvoiceRecord,
    InvoiceStatus,
    Material,
    SavedInvoice,
    StoredCustomer,
)
from tradie_invoices.clients import LLMClientError
from tradie_invoices.invoicing.errors import (
    CorrectionInProgressError,
    InvoiceValidationError,
    NotFoundError,
    SchemaViolationError,
    UpstreamError,
)
from tradie_invoices.invoicing.session import DraftSessionStore
from tradie_invoices.workflow import InvoiceStats, ReminderOutcome, ReminderSweep


@pytest.fixture
def backend(business_profile):
    backend = AsyncMock()
    backend.list_business_profiles = AsyncMock(return_value=[business_profile])
    backend.get_business_profile = AsyncMock(return_value=business_profile)
    backend.find_customers_by_name = AsyncMock(return_value=[])
    return backend


@pytest.fixture
def workflow():
    return AsyncMock()


@pytest.fixture
def llm():
    return AsyncMock()


@pytest.fixture
def store():
    return DraftSessionStore()


@pytest.fixture
def api(backend, workflow, llm, store):
    """TestClient with the backend, LLM, mailer and workflow replaced."""
    app = create_app(sessions=store)
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        id="user-1", email="owner@sparky.example"
    )
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_llm] = lambda: llm
    app.dependency_overrides[get_mailer] = lambda: AsyncMock()
    app.dependency_overrides[get_workflow] = lambda: workflow
    return TestClient(app)


@pytest.fixture
def open_draft(store, sample_draft):
    return store.create("user-1", sample_draft, selected_profile_id="profile-1")


@pytest.fixture
def paid_record():
    return InvoiceRecord(
        id="inv-1",
        business_profile_id="profile-1",
        invoice_number="INV-0009",
        status=InvoiceStatus.PAID,
        invoice_date=date(2025, 3, 1),
        due_date=date(2025, 3, 15),
        customer_name="John Smith",
        total=Decimal("110"),
    )


def test_status_for():
    assert status_for(InvoiceValidationError("x")) == 400
    assert status_for(NotFoundError("x")) == 404
    assert status_for(CorrectionInProgressError("x")) == 409
    assert status_for(SchemaViolationError("x")) == 502
    assert status_for(UpstreamError("x")) == 503


class TestApp:
    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_request_id_echoed(self, api):
        response = api.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_missing_token(self, store):
        client = TestClient(create_app(sessions=store))

        assert client.get("/api/profiles").status_code == 401

    def test_expired_token(self, api, backend):
        backend.list_invoices = AsyncMock(side_effect=AuthenticationError("expired", 401))

        response = api.get("/api/invoices")

        assert response.status_code == 401
        assert response.json()["retryable"] is False


class TestDrafts:
    """Tests for /api/drafts."""

    def test_create_from_transcript(self, api, llm, llm_factory, draft_payload, store):
        llm.generate_structured = llm_factory(draft_payload).generate_structured

        response = api.post("/api/drafts", json={"transcript": "two hours labour for John"})

        assert response.status_code == 201
        body = response.json()
        assert body["selected_profile_id"] == "profile-1"
        assert body["has_missing_prices"] is True
        assert body["is_sendable"] is False
        assert body["totals"]["subtotal"] == 190.0
        assert body["totals"]["total"] == 209.0
        assert body["draft"]["line_items"][0]["unit_price"] == 95.0
        assert len(store) == 1

    def test_llm_unavailable(self, api, llm):
        llm.generate_structured = AsyncMock(side_effect=LLMClientError("openai", "down"))

        response = api.post("/api/drafts", json={"transcript": "two hours labour"})

        assert response.status_code == 503
        assert response.json()["retryable"] is True

    def test_blank_transcript(self, api):
        response = api.post("/api/drafts", json={"transcript": "  "})

        assert response.status_code == 400

    def test_manual_draft(self, api):
        response = api.post("/api/drafts/manual", json={})

        assert response.status_code == 201
        assert response.json()["draft"]["customer"]["name"] == "Customer"

    def test_unknown_draft(self, api):
        response = api.get("/api/drafts/missing")

        assert response.status_code == 404
        assert "no longer available" in response.json()["error"]

    def test_edit_customer_and_items(self, api, open_draft):
        url = f"/api/drafts/{open_draft.draft_id}"

        api.patch(f"{url}/customer", json={"name": "Jane Doe"})
        api.post(f"{url}/line-items")
        api.post(f"{url}/line-items/0/toggle-type")
        response = api.delete(f"{url}/line-items/1")

        body = response.json()
        assert body["draft"]["customer"]["name"] == "Jane Doe"
        assert [i["description"] for i in body["draft"]["line_items"]] == ["Labour", ""]
        assert body["draft"]["line_items"][0]["item_type"] == "material"

    def test_replace_line_items(self, api, open_draft):
        response = api.put(
            f"/api/drafts/{open_draft.draft_id}/line-items",
            json=[{"description": "Callout", "unit_price": 80}],
        )

        assert response.json()["totals"]["total"] == 88.0
        assert response.json()["is_sendable"] is True

    def test_toggle_gst_inclusive(self, api, open_draft):
        response = api.patch(
            f"/api/drafts/{open_draft.draft_id}/invoice", json={"prices_include_gst": True}
        )

        totals = response.json()["totals"]
        assert totals["total"] == 190.0
        assert totals["gst_amount"] == 17.27

    def test_add_catalog_item(self, api, backend, open_draft):
        backend.get_material = AsyncMock(
            return_value=Material(id="m-1", name="Cable", default_unit_price=Decimal("4"))
        )

        response = api.post(
            f"/api/drafts/{open_draft.draft_id}/catalog-items", json={"material_id": "m-1"}
        )

        item = response.json()["draft"]["line_items"][-1]
        assert item["description"] == "Cable"
        assert item["item_type"] == "material"

    def test_correction(self, api, llm, llm_factory, open_draft, sample_draft):
        payload = sample_draft.to_wire()
        payload["invoice"]["due_date"] = "2025-03-31"
        payload["changes_summary"] = ["Changed due date to 31 March"]
        llm.generate_structured = llm_factory(payload).generate_structured

        response = api.post(
            f"/api/drafts/{open_draft.draft_id}/corrections",
            json={"correction_text": "make it due at the end of the month"},
        )

        assert response.status_code == 200
        assert response.json()["changes_summary"] == ["Changed due date to 31 March"]
        assert open_draft.draft.invoice.due_date == date(2025, 3, 31)

    def test_failed_correction_keeps_draft(self, api, llm, llm_factory, open_draft, sample_draft):
        llm.generate_structured = llm_factory("not json").generate_structured

        response = api.post(
            f"/api/drafts/{open_draft.draft_id}/corrections",
            json={"correction_text": "make it 3 hours"},
        )

        assert response.status_code == 502
        assert response.json()["retryable"] is True
        assert open_draft.draft == sample_draft

    def test_save(self, api, workflow, open_draft):
        workflow.save_draft = AsyncMock(
            return_value=SavedInvoice(invoice_id=open_draft.draft_id, invoice_number="INV-0001")
        )

        response = api.post(f"/api/drafts/{open_draft.draft_id}/save")

        assert response.json() == {
            "invoice_id": open_draft.draft_id,
            "invoice_number": "INV-0001",
            "status": "draft",
        }

    def test_send_defaults_reply_to_user(self, api, workflow, open_draft):
        workflow.send_draft = AsyncMock(
            return_value=SavedInvoice(invoice_id=open_draft.draft_id, invoice_number="INV-0001")
        )

        response = api.post(f"/api/drafts/{open_draft.draft_id}/send")

        assert response.json()["status"] == "sent"
        assert workflow.send_draft.call_args.kwargs["reply_to"] == "owner@sparky.example"

    def test_photo_must_be_image(self, api, open_draft):
        response = api.post(
            f"/api/drafts/{open_draft.draft_id}/photos",
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )

        assert response.status_code == 400

    def test_photo_upload(self, api, backend, open_draft):
        backend.create_signed_url = AsyncMock(return_value="https://storage.example/p.jpg")

        response = api.post(
            f"/api/drafts/{open_draft.draft_id}/photos",
            files={"file": ("site.jpg", b"\xff\xd8\xff", "image/jpeg")},
        )

        photos = response.json()["photos"]
        assert photos[0]["filename"] == "site.jpg"
        assert photos[0]["url"] == "https://storage.example/p.jpg"
        path = backend.upload_object.call_args.args[1]
        assert path.startswith(f"user-1/{open_draft.draft_id}/")


class TestInvoices:
    """Tests for /api/invoices."""

    def test_list(self, api, backend):
        backend.list_invoices = AsyncMock(
            return_value=[
                InvoiceRecord(
                    id="inv-1",
                    invoice_number="INV-0001",
                    invoice_date=date(2025, 3, 1),
                    due_date=date(2025, 3, 15),
                    total=Decimal("110"),
                )
            ]
        )

        response = api.get("/api/invoices", params={"status": "sent"})

        assert response.json()[0]["total"] == 110.0
        backend.list_invoices.assert_awaited_once_with(InvoiceStatus.SENT)

    def test_pdf(self, api, workflow):
        workflow.render_pdf = AsyncMock(return_value=(b"%PDF-1.4", "INV-0001"))

        response = api.get("/api/invoices/inv-1/pdf")

        assert response.headers["content-type"] == "application/pdf"
        assert "Invoice-INV-0001.pdf" in response.headers["content-disposition"]
        assert response.content == b"%PDF-1.4"

    def test_remind(self, api, workflow):
        workflow.send_reminder = AsyncMock(
            return_value=ReminderOutcome(
                invoice_id="inv-1", recipients=["john@example.com"], days_overdue=3, recorded=True
            )
        )

        response = api.post("/api/invoices/inv-1/remind")

        assert response.json()["message"] == "Reminder sent to john@example.com"

    def test_update_overdue(self, api, workflow):
        workflow.update_overdue = AsyncMock(return_value=2)

        assert api.post("/api/invoices/update-overdue").json() == {"updated": 2}

    def test_stats(self, api, backend, workflow):
        workflow.invoice_stats = AsyncMock(
            return_value=InvoiceStats(
                counts={"draft": 0, "sent": 2, "paid": 1, "overdue": 1, "cancelled": 0},
                total_outstanding=Decimal("330.50"),
                total_paid=Decimal("110"),
            )
        )

        body = api.get("/api/invoices/stats").json()

        assert body["counts"]["sent"] == 2
        assert body["total_outstanding"] == 330.5
        assert body["total_paid"] == 110.0
        backend.get_invoice.assert_not_called()

    def test_mark_paid(self, api, workflow, paid_record):
        workflow.mark_paid = AsyncMock(return_value=paid_record)

        response = api.post("/api/invoices/inv-1/paid")

        assert response.status_code == 200
        assert response.json()["status"] == "paid"
        workflow.mark_paid.assert_awaited_once_with("inv-1")

    def test_mark_draft_paid_rejected(self, api, workflow):
        workflow.mark_paid = AsyncMock(
            side_effect=InvoiceValidationError(
                "Cannot mark a draft invoice as paid",
                user_message="Only sent or overdue invoices can be marked as paid",
            )
        )

        response = api.post("/api/invoices/inv-1/paid")

        assert response.status_code == 400
        assert response.json()["error"] == "Only sent or overdue invoices can be marked as paid"

    def test_cancel(self, api, workflow, paid_record):
        workflow.cancel = AsyncMock(
            return_value=paid_record.model_copy(update={"status": InvoiceStatus.CANCELLED})
        )

        assert api.post("/api/invoices/inv-1/cancel").json()["status"] == "cancelled"
        workflow.cancel.assert_awaited_once_with("inv-1")

    def test_process_reminders(self, api, workflow):
        workflow.process_reminders = AsyncMock(
            return_value=ReminderSweep(sent=["INV-0009"], skipped=3, errors=[])
        )

        response = api.post("/api/invoices/process-reminders")

        assert response.json() == {"sent": ["INV-0009"], "skipped": 3, "errors": []}


class TestPayments:
    """Tests for the public payment page."""

    @pytest.fixture
    def public_api(self, workflow, store):
        app = create_app(sessions=store)
        app.dependency_overrides[get_public_workflow] = lambda: workflow
        return TestClient(app)

    def test_payment_details_without_sign_in(
        self, public_api, workflow, paid_record, business_profile
    ):
        sent = paid_record.model_copy(update={"status": InvoiceStatus.SENT})
        workflow.payment_details = AsyncMock(return_value=(sent, business_profile))

        response = public_api.get("/api/pay/inv-1")

        assert response.status_code == 200
        body = response.json()
        assert body["invoice_number"] == "INV-0009"
        assert body["trading_name"] == "Sparky Bros Pty Ltd"
        assert body["bank_bsb"] == "062-000"
        assert body["total"] == 110.0
        assert body["status"] == "sent"

    def test_unissued_invoice(self, public_api, workflow):
        workflow.payment_details = AsyncMock(
            side_effect=NotFoundError("not issued", user_message="Invoice not found")
        )

        response = public_api.get("/api/pay/inv-1")

        assert response.status_code == 404

    def test_service_key_missing(self, store):
        app = create_app(sessions=store)
        app.dependency_overrides[get_mailer] = lambda: AsyncMock()
        with patch(
            "tradie_invoices.api.dependencies.SupabaseClient.service",
            side_effect=BackendError("SUPABASE_SERVICE_ROLE_KEY is not configured"),
        ):
            response = TestClient(app).get("/api/pay/inv-1")

        assert response.status_code == 503


class TestCatalog:
    """Tests for profiles, clients and materials."""

    def test_invalid_abn(self, api, backend):
        response = api.post("/api/profiles", json={"trading_name": "Sparky", "abn": "123"})

        assert response.status_code == 400
        backend.create_business_profile.assert_not_called()

    def test_profile_formats_identifiers(self, api, backend, business_profile):
        backend.create_business_profile = AsyncMock(return_value=business_profile)

        response = api.post(
            "/api/profiles",
            json={"trading_name": "Sparky Bros", "abn": "51824753556", "bank_bsb": "062000"},
        )

        assert response.status_code == 201
        data = backend.create_business_profile.call_args.args[0]
        assert data["abn"] == "51 824 753 556"
        assert data["bank_bsb"] == "062-000"

    def test_client_with_invoices_cannot_be_deleted(self, api, backend):
        backend.invoices_exist_for_customer = AsyncMock(return_value=True)

        response = api.delete("/api/clients/c-1")

        assert response.status_code == 400
        backend.delete_customer.assert_not_called()

    def test_client_search(self, api, backend):
        backend.find_customers_by_name = AsyncMock(
            return_value=[StoredCustomer(id="c-1", name="John")]
        )

        response = api.get("/api/clients", params={"q": "jo"})

        assert response.json()[0]["name"] == "John"

    def test_delete_material_deactivates(self, api, backend):
        backend.deactivate_material = AsyncMock(
            return_value=Material(id="m-1", name="Cable", is_active=False)
        )

        assert api.delete("/api/materials/m-1").status_code == 204
        backend.deactivate_material.assert_awaited_once_with("m-1")
