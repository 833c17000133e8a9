"""Tests for the Supabase backend client."""

import json
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import SecretStr

from tradie_invoices.backend import (
    AuthenticationError,
    BackendError,
    InvoiceStatus,
    RateLimitError,
    ReminderSettings,
    SupabaseClient,
    format_invoice_number,
)
from tradie_invoices.config import get_settings

USER = {"id": "user-1", "email": "tradie@example.com"}


def _response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.content = json.dumps(body).encode() if body is not None else b""
    response.text = response.content.decode()
    response.json.return_value = body
    response.headers = headers or {}
    return response


@pytest.fixture
def client():
    """Create a SupabaseClient acting as a signed-in user."""
    return SupabaseClient(
        base_url="http://localhost:54321/", api_key="anon", access_token="user-token"
    )


@pytest.fixture
def http(client):
    """Patch the client's HTTP transport."""
    mock_http = AsyncMock()
    with patch.object(client, "_get_client", AsyncMock(return_value=mock_http)):
        yield mock_http


class TestSupabaseClientInit:
    def test_strips_trailing_slash(self, client):
        assert client.base_url == "http://localhost:54321"

    def test_headers_carry_user_token(self, client):
        headers = client._get_headers({"Prefer": "return=representation"})

        assert headers["apikey"] == "anon"
        assert headers["Authorization"] == "Bearer user-token"
        assert headers["Prefer"] == "return=representation"

    def test_service_client_uses_service_role_key(self):
        settings = get_settings().model_copy(
            update={"supabase_service_role_key": SecretStr("service-key")}
        )
        with patch("tradie_invoices.backend.supabase_api.get_settings", return_value=settings):
            service = SupabaseClient.service()

        headers = service._get_headers()
        assert headers["apikey"] == "service-key"
        assert headers["Authorization"] == "Bearer service-key"

    def test_service_client_requires_key(self):
        settings = get_settings().model_copy(update={"supabase_service_role_key": None})
        with patch("tradie_invoices.backend.supabase_api.get_settings", return_value=settings):
            with pytest.raises(BackendError, match="SUPABASE_SERVICE_ROLE_KEY"):
                SupabaseClient.service()

    def test_format_invoice_number(self):
        assert format_invoice_number("INV-", 7) == "INV-0007"
        assert format_invoice_number("SB", 12345, padding=3) == "SB12345"


class TestRequestErrors:
    """Tests for error mapping in _request."""

    @pytest.mark.asyncio
    async def test_unauthorized(self, client, http):
        http.request.return_value = _response(401, {"message": "JWT expired"})

        with pytest.raises(AuthenticationError) as exc_info:
            await client.select("inv_invoices", {})

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_rate_limited(self, client, http):
        http.request.return_value = _response(429, {}, headers={"Retry-After": "5"})

        with pytest.raises(RateLimitError) as exc_info:
            await client.select("inv_invoices", {})

        assert exc_info.value.details == {"retry_after": 5}

    @pytest.mark.asyncio
    async def test_api_error_carries_code(self, client, http):
        http.request.return_value = _response(404, {"code": "PGRST205", "message": "missing"})

        with pytest.raises(BackendError) as exc_info:
            await client.select("reminder_settings", {})

        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "PGRST205"

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, client, http):
        http.request.side_effect = [httpx.ConnectError("refused"), _response(200, [])]

        with patch("tradie_invoices.backend.supabase_api.asyncio.sleep", AsyncMock()) as sleep:
            rows = await client.select("inv_invoices", {})

        assert rows == []
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, client, http):
        http.request.side_effect = httpx.ConnectError("refused")

        with patch("tradie_invoices.backend.supabase_api.asyncio.sleep", AsyncMock()):
            with pytest.raises(BackendError, match="Request failed"):
                await client.select("inv_invoices", {})

        assert http.request.await_count == client._max_retries + 1


class TestAuth:
    @pytest.mark.asyncio
    async def test_get_user_is_cached(self, client, http):
        http.request.return_value = _response(200, USER)

        assert await client.current_user_id() == "user-1"
        assert await client.current_user_id() == "user-1"
        http.request.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_token(self):
        client = SupabaseClient(base_url="http://localhost:54321", api_key="anon")

        with pytest.raises(AuthenticationError):
            await client.get_user()


class TestQueries:
    """Tests for table helpers."""

    @pytest.mark.asyncio
    async def test_find_customers_builds_filter(self, client, http):
        http.request.side_effect = [
            _response(200, USER),
            _response(200, [{"id": "c-1", "name": "John", "emails": None}]),
        ]

        customers = await client.find_customers_by_name("Jo(hn)*", limit=5)

        params = http.request.call_args.kwargs["params"]
        assert params["name"] == "ilike.*John*"
        assert params["user_id"] == "eq.user-1"
        assert params["limit"] == 5
        assert customers[0].emails == []

    @pytest.mark.asyncio
    async def test_find_customers_empty_term(self, client, http):
        assert await client.find_customers_by_name("**") == []
        http.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_invoice(self, client, http):
        row = {
            "id": "inv-1",
            "invoice_number": "INV-0001",
            "invoice_date": "2025-03-10",
            "due_date": "2025-03-24",
            "total": 110.0,
        }
        http.request.side_effect = [_response(200, USER), _response(201, [row])]

        record = await client.upsert_invoice(row)

        kwargs = http.request.call_args.kwargs
        assert kwargs["params"] == {"on_conflict": "id"}
        assert "resolution=merge-duplicates" in kwargs["headers"]["Prefer"]
        assert kwargs["json"]["user_id"] == "user-1"
        assert record.invoice_number == "INV-0001"
        assert record.status is InvoiceStatus.DRAFT

    @pytest.mark.asyncio
    async def test_mark_overdue(self, client, http):
        http.request.side_effect = [_response(200, USER), _response(200, [{}, {}])]

        count = await client.mark_overdue(date(2025, 3, 10))

        params = http.request.call_args.kwargs["params"]
        assert count == 2
        assert params["status"] == "eq.sent"
        assert params["due_date"] == "lt.2025-03-10"

    @pytest.mark.asyncio
    async def test_list_open_invoices(self, client, http):
        http.request.return_value = _response(
            200,
            [
                {
                    "id": "inv-1",
                    "invoice_number": "INV-0001",
                    "status": "overdue",
                    "invoice_date": "2025-03-01",
                    "due_date": "2025-03-08",
                }
            ],
        )

        invoices = await client.list_open_invoices()

        params = http.request.call_args.kwargs["params"]
        assert params["status"] == "in.(sent,overdue)"
        assert params["order"] == "due_date.asc"
        assert "user_id" not in params
        assert invoices[0].status is InvoiceStatus.OVERDUE


class TestInvoiceNumbers:
    """Tests for reserve_invoice_number."""

    @pytest.mark.asyncio
    async def test_reserves_next_number(self, client, http):
        sequence = {"id": "seq-1", "prefix": "SB-", "next_number": 7}
        http.request.side_effect = [
            _response(200, [sequence]),
            _response(200, [{**sequence, "next_number": 8}]),
        ]

        number = await client.reserve_invoice_number("profile-1")

        assert number == "SB-0007"
        update = http.request.call_args.kwargs
        assert update["params"] == {"id": "eq.seq-1", "next_number": "eq.7"}
        assert update["json"] == {"next_number": 8}

    @pytest.mark.asyncio
    async def test_retries_on_contention(self, client, http):
        http.request.side_effect = [
            _response(200, [{"id": "seq-1", "prefix": None, "next_number": 7}]),
            _response(200, []),
            _response(200, [{"id": "seq-1", "prefix": None, "next_number": 8}]),
            _response(200, [{"id": "seq-1", "next_number": 9}]),
        ]

        assert await client.reserve_invoice_number("profile-1") == "INV-0008"

    @pytest.mark.asyncio
    async def test_missing_sequence_falls_back(self, client, http):
        http.request.return_value = _response(200, [])

        number = await client.reserve_invoice_number("profile-1")

        assert number.startswith("INV-")
        assert number[4:].isdigit()


class TestCapabilities:
    """Tests for optional reminder tables."""

    @pytest.mark.asyncio
    async def test_missing_table_is_unsupported_and_cached(self, client, http):
        http.request.return_value = _response(404, {"code": "42P01"})

        assert await client.get_reminder_settings("profile-1") is None
        assert await client.record_reminder("inv-1", "manual", 3) is False
        assert await client.save_reminder_settings("profile-1", ReminderSettings()) is False
        # reminder_settings checked once, payment_reminders once
        assert http.request.await_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, client, http):
        http.request.return_value = _response(500, {"message": "boom"})

        with pytest.raises(BackendError):
            await client.supports_table("reminder_settings")

    @pytest.mark.asyncio
    async def test_reads_settings_when_supported(self, client, http):
        http.request.side_effect = [
            _response(200, []),
            _response(
                200,
                [
                    {
                        "business_profile_id": "profile-1",
                        "auto_remind_before_days": None,
                        "auto_remind_on_due": False,
                        "auto_remind_after_days": [30],
                    }
                ],
            ),
        ]

        settings = await client.get_reminder_settings("profile-1")

        assert settings.auto_remind_after_days == [30]
        assert settings.auto_remind_on_due is False

    @pytest.mark.asyncio
    async def test_reminder_sent_on(self, client, http):
        http.request.side_effect = [_response(200, []), _response(200, [{"id": "rem-1"}])]

        assert await client.reminder_sent_on("inv-1", "after_due", date(2025, 3, 22)) is True

        params = http.request.call_args.kwargs["params"]
        assert params["invoice_id"] == "eq.inv-1"
        assert params["reminder_type"] == "eq.after_due"
        assert params["sent_at"] == "gte.2025-03-22"

    @pytest.mark.asyncio
    async def test_reminder_log_missing(self, client, http):
        http.request.return_value = _response(404, {"code": "42P01"})

        assert await client.reminder_sent_on("inv-1", "on_due", date(2025, 3, 15)) is False


class TestStorage:
    @pytest.mark.asyncio
    async def test_signed_url(self, client, http):
        http.request.return_value = _response(
            200, {"signedURL": "/object/sign/invoice-photos/a.jpg?token=t"}
        )

        url = await client.create_signed_url("invoice-photos", "a.jpg", 60)

        assert url == "http://localhost:54321/storage/v1/object/sign/invoice-photos/a.jpg?token=t"

    @pytest.mark.asyncio
    async def test_upload_sets_upsert_header(self, client, http):
        http.request.return_value = _response(200, {"Key": "invoice-pdfs/u/inv.pdf"})

        await client.upload_object("invoice-pdfs", "u/inv.pdf", b"%PDF", "application/pdf", True)

        kwargs = http.request.call_args.kwargs
        assert kwargs["content"] == b"%PDF"
        assert kwargs["headers"]["x-upsert"] == "true"
        assert kwargs["headers"]["Content-Type"] == "application/pdf"
