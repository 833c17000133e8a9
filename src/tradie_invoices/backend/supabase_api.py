"""Supabase client for invoice persistence, object storage and auth lookups.

Talks to PostgREST (``/rest/v1``), Storage (``/storage/v1``) and Auth
(``/auth/v1``) over HTTP. Requests are made with the signed-in user's access
token so row level security scopes every query to that user.
"""

import asyncio
import time
from datetime import UTC, date, datetime
from typing import Any

import httpx
import structlog

from tradie_invoices.backend.records import (
    BusinessProfile,
    InvoiceRecord,
    InvoiceStatus,
    LineItemRecord,
    Material,
    Photo,
    ReminderSettings,
    StoredCustomer,
)
from tradie_invoices.config import get_settings

logger = structlog.get_logger(__name__)

# PostgREST / Postgres codes for "relation does not exist"
_MISSING_TABLE_CODES = frozenset({"PGRST205", "42P01"})

# Characters with meaning inside PostgREST filter values
_FILTER_RESERVED = str.maketrans("", "", "*%,()\\")


class BackendError(Exception):
    """Base exception for backend errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    @property
    def code(self) -> str | None:
        if isinstance(self.details, dict):
            code = self.details.get("code")
            return str(code) if code is not None else None
        return None


class AuthenticationError(BackendError):
    """Access token missing, expired or rejected."""

    pass


class RateLimitError(BackendError):
    """Rate limit exceeded."""

    pass


def format_invoice_number(prefix: str, number: int, padding: int = 4) -> str:
    """Return ``prefix`` followed by the zero-padded sequence number."""
    return f"{prefix}{str(number).zfill(padding)}"


def _eq(value: Any) -> str:
    return f"eq.{value}"


class SupabaseClient:
    """Async client for the Supabase REST, storage and auth APIs."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self._api_key = api_key or settings.supabase_anon_key.get_secret_value()
        self._access_token = access_token
        self._timeout = settings.supabase_timeout
        self._max_retries = settings.supabase_max_retries
        self._default_prefix = settings.default_invoice_prefix
        self._number_padding = settings.invoice_number_padding

        self._user: dict[str, Any] | None = None
        self._capabilities: dict[str, bool] = {}
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def service(cls) -> "SupabaseClient":
        """Client acting with the service role, outside row level security.

        Raises:
            BackendError: If SUPABASE_SERVICE_ROLE_KEY is not configured.
        """
        key = get_settings().supabase_service_role_key
        if key is None:
            raise BackendError("SUPABASE_SERVICE_ROLE_KEY is not configured")
        return cls(api_key=key.get_secret_value())

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SupabaseClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Get request headers with the API key and user token."""
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    # === Generic Request Methods ===

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        retry_count: int = 0,
    ) -> Any:
        """Make an authenticated request with retry on connection errors."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                content=content,
                headers=self._get_headers(headers),
            )
        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                await asyncio.sleep(2**retry_count)  # Exponential backoff
                return await self._request(
                    method, path, params, json, content, headers, retry_count + 1
                )
            raise BackendError(f"Request failed: {e}") from e

        if response.status_code == 401:
            raise AuthenticationError("Not authenticated", status_code=401)

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", "60"))
            raise RateLimitError(
                f"Rate limited, retry after {retry_after}s",
                status_code=429,
                details={"retry_after": retry_after},
            )

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {
                    "raw": response.text[:500] if response.text else "empty response"
                }
            raise BackendError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        return response.json() if response.content else None

    @staticmethod
    def _rows(result: Any) -> list[dict[str, Any]]:
        """Return a list of rows from a PostgREST response."""
        if isinstance(result, list):
            return result
        if isinstance(result, dict):
            return [result]
        return []

    async def select(self, table: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Select rows from a table."""
        query = {"select": "*", **params}
        return self._rows(await self._request("GET", f"/rest/v1/{table}", params=query))

    async def select_one(self, table: str, params: dict[str, Any]) -> dict[str, Any] | None:
        rows = await self.select(table, {**params, "limit": 1})
        return rows[0] if rows else None

    async def insert(
        self,
        table: str,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str | None = None,
    ) -> list[dict[str, Any]]:
        """Insert rows, or upsert them when ``on_conflict`` names the key column."""
        prefer = "return=representation"
        params: dict[str, Any] | None = None
        if on_conflict:
            prefer += ",resolution=merge-duplicates"
            params = {"on_conflict": on_conflict}
        result = await self._request(
            "POST",
            f"/rest/v1/{table}",
            params=params,
            json=rows,
            headers={"Prefer": prefer},
        )
        return self._rows(result)

    async def update(
        self, table: str, filters: dict[str, Any], data: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Update rows matching ``filters`` and return the updated rows."""
        result = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=filters,
            json=data,
            headers={"Prefer": "return=representation"},
        )
        return self._rows(result)

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        await self._request("DELETE", f"/rest/v1/{table}", params=filters)

    # === Auth ===

    async def get_user(self) -> dict[str, Any]:
        """Return the signed-in user for the current access token."""
        if self._user is None:
            if not self._access_token:
                raise AuthenticationError("No access token provided", status_code=401)
            result = await self._request("GET", "/auth/v1/user")
            if not isinstance(result, dict) or "id" not in result:
                raise AuthenticationError("Invalid user response", status_code=401)
            self._user = result
        return self._user

    async def current_user_id(self) -> str:
        user = await self.get_user()
        return str(user["id"])

    # === Business Profiles ===

    async def list_business_profiles(self) -> list[BusinessProfile]:
        rows = await self.select(
            "inv_business_profiles",
            {
                "user_id": _eq(await self.current_user_id()),
                "order": "is_default.desc,trading_name.asc",
            },
        )
        return [BusinessProfile.model_validate(row) for row in rows]

    async def get_business_profile(self, profile_id: str) -> BusinessProfile | None:
        row = await self.select_one("inv_business_profiles", {"id": _eq(profile_id)})
        return BusinessProfile.model_validate(row) if row else None

    async def create_business_profile(self, data: dict[str, Any]) -> BusinessProfile:
        """Create a profile and its invoice number sequence."""
        user_id = await self.current_user_id()
        if data.get("is_default"):
            await self._clear_default_profile(user_id)

        rows = await self.insert("inv_business_profiles", {**data, "user_id": user_id})
        profile = BusinessProfile.model_validate(rows[0])

        await self.insert(
            "inv_sequences",
            {
                "business_profile_id": profile.id,
                "prefix": self._default_prefix,
                "next_number": 1,
            },
        )
        logger.info("business_profile_created", profile_id=profile.id)
        return profile

    async def update_business_profile(
        self, profile_id: str, data: dict[str, Any]
    ) -> BusinessProfile | None:
        if data.get("is_default"):
            await self._clear_default_profile(await self.current_user_id())
        rows = await self.update(
            "inv_business_profiles",
            {"id": _eq(profile_id)},
            {**data, "updated_at": datetime.now(UTC).isoformat()},
        )
        return BusinessProfile.model_validate(rows[0]) if rows else None

    async def delete_business_profile(self, profile_id: str) -> None:
        await self.delete("inv_business_profiles", {"id": _eq(profile_id)})

    async def _clear_default_profile(self, user_id: str) -> None:
        await self.update(
            "inv_business_profiles",
            {"user_id": _eq(user_id), "is_default": "eq.true"},
            {"is_default": False},
        )

    # === Invoice Numbers ===

    async def reserve_invoice_number(self, profile_id: str) -> str:
        """Take the next number from the profile's sequence.

        The increment is a compare-and-set on ``next_number``, so two saves
        racing on the same profile never receive the same number.
        """
        for attempt in range(self._max_retries + 1):
            sequence = await self.select_one(
                "inv_sequences", {"business_profile_id": _eq(profile_id)}
            )
            if sequence is None:
                fallback = f"{self._default_prefix}{int(time.time() * 1000)}"
                logger.warning("sequence_missing", profile_id=profile_id, number=fallback)
                return fallback

            number = int(sequence["next_number"])
            updated = await self.update(
                "inv_sequences",
                {"id": _eq(sequence["id"]), "next_number": _eq(number)},
                {"next_number": number + 1},
            )
            if updated:
                return format_invoice_number(
                    sequence.get("prefix") or self._default_prefix,
                    number,
                    self._number_padding,
                )
            logger.info("sequence_contention", profile_id=profile_id, attempt=attempt)

        raise BackendError("Could not reserve an invoice number", status_code=409)

    # === Invoices ===

    async def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        row = await self.select_one("inv_invoices", {"id": _eq(invoice_id)})
        return InvoiceRecord.model_validate(row) if row else None

    async def list_invoices(self, status: InvoiceStatus | None = None) -> list[InvoiceRecord]:
        params: dict[str, Any] = {
            "user_id": _eq(await self.current_user_id()),
            "order": "created_at.desc",
        }
        if status:
            params["status"] = _eq(status.value)
        rows = await self.select("inv_invoices", params)
        return [InvoiceRecord.model_validate(row) for row in rows]

    async def get_invoice_line_items(self, invoice_id: str) -> list[LineItemRecord]:
        rows = await self.select(
            "inv_line_items",
            {"invoice_id": _eq(invoice_id), "order": "sort_order.asc"},
        )
        return [LineItemRecord.model_validate(row) for row in rows]

    async def upsert_invoice(self, row: dict[str, Any]) -> InvoiceRecord:
        """Insert or update an invoice header keyed by its id."""
        rows = await self.insert(
            "inv_invoices",
            {**row, "user_id": await self.current_user_id()},
            on_conflict="id",
        )
        if not rows:
            raise BackendError("Invoice upsert returned no rows")
        return InvoiceRecord.model_validate(rows[0])

    async def replace_line_items(self, invoice_id: str, rows: list[dict[str, Any]]) -> None:
        """Replace all line items of an invoice."""
        await self.delete("inv_line_items", {"invoice_id": _eq(invoice_id)})
        if rows:
            await self.insert("inv_line_items", rows)

    async def replace_photos(self, invoice_id: str, photos: list[Photo]) -> None:
        await self.delete("inv_photos", {"invoice_id": _eq(invoice_id)})
        if photos:
            await self.insert(
                "inv_photos",
                [
                    {
                        "invoice_id": invoice_id,
                        "storage_path": photo.storage_path,
                        "filename": photo.filename,
                        "sort_order": index,
                    }
                    for index, photo in enumerate(photos)
                ],
            )

    async def update_invoice_status(
        self, invoice_id: str, status: InvoiceStatus
    ) -> InvoiceRecord | None:
        rows = await self.update(
            "inv_invoices",
            {"id": _eq(invoice_id)},
            {"status": status.value, "updated_at": datetime.now(UTC).isoformat()},
        )
        return InvoiceRecord.model_validate(rows[0]) if rows else None

    async def mark_overdue(self, today: date) -> int:
        """Move sent invoices past their due date to overdue."""
        rows = await self.update(
            "inv_invoices",
            {
                "user_id": _eq(await self.current_user_id()),
                "status": _eq(InvoiceStatus.SENT.value),
                "due_date": f"lt.{today.isoformat()}",
            },
            {"status": InvoiceStatus.OVERDUE.value, "updated_at": datetime.now(UTC).isoformat()},
        )
        return len(rows)

    async def list_open_invoices(self) -> list[InvoiceRecord]:
        """Sent and overdue invoices visible to these credentials, soonest due first."""
        rows = await self.select(
            "inv_invoices",
            {
                "status": f"in.({InvoiceStatus.SENT.value},{InvoiceStatus.OVERDUE.value})",
                "order": "due_date.asc",
            },
        )
        return [InvoiceRecord.model_validate(row) for row in rows]

    # === Customers ===

    async def list_customers(self) -> list[StoredCustomer]:
        rows = await self.select(
            "inv_customers",
            {"user_id": _eq(await self.current_user_id()), "order": "name.asc"},
        )
        return [StoredCustomer.model_validate(row) for row in rows]

    async def get_customer(self, customer_id: str) -> StoredCustomer | None:
        row = await self.select_one("inv_customers", {"id": _eq(customer_id)})
        return StoredCustomer.model_validate(row) if row else None

    async def find_customers_by_name(
        self, name: str, exact: bool = False, limit: int = 10
    ) -> list[StoredCustomer]:
        """Case-insensitive name lookup, either exact or containing ``name``."""
        term = name.translate(_FILTER_RESERVED).strip()
        if not term:
            return []
        pattern = term if exact else f"*{term}*"
        rows = await self.select(
            "inv_customers",
            {
                "user_id": _eq(await self.current_user_id()),
                "name": f"ilike.{pattern}",
                "order": "name.asc",
                "limit": limit,
            },
        )
        return [StoredCustomer.model_validate(row) for row in rows]

    async def create_customer(self, data: dict[str, Any]) -> StoredCustomer:
        rows = await self.insert(
            "inv_customers", {**data, "user_id": await self.current_user_id()}
        )
        return StoredCustomer.model_validate(rows[0])

    async def update_customer(
        self, customer_id: str, data: dict[str, Any]
    ) -> StoredCustomer | None:
        rows = await self.update(
            "inv_customers",
            {"id": _eq(customer_id)},
            {**data, "updated_at": datetime.now(UTC).isoformat()},
        )
        return StoredCustomer.model_validate(rows[0]) if rows else None

    async def delete_customer(self, customer_id: str) -> None:
        await self.delete("inv_customers", {"id": _eq(customer_id)})

    async def invoices_exist_for_customer(self, customer_id: str) -> bool:
        rows = await self.select(
            "inv_invoices", {"select": "id", "client_id": _eq(customer_id), "limit": 1}
        )
        return bool(rows)

    # === Materials ===

    async def list_materials(self) -> list[Material]:
        rows = await self.select(
            "inv_materials",
            {
                "user_id": _eq(await self.current_user_id()),
                "is_active": "eq.true",
                "order": "name.asc",
            },
        )
        return [Material.model_validate(row) for row in rows]

    async def get_material(self, material_id: str) -> Material | None:
        row = await self.select_one("inv_materials", {"id": _eq(material_id)})
        return Material.model_validate(row) if row else None

    async def search_materials(self, name: str, limit: int = 20) -> list[Material]:
        term = name.translate(_FILTER_RESERVED).strip()
        rows = await self.select(
            "inv_materials",
            {
                "user_id": _eq(await self.current_user_id()),
                "is_active": "eq.true",
                "name": f"ilike.*{term}*",
                "order": "name.asc",
                "limit": limit,
            },
        )
        return [Material.model_validate(row) for row in rows]

    async def create_material(self, data: dict[str, Any]) -> Material:
        rows = await self.insert(
            "inv_materials", {**data, "user_id": await self.current_user_id()}
        )
        return Material.model_validate(rows[0])

    async def update_material(self, material_id: str, data: dict[str, Any]) -> Material | None:
        rows = await self.update(
            "inv_materials",
            {"id": _eq(material_id)},
            {**data, "updated_at": datetime.now(UTC).isoformat()},
        )
        return Material.model_validate(rows[0]) if rows else None

    async def deactivate_material(self, material_id: str) -> Material | None:
        """Soft-delete a material so old invoices keep their references."""
        return await self.update_material(material_id, {"is_active": False})

    # === Object Storage ===

    async def upload_object(
        self,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        """Upload bytes to storage and return the object path."""
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
        )
        logger.debug("object_uploaded", bucket=bucket, path=path, size=len(content))
        return path

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Return a time-limited URL for a stored object."""
        result = await self._request(
            "POST",
            f"/storage/v1/object/sign/{bucket}/{path}",
            json={"expiresIn": expires_in},
        )
        signed = result.get("signedURL") if isinstance(result, dict) else None
        if not signed:
            raise BackendError("Signed URL missing from storage response", details=result)
        return f"{self.base_url}/storage/v1{signed}"

    # === Optional Capabilities ===

    async def supports_table(self, table: str) -> bool:
        """Return whether an optional table exists, caching the answer."""
        if table not in self._capabilities:
            try:
                await self._request(
                    "GET", f"/rest/v1/{table}", params={"select": "*", "limit": 0}
                )
                self._capabilities[table] = True
            except BackendError as e:
                if e.status_code == 404 or e.code in _MISSING_TABLE_CODES:
                    logger.info("capability_unsupported", table=table)
                    self._capabilities[table] = False
                else:
                    raise
        return self._capabilities[table]

    async def supports_reminders(self) -> bool:
        return await self.supports_table("reminder_settings") and await self.supports_table(
            "payment_reminders"
        )

    async def get_reminder_settings(self, profile_id: str) -> ReminderSettings | None:
        """Return the profile's reminder schedule, or None when unavailable."""
        if not await self.supports_table("reminder_settings"):
            return None
        row = await self.select_one(
            "reminder_settings", {"business_profile_id": _eq(profile_id)}
        )
        return ReminderSettings.model_validate(row) if row else None

    async def save_reminder_settings(
        self, profile_id: str, settings: ReminderSettings
    ) -> bool:
        if not await self.supports_table("reminder_settings"):
            return False
        await self.insert(
            "reminder_settings",
            {
                "business_profile_id": profile_id,
                **settings.model_dump(),
                "updated_at": datetime.now(UTC).isoformat(),
            },
            on_conflict="business_profile_id",
        )
        return True

    async def record_reminder(
        self,
        invoice_id: str,
        reminder_type: str,
        days_offset: int,
    ) -> bool:
        """Log a sent reminder. Returns False when reminders are unsupported."""
        if not await self.supports_table("payment_reminders"):
            return False
        await self.insert(
            "payment_reminders",
            {
                "invoice_id": invoice_id,
                "reminder_type": reminder_type,
                "days_offset": days_offset,
                "sent_at": datetime.now(UTC).isoformat(),
                "status": "sent",
            },
        )
        return True

    async def reminder_sent_on(self, invoice_id: str, reminder_type: str, day: date) -> bool:
        """Whether a reminder of ``reminder_type`` was already logged on or after ``day``."""
        if not await self.supports_table("payment_reminders"):
            return False
        row = await self.select_one(
            "payment_reminders",
            {
                "invoice_id": _eq(invoice_id),
                "reminder_type": _eq(reminder_type),
                "sent_at": f"gte.{day.isoformat()}",
            },
        )
        return row is not None
