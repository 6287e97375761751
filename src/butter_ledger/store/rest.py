"""Supabase (PostgREST) ledger store over httpx with retry logic."""

import asyncio
from typing import Any

import httpx
import structlog

from butter_ledger.config import get_settings
from butter_ledger.errors import ConflictError, ExternalServiceError, NotFoundError
from butter_ledger.store.base import Entity, LedgerStore, filter_operand, split_filter

logger = structlog.get_logger(__name__)

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def _format_operand(value: Any) -> str:
    value = filter_operand(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SupabaseStore(LedgerStore):
    """Async client for the Supabase REST API of the ledger tables."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.store_url).rstrip("/")
        self._api_key = api_key or settings.store_key.get_secret_value()
        self._timeout = timeout or settings.store_timeout
        self._max_retries = settings.store_max_retries if max_retries is None else max_retries

        self._client: httpx.AsyncClient | None = None

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

    def _get_headers(self) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    @staticmethod
    def _build_params(filters: dict[str, Any] | None) -> dict[str, str]:
        params = {"select": "*"}
        for column, raw in (filters or {}).items():
            op, operand = split_filter(raw)
            params[column] = f"{op}.{_format_operand(operand)}"
        return params

    async def _request(
        self,
        method: str,
        table: Entity,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> list[dict[str, Any]]:
        """Make a REST request with retry on transport errors and 5xx/429."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=f"/rest/v1/{table.value}",
                params=params,
                json=json,
                headers=self._get_headers(),
            )
        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                await asyncio.sleep(2**retry_count)  # Exponential backoff
                return await self._request(method, table, params, json, retry_count + 1)
            raise ExternalServiceError(f"Ledger store request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            if retry_count < self._max_retries:
                logger.warning(
                    "store_request_retry",
                    table=table.value,
                    status_code=response.status_code,
                    attempt=retry_count + 1,
                )
                await asyncio.sleep(2**retry_count)
                return await self._request(method, table, params, json, retry_count + 1)
            raise ExternalServiceError(
                f"Ledger store error: {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            code = error_detail.get("code") if isinstance(error_detail, dict) else None
            if response.status_code == 404:
                record_id = (params or {}).get("id", "*").removeprefix("eq.")
                raise NotFoundError(table.value, record_id)
            if response.status_code == 409 or code == UNIQUE_VIOLATION:
                raise ConflictError(
                    f"Conflict writing {table.value}", details=error_detail
                )
            raise ExternalServiceError(
                f"Ledger store error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
                retryable=False,
            )

        data = response.json() if response.content else []
        if isinstance(data, dict):
            return [data]
        return data if isinstance(data, list) else []

    async def list(
        self, entity: Entity, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._request("GET", entity, params=self._build_params(filters))

    async def get(self, entity: Entity, record_id: str) -> dict[str, Any] | None:
        rows = await self._request(
            "GET", entity, params=self._build_params({"id": record_id})
        )
        return rows[0] if rows else None

    async def insert(self, entity: Entity, record: dict[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in record.items() if not (k == "id" and v is None)}
        rows = await self._request("POST", entity, json=payload)
        if not rows:
            raise ExternalServiceError(f"Insert into {entity.value} returned no row")
        return rows[0]

    async def update(
        self, entity: Entity, record_id: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        rows = await self._request(
            "PATCH", entity, params={"id": f"eq.{record_id}"}, json=patch
        )
        if not rows:
            raise NotFoundError(entity.value, record_id)
        return rows[0]

    async def delete(self, entity: Entity, record_id: str) -> None:
        rows = await self._request("DELETE", entity, params={"id": f"eq.{record_id}"})
        if not rows:
            raise NotFoundError(entity.value, record_id)
