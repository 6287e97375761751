"""Wise API client for pulling recent transfers into the bank feed."""

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from butter_ledger.config import get_settings
from butter_ledger.errors import ExternalServiceError, ValidationError
from butter_ledger.models import Transaction, TransactionType, to_date, to_money

logger = structlog.get_logger(__name__)


def normalize_wise_transfer(raw: dict[str, Any]) -> Transaction:
    """Convert a Wise transfer into a canonical transaction.

    The transfers endpoint only returns money sent, so every entry is a debit.
    """
    try:
        return Transaction(
            id=str(raw["id"]),
            date=to_date(str(raw["created"]).split("T")[0].split(" ")[0]),
            amount=abs(to_money(raw.get("targetValue"))),
            type=TransactionType.DEBIT,
            description=f"Transfer to {raw.get('targetAccount') or 'Recipient'}",
            currency=raw.get("targetCurrency"),
        )
    except (KeyError, TypeError) as e:
        raise ValidationError(f"Malformed Wise transfer: {e}", details=raw) from e


def _json_list(response: httpx.Response, what: str) -> list[dict[str, Any]]:
    try:
        data = response.json()
    except ValueError as e:
        raise ExternalServiceError(
            f"Wise API Error ({what}): response is not JSON",
            status_code=response.status_code,
            details={"body": response.text[:200]},
        ) from e
    return data if isinstance(data, list) else []


class WiseClient:
    """Async client for the Wise profiles and transfers endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        lookback_days: int | None = None,
        limit: int | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        configured_key = settings.wise_api_key.get_secret_value() if settings.wise_api_key else None
        self._api_key = api_key or configured_key
        self.base_url = (base_url or settings.wise_api_url).rstrip("/")
        self._lookback_days = lookback_days or settings.wise_lookback_days
        self._limit = limit or settings.wise_transfer_limit
        self._timeout = timeout or settings.store_timeout

        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(client="wise")

    async def _get_client(self) -> httpx.AsyncClient:
        if not self._api_key:
            raise ExternalServiceError("Missing Wise configuration", retryable=False)
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "WiseClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def list_profiles(self) -> list[dict[str, Any]]:
        """List the personal and business profiles visible to the token."""
        client = await self._get_client()
        try:
            response = await client.get("/v2/profiles")
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Wise API unreachable: {e}") from e
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Wise API Error (Profiles): {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )
        return _json_list(response, "Profiles")

    async def fetch_transfers(
        self,
        profile_id: Any,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch transfers created in [start, end] for one profile."""
        client = await self._get_client()
        response = await client.get(
            "/v1/transfers",
            params={
                "profile": str(profile_id),
                "limit": limit or self._limit,
                "createdDateStart": start.isoformat(),
                "createdDateEnd": end.isoformat(),
            },
        )
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Wise API Error (Transfers): {response.status_code}",
                status_code=response.status_code,
            )
        return _json_list(response, "Transfers")

    async def fetch_recent_transfers(
        self, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Fetch recent transfers across every accessible profile.

        Per-profile failures are tolerated (personal tokens are often blocked
        from some profiles); if no profile can be read the call fails.
        """
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(days=self._lookback_days)
        profiles = await self.list_profiles()

        transfers: list[dict[str, Any]] = []
        succeeded = False
        for profile in profiles:
            profile_id = profile.get("id")
            try:
                transfers.extend(await self.fetch_transfers(profile_id, start, end))
                succeeded = True
            except (ExternalServiceError, httpx.RequestError) as e:
                self._logger.warning(
                    "profile_transfers_failed", profile_id=profile_id, error=str(e)
                )

        if not succeeded:
            found = ", ".join(f"{p.get('id')} ({p.get('type')})" for p in profiles)
            raise ExternalServiceError(
                "Could not fetch transfers for any profile. "
                f"Found profiles: [{found}]. The token may be restricted by PSD2.",
                retryable=False,
            )

        self._logger.info("transfers_fetched", count=len(transfers), profiles=len(profiles))
        return transfers
