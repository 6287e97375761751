"""Tests for invoice delivery."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from butter_ledger.delivery import (
    DeliverySettings,
    WebhookDelivery,
    format_total,
    render_email_body,
)
from butter_ledger.errors import ExternalServiceError
from butter_ledger.models import Client, Invoice

CLIENT = Client(id="c1", name="Acme Corp", contact_name="Jane Doe", email="jane@acme.test")
INVOICE = Invoice(
    client_id="c1",
    invoice_number="INV-ACME-0007",
    issue_date=date(2024, 3, 1),
    due_date=date(2024, 3, 15),
    total=Decimal("1000"),
    recurring_profile_id="p1",
)


class TestRenderEmailBody:
    """Tests for placeholder substitution."""

    def test_placeholders_replaced(self):
        body = render_email_body(
            "Dear [Contact Name], invoice [Invoice Number] for [Total].", INVOICE, CLIENT
        )

        assert body == "Dear Jane Doe, invoice INV-ACME-0007 for $1,000.00."

    def test_falls_back_to_client_name(self):
        client = Client(id="c1", name="Acme Corp")

        assert render_email_body("Dear [Contact Name]", INVOICE, client) == "Dear Acme Corp"

    def test_format_total(self):
        assert format_total(Decimal("1234567.5")) == "$1,234,567.50"


class TestDeliverySettings:
    """Tests for stored-over-environment settings resolution."""

    def test_stored_values_win(self):
        settings = DeliverySettings.resolve(
            {"googleScriptUrl": "https://script.test/exec", "emailTemplate": "Hi"}
        )

        assert settings.webhook_url == "https://script.test/exec"
        assert settings.email_template == "Hi"

    def test_snake_case_keys(self):
        settings = DeliverySettings.resolve({"google_script_url": "https://script.test/exec"})

        assert settings.webhook_url == "https://script.test/exec"

    def test_defaults(self):
        settings = DeliverySettings.resolve({})

        assert settings.webhook_url is None
        assert "[Invoice Number]" in settings.email_template


class TestWebhookDelivery:
    """Tests for the webhook channel."""

    @pytest.mark.asyncio
    async def test_posts_payload(self):
        http = AsyncMock()
        http.post = AsyncMock(return_value=MagicMock(status_code=200))
        http.__aenter__.return_value = http

        with patch("butter_ledger.delivery.httpx.AsyncClient", return_value=http):
            await WebhookDelivery("https://script.test/exec").notify(
                INVOICE, CLIENT, "body", b"pdf"
            )

        url = http.post.await_args.args[0]
        payload = http.post.await_args.kwargs["json"]
        assert url == "https://script.test/exec"
        assert payload["invoice"]["invoiceNumber"] == "INV-ACME-0007"
        assert payload["client"]["email"] == "jane@acme.test"
        assert payload["emailBody"] == "body"
        assert payload["isRecurring"] is True
        assert payload["pdfBase64"] == "cGRm"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        http = AsyncMock()
        http.post = AsyncMock(return_value=MagicMock(status_code=500))
        http.__aenter__.return_value = http

        with patch("butter_ledger.delivery.httpx.AsyncClient", return_value=http):
            with pytest.raises(ExternalServiceError) as exc_info:
                await WebhookDelivery("https://script.test/exec").notify(INVOICE, CLIENT, "body")

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_unreachable_raises(self):
        http = AsyncMock()
        http.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        http.__aenter__.return_value = http

        with patch("butter_ledger.delivery.httpx.AsyncClient", return_value=http):
            with pytest.raises(ExternalServiceError):
                await WebhookDelivery("https://script.test/exec").notify(INVOICE, CLIENT, "body")
