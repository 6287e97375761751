"""Outbound invoice delivery: email body rendering and the webhook channel."""

import base64
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from butter_ledger.config import get_settings
from butter_ledger.errors import ExternalServiceError
from butter_ledger.models import Client, Invoice

logger = structlog.get_logger(__name__)


class DeliveryChannel(Protocol):
    """Sends a generated invoice to the client (email, webhook, ...)."""

    async def notify(
        self,
        invoice: Invoice,
        client: Client,
        email_body: str,
        pdf_bytes: bytes | None = None,
    ) -> None: ...


class PdfRenderer(Protocol):
    """Renders an invoice document; the payload is passed through untouched."""

    async def render(self, invoice: Invoice, client: Client) -> bytes: ...


@dataclass(frozen=True)
class DeliverySettings:
    """Per-run delivery configuration, stored settings over environment."""

    webhook_url: str | None
    email_template: str

    @classmethod
    def resolve(cls, stored: dict[str, Any]) -> "DeliverySettings":
        settings = get_settings()
        webhook_url = (
            stored.get("googleScriptUrl")
            or stored.get("google_script_url")
            or settings.delivery_webhook_url
        )
        template = (
            stored.get("emailTemplate")
            or stored.get("email_template")
            or settings.email_template
        )
        return cls(webhook_url=webhook_url or None, email_template=template)


def format_total(amount: Any) -> str:
    return f"${amount:,.2f}"


def render_email_body(template: str, invoice: Invoice, client: Client) -> str:
    """Fill the [Contact Name], [Invoice Number] and [Total] placeholders."""
    body = template.replace("[Contact Name]", client.contact_name or client.name or "")
    body = body.replace("[Invoice Number]", invoice.invoice_number)
    return body.replace("[Total]", format_total(invoice.total))


class WebhookDelivery:
    """POSTs the invoice, client and email body to a mailer webhook.

    The original deployment points this at a Google Apps Script that sends
    the email; any endpoint accepting the same JSON works.
    """

    def __init__(self, url: str, timeout: float | None = None):
        self._url = url
        self._timeout = timeout or get_settings().delivery_timeout
        self._logger = logger.bind(component="webhook_delivery")

    async def notify(
        self,
        invoice: Invoice,
        client: Client,
        email_body: str,
        pdf_bytes: bytes | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "invoice": invoice.to_record(),
            "client": client.to_record(),
            "emailBody": email_body,
            "isRecurring": invoice.recurring_profile_id is not None,
        }
        if pdf_bytes is not None:
            payload["pdfBase64"] = base64.b64encode(pdf_bytes).decode("ascii")

        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout)) as http:
                response = await http.post(self._url, json=payload)
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Delivery webhook unreachable: {e}") from e

        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Delivery webhook error: {response.status_code}",
                status_code=response.status_code,
            )
        self._logger.info("invoice_delivered", invoice_number=invoice.invoice_number)
