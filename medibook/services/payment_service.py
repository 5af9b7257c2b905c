"""Payment gateway client for consultation fees and refunds."""

import hashlib
import hmac
from decimal import Decimal
from uuid import UUID

import httpx
import structlog

from medibook.config import Settings
from medibook.core.exceptions import PaymentGatewayError

logger = structlog.get_logger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Gateways take amounts in the smallest currency unit (paise, cents)."""
    return int((amount * 100).quantize(Decimal("1")))


class PaymentService:
    """Razorpay-style gateway: orders, refunds and checkout signature checks."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        """
        Initialize the gateway client.

        Args:
            settings: Gateway URL, credentials and timeout
            client: Optional preconfigured client, e.g. with a mock transport
        """
        self.settings = settings
        self._client = client

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(
            base_url=self.settings.payment_gateway_url,
            auth=(self.settings.payment_key_id, self.settings.payment_key_secret),
            timeout=self.settings.payment_timeout_seconds,
        )

    async def _post(self, path: str, payload: dict) -> dict:
        client = self._http_client()
        try:
            response = await client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error("payment_gateway_unreachable", path=path, error=str(e))
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e
        finally:
            if client is not self._client:
                await client.aclose()

        if response.status_code >= 400:
            logger.error(
                "payment_gateway_error",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PaymentGatewayError(
                f"Payment gateway returned {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def create_order(
        self, amount: Decimal, currency: str, appointment_id: UUID
    ) -> tuple[str, str]:
        """
        Create a payment order for an appointment.

        Args:
            amount: Fee in major units
            currency: ISO currency code
            appointment_id: Used as the gateway receipt reference

        Returns:
            Tuple of (order_id, payment_url)

        Raises:
            PaymentGatewayError: If the gateway rejects the request or is unreachable
        """
        data = await self._post(
            "/orders",
            {
                "amount": to_minor_units(amount),
                "currency": currency,
                "receipt": str(appointment_id),
                "notes": {"appointment_id": str(appointment_id)},
            },
        )
        order_id = data.get("id")
        if not order_id:
            raise PaymentGatewayError("Payment gateway returned no order id")

        payment_url = f"{self.settings.payment_checkout_url}?order_id={order_id}"
        logger.info("payment_order_created", appointment_id=str(appointment_id), order_id=order_id)
        return order_id, payment_url

    async def refund(self, payment_id: str, amount: Decimal, reason: str) -> tuple[str, str]:
        """
        Refund a captured payment, fully or partially.

        Returns:
            Tuple of (refund_id, status)

        Raises:
            PaymentGatewayError: If the gateway rejects the request or is unreachable
        """
        data = await self._post(
            f"/payments/{payment_id}/refund",
            {"amount": to_minor_units(amount), "notes": {"reason": reason}},
        )
        refund_id = data.get("id")
        if not refund_id:
            raise PaymentGatewayError("Payment gateway returned no refund id")

        status = data.get("status", "processed")
        logger.info("refund_created", payment_id=payment_id, refund_id=refund_id, status=status)
        return refund_id, status

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the checkout callback signature: HMAC-SHA256 of ``order_id|payment_id``."""
        expected = hmac.new(
            self.settings.payment_key_secret.encode(),
            f"{order_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)
