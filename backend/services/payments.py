"""
Razorpay gateway adapter over its REST API.
"""
import asyncio
import hashlib
import hmac
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from core.exceptions import ExternalServiceException
from core.logging import get_structured_logger
from core.utils.money import round_money, to_decimal
from core.utils.uuid_utils import uuid7_str
from schemas.payments import PaymentOrder, RefundResult, PaymentDetails

logger = get_structured_logger(__name__)

RAZORPAY_API_URL = "https://api.razorpay.com/v1"


def to_paise(amount) -> int:
    return int(round_money(to_decimal(amount)) * 100)


def from_paise(amount) -> Decimal:
    return round_money(Decimal(int(amount or 0)) / 100)


def razorpay_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest Razorpay returns for a captured checkout payment."""
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(key_secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, test_mode: bool = False,
                 base_url: str = RAZORPAY_API_URL, timeout_seconds: float = 30):
        if not key_id or not key_secret:
            raise ExternalServiceException("Razorpay key ID and secret are required", service="razorpay")
        self.key_id = key_id
        self.key_secret = key_secret
        self.test_mode = test_mode
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{self.base_url}{path}",
                    auth=aiohttp.BasicAuth(self.key_id, self.key_secret),
                    json=payload,
                ) as response:
                    body = await response.json(content_type=None)
                    if response.status >= 400:
                        description = (body or {}).get("error", {}).get("description", "unknown error")
                        logger.error(
                            message="Razorpay API error",
                            metadata={"path": path, "status": response.status, "description": description},
                        )
                        raise ExternalServiceException(
                            f"Payment gateway request failed: {description}", service="razorpay")
                    return body
        except asyncio.TimeoutError as e:
            raise ExternalServiceException("Payment gateway timed out", service="razorpay") from e
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(message="Razorpay request failed", metadata={"path": path}, exception=e)
            raise ExternalServiceException("Payment gateway unavailable", service="razorpay") from e

    async def create_order(self, amount, currency: str = "INR", receipt: Optional[str] = None,
                           notes: Optional[Dict[str, Any]] = None) -> PaymentOrder:
        payload = {
            "amount": to_paise(amount),
            "currency": currency,
            "receipt": receipt or f"receipt_{uuid7_str()}",
            "notes": notes or {},
        }
        order = await self._request("POST", "/orders", payload)
        return PaymentOrder(
            id=order["id"],
            amount=from_paise(order["amount"]),
            currency=order["currency"],
            status=order["status"],
            receipt=order.get("receipt"),
        )

    def verify_payment(self, payment_id: str, order_id: str, signature: str) -> bool:
        if not payment_id or not order_id or not signature:
            return False
        expected = razorpay_signature(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)

    async def refund_payment(self, payment_id: str, amount=None) -> RefundResult:
        """Full refund unless `amount` (in rupees) is given."""
        payload = {"amount": to_paise(amount)} if amount else {}
        refund = await self._request("POST", f"/payments/{payment_id}/refund", payload)
        logger.log_business_event("payment_refunded", {
            "payment_id": payment_id, "refund_id": refund["id"], "amount": refund.get("amount")})
        return RefundResult(
            id=refund["id"],
            amount=from_paise(refund.get("amount")),
            status=refund["status"],
            payment_id=refund.get("payment_id", payment_id),
        )

    async def get_payment_details(self, payment_id: str) -> PaymentDetails:
        payment = await self._request("GET", f"/payments/{payment_id}")
        return PaymentDetails(
            id=payment["id"],
            amount=from_paise(payment["amount"]),
            currency=payment["currency"],
            status=payment["status"],
            method=payment.get("method"),
            email=payment.get("email"),
            contact=str(payment.get("contact") or ""),
            created_at=datetime.fromtimestamp(payment["created_at"], tz=timezone.utc),
            notes=payment.get("notes") or {},
        )
