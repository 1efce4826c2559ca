"""Paystack service - Integration with the Paystack REST API"""

import logging
from typing import Any, Optional

import httpx

from ...config import PAYSTACK_BASE_URL, PAYSTACK_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """
    Paystack could not be reached, answered non-2xx, or declined the request.

    503 for transport/HTTP failures (the caller may retry), 400 when Paystack
    answered `status: false` for the request itself.
    """

    def __init__(self, message: str, status_code: int = 503, provider_status: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        self.provider_status = provider_status
        super().__init__(message)


class PaystackService:
    """Service for Paystack API operations"""

    def __init__(
        self,
        secret_key: str,
        base_url: str = PAYSTACK_BASE_URL,
        timeout: float = PAYSTACK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await http_client.request(method, url, headers=self._headers(), json=json)
        except httpx.HTTPError as e:
            logger.error(f"❌ Paystack request {method} {path} failed: {e}")
            raise PaymentProviderError(
                "Payment service temporarily unavailable. Please try again later."
            ) from e

        if response.status_code >= 400:
            logger.error(f"❌ Paystack API error {response.status_code} on {path}: {response.text[:500]}")
            raise PaymentProviderError(
                "Payment service temporarily unavailable. Please try again later.",
                provider_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"❌ Paystack returned a non-JSON body on {path}")
            raise PaymentProviderError("Payment service returned an invalid response") from e

        if not data.get("status"):
            message = data.get("message") or "Payment initialization failed. Please try again."
            logger.warning(f"⚠️ Paystack declined {path}: {message}")
            raise PaymentProviderError(message, status_code=400, provider_status=response.status_code)

        return data.get("data") or {}

    async def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        currency: str,
        reference: str,
        callback_url: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Card checkout; returns authorization_url, access_code and reference"""
        body = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "reference": reference,
            "metadata": metadata or {},
        }
        if callback_url:
            body["callback_url"] = callback_url

        logger.info(f"💳 Initializing Paystack transaction {reference}")
        return await self._request("POST", "/transaction/initialize", json=body)

    async def charge_mobile_money(
        self,
        email: str,
        amount_minor: int,
        currency: str,
        reference: str,
        phone: str,
        provider: str,
        metadata: Optional[dict] = None,
    ) -> dict[str, Any]:
        """M-Pesa / Airtel prompt on the payer's phone; returns reference and status"""
        body = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "reference": reference,
            "mobile_money": {"phone": phone, "provider": provider},
            "metadata": metadata or {},
        }

        logger.info(f"📱 Charging {provider} mobile money for {reference}")
        return await self._request("POST", "/charge", json=body)

    async def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Transaction details as Paystack reports them now"""
        logger.info(f"🔍 Verifying Paystack transaction {reference}")
        return await self._request("GET", f"/transaction/verify/{reference}")
