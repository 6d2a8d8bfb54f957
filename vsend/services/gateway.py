import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from vsend.exceptions import PaymentGatewayError
from vsend.utils.amounts import to_minor_units

logger = logging.getLogger(__name__)

PAYMENT_CHANNELS = ["card", "bank", "ussd", "qr", "mobile_money", "bank_transfer"]


class PaystackGateway:
    """
    Thin async client for the Paystack REST API. Amounts go over the wire in
    minor units (pesewas); callers work in Decimal major units.
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.secret_key = secret_key
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.exception(f"Paystack {method} {path} failed")
            raise PaymentGatewayError() from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error or not payload.get("status"):
            message = payload.get("message") or "Payment provider request failed"
            logger.warning(f"Paystack {method} {path} returned {response.status_code}: {message}")
            raise PaymentGatewayError(message)
        return payload

    async def initialize_payment(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        currency: str = "GHS",
        metadata: Optional[dict] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Returns authorization_url, access_code and reference for a checkout."""
        body = {
            "email": email,
            "amount": to_minor_units(amount),
            "reference": reference,
            "currency": currency,
            "channels": PAYMENT_CHANNELS,
            "metadata": metadata or {},
        }
        if callback_url:
            body["callback_url"] = callback_url
        payload = await self._request("POST", "/transaction/initialize", json=body)
        logger.info(f"Payment initialized: {reference}")
        return payload["data"]

    async def verify_payment(self, reference: str) -> Dict[str, Any]:
        payload = await self._request("GET", f"/transaction/verify/{reference}")
        return payload["data"]

    async def list_banks(self, currency: str = "GHS") -> List[Dict[str, Any]]:
        payload = await self._request("GET", "/bank", params={"currency": currency})
        return payload.get("data") or []

    async def resolve_account_number(self, account_number: str, bank_code: str) -> Dict[str, Any]:
        payload = await self._request(
            "GET", "/bank/resolve", params={"account_number": account_number, "bank_code": bank_code}
        )
        return payload["data"]

    async def create_transfer_recipient(
        self,
        name: str,
        account_number: str,
        bank_code: str,
        currency: str = "GHS",
        recipient_type: str = "nuban",
    ) -> Dict[str, Any]:
        body = {
            "type": recipient_type,
            "name": name,
            "account_number": account_number,
            "bank_code": bank_code,
            "currency": currency,
        }
        payload = await self._request("POST", "/transferrecipient", json=body)
        return payload["data"]

    async def initiate_transfer(self, amount: Decimal, recipient_code: str, reason: str, reference: str) -> Dict[str, Any]:
        body = {
            "source": "balance",
            "amount": to_minor_units(amount),
            "recipient": recipient_code,
            "reason": reason,
            "reference": reference,
        }
        payload = await self._request("POST", "/transfer", json=body)
        logger.info(f"Transfer initiated: {reference}")
        return payload["data"]

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        digest = hmac.new(self.secret_key.encode(), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(digest, signature or "")

    async def aclose(self) -> None:
        await self.client.aclose()
