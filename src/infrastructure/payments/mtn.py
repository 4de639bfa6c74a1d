"""
MTN Mobile Money collection adapter.

Flow
----
1. ``POST /collection/token/`` with basic auth -> bearer token (cached
   until shortly before ``expires_in``).
2. ``POST /collection/v1_0/requesttopay`` with our own ``X-Reference-Id``
   (a UUID).  ``202 Accepted`` means the payer was prompted; the reference
   we generated is the external ref.
3. ``GET /collection/v1_0/requesttopay/{ref}`` -> ``status`` in
   ``PENDING | SUCCESSFUL | FAILED | ...``.

The sandbox only settles in EUR, so the wire currency differs from the
booking currency there.
"""

from __future__ import annotations

import logging
import time
import uuid
from decimal import Decimal
from typing import Any, Optional

import httpx

from .base import CallbackEvent, HttpPaymentGateway, map_provider_status
from src.domain.enums import PaymentProvider, ProviderStatus
from src.domain.exceptions import InvalidCallback, PaymentTimeout, PaymentUnknown

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60


class MtnMomoGateway(HttpPaymentGateway):
    provider = PaymentProvider.MTN

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        subscription_key: str,
        user_id: str,
        api_key: str,
        target_environment: str = "sandbox",
        callback_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(client, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.subscription_key = subscription_key
        self.user_id = user_id
        self.api_key = api_key
        self.target_environment = target_environment
        self.callback_url = callback_url
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @property
    def is_production(self) -> bool:
        return self.target_environment == "production"

    @property
    def wire_currency(self) -> str:
        return self.currency if self.is_production else "EUR"

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "X-Target-Environment": "mtncameroon" if self.is_production else "sandbox",
            "Ocp-Apim-Subscription-Key": self.subscription_key,
        }

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = await self._request(
            "POST",
            f"{self.base_url}/collection/token/",
            auth=(self.user_id, self.api_key),
            headers={"Ocp-Apim-Subscription-Key": self.subscription_key},
        )
        data = response.json()
        token = data.get("access_token")
        if not token:
            raise PaymentUnknown("MTN token response carried no access_token")
        expires_in = int(data.get("expires_in", 3600))
        self._token = token
        self._token_expires_at = (
            time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        )
        return token

    async def initiate(
        self, amount: Decimal, phone_number: str, reference: str
    ) -> str:
        token = await self._access_token()
        external_ref = str(uuid.uuid4())
        headers = {**self._headers(token), "X-Reference-Id": external_ref}
        if self.callback_url:
            headers["X-Callback-Url"] = self.callback_url

        try:
            response = await self._request(
                "POST",
                f"{self.base_url}/collection/v1_0/requesttopay",
                headers=headers,
                json={
                    "amount": str(amount),
                    "currency": self.wire_currency,
                    "externalId": external_ref,
                    "payer": {"partyIdType": "MSISDN", "partyId": phone_number},
                    "payerMessage": f"Seat booking {reference}",
                    "payeeNote": f"Seat booking {reference}",
                },
            )
        except (PaymentTimeout, PaymentUnknown) as exc:
            # MTN may have accepted it; the reference stays queryable
            exc.external_ref = external_ref
            raise
        if response.status_code != 202:
            raise PaymentUnknown(
                f"MTN requesttopay answered {response.status_code}, expected 202",
                external_ref=external_ref,
            )
        logger.info("MTN request-to-pay %s accepted for %s", external_ref, reference)
        return external_ref

    async def query_status(self, external_ref: str) -> ProviderStatus:
        token = await self._access_token()
        response = await self._request(
            "GET",
            f"{self.base_url}/collection/v1_0/requesttopay/{external_ref}",
            headers=self._headers(token),
        )
        data = response.json()
        status = map_provider_status(data.get("status"))
        if status == ProviderStatus.FAILED:
            logger.info(
                "MTN transaction %s failed: %s", external_ref, data.get("reason")
            )
        return status

    def parse_callback(self, payload: dict[str, Any]) -> CallbackEvent:
        ref = payload.get("referenceId") or payload.get("externalId")
        if not ref:
            raise InvalidCallback("MTN callback carried no reference")
        reason = payload.get("reason")
        if isinstance(reason, dict):
            reason = reason.get("message") or reason.get("code")
        return CallbackEvent(
            external_ref=str(ref),
            status=map_provider_status(payload.get("status")),
            reason=reason,
        )
