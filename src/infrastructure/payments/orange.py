"""
Orange Money (Cameroon) merchant-payment adapter.

``mp/init`` hands out a pay token, ``mp/pay`` pushes the USSD prompt to
the subscriber, ``mp/paymentstatus/{payToken}`` reports the outcome.  The
pay token is our external reference.  Every call carries both the OAuth
bearer token and the ``X-AUTH-TOKEN`` channel credentials.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from decimal import Decimal
from typing import Any, Optional

import httpx

from .base import CallbackEvent, HttpPaymentGateway, map_provider_status
from src.domain.enums import PaymentProvider, ProviderStatus
from src.domain.exceptions import InvalidCallback, PaymentTimeout, PaymentUnknown

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MARGIN_SECONDS = 60


class OrangeMoneyGateway(HttpPaymentGateway):
    provider = PaymentProvider.ORANGE

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        token_url: str,
        consumer_key: str,
        consumer_secret: str,
        api_username: str,
        api_password: str,
        pin_code: str,
        merchant_number: str,
        notification_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(client, **kwargs)
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.token_url = token_url
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.pin_code = pin_code
        self.merchant_number = merchant_number
        self.notification_url = notification_url
        self._auth_token = base64.b64encode(
            f"{api_username}:{api_password}".encode()
        ).decode()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        response = await self._request(
            "POST",
            self.token_url,
            auth=(self.consumer_key, self.consumer_secret),
            data={"grant_type": "client_credentials"},
        )
        data = response.json()
        token = data.get("access_token")
        if not token:
            raise PaymentUnknown("Orange token response carried no access_token")
        expires_in = int(data.get("expires_in", 3600))
        self._token = token
        self._token_expires_at = (
            time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        )
        return token

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "X-AUTH-TOKEN": self._auth_token}

    async def initiate(
        self, amount: Decimal, phone_number: str, reference: str
    ) -> str:
        token = await self._access_token()

        init = await self._request(
            "POST", f"{self.base_url}mp/init", headers=self._headers(token)
        )
        pay_token = (init.json().get("data") or {}).get("payToken")
        if not pay_token:
            raise PaymentUnknown("Orange mp/init returned no payToken")

        try:
            await self._request(
                "POST",
                f"{self.base_url}mp/pay",
                headers=self._headers(token),
                json={
                    "notifUrl": self.notification_url or "",
                    "channelUserMsisdn": self.merchant_number,
                    "amount": str(amount),
                    "subscriberMsisdn": phone_number,
                    "pin": self.pin_code,
                    "orderId": reference,
                    # Orange rejects punctuation in the description
                    "description": re.sub(
                        r"[^A-Za-z0-9 ]", "", f"Seat booking {reference}"
                    ),
                    "payToken": pay_token,
                },
            )
        except (PaymentTimeout, PaymentUnknown) as exc:
            # The prompt may have been pushed; the pay token stays queryable
            exc.external_ref = pay_token
            raise
        logger.info("Orange payment %s pushed for %s", pay_token, reference)
        return pay_token

    async def query_status(self, external_ref: str) -> ProviderStatus:
        token = await self._access_token()
        response = await self._request(
            "GET",
            f"{self.base_url}mp/paymentstatus/{external_ref}",
            headers=self._headers(token),
        )
        data = response.json().get("data") or {}
        return map_provider_status(data.get("status"))

    def parse_callback(self, payload: dict[str, Any]) -> CallbackEvent:
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        ref = data.get("payToken")
        if not ref:
            raise InvalidCallback("Orange callback carried no payToken")
        return CallbackEvent(
            external_ref=str(ref),
            status=map_provider_status(data.get("status")),
            reason=data.get("txnmessage") or data.get("inittxnmessage"),
        )
