"""
In-process simulated provider, used when ``PAYMENT_SANDBOX`` is on.

Outcomes are chosen by the last digit of the payer's number so demos and
tests can drive every path:

====  ==============================================
 1    rejected at initiation (``PaymentRejected``)
 2    fails on the first status query
 3    stays pending forever (poller will expire it)
 4    initiation times out after the payer was prompted
      (``PaymentTimeout`` carrying the reference), then succeeds
 *    succeeds once queried ``settle_after`` times
====  ==============================================
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .base import CallbackEvent, PaymentGateway, map_provider_status
from src.domain.enums import PaymentProvider, ProviderStatus
from src.domain.exceptions import InvalidCallback, PaymentRejected, PaymentTimeout

logger = logging.getLogger(__name__)


@dataclass
class _SimulatedPayment:
    phone_number: str
    amount: Decimal
    queries: int = 0


class SandboxGateway(PaymentGateway):
    def __init__(self, provider: PaymentProvider, settle_after: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.provider = provider
        self.settle_after = settle_after
        self.payments: dict[str, _SimulatedPayment] = {}

    async def initiate(
        self, amount: Decimal, phone_number: str, reference: str
    ) -> str:
        outcome = phone_number[-1]
        if outcome == "1":
            raise PaymentRejected("Payer declined the request")

        external_ref = f"sbx-{self.provider.value}-{uuid.uuid4().hex[:12]}"
        self.payments[external_ref] = _SimulatedPayment(phone_number, amount)
        logger.info(
            "Sandbox %s payment %s for %s: %s %s",
            self.provider.value,
            external_ref,
            reference,
            amount,
            self.currency,
        )
        if outcome == "4":
            raise PaymentTimeout(external_ref=external_ref)
        return external_ref

    async def query_status(self, external_ref: str) -> ProviderStatus:
        payment = self.payments.get(external_ref)
        if payment is None:
            return ProviderStatus.UNKNOWN
        payment.queries += 1

        outcome = payment.phone_number[-1]
        if outcome == "2":
            status = ProviderStatus.FAILED
        elif outcome != "3" and payment.queries >= self.settle_after:
            status = ProviderStatus.SUCCEEDED
        else:
            status = ProviderStatus.PENDING

        if status.is_terminal:
            # Settled payments are forgotten; later queries answer UNKNOWN
            del self.payments[external_ref]
        return status

    def parse_callback(self, payload: dict[str, Any]) -> CallbackEvent:
        if not payload.get("reference"):
            raise InvalidCallback("Sandbox callback carried no reference")
        return CallbackEvent(
            external_ref=str(payload["reference"]),
            status=map_provider_status(payload.get("status")),
            reason=payload.get("reason"),
        )
