"""
Payment Gateway Adapter interface.

One capability set -- ``initiate`` and ``query_status`` -- over
heterogeneous mobile-money providers.  Each variant owns its wire format,
phone-number format, amount limits, currency rounding and the mapping of
provider answers onto the provider-agnostic ``ProviderStatus`` and the
``PaymentRejected`` / ``PaymentTimeout`` / ``PaymentUnknown`` errors.

Adapters move money only; they know nothing about seats or rides.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import httpx

from src.domain.enums import PaymentProvider, ProviderStatus
from src.domain.exceptions import (
    InvalidPhoneNumber,
    PaymentRejected,
    PaymentTimeout,
    PaymentUnknown,
)
from src.domain.phone import detect_provider, international_number
from src.domain.pricing import round_to_currency

logger = logging.getLogger(__name__)

# Raw provider statuses, upper-cased, shared by MTN / Orange wire formats
PROVIDER_STATUS_MAP: dict[str, ProviderStatus] = {
    "PENDING": ProviderStatus.PENDING,
    "ONGOING": ProviderStatus.PENDING,
    "DELAYED": ProviderStatus.PENDING,
    "INITIATED": ProviderStatus.PENDING,
    "SUCCESSFUL": ProviderStatus.SUCCEEDED,
    "SUCCESSFULL": ProviderStatus.SUCCEEDED,  # Orange Money spelling
    "SUCCESS": ProviderStatus.SUCCEEDED,
    "FAILED": ProviderStatus.FAILED,
    "REJECTED": ProviderStatus.FAILED,
    "CANCELLED": ProviderStatus.FAILED,
    "NOT_ENOUGH_FUNDS": ProviderStatus.FAILED,
    "PAYER_NOT_ALLOWED": ProviderStatus.FAILED,
    "EXPIRED": ProviderStatus.EXPIRED,
    "TIMEOUT": ProviderStatus.EXPIRED,
}


def map_provider_status(raw: Optional[str]) -> ProviderStatus:
    if not raw:
        return ProviderStatus.UNKNOWN
    return PROVIDER_STATUS_MAP.get(raw.strip().upper(), ProviderStatus.UNKNOWN)


@dataclass(frozen=True)
class CallbackEvent:
    """A provider notification reduced to what reconciliation needs."""

    external_ref: str
    status: ProviderStatus
    reason: Optional[str] = None


class PaymentGateway(ABC):
    provider: PaymentProvider

    def __init__(
        self,
        *,
        currency: str = "XAF",
        min_amount: int = 100,
        max_amount: int = 500_000,
    ):
        self.currency = currency
        self.min_amount = Decimal(min_amount)
        self.max_amount = Decimal(max_amount)

    # ── Normalisation (no I/O) ────────────────────────────────────────

    def normalize_phone(self, phone_number: str) -> str:
        """Return the ``237XXXXXXXXX`` form or raise ``InvalidPhoneNumber``."""
        international = international_number(phone_number)
        if international is None or detect_provider(international) != self.provider:
            raise InvalidPhoneNumber(
                f"Invalid {self.provider.value.upper()} number format"
            )
        return international

    def normalize_amount(self, amount: Decimal) -> Decimal:
        rounded = round_to_currency(amount, self.currency)
        if rounded < self.min_amount or rounded > self.max_amount:
            raise PaymentRejected(
                f"Amount {rounded} {self.currency} outside provider limits "
                f"({self.min_amount}-{self.max_amount})"
            )
        return rounded

    # ── Capabilities ──────────────────────────────────────────────────

    @abstractmethod
    async def initiate(
        self, amount: Decimal, phone_number: str, reference: str
    ) -> str:
        """Ask the payer to approve *amount*; returns the external reference."""

    @abstractmethod
    async def query_status(self, external_ref: str) -> ProviderStatus: ...

    @abstractmethod
    def parse_callback(self, payload: dict[str, Any]) -> CallbackEvent: ...


class HttpPaymentGateway(PaymentGateway):
    """Shared HTTP plumbing: one ``httpx.AsyncClient``, uniform error mapping."""

    def __init__(self, client: httpx.AsyncClient, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", self.provider.value, url)
            raise PaymentTimeout() from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", self.provider.value, url, exc)
            raise PaymentUnknown(str(exc)) from exc

        if 400 <= response.status_code < 500:
            logger.warning(
                "%s rejected %s (%d): %s",
                self.provider.value,
                url,
                response.status_code,
                response.text[:200],
            )
            raise PaymentRejected(
                f"{self.provider.value.upper()} rejected the request "
                f"({response.status_code})"
            )
        if response.status_code >= 500:
            raise PaymentUnknown(
                f"{self.provider.value.upper()} returned {response.status_code}"
            )
        return response
