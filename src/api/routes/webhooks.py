"""
Provider webhooks
=================

POST /api/v1/webhooks/{provider} -- asynchronous payment outcome from MTN / Orange

The raw body must be signed: ``X-Signature`` carries the hex HMAC-SHA256
of the body under the provider's webhook secret.  Callbacks for unknown
references are acknowledged with 200 so the provider stops retrying.
"""

from __future__ import annotations

import hashlib
import hmac
import json

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_payment_orchestrator, get_poller
from src.api.middleware import limiter
from src.api.schemas import ErrorResponse, WebhookAck
from src.domain.enums import PaymentProvider
from src.domain.exceptions import InvalidCallback, InvalidSignature
from src.infrastructure.payments.registry import webhook_secret
from src.services.payment import PaymentOrchestrator
from src.workers.poller import ReconciliationPoller

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@router.post(
    "/{provider}",
    response_model=WebhookAck,
    summary="Receive a payment provider callback",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def provider_callback(
    request: Request,
    provider: PaymentProvider,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
    poller: ReconciliationPoller = Depends(get_poller),
):
    body = await request.body()
    signature = request.headers.get("X-Signature", "")
    expected = sign(body, webhook_secret(provider))
    if not hmac.compare_digest(signature.encode(), expected.encode()):
        raise InvalidSignature()

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise InvalidCallback("Body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidCallback("Body must be a JSON object")

    settled = await orchestrator.handle_callback(provider, payload)
    if settled is not None:
        await poller.cancel(settled)
    return WebhookAck(applied=settled is not None)
