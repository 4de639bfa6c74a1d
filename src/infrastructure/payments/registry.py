"""Builds the provider -> adapter map from settings."""

from __future__ import annotations

import httpx

from .base import PaymentGateway
from .mtn import MtnMomoGateway
from .orange import OrangeMoneyGateway
from .sandbox import SandboxGateway
from src.config import Settings, settings
from src.domain.enums import PaymentProvider


def build_gateways(
    client: httpx.AsyncClient, config: Settings = settings
) -> dict[PaymentProvider, PaymentGateway]:
    limits = dict(
        currency=config.currency,
        min_amount=config.payment_min_amount,
        max_amount=config.payment_max_amount,
    )

    if config.payment_sandbox:
        return {provider: SandboxGateway(provider, **limits) for provider in PaymentProvider}

    return {
        PaymentProvider.MTN: MtnMomoGateway(
            client,
            base_url=config.mtn_base_url,
            subscription_key=config.mtn_subscription_key,
            user_id=config.mtn_collection_user_id,
            api_key=config.mtn_collection_api_key,
            target_environment=config.mtn_target_environment,
            callback_url=config.mtn_callback_url,
            **limits,
        ),
        PaymentProvider.ORANGE: OrangeMoneyGateway(
            client,
            base_url=config.orange_base_url,
            token_url=config.orange_token_url,
            consumer_key=config.orange_consumer_key,
            consumer_secret=config.orange_consumer_secret,
            api_username=config.orange_api_username,
            api_password=config.orange_api_password,
            pin_code=config.orange_pin_code,
            merchant_number=config.orange_merchant_number,
            notification_url=config.orange_notification_url,
            **limits,
        ),
    }


def webhook_secret(provider: PaymentProvider, config: Settings = settings) -> str:
    if provider == PaymentProvider.MTN:
        return config.mtn_webhook_secret
    return config.orange_webhook_secret
