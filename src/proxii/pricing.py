"""Model pricing and cost calculation.

Rates are USD per one million tokens.  :class:`PricingCache` fetches
live rates from the gateway's ``/models`` endpoint and falls back to
:data:`FALLBACK_PRICING` when no key is configured or the fetch fails.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import httpx

from proxii.config import Settings
from proxii.exceptions import MissingAPIKeyError

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 60 * 60
TOKENS_PER_UNIT = 1_000_000


@dataclass(frozen=True)
class ModelRates:
    input: float
    output: float


FALLBACK_PRICING: dict[str, ModelRates] = {
    "anthropic/claude-opus-4.1": ModelRates(15.0, 75.0),
    "anthropic/claude-opus-4": ModelRates(15.0, 75.0),
    "anthropic/claude-sonnet-4.5": ModelRates(3.0, 15.0),
    "anthropic/claude-sonnet-4": ModelRates(3.0, 15.0),
    "anthropic/claude-sonnet-3.7": ModelRates(3.0, 15.0),
    "anthropic/claude-haiku-4.5": ModelRates(1.0, 5.0),
    "anthropic/claude-haiku-3.5": ModelRates(0.8, 4.0),
    "anthropic/claude-opus-3": ModelRates(15.0, 75.0),
    "anthropic/claude-haiku-3": ModelRates(0.25, 1.25),
    "openai/gpt-4": ModelRates(30.0, 60.0),
    "openai/gpt-4-turbo": ModelRates(10.0, 30.0),
    "openai/gpt-4o": ModelRates(2.5, 10.0),
    "openai/gpt-4o-mini": ModelRates(0.15, 0.6),
    "openai/gpt-3.5-turbo": ModelRates(0.5, 1.5),
    "openai/o1": ModelRates(15.0, 60.0),
    "openai/o1-mini": ModelRates(3.0, 12.0),
}


def get_model_rates(model: str, pricing: Mapping[str, ModelRates]) -> ModelRates | None:
    return pricing.get(model)


def calculate_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    pricing: Mapping[str, ModelRates],
) -> float:
    """Spend in USD for one completion.

    Unknown models cost ``0.0``; this never raises.
    """
    rates = get_model_rates(model, pricing)
    if rates is None:
        logger.warning(f"No pricing data for model: {model}")
        return 0.0
    input_cost = (prompt_tokens / TOKENS_PER_UNIT) * rates.input
    output_cost = (completion_tokens / TOKENS_PER_UNIT) * rates.output
    return input_cost + output_cost


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return "<$0.01"
    return f"${cost:.2f}"


class PricingCache:
    """Injectable cache of live model pricing.

    Args:
        settings: Gateway settings; ``models_url`` is fetched.
        api_key_getter: Returns the current key. Defaults to
            ``settings.current_api_key``.
        ttl: Seconds a fetched table stays fresh.
        transport: Optional httpx transport, used by tests.
        clock: Time source in seconds.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        api_key_getter: Callable[[], str | None] | None = None,
        ttl: float = CACHE_TTL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or Settings()
        self.api_key_getter = api_key_getter or self.settings.current_api_key
        self.ttl = ttl
        self.transport = transport
        self.clock = clock
        self._models: dict[str, ModelRates] | None = None
        self._fetched_at: float | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._models is not None
            and self._fetched_at is not None
            and self.clock() - self._fetched_at < self.ttl
        )

    async def get(self, force_refresh: bool = False) -> dict[str, ModelRates]:
        """Return the pricing table, fetching it if stale or forced."""
        api_key = self.api_key_getter()
        if not api_key or not api_key.strip():
            logger.warning("No API key provided, using fallback pricing")
            return FALLBACK_PRICING

        async with self._lock:
            if not force_refresh and self._is_fresh():
                return self._models

            try:
                models = await self._fetch(api_key)
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Failed to fetch model pricing: {e}")
                if self._models is not None:
                    logger.warning("Using stale pricing cache due to fetch error")
                    return self._models
                logger.warning("Falling back to hardcoded pricing")
                return FALLBACK_PRICING

            self._models = models
            self._fetched_at = self.clock()
            return models

    async def refresh(self) -> dict[str, ModelRates]:
        api_key = self.api_key_getter()
        if not api_key or not api_key.strip():
            raise MissingAPIKeyError("API key is required to refresh pricing")
        self.invalidate()
        return await self.get(force_refresh=True)

    def invalidate(self) -> None:
        self._models = None
        self._fetched_at = None
        logger.info("Pricing cache cleared")

    def status(self) -> dict:
        if self._models is None or self._fetched_at is None:
            return {"exists": False}
        age = self.clock() - self._fetched_at
        return {
            "exists": True,
            "age": age,
            "expired": age >= self.ttl,
            "model_count": len(self._models),
        }

    async def _fetch(self, api_key: str) -> dict[str, ModelRates]:
        logger.info("Fetching model pricing from OpenRouter")
        async with httpx.AsyncClient(transport=self.transport) as client:
            response = await client.get(
                self.settings.models_url,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
            )
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise ValueError("Invalid response format from OpenRouter API")

        pricing: dict[str, ModelRates] = {}
        for model in data["data"]:
            if not isinstance(model, dict):
                continue
            rates = model.get("pricing")
            if model.get("id") and isinstance(rates, dict):
                # per-token prices on the wire
                pricing[model["id"]] = ModelRates(
                    input=float(rates.get("prompt") or 0) * TOKENS_PER_UNIT,
                    output=float(rates.get("completion") or 0) * TOKENS_PER_UNIT,
                )
        logger.info(f"Fetched pricing for {len(pricing)} models")
        return pricing
