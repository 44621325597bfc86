"""Token cost estimation for backends that do not report cost themselves."""

from __future__ import annotations

import os
from dataclasses import dataclass

PRICING_ENV = "AGENTS_REVERSE_PRICING"


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


def estimate_cost_usd(
    *,
    backend: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
) -> float | None:
    """Estimate call cost from token usage and ``AGENTS_REVERSE_PRICING``."""

    pricing = lookup_pricing(backend=backend, model=model)
    if pricing is None:
        return None
    return (input_tokens / 1_000_000) * pricing.input_per_1m + (
        output_tokens / 1_000_000
    ) * pricing.output_per_1m


def lookup_pricing(*, backend: str, model: str) -> ModelPricing | None:
    mapping = parse_pricing_mapping(os.getenv(PRICING_ENV, ""))
    key_backend = backend.strip().lower()
    for candidate in ((key_backend, model.strip()), (key_backend, "*"), ("*", "*")):
        pricing = mapping.get(candidate)
        if pricing is not None:
            return pricing
    return None


def parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse ``backend:model:input_per_1m:output_per_1m`` entries.

    Entries are comma separated; ``*`` matches any backend or model. Malformed
    entries are ignored.
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    for entry in raw.split(","):
        parts = [part.strip() for part in entry.strip().split(":")]
        if len(parts) != 4:
            continue
        backend, model, input_price, output_price = parts
        try:
            pricing = ModelPricing(
                input_per_1m=float(input_price),
                output_per_1m=float(output_price),
            )
        except ValueError:
            continue
        parsed[(backend.lower(), model)] = pricing
    return parsed
