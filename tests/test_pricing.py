from __future__ import annotations

import allure
import pytest

from agents_reverse.pricing import PRICING_ENV, estimate_cost_usd, parse_pricing_mapping

pytestmark = [
    allure.epic("Generation Backends"),
    allure.feature("Usage Accounting"),
]


def test_estimate_cost_usd_uses_input_and_output_tokens(monkeypatch) -> None:
    monkeypatch.setenv(PRICING_ENV, "codex:gpt-test:1.0:3.0")

    cost = estimate_cost_usd(
        backend="codex",
        model="gpt-test",
        input_tokens=1_000_000,
        output_tokens=500_000,
    )

    assert cost == pytest.approx(2.5)


def test_estimate_cost_usd_applies_wildcards(monkeypatch) -> None:
    monkeypatch.setenv(PRICING_ENV, "codex:*:2.0:2.0,*:*:9.0:9.0")

    assert estimate_cost_usd(
        backend="codex",
        model="anything",
        input_tokens=1_000_000,
        output_tokens=0,
    ) == pytest.approx(2.0)
    assert estimate_cost_usd(
        backend="gemini",
        model="flash",
        input_tokens=0,
        output_tokens=1_000_000,
    ) == pytest.approx(9.0)


def test_estimate_cost_usd_returns_none_without_pricing(monkeypatch) -> None:
    monkeypatch.delenv(PRICING_ENV, raising=False)

    assert (
        estimate_cost_usd(backend="codex", model="x", input_tokens=10, output_tokens=10) is None
    )


def test_malformed_pricing_entries_are_ignored() -> None:
    mapping = parse_pricing_mapping("codex:gpt:1.0,gemini:pro:abc:1.0,claude:opus:15:75")

    assert list(mapping) == [("claude", "opus")]
    assert mapping[("claude", "opus")].output_per_1m == 75.0
