"""Model naming and pricing utilities for live cost estimates."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import yaml

logger = logging.getLogger("ccmonitor.pricing")


@dataclass(frozen=True)
class ModelRate:
    """USD rates per 1M tokens for one model family."""

    family: str
    label: str
    input_per_mtok: float
    output_per_mtok: float


# Approximate list prices per 1M tokens.
DEFAULT_RATES: tuple[ModelRate, ...] = (
    ModelRate("opus", "Opus 4.5", 15.00, 75.00),
    ModelRate("sonnet", "Sonnet 4.5", 3.00, 15.00),
    ModelRate("haiku", "Haiku 4.5", 0.25, 1.25),
)
DEFAULT_RATE = (3.00, 15.00)


def _fallback_short_name(raw_model: str) -> str:
    # claude-3-5-foo -> "3 5"
    return " ".join(raw_model.split("-")[1:3])


class ModelPricing:
    """Ordered substring table mapping raw model ids to labels and rates.

    Matching is a case-insensitive substring search on the raw model id,
    first match wins. Models that match nothing keep a label derived from
    their id and are priced at the default rate.
    """

    def __init__(
        self,
        rates: Iterable[ModelRate] = DEFAULT_RATES,
        default_rate: tuple[float, float] = DEFAULT_RATE,
    ):
        self.rates = tuple(rates)
        self.default_rate = default_rate
        self._by_label = {rate.label: rate for rate in self.rates}

    def short_name(self, raw_model: str | None) -> str | None:
        if not raw_model:
            return None
        lowered = raw_model.lower()
        for rate in self.rates:
            if rate.family in lowered:
                return rate.label
        return _fallback_short_name(raw_model)

    def rate_for(self, model_short: str | None) -> tuple[float, float]:
        rate = self._by_label.get(model_short or "")
        if rate is None:
            return self.default_rate
        return rate.input_per_mtok, rate.output_per_mtok

    def estimate_cost(self, model_short: str | None, tokens_in: int, tokens_out: int) -> float:
        in_rate, out_rate = self.rate_for(model_short)
        return (tokens_in * in_rate / 1_000_000) + (tokens_out * out_rate / 1_000_000)


def _rate_from_mapping(raw: dict[str, Any]) -> ModelRate:
    family = str(raw.get("family") or "").strip().lower()
    if not family:
        raise ValueError("pricing entry is missing 'family'")
    label = str(raw.get("label") or family.title()).strip()
    return ModelRate(
        family=family,
        label=label,
        input_per_mtok=float(raw.get("input", 0.0)),
        output_per_mtok=float(raw.get("output", 0.0)),
    )


def load_pricing(path: str | Path | None) -> ModelPricing:
    """Build a pricing table from a YAML file, or the defaults when unset.

    Expected shape::

        default: {input: 3.0, output: 15.0}
        models:
          - {family: opus, label: Opus 4.5, input: 15.0, output: 75.0}

    A missing or unreadable file logs a warning and yields the defaults.
    """
    if not path:
        return ModelPricing()

    pricing_path = Path(path).expanduser()
    try:
        data = yaml.safe_load(pricing_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not load pricing file %s: %s", pricing_path, e)
        return ModelPricing()

    if not isinstance(data, dict):
        logger.warning("Pricing file %s is not a mapping, using defaults", pricing_path)
        return ModelPricing()

    try:
        rates = [_rate_from_mapping(entry) for entry in data.get("models") or [] if isinstance(entry, dict)]
        default = data.get("default") if isinstance(data.get("default"), dict) else {}
        default_rate = (
            float(default.get("input", DEFAULT_RATE[0])),
            float(default.get("output", DEFAULT_RATE[1])),
        )
    except (TypeError, ValueError) as e:
        logger.warning("Invalid pricing file %s: %s", pricing_path, e)
        return ModelPricing()

    logger.info("Loaded %d model rate(s) from %s", len(rates), pricing_path)
    return ModelPricing(rates or DEFAULT_RATES, default_rate)
