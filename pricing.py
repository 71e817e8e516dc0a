"""Per-model rate card for Claude models.

Rates are USD per million tokens. A model may carry a tier: above
``threshold`` tokens a token category is billed at its ``*_above`` rate
instead of the base rate. Each category is tiered on its own.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

SYNTHETIC_MODEL = "<synthetic>"

_PER_MILLION = 1_000_000


class ModelKind(str, Enum):
    OPUS_4 = "claude-opus-4"       # claude-opus-4, opus 4.1
    OPUS_4X = "claude-opus-4.x"    # opus 4.5 / 4.6
    SONNET_4 = "claude-sonnet-4"
    HAIKU_45 = "claude-haiku-4-5"
    UNKNOWN = "other"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def pricing(self) -> Pricing:
        return PRICING[self]


_DISPLAY_NAMES = {
    ModelKind.OPUS_4: "Opus 4",
    ModelKind.OPUS_4X: "Opus 4.5/4.6",
    ModelKind.SONNET_4: "Sonnet 4",
    ModelKind.HAIKU_45: "Haiku 4.5",
    ModelKind.UNKNOWN: "Other",
}


class Tier(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: int
    input_above: float | None = None
    output_above: float | None = None
    cache_write_above: float | None = None
    cache_read_above: float | None = None


class Pricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: float
    output: float
    cache_write: float
    cache_read: float
    tier: Tier | None = None

    def _billed(self, tokens: int, base: float, above: float | None) -> float:
        tokens = max(0, tokens)
        if self.tier is None or above is None:
            return tokens * base / _PER_MILLION
        below = min(tokens, self.tier.threshold)
        over = max(tokens - self.tier.threshold, 0)
        return (below * base + over * above) / _PER_MILLION

    def cost(self, input: int, output: int, cache_write: int, cache_read: int) -> float:
        """Dollar cost of one record's token counts."""
        tier = self.tier or _NO_TIER
        return (
            self._billed(input, self.input, tier.input_above)
            + self._billed(output, self.output, tier.output_above)
            + self._billed(cache_write, self.cache_write, tier.cache_write_above)
            + self._billed(cache_read, self.cache_read, tier.cache_read_above)
        )


_NO_TIER = Tier(threshold=0)

PRICING: dict[ModelKind, Pricing] = {
    ModelKind.OPUS_4: Pricing(input=15, output=75, cache_write=18.75, cache_read=1.50),
    ModelKind.OPUS_4X: Pricing(input=5, output=25, cache_write=6.25, cache_read=0.50),
    # $3/$15 up to 200k tokens, $6/$22.50 above
    ModelKind.SONNET_4: Pricing(
        input=3, output=15, cache_write=3.75, cache_read=0.30,
        tier=Tier(
            threshold=200_000,
            input_above=6, output_above=22.50,
            cache_write_above=7.50, cache_read_above=0.60,
        ),
    ),
    ModelKind.HAIKU_45: Pricing(input=1, output=5, cache_write=1.25, cache_read=0.10),
    ModelKind.UNKNOWN: Pricing(input=3, output=15, cache_write=3.75, cache_read=0.30),
}

# Checked in order: sub-variants before their family.
_FAMILIES: list[tuple[str, ModelKind]] = [
    ("claude-haiku-4-5", ModelKind.HAIKU_45),
    ("claude-sonnet-4", ModelKind.SONNET_4),
    ("claude-opus-4-5", ModelKind.OPUS_4X),
    ("claude-opus-4-6", ModelKind.OPUS_4X),
    ("claude-opus-4", ModelKind.OPUS_4),
]


def classify_model(raw_model: str) -> ModelKind | None:
    """Resolve a free-text model id, or None for empty/placeholder ids."""
    if not raw_model or raw_model == SYNTHETIC_MODEL:
        return None
    for needle, kind in _FAMILIES:
        if needle in raw_model:
            return kind
    return ModelKind.UNKNOWN


def calculate_cost(
    model: ModelKind,
    input_tokens: int,
    output_tokens: int,
    cache_write_tokens: int,
    cache_read_tokens: int,
) -> float:
    return PRICING[model].cost(input_tokens, output_tokens, cache_write_tokens, cache_read_tokens)
