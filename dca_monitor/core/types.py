"""Shared lightweight types to keep module interfaces explicit and typed."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


@dataclass(frozen=True, slots=True)
class Instrument:
    """Watchlist entry with the latest 24h ticker snapshot."""

    id: str
    symbol: str
    name: str
    price: float
    change_24h_pct: float

    @property
    def label(self) -> str:
        return instrument_label(self.id, self.name)


@dataclass(frozen=True, slots=True)
class PriceBar:
    """One OHLC sample; windows are ordered oldest first."""

    time: str
    open: float
    high: float
    low: float
    close: float
    volume: float | None = None


class Sentiment(str, Enum):
    BULLISH = "Bullish"
    BEARISH = "Bearish"
    NEUTRAL = "Neutral"


class Recommendation(str, Enum):
    BUY = "BUY (DCA)"
    HOLD = "HOLD"
    WAIT = "WAIT"


PriceLevel = Annotated[float, Field(strict=True, allow_inf_nan=False)]


class Verdict(BaseModel):
    """Classifier output; every field is required for the verdict to be usable."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    sentiment: Sentiment
    recommendation: Recommendation
    detected_pattern: str
    reasoning: str
    support_level: PriceLevel
    resistance_level: PriceLevel
    entry_point: PriceLevel
    take_profit: PriceLevel
    stop_loss: PriceLevel

    @field_validator("recommendation", mode="before")
    @classmethod
    def _accept_bare_buy(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().upper() == "BUY":
            return Recommendation.BUY
        return value

    @property
    def is_buy(self) -> bool:
        return self.recommendation is Recommendation.BUY


@dataclass(frozen=True, slots=True)
class RunState:
    """Shared singleton describing whether periodic scanning is active."""

    enabled: bool = False
    active_instrument_id: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SignalRecord:
    """A persisted verdict; created_at is assigned by the datastore."""

    instrument_id: str
    instrument_name: str
    symbol: str
    observed_price: float
    verdict: Verdict
    created_at: datetime | None = None


def instrument_label(instrument_id: str, name: str) -> str:
    """Human-readable label that always carries the market identifier."""

    if not name or name.upper() == instrument_id.upper():
        return instrument_id
    return f"{name} ({instrument_id})"
