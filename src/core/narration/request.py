"""Client-supplied indicator snapshot for /ai-explain."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SMA_PERIOD = 4


class SeriesPoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: float | str | None = None
    y: float


class BandSeries(BaseModel):
    upper: list[SeriesPoint] = Field(default_factory=list)
    lower: list[SeriesPoint] = Field(default_factory=list)


class Signal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    period: int | None = None


class ExplainRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    coin: str = Field(min_length=1)
    timeframe: int = Field(ge=1)
    rsi: list[SeriesPoint] = Field(default_factory=list)
    sma: list[SeriesPoint] = Field(default_factory=list)
    bb: BandSeries | None = None
    signals: list[Signal] = Field(default_factory=list)
    priceData: list[SeriesPoint] = Field(default_factory=list)
    currentPrice: float | None = None
    currentRSI: float | None = None
    currentSMA: float | None = None
    currentBBUpper: float | None = None
    currentBBLower: float | None = None

    @staticmethod
    def _last(series: list[SeriesPoint]) -> float | None:
        return series[-1].y if series else None

    @staticmethod
    def _first(*values: float | None) -> float | None:
        return next((v for v in values if v is not None), None)

    def client_price(self) -> float | None:
        """The chart's own last close, else the scalar currentPrice."""
        return self._first(self._last(self.priceData), self.currentPrice)

    def sma_period(self) -> int:
        for s in self.signals:
            if s.type == "SMA" and s.period:
                return s.period
        return DEFAULT_SMA_PERIOD

    def indicators(self, price: float) -> dict[str, float]:
        """Latest RSI/SMA/band values; series win over scalar fields, *price* fills the gaps."""
        bb = self.bb or BandSeries()
        return {
            "rsi": self._first(self._last(self.rsi), self.currentRSI, 50.0),
            "sma": self._first(self._last(self.sma), self.currentSMA, price),
            "bb_upper": self._first(self._last(bb.upper), self.currentBBUpper, price * 1.05),
            "bb_lower": self._first(self._last(bb.lower), self.currentBBLower, price * 0.95),
        }
