"""Canonical numeric context for narration.

Every number a narration may mention is formatted exactly once here. Derived
percentages are computed from the already-formatted strings, so the chart,
the prompt and the validator all agree on the same digits.
"""
from __future__ import annotations

from dataclasses import dataclass

RSI_THRESHOLDS = ("30", "40", "60", "70")


def canonical(value: float, dp: int = 2) -> str:
    text = f"{float(value):.{dp}f}"
    if float(text) == 0:
        return f"{0:.{dp}f}"
    return text


def _pct(numerator: float, denominator: float) -> str:
    if denominator == 0:
        return canonical(0)
    return canonical(numerator / denominator * 100)


def rsi_confidence(rsi: float, price_vs_sma: float, band_width: float) -> int:
    conf = 60
    if rsi >= 70 or rsi <= 30:
        conf += 15
    elif rsi >= 60 or rsi <= 40:
        conf += 10

    if abs(price_vs_sma) > 5:
        conf += 10
    elif abs(price_vs_sma) > 2:
        conf += 5

    if band_width > 10 or band_width < 5:
        conf += 5
    return min(90, conf)


@dataclass(frozen=True)
class NumericContext:
    price: str
    rsi: str
    sma: str
    lower: str
    upper: str
    period: str
    timeframe: str
    price_vs_sma: str
    dist_to_lower: str
    dist_to_upper: str
    band_width: str
    confidence: str

    @property
    def allowed_numbers(self) -> tuple[str, ...]:
        return (
            self.price, self.rsi, self.sma, self.lower, self.upper,
            self.period, self.timeframe,
            self.price_vs_sma, self.dist_to_lower, self.dist_to_upper, self.band_width,
            *RSI_THRESHOLDS,
            self.confidence,
        )

    @property
    def above_sma(self) -> bool:
        return float(self.price) >= float(self.sma)

    def technical_context(self) -> dict:
        return {
            "currentPrice": float(self.price),
            "currentRSI": float(self.rsi),
            "currentSMA": float(self.sma),
            "smaPeriod": int(self.period),
            "bb": {"lower": float(self.lower), "upper": float(self.upper)},
            "timeframe": int(self.timeframe),
        }


def build_context(
    price: float,
    rsi: float,
    sma: float,
    sma_period: int,
    bb_lower: float,
    bb_upper: float,
    timeframe: int,
) -> NumericContext:
    p, r, s = canonical(price), canonical(rsi), canonical(sma)
    lo, up = canonical(bb_lower), canonical(bb_upper)
    fp, fs, fl, fu = float(p), float(s), float(lo), float(up)

    pv = _pct(fp - fs, fs)
    dl = _pct(fp - fl, fl)
    du = _pct(fu - fp, fp)
    bw = _pct(fu - fl, fs)

    return NumericContext(
        price=p,
        rsi=r,
        sma=s,
        lower=lo,
        upper=up,
        period=str(int(sma_period)),
        timeframe=str(int(timeframe)),
        price_vs_sma=pv,
        dist_to_lower=dl,
        dist_to_upper=du,
        band_width=bw,
        confidence=str(rsi_confidence(float(r), float(pv), float(bw))),
    )


def minimal_context(timeframe: int) -> NumericContext:
    """Placeholder context used when no canonical price could be determined."""
    return build_context(0, 50, 0, 4, 0, 0, timeframe)
