"""Deterministic narration built only from the context's own strings."""
from src.core.narration.context import NumericContext


def _mood(rsi: float) -> str:
    if rsi >= 70:
        return "overbought"
    if rsi <= 30:
        return "oversold"
    return "neutral"


def _lean(rsi: float) -> str:
    if rsi >= 60:
        return "bearish"
    if rsi <= 40:
        return "bullish"
    return "neutral"


def render_fallback(coin: str, ctx: NumericContext) -> str:
    rsi = float(ctx.rsi)
    mood = _mood(rsi)
    lean = _lean(rsi)
    above = ctx.above_sma
    sma_label = f"SMA({ctx.period})"

    bull_verb = "holds above" if above else "reclaims"
    bullish_line = f"- If price {bull_verb} {sma_label} {ctx.sma} with RSI > 60, look for follow-through toward {ctx.upper}."
    if above:
        bearish_line = f"- If price closes back below {sma_label} {ctx.sma} with RSI < 40, risk shifts toward {ctx.lower}."
    else:
        bearish_line = (
            f"- If price loses {ctx.lower}, risk expands; distance to lower band was "
            f"{ctx.dist_to_lower}% and may extend."
        )

    if lean == "bearish":
        invalidation = f"A close above {ctx.sma} with RSI > 60 invalidates the bearish tilt."
    elif lean == "bullish":
        invalidation = f"A close below {ctx.sma} with RSI < 40 invalidates the bullish tilt."
    else:
        invalidation = (
            f"A decisive move outside [{ctx.lower}-{ctx.upper}] with RSI > 60 or < 40 "
            "resolves the neutral state."
        )

    avoid = {"overbought": "chasing", "oversold": "panic selling"}.get(mood, "large")
    side = "above" if above else "below"

    lines = [
        "## Simple Summary",
        f"- Price is {side} {sma_label} {ctx.sma}; current price ${ctx.price}.",
        f"- RSI {ctx.rsi} indicates {mood} conditions.",
        f"- Watch {ctx.lower} (support) and {ctx.upper} (resistance).",
        "",
        "## Decision Helper",
        f"- Consider {'holding' if above else 'waiting for'} positions if price "
        f"{'stays above' if above else 'breaks above'} {sma_label} {ctx.sma}.",
        f"- Avoid {avoid} positions near current levels.",
        f"- Monitor {ctx.lower} as key support and {ctx.upper} as resistance for breakout signals.",
        "",
        "## Detailed Guidance",
        "**Guidance:**",
        f"{coin.upper()} trades near ${ctx.price}. RSI at {ctx.rsi} is {mood}. "
        f"Price is between bands [{ctx.lower}-{ctx.upper}] and {ctx.price_vs_sma}% {side} "
        f"{sma_label} {ctx.sma}. Band width is {ctx.band_width}% (volatility context). "
        f"Baseline leaning: {lean}.",
        "**Levels to Watch:**",
        f"- Support: {ctx.lower} (lower band)",
        f"- Resistance: {ctx.sma} ({sma_label}), {ctx.upper} (upper band)",
        "**Scenario Plan:**",
        bullish_line,
        bearish_line,
        f"**Invalidation:** {invalidation}",
        f"**Confidence:** {ctx.confidence}%",
        "",
        "Educational guidance, not financial advice.",
    ]
    return "\n".join(lines)


def render_unavailable(coin: str, ctx: NumericContext) -> str:
    """Used when no price could be determined; quotes no levels at all."""
    return "\n".join([
        "## Simple Summary",
        f"- A current price for {coin.upper()} is unavailable right now.",
        "- No indicator levels are quoted without a verified price.",
        "",
        "## Decision Helper",
        "- Wait for live data before acting on this chart.",
        f"- Retry shortly; the {ctx.timeframe}-day view refreshes once a price is available.",
        "",
        "Educational guidance, not financial advice.",
    ])
