"""
Coin Registry — single source of truth for supported coin metadata.
Adding a coin = add one CoinConfig entry here. Zero other changes.
"""
from __future__ import annotations
from dataclasses import dataclass

from src.core.data.errors import UnsupportedCoin


@dataclass(frozen=True)
class CoinConfig:
    id:           str            # dashboard id, also the cache-key component
    name:         str
    symbol:       str
    provider_id:  str            # market-data provider asset id


def _coin(id: str, name: str, symbol: str, provider_id: str | None = None) -> CoinConfig:
    return CoinConfig(id=id, name=name, symbol=symbol, provider_id=provider_id or id)


COIN_REGISTRY: dict[str, CoinConfig] = {
    c.id: c
    for c in (
        _coin("bitcoin",      "Bitcoin",      "BTC"),
        _coin("ethereum",     "Ethereum",     "ETH"),
        _coin("litecoin",     "Litecoin",     "LTC"),
        _coin("bitcoin-cash", "Bitcoin Cash", "BCH"),
        _coin("cardano",      "Cardano",      "ADA"),
        _coin("ripple",       "Ripple",       "XRP", provider_id="xrp"),
        _coin("dogecoin",     "Dogecoin",     "DOGE"),
        _coin("polkadot",     "Polkadot",     "DOT"),
        _coin("chainlink",    "Chainlink",    "LINK"),
        _coin("stellar",      "Stellar",      "XLM"),
        _coin("monero",       "Monero",       "XMR"),
        _coin("tezos",        "Tezos",        "XTZ"),
        _coin("eos",          "EOS",          "EOS"),
        _coin("zcash",        "Zcash",        "ZEC"),
        _coin("dash",         "Dash",         "DASH"),
        _coin("solana",       "Solana",       "SOL"),
    )
}


def get_coin(coin_id: str) -> CoinConfig:
    try:
        return COIN_REGISTRY[coin_id.strip().lower()]
    except KeyError:
        raise UnsupportedCoin(coin_id)


def list_coins() -> list[dict]:
    """Serialisable list for the /coins endpoint."""
    return [
        {
            "id":          c.id,
            "name":        c.name,
            "symbol":      c.symbol,
            "coincap_id":  c.provider_id,
        }
        for c in COIN_REGISTRY.values()
    ]
