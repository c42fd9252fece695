"""Static catalog of upstream providers.

Each provider is described once: where it lives, whether it needs a
credential, how long we wait for it and which Settings field the user
should check when it fails.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from errors import NEWS_KEY_HINT, NEWS_URL_HINT, PRICE_KEY_HINT, UnknownProvider

PRICE = 'price'
NEWS = 'news'
AUX = 'aux'

COINGECKO_API_URL = 'https://api.coingecko.com/api/v3'
CRYPTOCOMPARE_API_URL = 'https://min-api.cryptocompare.com'
CMC_API_URL = 'https://pro-api.coinmarketcap.com/v1'
NEWSAPI_BASE_URL = 'https://newsapi.org/v2'
JUPITER_TOKENS_URL = 'https://lite-api.jup.ag/tokens/v2/tag'

# Symbol universe for CryptoCompare listings (it has no ranked listings endpoint
# on the keyless tier, so we ask for a fixed basket in rank-ish order).
CRYPTOCOMPARE_SYMBOLS: Tuple[str, ...] = (
    'BTC', 'ETH', 'BNB', 'SOL', 'XRP', 'ADA', 'DOT', 'DOGE', 'AVAX', 'TON',
    'SHIB', 'LINK', 'TRX', 'NEAR', 'MATIC', 'PEPE', 'ICP', 'LTC', 'APT', 'FET',
    'AAVE', 'IMX', 'SAND', 'GALA', 'FLOW', 'MANA', 'AXS', 'CHZ', 'ENJ', 'BAT',
    'COMP', 'CRV', 'SUSHI', 'UNI', 'MKR', 'YFI', '1INCH', 'LDO', 'RPL', 'SSV',
)


@dataclass(frozen=True)
class ProviderSpec:
    id: str
    kind: str
    display_name: str
    base_url: str
    requires_credential: bool
    timeout_key: str
    default_timeout: float
    settings_hint: str = PRICE_KEY_HINT

    def timeout(self, config: Optional[dict] = None) -> float:
        if config and self.timeout_key in config:
            return float(config[self.timeout_key])
        return self.default_timeout


_PROVIDERS: Dict[Tuple[str, str], ProviderSpec] = {}


def register(spec: ProviderSpec) -> ProviderSpec:
    _PROVIDERS[(spec.kind, spec.id)] = spec
    return spec


COINGECKO = register(ProviderSpec(
    'coingecko', PRICE, 'CoinGecko', COINGECKO_API_URL, False, 'COINGECKO_TIMEOUT', 10.0))
CRYPTOCOMPARE = register(ProviderSpec(
    'cryptocompare', PRICE, 'CryptoCompare', CRYPTOCOMPARE_API_URL, True, 'CRYPTOCOMPARE_TIMEOUT', 10.0))
CMC = register(ProviderSpec(
    'cmc', PRICE, 'CoinMarketCap', CMC_API_URL, True, 'CMC_TIMEOUT', 10.0))

CRYPTOCOMPARE_NEWS = register(ProviderSpec(
    'cryptocompare', NEWS, 'CryptoCompare', CRYPTOCOMPARE_API_URL, False, 'CRYPTOCOMPARE_TIMEOUT', 10.0,
    NEWS_KEY_HINT))
NEWSAPI = register(ProviderSpec(
    'newsapi', NEWS, 'NewsAPI', NEWSAPI_BASE_URL, True, 'NEWSAPI_TIMEOUT', 10.0, NEWS_KEY_HINT))
CUSTOM_NEWS = register(ProviderSpec(
    'custom', NEWS, 'Custom news URL', '', False, 'CUSTOM_NEWS_TIMEOUT', 8.0, NEWS_URL_HINT))

JUPITER = register(ProviderSpec(
    'jupiter', AUX, 'Jupiter', JUPITER_TOKENS_URL, False, 'JUPITER_TIMEOUT', 15.0))


def get_provider(kind: str, provider_id: str) -> ProviderSpec:
    """Return the spec for ``provider_id`` or raise ``UnknownProvider`` (400)."""
    key = (kind, (provider_id or '').strip().lower())
    spec = _PROVIDERS.get(key)
    if spec is None:
        known = ', '.join(provider_ids(kind))
        hint = NEWS_KEY_HINT if kind == NEWS else PRICE_KEY_HINT
        raise UnknownProvider(provider_id or '', f"Unknown {kind} provider '{provider_id}'. "
                                                 f"Expected one of: {known}. Choose a provider in {hint}")
    return spec


def provider_ids(kind: str) -> Tuple[str, ...]:
    return tuple(pid for (k, pid) in _PROVIDERS if k == kind)


__all__ = [
    'PRICE', 'NEWS', 'AUX', 'ProviderSpec', 'get_provider', 'provider_ids',
    'COINGECKO', 'CRYPTOCOMPARE', 'CMC', 'CRYPTOCOMPARE_NEWS', 'NEWSAPI',
    'CUSTOM_NEWS', 'JUPITER', 'CRYPTOCOMPARE_SYMBOLS',
]
