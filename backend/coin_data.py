"""Single-coin detail / market lookups and the Solana token list.

These pass provider-native payloads through (CoinGecko for coins, Jupiter
for tokens); only the token list is reshaped into an address-keyed map.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from errors import InvalidRequest, NotFound, ProviderError, retry_hint, settings_hint
from providers import COINGECKO, JUPITER

logger = logging.getLogger(__name__)

TOKEN_LIST_CACHE_KEY = 'tokens:jupiter'


class CoinDataService:
    def __init__(self, upstream, cache, token_ttl: float = 3600):
        self.upstream = upstream
        self.cache = cache
        self.token_ttl = token_ttl

    def resolve_coin_id(self, coin_id: Optional[str] = None, symbol: Optional[str] = None) -> str:
        """CoinGecko id for ``coin_id`` or, failing that, ``symbol`` via /search."""
        if coin_id and coin_id.strip():
            return coin_id.strip().lower()
        if not symbol or not symbol.strip():
            raise InvalidRequest('Either id or symbol is required')
        wanted = symbol.strip().lower()
        payload = self.upstream.get_json(COINGECKO, f'{COINGECKO.base_url}/search', params={'query': wanted})
        coins = payload.get('coins') or [] if isinstance(payload, dict) else []
        # Search results are relevance ordered; prefer an exact symbol match
        for coin in coins:
            if str(coin.get('symbol', '')).lower() == wanted and coin.get('id'):
                return coin['id']
        raise NotFound(COINGECKO.id, f"CoinGecko has no coin with symbol {symbol.upper()}. {settings_hint(COINGECKO.settings_hint)}")

    def get_coin_detail(self, coin_id: Optional[str] = None, symbol: Optional[str] = None) -> Dict[str, Any]:
        resolved = self.resolve_coin_id(coin_id, symbol)
        try:
            return self.upstream.get_json(COINGECKO, f'{COINGECKO.base_url}/coins/{resolved}', params={
                'localization': 'false',
                'tickers': 'false',
                'market_data': 'false',
                'community_data': 'true',
                'developer_data': 'false',
                'sparkline': 'false',
            })
        except ProviderError as exc:
            if exc.status_code == 404:
                raise NotFound(COINGECKO.id, f"CoinGecko has no coin '{resolved}'. {settings_hint(COINGECKO.settings_hint)}") from exc
            raise

    def get_coin_market(self, coin_id: Optional[str] = None, symbol: Optional[str] = None,
                        currency: str = 'usd') -> Dict[str, Any]:
        resolved = self.resolve_coin_id(coin_id, symbol)
        rows = self.upstream.get_json(COINGECKO, f'{COINGECKO.base_url}/coins/markets', params={
            'vs_currency': (currency or 'usd').lower(),
            'ids': resolved,
            'sparkline': 'false',
            'price_change_percentage': '1h,24h,7d',
        })
        if not isinstance(rows, list) or not rows:
            raise NotFound(COINGECKO.id, f"CoinGecko has no market data for '{resolved}'. {settings_hint(COINGECKO.settings_hint)}")
        return rows[0]

    def get_token_list(self, force_refresh: bool = False) -> Dict[str, Dict[str, Any]]:
        """Verified Jupiter tokens keyed by mint address."""
        if not force_refresh:
            cached = self.cache.get(TOKEN_LIST_CACHE_KEY)
            if cached is not None:
                return cached
        payload = self.upstream.get_json(JUPITER, JUPITER.base_url, params={'query': 'verified'})
        rows = payload if isinstance(payload, list) else (payload or {}).get('tokens') or []
        tokens: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            if not isinstance(row, dict):
                continue
            # v2 uses id/icon, the legacy list used address/logoURI
            address = row.get('id') or row.get('address')
            if not address:
                continue
            tokens[address] = {
                'address': address,
                'symbol': row.get('symbol'),
                'name': row.get('name'),
                'decimals': row.get('decimals'),
                'logoURI': row.get('icon') or row.get('logoURI'),
            }
        if not tokens:
            raise NotFound(JUPITER.id, f"Jupiter returned an empty token list. {retry_hint(JUPITER.settings_hint)}")
        self.cache.set(TOKEN_LIST_CACHE_KEY, tokens, self.token_ttl)
        logger.info('tokens.refreshed', extra={'event': 'token_list_refreshed', 'count': len(tokens)})
        return tokens


__all__ = ['CoinDataService', 'TOKEN_LIST_CACHE_KEY']
