"""Coin icon enrichment for listings from providers that do not ship images."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from errors import ProviderError
from providers import COINGECKO
from pyd_schemas import Listing

logger = logging.getLogger(__name__)

IMAGE_CACHE_KEY = 'images:coingecko'
IMAGE_PAGE_SIZE = 250


@dataclass
class ImageIndex:
    """Icon URLs keyed four ways; a lookup tries the maps in declaration order."""

    by_symbol_upper: Dict[str, str] = field(default_factory=dict)
    by_symbol_lower: Dict[str, str] = field(default_factory=dict)
    by_id: Dict[str, str] = field(default_factory=dict)
    by_name: Dict[str, str] = field(default_factory=dict)

    def add(self, coin: dict) -> None:
        image = coin.get('image')
        if not image:
            return
        # Rows are market-cap ordered: the first coin to claim a key keeps it
        symbol = str(coin.get('symbol') or '')
        if symbol:
            self.by_symbol_upper.setdefault(symbol.upper(), image)
            self.by_symbol_lower.setdefault(symbol.lower(), image)
        if coin.get('id'):
            self.by_id.setdefault(str(coin['id']), image)
        if coin.get('name'):
            self.by_name.setdefault(str(coin['name']).lower(), image)

    def lookup(self, listing: Listing) -> Optional[str]:
        symbol = listing.symbol or ''
        return (
            self.by_symbol_upper.get(symbol.upper())
            or self.by_symbol_lower.get(symbol.lower())
            or self.by_id.get(str(listing.id))
            or self.by_name.get((listing.name or '').lower())
        )


class ImageEnricher:
    """Builds one global icon index from CoinGecko markets pages and applies it."""

    def __init__(self, upstream, cache, ttl: float = 300, pages: int = 3):
        self.upstream = upstream
        self.cache = cache
        self.ttl = ttl
        self.pages = pages

    def _fetch_index(self) -> ImageIndex:
        index = ImageIndex()
        for page in range(1, self.pages + 1):
            try:
                rows = self.upstream.get_json(COINGECKO, f'{COINGECKO.base_url}/coins/markets', params={
                    'vs_currency': 'usd',
                    'order': 'market_cap_desc',
                    'per_page': IMAGE_PAGE_SIZE,
                    'page': page,
                    'sparkline': 'false',
                })
            except ProviderError as exc:
                if page == 1:
                    raise
                logger.info('images.partial_index page=%s error=%s', page, exc.message)
                break
            if not isinstance(rows, list) or not rows:
                break
            for coin in rows:
                if isinstance(coin, dict):
                    index.add(coin)
            if len(rows) < IMAGE_PAGE_SIZE:
                break
        return index

    def image_index(self) -> ImageIndex:
        index = self.cache.get(IMAGE_CACHE_KEY)
        if index is None:
            index = self._fetch_index()
            self.cache.set(IMAGE_CACHE_KEY, index, self.ttl)
        return index

    def merge_images(self, listings: List[Listing]) -> List[Listing]:
        """Return new listings with ``image`` filled where the index knows the coin.

        Never raises for an upstream failure; the input comes back unchanged.
        """
        try:
            index = self.image_index()
        except ProviderError as exc:
            logger.warning('images.unavailable', extra={
                'event': 'image_enrichment_failed', 'provider': exc.provider, 'error_class': type(exc).__name__,
            })
            return list(listings)
        return [listing.model_copy(update={'image': index.lookup(listing) or listing.image})
                for listing in listings]


__all__ = ['ImageEnricher', 'ImageIndex', 'IMAGE_CACHE_KEY']
