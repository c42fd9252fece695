"""Runtime provider configuration (the Settings > Data panel).

The store holds two frozen snapshots, one per provider kind. Updates build a
new snapshot and swap the reference, so readers always see a complete
configuration even while a Settings change is in flight. There is no lock:
a request that already read the old snapshot keeps using it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional
from urllib.parse import urlparse

from config import mask_secret
from errors import InvalidCustomUrl, NEWS_URL_HINT, UnknownProvider
from providers import NEWS, PRICE, get_provider

logger = logging.getLogger(__name__)

_HOST_RE = re.compile(r'^[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?)*$')


@dataclass(frozen=True)
class PriceSettings:
    provider: str = 'coingecko'
    api_key: str = ''
    # CMC key slot read directly by the quotes path
    cmc_api_key: str = ''


@dataclass(frozen=True)
class NewsSettings:
    provider: str = 'cryptocompare'
    api_key: str = ''  # CryptoCompare / custom URL credential
    newsapi_key: str = ''
    custom_url: str = ''


def normalize_custom_url(raw: Optional[str]) -> str:
    """Prefix a missing scheme and validate; raise ``InvalidCustomUrl`` otherwise."""
    value = (raw or '').strip()
    if not value:
        raise InvalidCustomUrl('custom', f"A custom news URL is required. Please enter a valid URL in {NEWS_URL_HINT}")
    candidate = value if value.lower().startswith(('http://', 'https://')) else 'https://' + value
    parsed = urlparse(candidate)
    host = parsed.hostname or ''
    valid = (
        parsed.scheme in ('http', 'https')
        and bool(parsed.netloc)
        and not any(ch.isspace() for ch in candidate)
        and (host == 'localhost' or ('.' in host or _is_ip(host)))
        and bool(_HOST_RE.match(host))
    )
    if not valid:
        raise InvalidCustomUrl(
            'custom',
            f"The custom news URL '{value}' is not a valid URL. "
            f"Please enter a valid URL like https://api.example.com/news in {NEWS_URL_HINT}",
        )
    return candidate


def _is_ip(host: str) -> bool:
    parts = host.split('.')
    return len(parts) == 4 and all(p.isdigit() and 0 <= int(p) <= 255 for p in parts)


class ConfigStore:
    """Mutable, process-wide provider configuration."""

    def __init__(self, price: Optional[PriceSettings] = None, news: Optional[NewsSettings] = None,
                 cache=None, env_cmc_key: str = ''):
        self._price = price or PriceSettings()
        self._news = news or NewsSettings()
        self._cache = cache
        self._env_cmc_key = env_cmc_key

    @classmethod
    def from_config(cls, config: dict, cache=None) -> 'ConfigStore':
        env_cmc = config.get('CMC_API_KEY', '') or ''
        price_provider = get_provider(PRICE, config.get('PRICE_PROVIDER') or 'coingecko').id
        price_key = config.get('PRICE_API_KEY', '') or ''
        price = PriceSettings(
            provider=price_provider,
            api_key=price_key,
            cmc_api_key=price_key if (price_provider == 'cmc' and price_key) else env_cmc,
        )
        news_provider = get_provider(NEWS, config.get('NEWS_PROVIDER') or 'cryptocompare').id
        custom_url = ''
        if news_provider == 'custom':
            try:
                custom_url = normalize_custom_url(config.get('CUSTOM_NEWS_URL'))
            except InvalidCustomUrl as exc:
                logger.warning('config.custom_url_invalid_at_startup: %s', exc.message)
                news_provider = 'cryptocompare'
        news = NewsSettings(
            provider=news_provider,
            api_key=config.get('NEWS_API_KEY', '') or '',
            newsapi_key=config.get('NEWSAPI_KEY', '') or '',
            custom_url=custom_url,
        )
        return cls(price=price, news=news, cache=cache, env_cmc_key=env_cmc)

    def bind_cache(self, cache) -> None:
        self._cache = cache

    @property
    def price(self) -> PriceSettings:
        return self._price

    @property
    def news(self) -> NewsSettings:
        return self._news

    def update_provider_config(self, kind: str, provider_id: Optional[str], credential: Optional[str] = None,
                               custom_url: Optional[str] = None) -> bool:
        """Replace the active provider for ``kind``.

        Validation happens before anything is swapped, so a rejected update
        leaves the previous configuration (and the cache) exactly as it was.
        """
        key = (credential or '').strip()
        if kind == PRICE:
            self._update_price(provider_id, key)
        elif kind == NEWS:
            self._update_news(provider_id, key, custom_url)
        else:
            raise UnknownProvider(kind or '', f"Unknown provider kind '{kind}'. Expected '{PRICE}' or '{NEWS}' as in Settings > Data")
        return True

    def _update_price(self, provider_id: Optional[str], key: str) -> None:
        current = self._price
        spec = get_provider(PRICE, provider_id) if provider_id else get_provider(PRICE, current.provider)
        cmc_key = current.cmc_api_key
        if spec.id == 'cmc':
            cmc_key = key or self._env_cmc_key
        self._price = replace(current, provider=spec.id, api_key=key, cmc_api_key=cmc_key)
        logger.info('config.price_updated', extra={
            'event': 'price_config_updated', 'provider': spec.id, 'key': mask_secret(key) or 'reset',
        })

    def _update_news(self, provider_id: Optional[str], key: str, custom_url: Optional[str]) -> None:
        requested = (provider_id or 'cryptocompare').strip().lower()
        if requested == 'custom':
            url = normalize_custom_url(custom_url)
            new = NewsSettings(provider='custom', api_key=key, newsapi_key=self._news.newsapi_key, custom_url=url)
        elif requested == 'newsapi':
            new = replace(self._news, provider='newsapi', newsapi_key=key)
        else:
            get_provider(NEWS, requested)
            new = replace(self._news, provider='cryptocompare', api_key=key, custom_url='')
        self._news = new
        # Every key, not only news ones
        if self._cache is not None:
            self._cache.invalidate_all()
        logger.info('config.news_updated', extra={
            'event': 'news_config_updated', 'provider': new.provider, 'custom_url': new.custom_url or None,
        })

    def snapshot(self) -> dict:
        """Masked view for diagnostics."""
        price, news = self._price, self._news
        return {
            'price': {
                'provider': price.provider,
                'api_key': mask_secret(price.api_key),
                'cmc_api_key': mask_secret(price.cmc_api_key),
            },
            'news': {
                'provider': news.provider,
                'api_key': mask_secret(news.api_key),
                'newsapi_key': mask_secret(news.newsapi_key),
                'custom_url': news.custom_url or None,
            },
        }


__all__ = ['ConfigStore', 'PriceSettings', 'NewsSettings', 'normalize_custom_url']
