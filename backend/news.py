"""
News feed orchestration.

Provider precedence is fixed: NewsAPI (when selected), then the custom URL
(when selected), then CryptoCompare. Only the CryptoCompare path may hide a
failure behind the bundled static articles; an explicitly chosen NewsAPI or
custom URL reports its own error so the user can fix the setting.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from errors import (
    AuthError,
    HostUnreachable,
    InvalidCustomUrl,
    MissingCredential,
    NoArticles,
    ProviderError,
    ProviderRejected,
    UnreachableHost,
    NEWS_KEY_HINT,
    NEWS_URL_HINT,
    retry_hint,
    settings_hint,
)
from normalizers import (
    CryptoCompareShape,
    NewsApiErrorShape,
    NewsApiShape,
    RawArrayShape,
    RawObjectShape,
    cryptocompare_failure,
    cryptocompare_news_to_articles,
    ensure_unique_ids,
    filter_articles,
    newsapi_to_articles,
    parse_news_payload,
    raw_items_to_articles,
    sort_newest_first,
)
from providers import CRYPTOCOMPARE_NEWS, CUSTOM_NEWS, NEWS, NEWSAPI, get_provider
from pyd_schemas import Article, SourceInfo

logger = logging.getLogger(__name__)

SOLANA_CACHE_KEY = 'news:solana'
_FIXTURE_CACHE: Dict[str, dict] = {}
# Keys a custom endpoint commonly nests its article list under
_RAW_LIST_KEYS = ('items', 'results', 'news', 'data', 'posts', 'entries')


def _load_fixture(name: str, fixture_dir: Optional[str] = None) -> dict:
    base = fixture_dir or os.path.join(os.path.dirname(__file__), 'fixtures')
    path = Path(base) / name
    bypass = os.environ.get('FIXTURE_CACHE_BYPASS') in {'1', 'true', 'True'}
    key = str(path)
    if bypass or key not in _FIXTURE_CACHE:
        with path.open('r', encoding='utf-8') as fh:
            _FIXTURE_CACHE[key] = json.load(fh)
    return copy.deepcopy(_FIXTURE_CACHE[key])


def static_articles(section: str = 'general', fixture_dir: Optional[str] = None,
                    now: Optional[int] = None) -> List[Article]:
    """Bundled articles, timestamped relative to ``now``."""
    now = int(time.time()) if now is None else now
    rows = _load_fixture('static_news.json', fixture_dir).get(section, [])
    return [
        Article(
            id=str(row['id']),
            published_on=now - int(row.get('age_seconds', 0)),
            title=row.get('title') or 'Untitled',
            body=row.get('body') or '',
            url=row.get('url'),
            imageurl=row.get('imageurl'),
            source_info=SourceInfo(name=row.get('source') or 'Unknown'),
            categories=row.get('categories') or '',
        )
        for row in rows
    ]


def news_cache_key(chain: Optional[str] = None, provider: Optional[str] = None) -> str:
    """'news:latest' for the unfiltered feed, 'news:{chain}' per filter value."""
    chain_part = (chain or '').strip().lower() or 'latest'
    if provider:
        return f'news:{provider}:{chain_part}'
    return f'news:{chain_part}'


class NewsService:
    def __init__(self, store, upstream, cache, ttl: float = 120, exclude_terms=('solana',),
                 fixture_dir: Optional[str] = None, metrics=None):
        self.store = store
        self.upstream = upstream
        self.cache = cache
        self.ttl = ttl
        self.exclude_terms = tuple(exclude_terms)
        self.fixture_dir = fixture_dir
        self.metrics = metrics

    # ------------------------------------------------------------ branches

    def _newsapi(self) -> List[Article]:
        key = self.store.news.newsapi_key
        if not key:
            raise MissingCredential(NEWSAPI.id, NEWSAPI.display_name, NEWSAPI.settings_hint)
        payload = self.upstream.get_json(NEWSAPI, f'{NEWSAPI.base_url}/everything', params={
            'q': 'crypto', 'sortBy': 'publishedAt', 'language': 'en', 'pageSize': 10, 'apiKey': key,
        })
        shape = parse_news_payload(payload, NEWSAPI.id)
        if isinstance(shape, NewsApiErrorShape):
            if shape.code in ('apiKeyInvalid', 'apiKeyMissing', 'apiKeyDisabled'):
                raise AuthError(NEWSAPI.id, f"Your NewsAPI API key is invalid. Please check your key in {NEWSAPI.settings_hint}")
            raise ProviderRejected(NEWSAPI.id, f"{shape.message.rstrip('.')}. {settings_hint(NEWSAPI.settings_hint)}",
                                   label='NewsAPI Error', body=payload)
        if not isinstance(shape, NewsApiShape):
            raise ProviderError(NEWSAPI.id, f"NewsAPI returned an unexpected payload. {settings_hint(NEWSAPI.settings_hint)}")
        if not shape.articles:
            raise NoArticles(NEWSAPI.id, f"NewsAPI returned 0 articles. Try a different search query or check {NEWSAPI.settings_hint}")
        return newsapi_to_articles(shape.articles)

    def _custom(self) -> List[Article]:
        settings = self.store.news
        headers = None
        if settings.api_key:
            headers = {'Authorization': f'Bearer {settings.api_key}', 'x-api-key': settings.api_key}
        try:
            payload = self.upstream.get_json(CUSTOM_NEWS, settings.custom_url, headers=headers)
        except AuthError as exc:
            raise AuthError(CUSTOM_NEWS.id,
                            f"Your custom news API key is invalid. Please check your key in {NEWS_KEY_HINT}",
                            status_code=exc.status_code) from exc
        except UnreachableHost as exc:
            raise HostUnreachable(CUSTOM_NEWS.id,
                                  f"Your custom news URL is invalid or unreachable. Please check the URL in {NEWS_URL_HINT}") from exc
        except ProviderError as exc:
            raise InvalidCustomUrl(CUSTOM_NEWS.id,
                                   f"Failed to fetch from custom URL: {exc.message}",
                                   status_code=exc.status_code) from exc

        shape = parse_news_payload(payload, CUSTOM_NEWS.id)
        if isinstance(shape, NewsApiErrorShape):
            raise ProviderRejected(CUSTOM_NEWS.id, f"{shape.message.rstrip('.')}. {settings_hint(NEWS_URL_HINT)}",
                                   label='NewsAPI Error', body=payload)
        if isinstance(shape, NewsApiShape):
            if not shape.articles:
                raise NoArticles(CUSTOM_NEWS.id, f"Your custom news URL returned 0 articles. Please check the URL in {NEWS_URL_HINT}")
            articles = newsapi_to_articles(shape.articles)
        elif isinstance(shape, CryptoCompareShape):
            articles = cryptocompare_news_to_articles(shape.items)
        elif isinstance(shape, RawArrayShape):
            articles = raw_items_to_articles(shape.items)
        else:
            articles = raw_items_to_articles(self._unwrap_raw(shape))
        if not articles:
            raise NoArticles(CUSTOM_NEWS.id, f"Your custom news URL returned no articles. Please check the URL in {NEWS_URL_HINT}")
        return articles

    @staticmethod
    def _unwrap_raw(shape: RawObjectShape) -> list:
        for key in _RAW_LIST_KEYS:
            value = shape.item.get(key)
            if isinstance(value, list):
                return value
        return [shape.item]

    def _cryptocompare(self, categories: Optional[str] = None) -> List[Article]:
        params = {'lang': 'EN', 'api_key': self.store.news.api_key or 'free'}
        if categories:
            params['categories'] = categories
        payload = self.upstream.get_json(CRYPTOCOMPARE_NEWS, f'{CRYPTOCOMPARE_NEWS.base_url}/data/v2/news/',
                                         params=params)
        failure = cryptocompare_failure(payload, CRYPTOCOMPARE_NEWS.id, CRYPTOCOMPARE_NEWS.settings_hint)
        if failure is not None:
            raise failure
        shape = parse_news_payload(payload, CRYPTOCOMPARE_NEWS.id)
        items = shape.items if isinstance(shape, CryptoCompareShape) else []
        if not items:
            raise NoArticles(CRYPTOCOMPARE_NEWS.id,
                             f"CryptoCompare returned no articles. {retry_hint(CRYPTOCOMPARE_NEWS.settings_hint)}")
        return cryptocompare_news_to_articles(items)

    def _fetch(self, provider: str) -> Tuple[List[Article], bool]:
        """Articles from ``provider`` plus whether they are the static set."""
        if provider == 'newsapi':
            return self._newsapi(), False
        if provider == 'custom':
            return self._custom(), False
        try:
            return self._cryptocompare(), False
        except AuthError:
            # Only a key the user entered is theirs to fix; the free tier falls through
            if self.store.news.api_key:
                raise
            return self._static_fallback(AuthError.__name__, CRYPTOCOMPARE_NEWS.id), True
        except ProviderError as exc:
            return self._static_fallback(type(exc).__name__, exc.provider), True

    def _static_fallback(self, error_class: str, provider: str) -> List[Article]:
        logger.warning('news.static_fallback', extra={
            'event': 'news_static_fallback', 'provider': provider, 'error_class': error_class,
        })
        if self.metrics is not None:
            self.metrics.observe_static_fallback()
        return static_articles('general', self.fixture_dir)

    # ------------------------------------------------------------ public

    def get_news(self, provider: Optional[str] = None, cache_key: Optional[str] = None,
                 force_refresh: bool = False, chain: Optional[str] = None) -> List[Article]:
        """Cache first, then the active (or overridden) news branch.

        The chain filter runs before caching, so each filter value owns its
        own key.
        """
        spec = get_provider(NEWS, provider) if provider else None
        key = cache_key or news_cache_key(chain, spec.id if spec else None)
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug('news.cache_hit %s', key)
                return cached

        if spec is not None and spec.id == 'custom' and not self.store.news.custom_url:
            raise InvalidCustomUrl(CUSTOM_NEWS.id, f"No custom news URL configured. Please add one in {NEWS_URL_HINT}")
        articles, is_static = self._fetch(spec.id if spec else self.store.news.provider)
        articles = ensure_unique_ids(filter_articles(articles, chain, self.exclude_terms))
        self.cache.set(key, articles, self.ttl)
        logger.info('news.fetched', extra={
            'event': 'news_fetched', 'cache_key': key, 'count': len(articles), 'static': is_static,
        })
        return articles

    def get_solana_news(self, force_refresh: bool = False) -> List[Article]:
        """Active branch filtered to Solana, merged with CryptoCompare's SOL feed."""
        if not force_refresh:
            cached = self.cache.get(SOLANA_CACHE_KEY)
            if cached is not None:
                return cached

        merged: List[Article] = []
        try:
            articles, is_static = self._fetch(self.store.news.provider)
            if not is_static:
                merged.extend(filter_articles(articles, 'solana'))
        except ProviderError as exc:
            logger.warning('news.solana_primary_failed', extra={
                'event': 'solana_primary_failed', 'provider': exc.provider, 'error_class': type(exc).__name__,
            })
        try:
            merged.extend(self._cryptocompare(categories='SOL'))
        except ProviderError as exc:
            logger.warning('news.solana_feed_failed', extra={
                'event': 'solana_feed_failed', 'provider': exc.provider, 'error_class': type(exc).__name__,
            })

        seen = set()
        unique = []
        for art in merged:
            marker = art.url or art.id
            if marker in seen:
                continue
            seen.add(marker)
            unique.append(art)
        if not unique:
            if self.metrics is not None:
                self.metrics.observe_static_fallback()
            unique = static_articles('solana', self.fixture_dir)
        articles = ensure_unique_ids(sort_newest_first(unique))
        self.cache.set(SOLANA_CACHE_KEY, articles, self.ttl)
        return articles


__all__ = ['NewsService', 'static_articles', 'news_cache_key', 'SOLANA_CACHE_KEY']
