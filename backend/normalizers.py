"""Provider payload → canonical schema.

Pure functions only: no I/O, no config, no logging. Each provider gets a
small adapter; news payloads go through ``parse_news_payload`` first, which
matches the body against the known shapes in a fixed order and returns a
tagged variant instead of letting callers probe keys ad hoc.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from errors import (
    NEWS_URL_HINT,
    PRICE_KEY_HINT,
    AuthError,
    ProviderError,
    RateLimited,
    UnsupportedCurrency,
    retry_hint,
    settings_hint,
)
from pyd_schemas import Article, Listing, Quote, SourceInfo


# ---------------------------------------------------------------- helpers

def _num(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if out == out else None  # NaN -> None


def _int(value: Any) -> Optional[int]:
    n = _num(value)
    return int(n) if n is not None else None


def _iso_from_epoch(value: Any) -> Optional[str]:
    n = _num(value)
    if n is None:
        return None
    return datetime.fromtimestamp(n, tz=timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_iso(ts: Any) -> int:
    """ISO-8601 (or epoch) → epoch seconds. Falls back to now."""
    n = _num(ts)
    if n is not None:
        return int(n)
    try:
        dt = datetime.fromisoformat(str(ts).replace('Z', '+00:00'))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    except (TypeError, ValueError):
        return int(time.time())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


# ---------------------------------------------------------------- listings

def coingecko_markets_to_listings(rows: Sequence[dict], currency: str, start: int = 1) -> List[Listing]:
    cur = currency.upper()
    out = []
    for index, coin in enumerate(rows or []):
        if not isinstance(coin, dict):
            continue
        out.append(Listing(
            id=coin.get('id') or str(coin.get('symbol', '')).lower(),
            name=coin.get('name') or str(coin.get('symbol', '')).upper(),
            symbol=str(coin.get('symbol') or '').upper(),
            slug=coin.get('id'),
            cmc_rank=_int(coin.get('market_cap_rank')) or start + index,
            circulating_supply=_num(coin.get('circulating_supply')),
            total_supply=_num(coin.get('total_supply')),
            max_supply=_num(coin.get('max_supply')),
            last_updated=coin.get('last_updated'),
            image=coin.get('image'),
            quote={cur: Quote(
                price=_num(coin.get('current_price')),
                volume_24h=_num(coin.get('total_volume')),
                percent_change_24h=_num(coin.get('price_change_percentage_24h')),
                percent_change_7d=_num(coin.get('price_change_percentage_7d_in_currency')),
                market_cap=_num(coin.get('market_cap')),
                fully_diluted_market_cap=_num(coin.get('fully_diluted_valuation')),
                last_updated=coin.get('last_updated'),
            )},
        ))
    return out


def coingecko_markets_to_quotes(rows: Sequence[dict], currency: str) -> Dict[str, Listing]:
    """Symbol → Listing. Rows arrive market-cap ordered, so the first hit wins."""
    out: Dict[str, Listing] = {}
    for listing in coingecko_markets_to_listings(rows, currency):
        out.setdefault(listing.symbol, listing)
    return out


def cryptocompare_failure(payload: Any, provider: str = 'cryptocompare',
                          hint: str = PRICE_KEY_HINT) -> Optional[ProviderError]:
    """CryptoCompare reports errors in 200 bodies: ``{"Response": "Error", "Message": ...}``."""
    if not isinstance(payload, dict) or payload.get('Response') != 'Error':
        return None
    message = str(payload.get('Message') or 'CryptoCompare error').strip().rstrip(' .')
    lowered = message.lower()
    if 'rate limit' in lowered:
        return RateLimited(provider, f"CryptoCompare rate limit exceeded: {message}. {retry_hint(hint)}")
    if 'api key' in lowered or 'api_key' in lowered:
        return AuthError(provider, f"Your CryptoCompare API key is invalid ({message}). Please check your key in {hint}")
    if 'tsym' in lowered or 'tosymbol' in lowered:
        return UnsupportedCurrency(provider, f"{message}. {settings_hint(hint)}")
    return ProviderError(provider, f"CryptoCompare error: {message}. {settings_hint(hint)}")


def cryptocompare_pricemultifull_to_listings(payload: dict, currency: str,
                                              symbols: Iterable[str] = (), start: int = 1) -> List[Listing]:
    raw = (payload or {}).get('RAW') or {}
    cur = currency.upper()
    order = [s for s in symbols if s in raw] or list(raw.keys())
    out = []
    for offset, symbol in enumerate(order):
        by_cur = raw.get(symbol) or {}
        if not isinstance(by_cur, dict) or not by_cur:
            continue
        quote_cur = cur if cur in by_cur else next(iter(by_cur))
        row = by_cur[quote_cur] or {}
        updated = _iso_from_epoch(row.get('LASTUPDATE'))
        out.append(Listing(
            id=symbol.lower(),
            name=symbol,
            symbol=symbol,
            slug=symbol.lower(),
            cmc_rank=start + offset,
            circulating_supply=_num(row.get('CIRCULATINGSUPPLY')),
            total_supply=_num(row.get('SUPPLY')),
            max_supply=None,
            last_updated=updated,
            quote={quote_cur: Quote(
                price=_num(row.get('PRICE')),
                volume_24h=_num(row.get('VOLUME24HOURTO')),
                percent_change_24h=_num(row.get('CHANGEPCT24HOUR')),
                percent_change_7d=None,
                market_cap=_num(row.get('MKTCAP')),
                fully_diluted_market_cap=None,
                last_updated=updated,
            )},
        ))
    return out


def _cmc_listing(coin: dict) -> Listing:
    quotes = {}
    for cur, q in (coin.get('quote') or {}).items():
        q = q or {}
        quotes[str(cur).upper()] = Quote(
            price=_num(q.get('price')),
            volume_24h=_num(q.get('volume_24h')),
            percent_change_24h=_num(q.get('percent_change_24h')),
            percent_change_7d=_num(q.get('percent_change_7d')),
            market_cap=_num(q.get('market_cap')),
            fully_diluted_market_cap=_num(q.get('fully_diluted_market_cap')),
            last_updated=q.get('last_updated'),
        )
    return Listing(
        id=coin.get('id') if coin.get('id') is not None else str(coin.get('symbol', '')).lower(),
        name=coin.get('name') or coin.get('symbol') or '',
        symbol=str(coin.get('symbol') or '').upper(),
        slug=coin.get('slug'),
        cmc_rank=_int(coin.get('cmc_rank')),
        circulating_supply=_num(coin.get('circulating_supply')),
        total_supply=_num(coin.get('total_supply')),
        max_supply=_num(coin.get('max_supply')),
        last_updated=coin.get('last_updated'),
        quote=quotes,
    )


def cmc_listings_to_listings(payload: dict) -> List[Listing]:
    return [_cmc_listing(c) for c in (payload or {}).get('data') or [] if isinstance(c, dict)]


def cmc_quotes_to_listings(payload: dict) -> Dict[str, Listing]:
    """Handles both v1 (``{SYM: coin}``) and v2 (``{SYM: [coin, ...]}``) quote maps."""
    out: Dict[str, Listing] = {}
    for symbol, entry in ((payload or {}).get('data') or {}).items():
        coin = entry[0] if isinstance(entry, list) and entry else entry
        if isinstance(coin, dict):
            out[str(symbol).upper()] = _cmc_listing(coin)
    return out


def currencies_returned(listings: Union[List[Listing], Dict[str, Listing]]) -> List[str]:
    items = listings.values() if isinstance(listings, dict) else listings
    seen: List[str] = []
    for listing in items:
        for cur in listing.quote:
            if cur not in seen:
                seen.append(cur)
    return seen


# ---------------------------------------------------------------- news

@dataclass(frozen=True)
class NewsApiErrorShape:
    message: str
    code: Optional[str] = None


@dataclass(frozen=True)
class NewsApiShape:
    articles: list


@dataclass(frozen=True)
class CryptoCompareShape:
    items: list
    payload: dict


@dataclass(frozen=True)
class RawArrayShape:
    items: list


@dataclass(frozen=True)
class RawObjectShape:
    item: dict


NewsShape = Union[NewsApiErrorShape, NewsApiShape, CryptoCompareShape, RawArrayShape, RawObjectShape]


def parse_news_payload(payload: Any, provider: str = 'news') -> NewsShape:
    """Match a news body against the known shapes, in priority order."""
    if isinstance(payload, dict):
        if payload.get('status') == 'error':
            return NewsApiErrorShape(
                message=str(payload.get('message') or payload.get('code') or 'Invalid API key or request parameters'),
                code=payload.get('code'),
            )
        if isinstance(payload.get('articles'), list):
            return NewsApiShape(payload['articles'])
        if 'Data' in payload:
            data = payload['Data']
            if isinstance(data, list):
                items = data
            elif isinstance(data, dict) and data:
                items = [data]
            else:
                items = []
            return CryptoCompareShape(items, payload)
        return RawObjectShape(payload)
    if isinstance(payload, list):
        return RawArrayShape(payload)
    raise ProviderError(provider, f"Unrecognized news payload ({type(payload).__name__}). {settings_hint(NEWS_URL_HINT)}")


def newsapi_to_articles(articles: Sequence[dict]) -> List[Article]:
    out = []
    for index, art in enumerate(articles or []):
        if not isinstance(art, dict):
            continue
        source = art.get('source') if isinstance(art.get('source'), dict) else {}
        out.append(Article(
            id=f'newsapi-{index}',
            published_on=parse_iso(art.get('publishedAt')),
            title=art.get('title') or 'Untitled',
            body=art.get('description') or art.get('content') or 'Click to read more.',
            url=art.get('url'),
            imageurl=art.get('urlToImage'),
            source_info=SourceInfo(name=source.get('name') or 'NewsAPI'),
            categories='Crypto|News',
        ))
    return out


def cryptocompare_news_to_articles(items: Sequence[dict]) -> List[Article]:
    out = []
    for index, item in enumerate(items or []):
        if not isinstance(item, dict):
            continue
        source_info = item.get('source_info') if isinstance(item.get('source_info'), dict) else {}
        published = parse_iso(item.get('published_on'))
        raw_id = item.get('id')
        out.append(Article(
            id=str(raw_id) if raw_id not in (None, '') else f'cc-{published}-{index}',
            published_on=published,
            title=item.get('title') or 'Untitled',
            body=item.get('body') or '',
            url=item.get('url') or item.get('guid'),
            imageurl=item.get('imageurl'),
            source_info=SourceInfo(name=source_info.get('name') or item.get('source') or 'CryptoCompare'),
            categories=item.get('categories') or '',
        ))
    return out


def raw_items_to_articles(items: Sequence[Any], prefix: str = 'custom') -> List[Article]:
    """Best-effort mapping of unknown article dicts from a custom endpoint."""
    out = []
    for index, item in enumerate(items or []):
        if not isinstance(item, dict):
            continue
        source = item.get('source_info') or item.get('source')
        if isinstance(source, dict):
            source_name = source.get('name')
        else:
            source_name = source
        published = parse_iso(
            item.get('published_on') or item.get('publishedAt') or item.get('published') or item.get('date')
        )
        categories = item.get('categories') or item.get('tags') or ''
        if isinstance(categories, (list, tuple)):
            categories = '|'.join(str(c) for c in categories)
        raw_id = item.get('id')
        out.append(Article(
            id=str(raw_id) if raw_id not in (None, '') else f'{prefix}-{index}',
            published_on=published,
            title=item.get('title') or item.get('headline') or 'Untitled',
            body=item.get('body') or item.get('description') or item.get('summary') or item.get('content') or '',
            url=item.get('url') or item.get('link'),
            imageurl=item.get('imageurl') or item.get('image') or item.get('urlToImage'),
            source_info=SourceInfo(name=str(source_name or 'Custom')),
            categories=str(categories),
        ))
    return out


def ensure_unique_ids(articles: List[Article]) -> List[Article]:
    """Make ids unique within one batch: duplicates get the timestamp appended."""
    seen = set()
    out = []
    for art in articles:
        new_id = art.id
        if new_id in seen:
            new_id = f'{art.id}-{art.published_on}'
            n = 1
            while new_id in seen:
                n += 1
                new_id = f'{art.id}-{art.published_on}-{n}'
            art = art.model_copy(update={'id': new_id})
        seen.add(new_id)
        out.append(art)
    return out


def _haystack(article: Article) -> str:
    return f'{article.title} {article.body} {article.categories}'.lower()


def filter_articles(articles: List[Article], chain: Optional[str], exclude_terms: Iterable[str] = ()) -> List[Article]:
    """Chain filter by substring over title/body/categories.

    ``all`` is asymmetric: it keeps everything except the competing topics
    listed in ``exclude_terms``.
    """
    if not chain:
        return list(articles)
    chain = chain.strip().lower()
    if chain == 'all':
        terms = [t.lower() for t in exclude_terms if t]
        return [a for a in articles if not any(t in _haystack(a) for t in terms)]
    return [a for a in articles if chain in _haystack(a)]


def sort_newest_first(articles: List[Article]) -> List[Article]:
    return sorted(articles, key=lambda a: a.published_on, reverse=True)
