"""
Listings / quotes orchestration with an explicit fallback policy.

A request walks an ordered plan of ``FallbackStep``s. The first step always
runs; each later step runs only when the previous failure is an instance of
one of the classes it accepts. Steps are strictly sequential: a fallback is
attempted only after the provider before it has definitively failed.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Type

from errors import (
    FALLBACK_ELIGIBLE,
    DataUnavailable,
    InvalidRequest,
    MissingCredential,
    NotFound,
    ProviderError,
    UnsupportedCurrency,
    retry_hint,
)
from normalizers import (
    cmc_listings_to_listings,
    cmc_quotes_to_listings,
    coingecko_markets_to_listings,
    coingecko_markets_to_quotes,
    cryptocompare_failure,
    cryptocompare_pricemultifull_to_listings,
    currencies_returned,
)
from providers import (
    CMC,
    COINGECKO,
    CRYPTOCOMPARE,
    CRYPTOCOMPARE_SYMBOLS,
    PRICE,
    ProviderSpec,
    get_provider,
)
from pyd_schemas import Listing

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = 'USD'
# /coins/markets caps per_page at 250.
COINGECKO_PAGE_SIZE = 250


@dataclass(frozen=True)
class FallbackStep:
    provider: str
    # Failure classes of the previous step that allow this one to run
    eligible: Tuple[Type[ProviderError], ...] = ()
    # Call the provider's free tier without a credential
    keyless: bool = False


@dataclass
class MarketResult:
    data: object
    provider: str
    currency: str
    notices: List[str] = field(default_factory=list)
    fallback_used: bool = False
    elapsed_ms: int = 0

    @property
    def notice(self) -> Optional[str]:
        return '; '.join(self.notices) if self.notices else None


def listings_plan(primary: str) -> List[FallbackStep]:
    """Primary, then one keyless rung: CoinGecko, or CryptoCompare when CoinGecko is the primary."""
    rescue = 'cryptocompare' if primary == 'coingecko' else 'coingecko'
    return [FallbackStep(primary), FallbackStep(rescue, FALLBACK_ELIGIBLE, keyless=True)]


def quotes_plan(primary: str) -> List[FallbackStep]:
    """Quotes fall back to CoinGecko on any failure class, once."""
    if primary == 'coingecko':
        return [FallbackStep('coingecko', keyless=True)]
    return [FallbackStep(primary), FallbackStep('coingecko', (ProviderError,), keyless=True)]


def run_plan(plan: Sequence[FallbackStep], attempt: Callable[[FallbackStep], object],
             on_fallback: Optional[Callable[[FallbackStep, FallbackStep, ProviderError], None]] = None):
    """Execute ``plan``; returns ``(step, value, failures)``.

    A failure the next step does not accept is re-raised unchanged. When a
    fallback was attempted and also failed, ``DataUnavailable`` carries the
    last real error.
    """
    failures: List[ProviderError] = []
    for index, step in enumerate(plan):
        if failures:
            last = failures[-1]
            if not isinstance(last, step.eligible):
                raise last
            if on_fallback is not None:
                on_fallback(plan[index - 1], step, last)
        try:
            return step, attempt(step), failures
        except ProviderError as exc:
            failures.append(exc)
    last = failures[-1]
    if len(failures) == 1:
        raise last
    raise DataUnavailable(last.provider, cause=last)


def _currency_rejection(exc: ProviderError) -> Optional[UnsupportedCurrency]:
    if isinstance(exc, UnsupportedCurrency):
        return exc
    if type(exc) is ProviderError and exc.status_code == 400:
        lowered = exc.message.lower()
        if 'vs_currency' in lowered or 'convert' in lowered or 'currency' in lowered:
            return UnsupportedCurrency(exc.provider, exc.message, status_code=400, body=exc.body)
    return None


class MarketDataService:
    """Listings and quotes over the configured price provider."""

    def __init__(self, store, upstream, images=None, metrics=None):
        self.store = store
        self.upstream = upstream
        self.images = images
        self.metrics = metrics

    # ------------------------------------------------------------ credentials

    def _credential(self, spec: ProviderSpec) -> str:
        price = self.store.price
        if spec.id == 'cmc':
            return price.cmc_api_key or (price.api_key if price.provider == 'cmc' else '')
        if spec.id == price.provider:
            return price.api_key
        return ''

    def _require(self, spec: ProviderSpec, step: FallbackStep) -> str:
        if step.keyless:
            return ''
        key = self._credential(spec)
        if spec.requires_credential and not key:
            raise MissingCredential(spec.id, spec.display_name, spec.settings_hint)
        return key

    def _on_fallback(self, prev: FallbackStep, step: FallbackStep, exc: ProviderError) -> None:
        logger.warning('market.fallback', extra={
            'event': 'provider_fallback', 'from': prev.provider, 'to': step.provider,
            'error_class': type(exc).__name__,
        })
        if self.metrics is not None:
            self.metrics.observe_fallback(prev.provider, step.provider)

    # ------------------------------------------------------------ currency

    def _with_currency(self, spec: ProviderSpec, currency: str, fetch: Callable[[str], object]):
        """Run ``fetch(currency)``; on a currency rejection rerun it once in USD."""
        try:
            return fetch(currency), currency, None
        except ProviderError as exc:
            rejected = _currency_rejection(exc)
            if rejected is None or currency == DEFAULT_CURRENCY:
                raise
        logger.info('market.currency_fallback', extra={
            'event': 'currency_fallback', 'provider': spec.id, 'requested': currency,
        })
        data = fetch(DEFAULT_CURRENCY)
        notice = f"{currency} is not supported by {spec.display_name}; prices shown in {DEFAULT_CURRENCY}"
        return data, DEFAULT_CURRENCY, notice

    @staticmethod
    def _returned_currency_notice(data, requested: str, spec: ProviderSpec) -> Optional[str]:
        returned = currencies_returned(data)
        if not returned or requested in returned:
            return None
        return f"{requested} not returned by {spec.display_name}; prices shown in {', '.join(returned)}"

    # ------------------------------------------------------------ listings

    def _coingecko_markets_page(self, currency: str, page: int, per_page: int) -> list:
        rows = self.upstream.get_json(COINGECKO, f'{COINGECKO.base_url}/coins/markets', params={
            'vs_currency': currency.lower(),
            'order': 'market_cap_desc',
            'per_page': per_page,
            'page': page,
            'sparkline': 'false',
            'price_change_percentage': '24h,7d',
        })
        if not isinstance(rows, list):
            raise ProviderError(COINGECKO.id, f"CoinGecko returned an unexpected listings payload. {retry_hint(COINGECKO.settings_hint)}")
        return rows

    def _coingecko_listings(self, key: str, currency: str, start: int, limit: int) -> List[Listing]:
        """Ranks ``start`` .. ``start + limit - 1``, spanning as many markets pages as needed."""
        if limit <= COINGECKO_PAGE_SIZE and (start - 1) % limit == 0:
            rows = self._coingecko_markets_page(currency, (start - 1) // limit + 1, limit)
            return coingecko_markets_to_listings(rows, currency, start=start)

        first = (start - 1) // COINGECKO_PAGE_SIZE + 1
        last = (start + limit - 2) // COINGECKO_PAGE_SIZE + 1
        rows: list = []
        for page in range(first, last + 1):
            chunk = self._coingecko_markets_page(currency, page, COINGECKO_PAGE_SIZE)
            rows.extend(chunk)
            if len(chunk) < COINGECKO_PAGE_SIZE:
                break
        offset = (start - 1) - (first - 1) * COINGECKO_PAGE_SIZE
        return coingecko_markets_to_listings(rows[offset:offset + limit], currency, start=start)

    def _cryptocompare_prices(self, key: str, currency: str, symbols: Sequence[str], start: int = 1):
        headers = {'authorization': f'Apikey {key}'} if key else None
        payload = self.upstream.get_json(
            CRYPTOCOMPARE, f'{CRYPTOCOMPARE.base_url}/data/pricemultifull',
            params={'fsyms': ','.join(symbols), 'tsyms': currency}, headers=headers,
        )
        failure = cryptocompare_failure(payload, CRYPTOCOMPARE.id)
        if failure is not None:
            raise failure
        return cryptocompare_pricemultifull_to_listings(payload, currency, symbols, start=start)

    def _cryptocompare_listings(self, key: str, currency: str, start: int, limit: int) -> List[Listing]:
        symbols = CRYPTOCOMPARE_SYMBOLS[start - 1:start - 1 + limit]
        if not symbols:
            return []
        return self._cryptocompare_prices(key, currency, symbols, start=start)

    def _cmc_listings(self, key: str, currency: str, start: int, limit: int) -> List[Listing]:
        payload = self.upstream.get_json(
            CMC, f'{CMC.base_url}/cryptocurrency/listings/latest',
            params={'start': start, 'limit': limit, 'convert': currency},
            headers={'X-CMC_PRO_API_KEY': key},
        )
        return cmc_listings_to_listings(payload)

    def get_listings(self, provider: Optional[str] = None, currency: str = DEFAULT_CURRENCY,
                     start: int = 1, limit: int = 100) -> MarketResult:
        """Ranked listings from the effective provider. Never cached."""
        if start < 1 or limit < 1:
            raise InvalidRequest('start and limit must be positive integers')
        currency = (currency or DEFAULT_CURRENCY).strip().upper()
        primary = get_provider(PRICE, provider) if provider else get_provider(PRICE, self.store.price.provider)
        fetchers = {
            'coingecko': self._coingecko_listings,
            'cryptocompare': self._cryptocompare_listings,
            'cmc': self._cmc_listings,
        }
        started = time.time()
        self._require(primary, FallbackStep(primary.id))

        def attempt(step: FallbackStep):
            spec = get_provider(PRICE, step.provider)
            key = self._require(spec, step)
            return self._with_currency(spec, currency, lambda cur: fetchers[spec.id](key, cur, start, limit))

        step, (data, used_currency, currency_notice), failures = run_plan(
            listings_plan(primary.id), attempt, self._on_fallback)
        spec = get_provider(PRICE, step.provider)
        result = MarketResult(data=data, provider=spec.id, currency=used_currency,
                              fallback_used=bool(failures))
        if failures:
            result.notices.append(
                f"Using {spec.display_name} fallback data ({failures[-1].message})")
        if currency_notice:
            result.notices.append(currency_notice)
        else:
            missing = self._returned_currency_notice(data, currency, spec)
            if missing:
                result.notices.append(missing)
        if self.images is not None and spec.id != 'coingecko':
            result.data = self.images.merge_images(data)
        result.elapsed_ms = int((time.time() - started) * 1000)
        logger.info('market.listings', extra={
            'event': 'listings_served', 'provider': spec.id, 'count': len(result.data),
            'fallback_used': result.fallback_used,
        })
        return result

    # ------------------------------------------------------------ quotes

    def _coingecko_quotes(self, key: str, currency: str, symbols: Sequence[str]) -> Dict[str, Listing]:
        rows = self.upstream.get_json(COINGECKO, f'{COINGECKO.base_url}/coins/markets', params={
            'vs_currency': currency.lower(),
            'symbols': ','.join(s.lower() for s in symbols),
            'order': 'market_cap_desc',
            'per_page': 250,
            'page': 1,
            'sparkline': 'false',
            'price_change_percentage': '24h,7d',
        })
        if not isinstance(rows, list):
            raise ProviderError(COINGECKO.id, f"CoinGecko returned an unexpected markets payload. {retry_hint(COINGECKO.settings_hint)}")
        by_symbol = coingecko_markets_to_quotes(rows, currency)
        found = {s: by_symbol[s] for s in symbols if s in by_symbol}
        if not found:
            raise NotFound(COINGECKO.id, f"CoinGecko has no market data for {', '.join(symbols)}. "
                                         f"Check the symbols or choose another provider in {COINGECKO.settings_hint}")
        return found

    def _cryptocompare_quotes(self, key: str, currency: str, symbols: Sequence[str]) -> Dict[str, Listing]:
        return {l.symbol: l for l in self._cryptocompare_prices(key, currency, symbols)}

    def _cmc_quotes(self, key: str, currency: str, symbols: Sequence[str]) -> Dict[str, Listing]:
        payload = self.upstream.get_json(
            CMC, f'{CMC.base_url}/cryptocurrency/quotes/latest',
            params={'symbol': ','.join(symbols), 'convert': currency},
            headers={'X-CMC_PRO_API_KEY': key},
        )
        return cmc_quotes_to_listings(payload)

    def get_quotes(self, symbols: Sequence[str], currency: str = DEFAULT_CURRENCY,
                   provider: Optional[str] = None) -> MarketResult:
        """Quotes keyed by symbol.

        Without an explicit provider the CMC key decides: present means CMC
        first, absent means CoinGecko symbol search straight away.
        """
        wanted = [s.strip().upper() for s in symbols if s and s.strip()]
        if not wanted:
            raise InvalidRequest('Symbol parameter is required')
        currency = (currency or DEFAULT_CURRENCY).strip().upper()
        if provider:
            primary = get_provider(PRICE, provider)
        elif self._credential(CMC):
            primary = CMC
        else:
            primary = COINGECKO
        fetchers = {
            'coingecko': self._coingecko_quotes,
            'cryptocompare': self._cryptocompare_quotes,
            'cmc': self._cmc_quotes,
        }
        started = time.time()

        def attempt(step: FallbackStep):
            spec = get_provider(PRICE, step.provider)
            key = self._require(spec, step)
            return self._with_currency(spec, currency, lambda cur: fetchers[spec.id](key, cur, wanted))

        # An explicitly chosen keyed provider without its key never reaches the network
        self._require(primary, FallbackStep(primary.id))
        try:
            step, (data, used_currency, currency_notice), failures = run_plan(
                quotes_plan(primary.id), attempt, self._on_fallback)
        except (DataUnavailable, NotFound):
            raise
        except ProviderError as exc:
            raise DataUnavailable(exc.provider, cause=exc) from exc

        spec = get_provider(PRICE, step.provider)
        result = MarketResult(data=data, provider=spec.id, currency=used_currency,
                              fallback_used=bool(failures))
        if failures:
            result.notices.append(f"Using CoinGecko fallback data ({failures[-1].message})")
        elif spec.id == 'coingecko' and not provider:
            result.notices.append('Using CoinGecko data (no CMC API key)')
        if currency_notice:
            result.notices.append(currency_notice)
        else:
            missing = self._returned_currency_notice(data, currency, spec)
            if missing:
                result.notices.append(missing)
        result.elapsed_ms = int((time.time() - started) * 1000)
        return result


__all__ = ['FallbackStep', 'MarketResult', 'MarketDataService', 'listings_plan', 'quotes_plan', 'run_plan']
