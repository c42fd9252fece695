"""
Shared pytest fixtures for the market proxy tests.

Upstream HTTP is faked at the ``requests.Session`` seam: ``FakeSession``
routes each GET by URL fragment (and optionally a params subset) to queued
MagicMock responses and records every call, so tests can assert exact
outbound call counts.
"""

import os
import sys
from collections import deque
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

# Ensure backend directory is on sys.path so imports like `import news` resolve
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from cache import TTLCache  # noqa: E402
from metrics import ProxyMetrics  # noqa: E402
from provider_config import ConfigStore, NewsSettings, PriceSettings  # noqa: E402
from upstream import UpstreamClient  # noqa: E402


# ============================================================================
# Fake transport
# ============================================================================

def respond(status=200, payload=None, json_error=False):
    """MagicMock shaped like a ``requests.Response``."""
    resp = MagicMock(status_code=status)
    if json_error:
        resp.json = MagicMock(side_effect=ValueError('No JSON object could be decoded'))
    else:
        resp.json = MagicMock(return_value=payload)
    return resp


class FakeSession:
    """Routes are tried in the order they were added; the last queued response sticks."""

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, fragment, *responses, where=None):
        self.routes.append((fragment, where or {}, deque(responses)))
        return self

    def get(self, url, params=None, headers=None, timeout=None):
        params = dict(params or {})
        self.calls.append(SimpleNamespace(url=url, params=params, headers=dict(headers or {}), timeout=timeout))
        for fragment, where, queue in self.routes:
            if fragment not in url or not queue:
                continue
            if any(params.get(k) != v for k, v in where.items()):
                continue
            item = queue.popleft() if len(queue) > 1 else queue[0]
            if isinstance(item, BaseException):
                raise item
            return item
        raise requests.ConnectionError(f'no fake route for {url}')

    def calls_to(self, fragment):
        return [c for c in self.calls if fragment in c.url]


class FakeClock:
    """Millisecond clock for TTLCache."""

    def __init__(self, start_ms=1_700_000_000_000):
        self.now = start_ms

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += int(seconds * 1000)


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(clock=clock)


@pytest.fixture
def metrics():
    return ProxyMetrics()


@pytest.fixture
def upstream(fake_session, metrics):
    return UpstreamClient(session=fake_session, config={}, metrics=metrics)


@pytest.fixture
def store(cache):
    return ConfigStore(price=PriceSettings(), news=NewsSettings(), cache=cache, env_cmc_key='')


@pytest.fixture
def make_store(cache):
    def _make(price=None, news=None, env_cmc_key=''):
        return ConfigStore(price=price or PriceSettings(), news=news or NewsSettings(),
                           cache=cache, env_cmc_key=env_cmc_key)
    return _make


@pytest.fixture
def test_config(tmp_path):
    from config import CONFIG
    cfg = dict(CONFIG)
    cfg.update({
        'VERSION': '1.0.0',
        'NEWS_CACHE_SECONDS': 120,
        'IMAGE_CACHE_SECONDS': 300,
        'TOKEN_LIST_CACHE_SECONDS': 3600,
        'IMAGE_PAGES': 3,
        'NEWS_ALL_EXCLUDE_TERMS': ['solana'],
        'FIXTURE_DIR': os.path.join(os.path.dirname(os.path.dirname(__file__)), 'fixtures'),
    })
    return cfg


@pytest.fixture
def make_app(upstream, cache, test_config):
    from app import create_app

    def _make(store):
        flask_app = create_app(store=store, upstream=upstream, cache=cache, config=test_config)
        flask_app.testing = True
        return flask_app
    return _make


@pytest.fixture
def client(make_app, store):
    with make_app(store).test_client() as c:
        yield c


# ============================================================================
# Mock provider payloads
# ============================================================================

@pytest.fixture
def coingecko_markets():
    """CoinGecko /coins/markets rows (market-cap ordered)."""
    return [
        {
            "id": "bitcoin", "symbol": "btc", "name": "Bitcoin",
            "image": "https://assets.coingecko.com/coins/images/1/large/bitcoin.png",
            "current_price": 43250.5, "market_cap": 845000000000, "market_cap_rank": 1,
            "fully_diluted_valuation": 908000000000, "total_volume": 25000000000,
            "circulating_supply": 19600000, "total_supply": 21000000, "max_supply": 21000000,
            "last_updated": "2024-01-01T00:00:00.000Z",
            "price_change_percentage_24h": 3.2,
            "price_change_percentage_7d_in_currency": 8.5,
        },
        {
            "id": "ethereum", "symbol": "eth", "name": "Ethereum",
            "image": "https://assets.coingecko.com/coins/images/279/large/ethereum.png",
            "current_price": 2250.1, "market_cap": 270000000000, "market_cap_rank": 2,
            "fully_diluted_valuation": None, "total_volume": 12000000000,
            "circulating_supply": 120000000, "total_supply": None, "max_supply": None,
            "last_updated": "2024-01-01T00:00:00.000Z",
            "price_change_percentage_24h": -1.1,
            "price_change_percentage_7d_in_currency": 2.0,
        },
        {
            "id": "solana", "symbol": "sol", "name": "Solana",
            "image": "https://assets.coingecko.com/coins/images/4128/large/solana.png",
            "current_price": 101.3, "market_cap": 43000000000, "market_cap_rank": 5,
            "fully_diluted_valuation": 57000000000, "total_volume": 2100000000,
            "circulating_supply": 430000000, "total_supply": 560000000, "max_supply": None,
            "last_updated": "2024-01-01T00:00:00.000Z",
            "price_change_percentage_24h": 6.4,
            "price_change_percentage_7d_in_currency": 12.9,
        },
    ]


@pytest.fixture
def cmc_listings_payload():
    """CoinMarketCap /cryptocurrency/listings/latest body."""
    return {
        "status": {"timestamp": "2024-01-01T00:00:00.000Z", "error_code": 0, "error_message": None},
        "data": [
            {
                "id": 1, "name": "Bitcoin", "symbol": "BTC", "slug": "bitcoin", "cmc_rank": 1,
                "circulating_supply": 19600000, "total_supply": 19600000, "max_supply": 21000000,
                "last_updated": "2024-01-01T00:00:00.000Z",
                "quote": {"USD": {
                    "price": 43250.5, "volume_24h": 25000000000, "percent_change_24h": 3.2,
                    "percent_change_7d": 8.5, "market_cap": 845000000000,
                    "fully_diluted_market_cap": 908000000000, "last_updated": "2024-01-01T00:00:00.000Z",
                }},
            },
            {
                "id": 99999, "name": "Zeta Zed", "symbol": "ZZZ", "slug": "zeta-zed", "cmc_rank": 2,
                "circulating_supply": 1000, "total_supply": 1000, "max_supply": None,
                "last_updated": "2024-01-01T00:00:00.000Z",
                "quote": {"USD": {
                    "price": 0.5, "volume_24h": 10, "percent_change_24h": 0.0,
                    "percent_change_7d": 0.0, "market_cap": 500,
                    "fully_diluted_market_cap": 500, "last_updated": "2024-01-01T00:00:00.000Z",
                }},
            },
        ],
    }


@pytest.fixture
def cmc_quotes_payload():
    """CoinMarketCap /cryptocurrency/quotes/latest body (v1 map shape)."""
    return {
        "status": {"error_code": 0},
        "data": {
            "BTC": {
                "id": 1, "name": "Bitcoin", "symbol": "BTC", "slug": "bitcoin", "cmc_rank": 1,
                "circulating_supply": 19600000, "total_supply": 19600000, "max_supply": 21000000,
                "last_updated": "2024-01-01T00:00:00.000Z",
                "quote": {"USD": {"price": 43000.0, "volume_24h": 1.0, "percent_change_24h": 1.0,
                                  "percent_change_7d": 2.0, "market_cap": 3.0,
                                  "fully_diluted_market_cap": 4.0, "last_updated": "2024-01-01T00:00:00.000Z"}},
            },
        },
    }


@pytest.fixture
def cryptocompare_prices_payload():
    """CryptoCompare /data/pricemultifull body for BTC and ETH."""
    return {
        "RAW": {
            "BTC": {"USD": {
                "FROMSYMBOL": "BTC", "TOSYMBOL": "USD", "PRICE": 43100.0, "LASTUPDATE": 1704067200,
                "VOLUME24HOURTO": 24000000000, "CHANGEPCT24HOUR": 2.9, "MKTCAP": 844000000000,
                "SUPPLY": 19600000, "CIRCULATINGSUPPLY": 19600000,
            }},
            "ETH": {"USD": {
                "FROMSYMBOL": "ETH", "TOSYMBOL": "USD", "PRICE": 2240.0, "LASTUPDATE": 1704067200,
                "VOLUME24HOURTO": 11000000000, "CHANGEPCT24HOUR": -1.0, "MKTCAP": 269000000000,
                "SUPPLY": 120000000, "CIRCULATINGSUPPLY": 120000000,
            }},
        },
        "DISPLAY": {},
    }


@pytest.fixture
def cryptocompare_news_payload():
    """CryptoCompare /data/v2/news/ body."""
    return {
        "Type": 100,
        "Message": "News list successfully returned",
        "Data": [
            {
                "id": "101", "guid": "https://news.example.com/btc-etf", "published_on": 1704070800,
                "imageurl": "https://images.example.com/btc.png",
                "title": "Bitcoin ETF inflows keep climbing",
                "url": "https://news.example.com/btc-etf",
                "body": "Spot bitcoin funds saw another day of net inflows.",
                "categories": "BTC|Market",
                "source_info": {"name": "CoinDesk", "lang": "EN"},
            },
            {
                "id": "102", "guid": "https://news.example.com/sol-dex", "published_on": 1704067200,
                "imageurl": None,
                "title": "Solana DEX volume hits a new high",
                "url": "https://news.example.com/sol-dex",
                "body": "Decentralized exchanges on Solana processed record volume.",
                "categories": "SOL|Trading",
                "source_info": {"name": "The Block", "lang": "EN"},
            },
            {
                "id": "103", "guid": "https://news.example.com/eth-gas", "published_on": 1704063600,
                "imageurl": None,
                "title": "Ethereum gas fees slide",
                "url": "https://news.example.com/eth-gas",
                "body": "Layer 2 adoption keeps mainnet fees low.",
                "categories": "ETH",
                "source_info": {"name": "Decrypt", "lang": "EN"},
            },
        ],
    }
