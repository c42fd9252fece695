import pytest

from conftest import respond
from provider_config import PriceSettings

JUPITER_TOKENS = [
    {'id': 'So11111111111111111111111111111111111111112', 'symbol': 'SOL', 'name': 'Wrapped SOL',
     'decimals': 9, 'icon': 'https://img.example/sol.png'},
    {'address': 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v', 'symbol': 'USDC', 'name': 'USD Coin',
     'decimals': 6, 'logoURI': 'https://img.example/usdc.png'},
    {'symbol': 'NOADDR', 'name': 'skipped'},
]


def test_health(client, fake_session):
    r = client.get('/api/health')
    assert r.status_code == 200
    body = r.get_json()
    assert body['status'] == 'OK'
    assert body['api'] == 'CoinMarketCap Pro (with CoinGecko fallback)'
    assert body['version'] == '1.0.0'
    assert body['errors_5xx'] == 0
    assert fake_session.calls == []


def test_request_id_echoed(client):
    r = client.get('/api/health', headers={'X-Request-ID': 'abc-123'})
    assert r.headers['X-Request-ID'] == 'abc-123'
    generated = client.get('/api/health').headers['X-Request-ID']
    assert len(generated) == 32


def test_5xx_counted(client, fake_session):
    fake_session.add('/coins/markets', respond(500, {}))
    fake_session.add('/data/pricemultifull', respond(502, {}))

    r = client.get('/api/cmc/listings')

    assert r.status_code == 500
    assert r.get_json()['error'] == 'Data unavailable'
    assert client.get('/api/health').get_json()['errors_5xx'] == 1


def test_metrics_json(client, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets))
    client.get('/api/cmc/listings')

    body = client.get('/api/metrics').get_json()

    assert body['ok'] is True
    assert body['upstream']['upstream_calls'] == {'coingecko': 1}
    assert body['cache']['keys'] == 0


def test_metrics_prometheus(client, fake_session):
    fake_session.add('/coins/markets', respond(429, {}))
    fake_session.add('/data/pricemultifull', respond(200, {'RAW': {}}))
    client.get('/api/cmc/listings')

    r = client.get('/metrics.prom')

    assert r.status_code == 200
    assert r.mimetype == 'text/plain'
    text = r.get_data(as_text=True)
    # the listings call and the icon index both hit the rate limit
    assert 'proxy_upstream_errors_total{provider_error="coingecko:RateLimited"} 2' in text
    assert 'proxy_fallbacks_total{route="coingecko->cryptocompare"} 1' in text
    assert '# TYPE proxy_uptime_seconds gauge' in text


@pytest.mark.parametrize('query', ['start=0', 'start=abc', 'limit=-5', 'limit=99999'])
def test_invalid_paging_rejected(client, fake_session, query):
    r = client.get(f'/api/cmc/listings?{query}')
    assert r.status_code == 400
    assert r.get_json()['error'] == 'Invalid request'
    assert fake_session.calls == []


def test_unknown_price_provider(client, fake_session):
    r = client.get('/api/cmc/listings?provider=kraken')
    assert r.status_code == 400
    body = r.get_json()
    assert body['error'] == 'Unknown provider'
    assert 'coingecko' in body['message']
    assert fake_session.calls == []


def test_unknown_news_provider(client, fake_session):
    r = client.get('/api/news?provider=reddit')
    assert r.status_code == 400
    assert fake_session.calls == []


def test_unknown_route_is_json_404(client):
    r = client.get('/api/does-not-exist')
    assert r.status_code == 404
    assert r.get_json()['error'] == 'Not Found'


def test_config_snapshot_is_masked(make_app, make_store):
    client = make_app(make_store(price=PriceSettings(provider='cmc', api_key='secret-9876',
                                                     cmc_api_key='secret-9876'))).test_client()
    body = client.get('/api/config').get_json()
    assert body['price']['api_key'] == '****9876'
    assert 'secret' not in str(body)


# ---------------------------------------------------------------- coins / tokens

def test_coin_detail_by_symbol(client, fake_session):
    fake_session.add('/search', respond(200, {'coins': [
        {'id': 'solana-wormhole', 'symbol': 'SOLW'},
        {'id': 'solana', 'symbol': 'SOL'},
    ]}))
    fake_session.add('/coins/solana', respond(200, {'id': 'solana', 'community_data': {'twitter_followers': 1}}))

    r = client.get('/api/coin/detail?symbol=sol')

    assert r.status_code == 200
    assert r.get_json()['id'] == 'solana'
    assert fake_session.calls[0].params == {'query': 'sol'}
    assert fake_session.calls[1].params['community_data'] == 'true'


def test_coin_detail_unknown_symbol(client, fake_session):
    fake_session.add('/search', respond(200, {'coins': []}))
    r = client.get('/api/coin/detail?symbol=nope')
    assert r.status_code == 404
    assert r.get_json()['error'] == 'Not found'


def test_coin_detail_upstream_404(client, fake_session):
    fake_session.add('/coins/ghost', respond(404, {'error': 'coin not found'}))
    r = client.get('/api/coin/detail?id=ghost')
    assert r.status_code == 404


def test_coin_detail_requires_id_or_symbol(client, fake_session):
    r = client.get('/api/coin/detail')
    assert r.status_code == 400
    assert fake_session.calls == []


def test_coin_market(client, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets[:1]))
    r = client.get('/api/coin/market?id=Bitcoin&convert=EUR')
    assert r.status_code == 200
    assert r.get_json()['id'] == 'bitcoin'
    assert fake_session.calls[0].params['ids'] == 'bitcoin'
    assert fake_session.calls[0].params['vs_currency'] == 'eur'


def test_coin_market_empty_is_404(client, fake_session):
    fake_session.add('/coins/markets', respond(200, []))
    r = client.get('/api/coin/market?id=nothing')
    assert r.status_code == 404


def test_solana_tokens(client, fake_session):
    fake_session.add('jup.ag', respond(200, JUPITER_TOKENS))

    body = client.get('/api/solana/tokens').get_json()
    client.get('/api/solana/tokens')

    assert body['count'] == 2
    sol = body['tokens']['So11111111111111111111111111111111111111112']
    assert sol == {
        'address': 'So11111111111111111111111111111111111111112', 'symbol': 'SOL', 'name': 'Wrapped SOL',
        'decimals': 9, 'logoURI': 'https://img.example/sol.png',
    }
    assert len(fake_session.calls) == 1
    client.get('/api/solana/tokens?refresh=true')
    assert len(fake_session.calls) == 2


def test_solana_tokens_empty_is_404(client, fake_session):
    fake_session.add('jup.ag', respond(200, {'tokens': []}))
    assert client.get('/api/solana/tokens').status_code == 404


def test_cors_header(client):
    r = client.get('/api/health', headers={'Origin': 'http://localhost:5173'})
    assert r.headers.get('Access-Control-Allow-Origin') == '*'
