from conftest import respond
from images import IMAGE_CACHE_KEY, ImageEnricher
from pyd_schemas import Listing


def _listing(symbol, name=None, id_=1, image=None):
    return Listing(id=id_, name=name or symbol, symbol=symbol, image=image)


def _rows(n, start=0):
    return [
        {'id': f'coin-{i}', 'symbol': f'c{i}', 'name': f'Coin {i}', 'image': f'https://img.example/{i}.png'}
        for i in range(start, start + n)
    ]


def test_symbol_hit_and_miss(upstream, cache, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets))
    enricher = ImageEnricher(upstream, cache, pages=1)

    btc, zzz = enricher.merge_images([_listing('BTC'), _listing('ZZZ', 'Zeta Zed', 99999)])

    assert btc.image == coingecko_markets[0]['image']
    assert zzz.image is None


def test_lookup_by_id_and_name(upstream, cache, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets))
    enricher = ImageEnricher(upstream, cache, pages=1)

    by_id, by_name = enricher.merge_images([
        _listing('XXX', 'nothing', id_='ethereum'),
        _listing('YYY', 'Solana', id_=7),
    ])

    assert by_id.image == coingecko_markets[1]['image']
    assert by_name.image == coingecko_markets[2]['image']


def test_first_coin_claims_a_shared_symbol(upstream, cache, fake_session):
    fake_session.add('/coins/markets', respond(200, [
        {'id': 'big', 'symbol': 'dup', 'name': 'Big', 'image': 'https://img.example/big.png'},
        {'id': 'small', 'symbol': 'dup', 'name': 'Small', 'image': 'https://img.example/small.png'},
    ]))
    enricher = ImageEnricher(upstream, cache, pages=1)
    assert enricher.merge_images([_listing('DUP')])[0].image == 'https://img.example/big.png'


def test_existing_image_kept_on_miss(upstream, cache, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets))
    enricher = ImageEnricher(upstream, cache, pages=1)
    out = enricher.merge_images([_listing('ZZZ', image='https://own.example/z.png')])
    assert out[0].image == 'https://own.example/z.png'


def test_index_failure_leaves_listings_unchanged(upstream, cache, fake_session):
    fake_session.add('/coins/markets', respond(429, {}))
    enricher = ImageEnricher(upstream, cache, pages=3)
    listings = [_listing('BTC'), _listing('ETH', id_=2)]

    out = enricher.merge_images(listings)

    assert out == listings
    assert IMAGE_CACHE_KEY not in cache.keys()


def test_index_cached_between_calls(upstream, cache, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets))
    enricher = ImageEnricher(upstream, cache, pages=3)

    enricher.merge_images([_listing('BTC')])
    enricher.merge_images([_listing('ETH')])

    # A short first page ends paging, and the second merge reads the cache
    assert len(fake_session.calls) == 1


def test_later_page_failure_keeps_partial_index(upstream, cache, fake_session):
    fake_session.add('/coins/markets', respond(200, _rows(250)), where={'page': 1})
    fake_session.add('/coins/markets', respond(500, {}), where={'page': 2})
    enricher = ImageEnricher(upstream, cache, pages=3)

    out = enricher.merge_images([_listing('C0'), _listing('C249')])

    assert [o.image for o in out] == ['https://img.example/0.png', 'https://img.example/249.png']
    assert [c.params['page'] for c in fake_session.calls] == [1, 2]


def test_input_not_mutated(upstream, cache, fake_session, coingecko_markets):
    fake_session.add('/coins/markets', respond(200, coingecko_markets))
    enricher = ImageEnricher(upstream, cache, pages=1)
    original = _listing('BTC')

    enriched = enricher.merge_images([original])[0]

    assert original.image is None
    assert enriched is not original


def test_id_lookup_ignores_a_symbol_claiming_the_same_key(upstream, cache, fake_session):
    fake_session.add('/coins/markets', respond(200, [
        {'id': 'bitcoin-token', 'symbol': 'bitcoin', 'name': 'Bitcoin Token', 'image': 'https://img.example/tok.png'},
        {'id': 'bitcoin', 'symbol': 'btc', 'name': 'Bitcoin', 'image': 'https://img.example/btc.png'},
    ]))
    enricher = ImageEnricher(upstream, cache, pages=1)

    out = enricher.merge_images([_listing('XXX', 'nothing', id_='bitcoin')])

    assert out[0].image == 'https://img.example/btc.png'
    assert enricher.image_index().by_symbol_lower['bitcoin'] == 'https://img.example/tok.png'


def test_name_lookup_ignores_an_id_claiming_the_same_key(upstream, cache, fake_session):
    fake_session.add('/coins/markets', respond(200, [
        {'id': 'solana', 'symbol': 'sol', 'name': 'Wrapped Solana', 'image': 'https://img.example/wsol.png'},
        {'id': 'sol-native', 'symbol': 'snat', 'name': 'Solana', 'image': 'https://img.example/sol.png'},
    ]))
    enricher = ImageEnricher(upstream, cache, pages=1)

    out = enricher.merge_images([_listing('YYY', 'Solana', id_=7)])

    assert out[0].image == 'https://img.example/sol.png'
