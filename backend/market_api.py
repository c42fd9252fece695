"""HTTP surface for listings, quotes, news, settings and coin lookups."""
from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from cache import iso_now
from errors import InvalidCustomUrl, InvalidRequest, UnknownProvider
from providers import NEWS, PRICE
from pyd_schemas import ListingsStatus, NewsKeyRequest, PriceKeyRequest, dump_articles, dump_listings
from utils import parse_symbols

logger = logging.getLogger(__name__)

market_bp = Blueprint('market_bp', __name__)

_TRUTHY = {'1', 'true', 'yes'}


def _services():
    return current_app.extensions['market_proxy']


def _int_arg(name: str, default: int, minimum: int = 1, maximum: int = 5000) -> int:
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidRequest(f"Query parameter '{name}' must be an integer") from None
    if value < minimum or value > maximum:
        raise InvalidRequest(f"Query parameter '{name}' must be between {minimum} and {maximum}")
    return value


def _flag(name: str) -> bool:
    return (request.args.get(name) or '').strip().lower() in _TRUTHY


def _status(result) -> dict:
    return ListingsStatus(
        timestamp=iso_now(),
        elapsed=result.elapsed_ms,
        notice=result.notice,
        provider=result.provider,
        fallback_used=result.fallback_used,
    ).model_dump()


def _json_body(model):
    try:
        return model.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        raise InvalidRequest(f'Invalid request body: {exc.errors()[0].get("msg")}') from exc


# ---------------------------------------------------------------- market data

@market_bp.route('/api/cmc/listings', methods=['GET'])
def cmc_listings():
    start = _int_arg('start', 1)
    limit = _int_arg('limit', 100)
    result = _services().market.get_listings(
        provider=request.args.get('provider') or None,
        currency=request.args.get('convert') or 'USD',
        start=start,
        limit=limit,
    )
    return jsonify({'status': _status(result), 'data': dump_listings(result.data)})


@market_bp.route('/api/cmc/quotes', methods=['GET'])
def cmc_quotes():
    symbols = parse_symbols(request.args.get('symbol'))
    if not symbols:
        raise InvalidRequest('Symbol parameter is required')
    result = _services().market.get_quotes(
        symbols,
        currency=request.args.get('convert') or 'USD',
        provider=request.args.get('provider') or None,
    )
    data = {sym: listing.model_dump() for sym, listing in result.data.items()}
    return jsonify({'status': _status(result), 'data': data})


# ---------------------------------------------------------------- news

@market_bp.route('/api/news', methods=['GET'])
def news_feed():
    articles = _services().news.get_news(
        provider=request.args.get('provider') or None,
        force_refresh=_flag('refresh'),
        chain=request.args.get('chain') or None,
    )
    return jsonify({'Data': dump_articles(articles)})


@market_bp.route('/api/news/solana', methods=['GET'])
def news_solana():
    articles = _services().news.get_solana_news(force_refresh=_flag('refresh'))
    return jsonify({'Data': dump_articles(articles)})


# ---------------------------------------------------------------- settings

@market_bp.route('/api/price-key', methods=['POST'])
def price_key():
    body = _json_body(PriceKeyRequest)
    try:
        _services().store.update_provider_config(PRICE, body.provider, credential=body.api_key)
    except UnknownProvider as exc:
        # Always 200; the previous config stays active
        logger.info('settings.price_provider_rejected', extra={'event': 'price_provider_rejected'})
        return jsonify({'success': False, **exc.to_payload()})
    return jsonify({'success': True, 'message': 'Price provider settings updated'})


@market_bp.route('/api/news-key', methods=['POST'])
def news_key():
    body = _json_body(NewsKeyRequest)
    try:
        _services().store.update_provider_config(
            NEWS, body.provider, credential=body.api_key, custom_url=body.custom_url)
    except InvalidCustomUrl as exc:
        logger.info('settings.custom_url_rejected', extra={'event': 'custom_url_rejected'})
        return jsonify({'success': False, **exc.to_payload()}), exc.http_status
    return jsonify({'success': True, 'message': 'News settings updated'})


@market_bp.route('/api/config', methods=['GET'])
def provider_settings():
    return jsonify(_services().store.snapshot())


# ---------------------------------------------------------------- coins / tokens

@market_bp.route('/api/coin/detail', methods=['GET'])
def coin_detail():
    data = _services().coins.get_coin_detail(
        coin_id=request.args.get('id') or None, symbol=request.args.get('symbol') or None)
    return jsonify(data)


@market_bp.route('/api/coin/market', methods=['GET'])
def coin_market():
    data = _services().coins.get_coin_market(
        coin_id=request.args.get('id') or None,
        symbol=request.args.get('symbol') or None,
        currency=request.args.get('convert') or 'usd',
    )
    return jsonify(data)


@market_bp.route('/api/solana/tokens', methods=['GET'])
def solana_tokens():
    tokens = _services().coins.get_token_list(force_refresh=_flag('refresh'))
    return jsonify({'tokens': tokens, 'count': len(tokens)})
