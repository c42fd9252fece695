import os
import argparse
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from flask import Flask, jsonify, request, g, Response
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import CONFIG
from logging_config import REQUEST_ID_CTX, setup_logging
from logging_config import log_config as log_config_with_param
from cache import CachePolicy, TTLCache, iso_now
from coin_data import CoinDataService
from errors import ProviderError
from fallback import MarketDataService
from images import ImageEnricher
from market_api import market_bp
from metrics import ProxyMetrics, render_prometheus
from news import NewsService
from provider_config import ConfigStore
from pyd_schemas import HealthResponse
from upstream import UpstreamClient
from utils import find_available_port

logger = logging.getLogger(__name__)

API_NAME = 'CoinMarketCap Pro (with CoinGecko fallback)'


@dataclass
class ProxyServices:
    """Everything a request handler needs, built once per app."""
    store: ConfigStore
    cache: TTLCache
    upstream: UpstreamClient
    metrics: ProxyMetrics
    market: MarketDataService
    news: NewsService
    images: ImageEnricher
    coins: CoinDataService
    started_at: float = field(default_factory=time.time)
    error_stats: dict = field(default_factory=lambda: {'5xx': 0})


def build_services(config=None, store=None, upstream=None, cache=None) -> ProxyServices:
    config = CONFIG if config is None else config
    cache = cache if cache is not None else TTLCache()
    policy = CachePolicy.from_config(config)
    if upstream is None:
        metrics = ProxyMetrics()
        upstream = UpstreamClient(config=config, metrics=metrics)
    else:
        if upstream.metrics is None:
            upstream.metrics = ProxyMetrics()
        metrics = upstream.metrics
    if store is None:
        store = ConfigStore.from_config(config, cache)
    else:
        store.bind_cache(cache)
    images = ImageEnricher(upstream, cache, ttl=policy.image_seconds, pages=int(config.get('IMAGE_PAGES', 3)))
    return ProxyServices(
        store=store,
        cache=cache,
        upstream=upstream,
        metrics=metrics,
        market=MarketDataService(store, upstream, images=images, metrics=metrics),
        news=NewsService(
            store, upstream, cache,
            ttl=policy.news_seconds,
            exclude_terms=config.get('NEWS_ALL_EXCLUDE_TERMS', ('solana',)),
            fixture_dir=config.get('FIXTURE_DIR'),
            metrics=metrics,
        ),
        images=images,
        coins=CoinDataService(upstream, cache, token_ttl=policy.token_list_seconds),
    )


def create_app(store=None, upstream=None, cache=None, config=None):
    """Application factory; tests inject their own store / upstream / cache."""
    config = CONFIG if config is None else config
    services = build_services(config, store=store, upstream=upstream, cache=cache)

    app = Flask(__name__)
    app.extensions['market_proxy'] = services

    # Configure allowed CORS origins from environment
    cors_env = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    if cors_env == '*':
        cors_origins = '*'
    else:
        cors_origins = [origin.strip() for origin in cors_env.split(',') if origin.strip()]
    CORS(app, origins=cors_origins)

    app.register_blueprint(market_bp)

    @app.before_request
    def _before_req():
        g._start_time = time.time()
        g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex
        REQUEST_ID_CTX.set(g.request_id)

    @app.after_request
    def _after_req(resp):
        if 500 <= resp.status_code < 600:
            services.error_stats['5xx'] += 1
        rid = getattr(g, 'request_id', None)
        if rid:
            resp.headers['X-Request-ID'] = rid
        started = getattr(g, '_start_time', None)
        if started is not None:
            logger.debug('%s %s -> %s (%.1fms)', request.method, request.path, resp.status_code,
                         (time.time() - started) * 1000.0)
        return resp

    @app.teardown_request
    def _teardown_req(_exc=None):
        REQUEST_ID_CTX.set(None)

    @app.errorhandler(ProviderError)
    def _provider_error(exc):
        logger.warning('request.provider_error', extra={
            'event': 'provider_error', 'provider': exc.provider, 'error_class': type(exc).__name__,
            'status': exc.http_status, 'path': request.path,
        })
        return jsonify(exc.to_payload()), exc.http_status

    @app.errorhandler(Exception)
    def _unexpected_error(exc):
        if isinstance(exc, HTTPException):
            return jsonify({'error': exc.name, 'message': exc.description}), exc.code
        logger.exception('request.unhandled %s', request.path)
        return jsonify({'error': 'Server error', 'message': str(exc) or type(exc).__name__}), 500

    @app.route('/api/health')
    def api_health():
        """Liveness only; never touches a provider."""
        body = HealthResponse(
            status='OK',
            timestamp=iso_now(),
            api=API_NAME,
            version=str(config.get('VERSION', '1.0.0')),
            uptime_seconds=round(time.time() - services.started_at, 2),
            errors_5xx=services.error_stats['5xx'],
        )
        return jsonify(body.model_dump())

    @app.route('/api/metrics')
    def metrics_json():
        return jsonify({
            'ok': True,
            'uptime_seconds': round(time.time() - services.started_at, 2),
            'errors_5xx': services.error_stats['5xx'],
            'upstream': services.metrics.snapshot(),
            'cache': services.cache.stats(),
        })

    @app.route('/metrics.prom')
    def metrics_prom():
        """Text exposition without prometheus_client."""
        text = render_prometheus(
            services.metrics,
            services.cache.stats(),
            time.time() - services.started_at,
            services.error_stats['5xx'],
        )
        return Response(text, mimetype='text/plain; version=0.0.4')

    return app


app = create_app()


def parse_arguments():
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Market data proxy backend')
    parser.add_argument('--port', type=int, help='Port to run the server on')
    parser.add_argument('--host', type=str, help='Host to bind the server to')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--auto-port', action='store_true', help='Automatically find available port')
    return parser.parse_args()


def main(argv_args: Optional[argparse.Namespace] = None):
    args = argv_args or parse_arguments()
    setup_logging()
    log_config_with_param(CONFIG)
    host = args.host or CONFIG.get('HOST', '0.0.0.0')
    port = args.port or int(CONFIG.get('PORT', 3001))
    if args.auto_port:
        port = find_available_port(port)
    logging.info(f"Market proxy listening on {host}:{port}")
    app.run(host=host, port=port, debug=bool(args.debug or CONFIG.get('DEBUG')), threaded=True)


if __name__ == "__main__":
    main()
