import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name, default='false'):
    return str(os.environ.get(name, default)).lower() in {'1', 'true', 'yes'}


def _env_list(name, default=''):
    return [x.strip().lower() for x in os.environ.get(name, default).split(',') if x.strip()]


# Dynamic Configuration with Environment Variables and Defaults
CONFIG = {
    'PORT': int(os.environ.get('PORT', 3001)),  # Default port
    'HOST': os.environ.get('HOST', '0.0.0.0'),  # Default host
    'DEBUG': _env_bool('DEBUG'),  # Debug mode
    'VERSION': os.environ.get('APP_VERSION', '1.0.0'),
    # Provider credentials / initial selection (mutable copies live in ConfigStore)
    'CMC_API_KEY': os.environ.get('CMC_API_KEY', ''),
    'PRICE_PROVIDER': os.environ.get('PRICE_PROVIDER', 'coingecko'),
    'PRICE_API_KEY': os.environ.get('PRICE_API_KEY', ''),
    'NEWS_PROVIDER': os.environ.get('NEWS_PROVIDER', 'cryptocompare'),
    'NEWS_API_KEY': os.environ.get('NEWS_API_KEY', ''),  # CryptoCompare / custom URL key
    'NEWSAPI_KEY': os.environ.get('NEWSAPI_KEY', ''),  # newsapi.org key
    'CUSTOM_NEWS_URL': os.environ.get('CUSTOM_NEWS_URL', ''),
    # Per-call upstream timeouts in seconds (no request-level deadline)
    'COINGECKO_TIMEOUT': float(os.environ.get('COINGECKO_TIMEOUT', 10)),
    'CRYPTOCOMPARE_TIMEOUT': float(os.environ.get('CRYPTOCOMPARE_TIMEOUT', 10)),
    'CMC_TIMEOUT': float(os.environ.get('CMC_TIMEOUT', 10)),
    'NEWSAPI_TIMEOUT': float(os.environ.get('NEWSAPI_TIMEOUT', 10)),
    'CUSTOM_NEWS_TIMEOUT': float(os.environ.get('CUSTOM_NEWS_TIMEOUT', 8)),
    'JUPITER_TIMEOUT': float(os.environ.get('JUPITER_TIMEOUT', 15)),
    # Cache windows in seconds
    'NEWS_CACHE_SECONDS': int(os.environ.get('NEWS_CACHE_SECONDS', 120)),  # 2 minutes
    'IMAGE_CACHE_SECONDS': int(os.environ.get('IMAGE_CACHE_SECONDS', 300)),  # 5 minutes
    'TOKEN_LIST_CACHE_SECONDS': int(os.environ.get('TOKEN_LIST_CACHE_SECONDS', 3600)),  # 60 minutes
    # Image enrichment pagination (CoinGecko markets, 250 per page)
    'IMAGE_PAGES': int(os.environ.get('IMAGE_PAGES', 3)),
    # Topics hidden from the general ("all") news wire
    'NEWS_ALL_EXCLUDE_TERMS': _env_list('NEWS_ALL_EXCLUDE_TERMS', 'solana'),
    'FIXTURE_DIR': os.environ.get('FIXTURE_DIR', os.path.join(os.path.dirname(__file__), 'fixtures')),
}

_SECRET_KEYS = {'CMC_API_KEY', 'PRICE_API_KEY', 'NEWS_API_KEY', 'NEWSAPI_KEY'}


def mask_secret(value):
    """Show only the last 4 chars of a credential."""
    if not value:
        return ''
    value = str(value)
    if len(value) <= 4:
        return '****'
    return '****' + value[-4:]


def public_config(config=None):
    """Copy of CONFIG safe to log or return over HTTP."""
    config = CONFIG if config is None else config
    return {k: (mask_secret(v) if k in _SECRET_KEYS else v) for k, v in config.items()}
