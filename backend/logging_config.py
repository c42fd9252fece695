import logging, json, os
from logging.handlers import RotatingFileHandler
from contextvars import ContextVar

# Context variable for per-request correlation id
REQUEST_ID_CTX: ContextVar[str | None] = ContextVar('request_id', default=None)

# File logging is opt-in: set LOG_FILE (or LOG_DIR) to enable the rotating handler
LOG_DIR = os.environ.get('LOG_DIR', '')
LOG_FILE = os.environ.get('LOG_FILE') or (os.path.join(LOG_DIR, 'proxy.log') if LOG_DIR else '')

# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime', 'correlation_id'}


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        # Attach even if None for uniformity
        record.correlation_id = REQUEST_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': record.levelname,
            'msg': record.getMessage(),
            'logger': record.name,
            'correlation_id': getattr(record, 'correlation_id', None),
        }
        # Structured fields passed via extra={'event': ..., 'provider': ...}
        for key, value in vars(record).items():
            if key not in _RESERVED and key not in base:
                base[key] = value
        if record.exc_info:
            base['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def setup_logging(level=None):
    root = logging.getLogger()
    root.setLevel(level or os.environ.get('LOG_LEVEL', 'INFO').upper())
    # Clear existing handlers to avoid duplicate logs in reloads
    root.handlers = []
    use_json = os.environ.get('LOG_FORMAT', '').lower() == 'json'
    if use_json:
        fmt = JsonFormatter()
    else:
        fmt = logging.Formatter('%(asctime)s - %(levelname)s - %(correlation_id)s - %(name)s - %(message)s')
    # Console handler
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.addFilter(CorrelationIdFilter())
    root.addHandler(ch)
    if not LOG_FILE:
        return
    # Rotating file handler (5 MB, keep 3 backups)
    try:
        os.makedirs(os.path.dirname(LOG_FILE) or '.', exist_ok=True)
        fh = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3)
    except OSError as exc:
        root.warning('Could not attach rotating file handler (%s); continuing with console only', exc)
        return
    fh.setFormatter(fmt)
    fh.addFilter(CorrelationIdFilter())
    root.addHandler(fh)


def log_config(config):
    """Log current configuration with credentials masked"""
    from config import public_config

    logging.info("=== Market Proxy Configuration ===")
    for key, value in public_config(config).items():
        logging.info(f"{key}: {value}")
    logging.info("==================================")
