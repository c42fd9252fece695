"""Outbound HTTP to market-data providers with failure classification.

All upstream traffic goes through ``UpstreamClient.get_json`` so there is one
place that turns transport errors and status codes into the typed errors in
``errors.py``. No automatic retries here: moving on to another provider is
the orchestrator's decision.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import RequestException, Timeout

from errors import (
    AuthError,
    ProviderError,
    RateLimited,
    ServerError,
    UnreachableHost,
    UpstreamTimeout,
    retry_hint,
    settings_hint,
)
from providers import ProviderSpec

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'Accept': 'application/json',
    'Accept-Encoding': 'deflate, gzip',
}


def build_session() -> requests.Session:
    session = requests.Session()
    # Increase the adapter pool so bursty dashboards do not exhaust urllib3's
    # default (10) connection pool; retries stay at zero.
    adapter = HTTPAdapter(
        pool_connections=int(os.environ.get('UPSTREAM_POOL_CONNECTIONS', '16')),
        pool_maxsize=int(os.environ.get('UPSTREAM_POOL_MAXSIZE', '32')),
        max_retries=0,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    session.headers.update(DEFAULT_HEADERS)
    return session


def _safe_json(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _upstream_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        status = body.get('status')
        if isinstance(status, dict) and status.get('error_message'):
            return str(status['error_message'])
        for key in ('message', 'error', 'Message'):
            if body.get(key):
                return str(body[key])
    return None


class UpstreamClient:
    """Thin wrapper over ``requests.Session`` that raises typed provider errors."""

    def __init__(self, session: Optional[requests.Session] = None, config: Optional[dict] = None, metrics=None):
        self.session = session or build_session()
        self.config = config or {}
        self.metrics = metrics

    def get_json(
        self,
        spec: ProviderSpec,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        provider_name: Optional[str] = None,
    ) -> Any:
        name = provider_name or spec.display_name
        hint = spec.settings_hint
        timeout = spec.timeout(self.config) if timeout is None else timeout
        started = time.time()
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=timeout)
        except Timeout as exc:
            self._record(spec, started, 'UpstreamTimeout')
            raise UpstreamTimeout(spec.id, f"{name} did not respond within {timeout:g}s. {retry_hint(hint)}") from exc
        except RequestsConnectionError as exc:
            self._record(spec, started, 'UnreachableHost')
            raise UnreachableHost(spec.id, f"{name} is unreachable ({exc}). {settings_hint(hint)}") from exc
        except RequestException as exc:
            self._record(spec, started, 'ProviderError')
            raise ProviderError(spec.id, f"{name} request failed ({exc}). {retry_hint(hint)}") from exc

        status = resp.status_code
        body = _safe_json(resp)
        if status in (401, 403):
            self._record(spec, started, 'AuthError')
            raise AuthError(
                spec.id,
                f"Your {name} API key is invalid. Please check your key in {hint}",
                status_code=status, body=body,
            )
        if status == 429:
            self._record(spec, started, 'RateLimited')
            raise RateLimited(spec.id, f"{name} rate limit exceeded. {retry_hint(hint)}",
                              status_code=status, body=body)
        if status >= 500:
            self._record(spec, started, 'ServerError')
            raise ServerError(spec.id, f"{name} server error (HTTP {status}). {retry_hint(hint)}",
                              status_code=status, body=body)
        if status >= 400:
            self._record(spec, started, 'ProviderError')
            detail = _upstream_message(body) or f"HTTP {status}"
            raise ProviderError(spec.id, f"{name} error: {detail}. {settings_hint(hint)}",
                                status_code=status, body=body)
        if body is None:
            self._record(spec, started, 'ProviderError')
            raise ProviderError(spec.id, f"{name} returned a non-JSON response. {settings_hint(hint)}",
                                status_code=status)

        self._record(spec, started, None)
        return body

    def _record(self, spec: ProviderSpec, started: float, error_class: Optional[str]) -> None:
        latency_ms = (time.time() - started) * 1000.0
        if error_class:
            logger.warning('upstream.error', extra={
                'event': 'upstream_error', 'provider': spec.id, 'error_class': error_class,
                'latency_ms': round(latency_ms, 1),
            })
        else:
            logger.debug('upstream.ok %s %.1fms', spec.id, latency_ms)
        if self.metrics is not None:
            self.metrics.observe_call(spec.id, latency_ms)
            if error_class:
                self.metrics.observe_error(spec.id, error_class)


__all__ = ['UpstreamClient', 'build_session']
