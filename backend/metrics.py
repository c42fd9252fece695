"""Metrics exposition helpers for JSON and Prometheus outputs.

Separated to keep app.py small. Counters are process-local and best-effort.
"""
from __future__ import annotations
import threading
from collections import defaultdict
from typing import Any, Dict


class ProxyMetrics:
    """Counters for upstream calls, classified failures, fallbacks and cache use."""

    def __init__(self):
        self._lock = threading.Lock()
        self.upstream_calls: Dict[str, int] = defaultdict(int)
        self.upstream_errors: Dict[str, int] = defaultdict(int)
        self.fallbacks: Dict[str, int] = defaultdict(int)
        self.static_fallbacks = 0
        self.last_latency_ms: Dict[str, float] = {}

    def observe_call(self, provider: str, latency_ms: float) -> None:
        with self._lock:
            self.upstream_calls[provider] += 1
            self.last_latency_ms[provider] = round(latency_ms, 3)

    def observe_error(self, provider: str, error_class: str) -> None:
        with self._lock:
            self.upstream_errors[f'{provider}:{error_class}'] += 1

    def observe_fallback(self, from_provider: str, to_provider: str) -> None:
        with self._lock:
            self.fallbacks[f'{from_provider}->{to_provider}'] += 1

    def observe_static_fallback(self) -> None:
        with self._lock:
            self.static_fallbacks += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'upstream_calls': dict(self.upstream_calls),
                'upstream_errors': dict(self.upstream_errors),
                'fallbacks': dict(self.fallbacks),
                'static_fallbacks': self.static_fallbacks,
                'last_latency_ms': dict(self.last_latency_ms),
            }


def _label_safe(value: str) -> str:
    return str(value).replace('\\', '\\\\').replace('"', '\\"')


def emit_prometheus(lines: list[str], name: str, value: Any, mtype: str, help_text: str):
    lines.append(f'# HELP {name} {help_text}')
    lines.append(f'# TYPE {name} {mtype}')
    if value is None:
        value = 'NaN'
    lines.append(f'{name} {value}')


def emit_labeled(lines: list[str], name: str, label: str, values: Dict[str, Any], mtype: str, help_text: str):
    lines.append(f'# HELP {name} {help_text}')
    lines.append(f'# TYPE {name} {mtype}')
    for key, value in sorted(values.items()):
        lines.append(f'{name}{{{label}="{_label_safe(key)}"}} {value}')


def render_prometheus(metrics: ProxyMetrics, cache_stats: Dict[str, Any], uptime_seconds: float, errors_5xx: int) -> str:
    snap = metrics.snapshot()
    lines: list[str] = []
    emit_prometheus(lines, 'proxy_uptime_seconds', round(uptime_seconds, 3), 'gauge', 'Seconds since app start')
    emit_prometheus(lines, 'proxy_responses_5xx_total', errors_5xx, 'counter', 'Responses with 5xx status')
    emit_labeled(lines, 'proxy_upstream_calls_total', 'provider', snap['upstream_calls'], 'counter',
                 'Outbound calls per provider')
    emit_labeled(lines, 'proxy_upstream_errors_total', 'provider_error', snap['upstream_errors'], 'counter',
                 'Classified upstream failures')
    emit_labeled(lines, 'proxy_fallbacks_total', 'route', snap['fallbacks'], 'counter',
                 'Provider fallbacks taken')
    emit_prometheus(lines, 'proxy_static_news_fallbacks_total', snap['static_fallbacks'], 'counter',
                    'Static news payloads served')
    emit_prometheus(lines, 'proxy_cache_hits_total', cache_stats.get('hits', 0), 'counter', 'Cache hits')
    emit_prometheus(lines, 'proxy_cache_misses_total', cache_stats.get('misses', 0), 'counter', 'Cache misses')
    emit_prometheus(lines, 'proxy_cache_keys', cache_stats.get('keys', 0), 'gauge', 'Keys held in cache')
    return '\n'.join(lines) + '\n'
