import logging
import socket


def find_available_port(start_port=3001, max_attempts=10):
    """Find an available port starting from start_port"""
    for port in range(start_port, start_port + max_attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind(('0.0.0.0', port))
                return port
            except OSError:
                logging.warning(f"Port {port} is in use, trying next...")
                continue
    raise RuntimeError("No available ports found")


def parse_symbols(raw):
    """'btc, eth,,SOL' -> ['BTC', 'ETH', 'SOL'] (order kept, duplicates dropped)."""
    out = []
    for part in (raw or '').split(','):
        sym = part.strip().upper()
        if sym and sym not in out:
            out.append(sym)
    return out
