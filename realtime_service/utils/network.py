"""Client address helpers."""

from __future__ import annotations

import ipaddress

from starlette.requests import HTTPConnection

# Checked in order; the first valid address wins
PROXY_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def _valid_ip(value: str) -> str | None:
    candidate = value.strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def get_client_ip(conn: HTTPConnection, trust_proxy_headers: bool = True) -> str:
    """Extract the client IP address with proxy header support.

    Checks proxy headers in order of preference:
    1. X-Forwarded-For (can contain multiple IPs, takes first)
    2. X-Real-IP
    3. CF-Connecting-IP
    4. conn.client.host (fallback)

    Header values that are not valid IP addresses are ignored.

    Returns:
        Client IP address or "unknown"
    """
    if trust_proxy_headers:
        for header in PROXY_HEADERS:
            value = conn.headers.get(header)
            if not value:
                continue
            ip = _valid_ip(value.split(",")[0])
            if ip:
                return ip

    if conn.client and conn.client.host:
        return conn.client.host

    return "unknown"
