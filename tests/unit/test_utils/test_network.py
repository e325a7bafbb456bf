"""Tests for client address extraction."""

from __future__ import annotations

import pytest
from starlette.requests import Request

from realtime_service.utils.network import get_client_ip


def make_request(headers: dict[str, str] | None = None, client=("192.0.2.10", 50000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientIp:
    def test_falls_back_to_peer(self):
        assert get_client_ip(make_request()) == "192.0.2.10"

    def test_first_forwarded_address(self):
        request = make_request({"X-Forwarded-For": "203.0.113.5, 10.0.0.1"})

        assert get_client_ip(request) == "203.0.113.5"

    @pytest.mark.parametrize("header", ["X-Real-IP", "CF-Connecting-IP"])
    def test_other_proxy_headers(self, header):
        assert get_client_ip(make_request({header: "2001:db8::1"})) == "2001:db8::1"

    def test_invalid_header_ignored(self):
        request = make_request({"X-Forwarded-For": "not-an-ip", "X-Real-IP": "203.0.113.9"})

        assert get_client_ip(request) == "203.0.113.9"

    def test_headers_ignored_when_untrusted(self):
        request = make_request({"X-Forwarded-For": "203.0.113.5"})

        assert get_client_ip(request, trust_proxy_headers=False) == "192.0.2.10"

    def test_unknown_without_client(self):
        assert get_client_ip(make_request(client=None)) == "unknown"
