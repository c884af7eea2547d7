"""
tests/test_price_feed.py — USD Price Feed Tests
================================================
"""

from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from launchpad.clients.price_feed import NATIVE_PLACEHOLDER, PriceFeedClient
from launchpad.errors import ErrorCode, LaunchpadError

WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"
USDT = "0x55d398326f99059fF775485246999027B3197955"


def _feed(handler, **kwargs) -> PriceFeedClient:
    return PriceFeedClient(56, http=httpx.Client(transport=httpx.MockTransport(handler)), **kwargs)


def test_reads_first_pair_price():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(200, json=[
            {"chainId": "bsc", "priceUsd": "1.0002"},
            {"chainId": "bsc", "priceUsd": "0.9"},
        ])

    assert _feed(handler).fetch_token_price_usd(USDT) == Decimal("1.0002")
    assert seen["path"] == f"/tokens/v1/bsc/{USDT}"


def test_native_placeholder_uses_wrapped_token():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(200, json=[{"chainId": "bsc", "priceUsd": "600"}])

    feed = _feed(handler, wrapped_native=WBNB)
    assert feed.fetch_token_price_usd(NATIVE_PLACEHOLDER) == Decimal("600")
    assert seen["path"].endswith(WBNB)


@pytest.mark.parametrize("body", [[], [{"chainId": "bsc"}], [{"chainId": "bsc", "priceUsd": "0"}]])
def test_missing_price_is_none(body):
    assert _feed(lambda request: httpx.Response(200, json=body)).fetch_token_price_usd(USDT) is None


def test_throttled():
    with pytest.raises(LaunchpadError) as exc_info:
        _feed(lambda request: httpx.Response(429)).fetch_token_price_usd(USDT)
    assert exc_info.value.code == ErrorCode.RATE_LIMITED


def test_server_error():
    with pytest.raises(LaunchpadError) as exc_info:
        _feed(lambda request: httpx.Response(502)).fetch_token_price_usd(USDT)
    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR


def test_malformed_payload():
    with pytest.raises(LaunchpadError) as exc_info:
        _feed(lambda request: httpx.Response(200, json={"pairs": None})).fetch_token_price_usd(USDT)
    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR


def test_transport_failure():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(LaunchpadError) as exc_info:
        _feed(handler).fetch_token_price_usd(USDT)
    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
