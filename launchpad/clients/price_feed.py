"""
launchpad.clients.price_feed — USD Price Feed
==============================================

Thin reader over the DexScreener token endpoint used to refresh
``asset_tokens.price_usd``.  A missing or zero price is reported as
``None`` so callers keep the last known value instead of zeroing it.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

import httpx
from pydantic import BaseModel, ValidationError

from launchpad.constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from launchpad.errors import ErrorCode, LaunchpadError

logger = logging.getLogger(__name__)

DEXSCREENER_API = "https://api.dexscreener.com"

# Placeholder address wallets use for the chain's native coin
NATIVE_PLACEHOLDER = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

CHAIN_SLUGS: dict[int, str] = {
    1: "ethereum",
    56: "bsc",
    8453: "base",
    11155111: "sepolia",
}


class _TokenPair(BaseModel):
    chainId: str
    priceUsd: str | None = None


class PriceFeedClient:
    def __init__(
        self,
        chain_id: int,
        *,
        wrapped_native: str | None = None,
        base_url: str = DEXSCREENER_API,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        http: httpx.Client | None = None,
    ) -> None:
        self.chain_slug = CHAIN_SLUGS.get(chain_id, "bsc")
        self.wrapped_native = wrapped_native
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def fetch_token_price_usd(self, token_address: str) -> Decimal | None:
        """USD price of *token_address*, or None if the feed has none.

        Raises
        ------
        LaunchpadError
            ``INTERNAL_ERROR`` on transport failures, non-2xx responses or
            malformed payloads.
        """
        address = token_address
        if address.lower() == NATIVE_PLACEHOLDER and self.wrapped_native:
            address = self.wrapped_native

        url = f"{self.base_url}/tokens/v1/{self.chain_slug}/{address}"
        try:
            response = self._http.get(url)
        except httpx.HTTPError as exc:
            raise LaunchpadError(ErrorCode.INTERNAL_ERROR, f"Price feed unreachable for {address}", exc)
        if response.status_code == 429:
            raise LaunchpadError(ErrorCode.RATE_LIMITED, "Price feed throttled")
        if response.status_code >= 400:
            raise LaunchpadError(
                ErrorCode.INTERNAL_ERROR,
                f"Price feed returned {response.status_code} for {address}",
            )

        try:
            pairs = [_TokenPair.model_validate(p) for p in response.json()]
        except (ValidationError, TypeError, ValueError) as exc:
            raise LaunchpadError(ErrorCode.INTERNAL_ERROR, "Invalid price feed response", exc)

        if not pairs or not pairs[0].priceUsd:
            logger.warning("No USD price for %s on %s", address, self.chain_slug)
            return None
        try:
            price = Decimal(pairs[0].priceUsd)
        except InvalidOperation:
            logger.warning("Unparseable USD price %r for %s", pairs[0].priceUsd, address)
            return None
        return price if price > 0 else None
