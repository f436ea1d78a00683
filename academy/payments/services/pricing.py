"""
Token pricing and fee math.

Prices come from CoinGecko for tokens configured with the `coingecko` oracle
and are cached for `TOKEN_PRICE_CACHE_SECONDS`. Every failure falls back to
the token's fixed USD price so checkout keeps working when the oracle is down.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Dict

import requests
from django.conf import settings
from django.core.cache import cache

from ..models import PaymentToken

logger = logging.getLogger(__name__)

ORACLE_TIMEOUT_SECONDS = 5


def _price_cache_key(coingecko_id: str) -> str:
    return f"token-price:{coingecko_id}"


def _fetch_coingecko_price(coingecko_id: str) -> Decimal:
    response = requests.get(
        f"{settings.COINGECKO_API_URL.rstrip('/')}/simple/price",
        params={"ids": coingecko_id, "vs_currencies": "usd"},
        timeout=ORACLE_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    price = response.json().get(coingecko_id, {}).get("usd")
    if price is None:
        raise ValueError(f"No USD price returned for {coingecko_id}")
    return Decimal(str(price))


def token_price_usd(token: PaymentToken) -> Decimal:
    """Current USD price of one whole token."""
    fallback = token.fixed_usd_price or Decimal("1.0")

    if token.is_stablecoin:
        return fallback
    if token.price_oracle_type != PaymentToken.PriceOracle.COINGECKO or not token.coingecko_id:
        return fallback

    cache_key = _price_cache_key(token.coingecko_id)
    cached = cache.get(cache_key)
    if cached is not None:
        return Decimal(cached)

    try:
        price = _fetch_coingecko_price(token.coingecko_id)
    except (requests.RequestException, ValueError) as exc:
        logger.warning(
            "Price oracle failed for %s (%s), using fixed price %s",
            token.symbol,
            exc,
            fallback,
        )
        return fallback

    cache.set(cache_key, str(price), timeout=settings.TOKEN_PRICE_CACHE_SECONDS)
    return price


def token_amount(usd_amount: Decimal, token_price: Decimal, decimals: int) -> int:
    """USD amount converted to integer base units of the token."""
    if token_price <= 0:
        raise ValueError("Token price must be positive")
    with localcontext() as ctx:
        ctx.prec = 78
        whole_tokens = (Decimal(usd_amount) / Decimal(token_price)).quantize(
            Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP
        )
        return int(whole_tokens.scaleb(decimals))


def token_units_to_usd(amount_in_token, token_price: Decimal, decimals: int) -> Decimal:
    value = Decimal(int(amount_in_token)).scaleb(-decimals) * Decimal(token_price)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def split_fees(amount: int, platform_pct: int, revenue_split_pct: int) -> Dict[str, int]:
    """
    Split a base-unit amount between platform and instructor. The revenue
    split is carved out of the platform share.
    """
    amount = int(amount)
    platform = amount * int(platform_pct) // 100
    return {
        "platform_amount": platform,
        "instructor_amount": amount - platform,
        "revenue_split_amount": platform * int(revenue_split_pct) // 100,
    }
