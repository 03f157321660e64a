"""
rates.py
Daily exchange-rate table, cached in the KV store. Rates are "units of
currency per one unit of the base currency".
"""

from __future__ import annotations

from datetime import date

import httpx

import db
from log import get_logger
from models import AppConfig

logger = get_logger(__name__)

RATES_KEY = "exchange_rates"

# Rough CNY-based table used when the rate API has never been reachable.
FALLBACK_RATES = {
    "CNY": 1.0,
    "USD": 0.14,
    "EUR": 0.13,
    "GBP": 0.11,
    "JPY": 21.0,
    "HKD": 1.09,
    "TWD": 4.5,
    "KRW": 190.0,
    "SGD": 0.19,
    "AUD": 0.21,
    "CAD": 0.19,
    "RUB": 12.5,
}


def fallback_rates(base: str) -> dict[str, float]:
    base_rate = FALLBACK_RATES.get(base)
    if not base_rate:
        return {base: 1.0}
    return {code: rate / base_rate for code, rate in FALLBACK_RATES.items()}


def fetch_rates(config: AppConfig, client: httpx.Client | None = None) -> dict[str, float]:
    url = config.exchange_rate_url.format(base=config.base_currency)
    own_client = client is None
    client = client or httpx.Client(timeout=10.0)
    try:
        resp = client.get(url)
        resp.raise_for_status()
        rates = resp.json()["rates"]
    finally:
        if own_client:
            client.close()
    if not isinstance(rates, dict) or not rates:
        raise ValueError("rate response carried no rates")
    return {str(code): float(rate) for code, rate in rates.items()}


def get_rates(config: AppConfig, today: date, client: httpx.Client | None = None) -> dict[str, float]:
    """Today's table for config.base_currency, fetching at most once a day."""
    cached = db.get_blob(RATES_KEY)
    same_base = bool(cached) and cached.get("base") == config.base_currency
    if same_base and cached.get("date") == today.isoformat():
        return cached["rates"]

    try:
        rates = fetch_rates(config, client)
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("exchange_rate_fetch_failed", base=config.base_currency, error=str(exc))
        return cached["rates"] if same_base else fallback_rates(config.base_currency)

    db.put_blob(RATES_KEY, {"date": today.isoformat(), "base": config.base_currency, "rates": rates})
    logger.info("exchange_rates_refreshed", base=config.base_currency, count=len(rates))
    return rates


def convert(amount: float, currency: str, rates: dict[str, float], base: str) -> float:
    """Convert ``amount`` of ``currency`` into the base currency."""
    if currency == base:
        return amount
    rate = rates.get(currency)
    if not rate:
        logger.warning("exchange_rate_missing", currency=currency, base=base)
        return amount
    return amount / rate
