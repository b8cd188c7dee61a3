"""Currency conversion for African local currencies."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

import httpx

from fundflow.config import get_settings
from fundflow.utils.errors import InvalidInput, NotFound
from fundflow.utils.time import utcnow

logger = logging.getLogger(__name__)

PIVOT_CURRENCY = "USD"
CONVERTED_AMOUNT_QUANT = Decimal("0.000001")

# Indicative rates of one unit of local currency.
AFRICAN_CURRENCY_RATES: dict[str, dict[str, Decimal]] = {
    "KES": {"USD": Decimal("0.0062"), "ETH": Decimal("0.0000028")},
    "NGN": {"USD": Decimal("0.0012"), "ETH": Decimal("0.0000005")},
    "GHS": {"USD": Decimal("0.065"), "ETH": Decimal("0.000029")},
    "ZAR": {"USD": Decimal("0.053"), "ETH": Decimal("0.000024")},
    "UGX": {"USD": Decimal("0.00027"), "ETH": Decimal("0.00000012")},
    "TZS": {"USD": Decimal("0.00043"), "ETH": Decimal("0.00000019")},
    "XOF": {"USD": Decimal("0.0016"), "ETH": Decimal("0.0000007")},
    "MAD": {"USD": Decimal("0.097"), "ETH": Decimal("0.000044")},
}


@dataclass(frozen=True)
class Conversion:
    source: str
    target: str
    amount: Decimal
    converted_amount: Decimal
    rate: Decimal
    timestamp: datetime


def _usd_rate(code: str) -> Decimal | None:
    if code == PIVOT_CURRENCY:
        return Decimal("1")
    rates = AFRICAN_CURRENCY_RATES.get(code)
    return rates.get(PIVOT_CURRENCY) if rates else None


def static_rate(source: str, target: str) -> Decimal | None:
    """Return the rate from the static table, pivoting through USD when needed."""

    source = source.upper()
    target = target.upper()
    if source == target:
        return Decimal("1")

    direct = AFRICAN_CURRENCY_RATES.get(source, {}).get(target)
    if direct is not None:
        return direct

    source_usd = _usd_rate(source)
    target_usd = _usd_rate(target)
    if source_usd is None or target_usd is None:
        return None
    return source_usd / target_usd


def fetch_external_rate(source: str, target: str) -> Decimal | None:
    """Look the pair up on the external rate API; ``None`` when unavailable."""

    settings = get_settings()
    if not settings.CURRENCY_API_KEY:
        logger.info("External currency API not configured", extra={"source": source, "target": target})
        return None

    url = f"{settings.CURRENCY_API_URL.rstrip('/')}/{source}"
    try:
        response = httpx.get(
            url,
            params={"access_key": settings.CURRENCY_API_KEY},
            timeout=settings.CURRENCY_API_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        rate = (response.json().get("rates") or {}).get(target)
    except (httpx.HTTPError, ValueError):
        logger.warning("External exchange rate lookup failed", exc_info=True, extra={"source": source})
        return None

    if rate is None:
        return None
    try:
        return Decimal(str(rate))
    except InvalidOperation:
        logger.warning("External exchange rate is not numeric", extra={"source": source, "target": target})
        return None


def get_rate(source: str, target: str) -> Decimal:
    source = source.upper()
    target = target.upper()
    rate = static_rate(source, target)
    if rate is None:
        rate = fetch_external_rate(source, target)
    if rate is None:
        raise NotFound(
            f"Conversion rate not available for {source} to {target}",
            code="CONVERSION_RATE_UNAVAILABLE",
            details={"from": source, "to": target},
        )
    return rate


def convert(source: str, target: str, amount: Decimal) -> Conversion:
    """Convert ``amount`` of ``source`` into ``target`` rounded to 6 decimal places."""

    if not source or not target:
        raise InvalidInput("Both source and target currencies are required.")
    if amount is None or amount <= 0:
        raise InvalidInput("Amount must be positive.", details={"amount": str(amount)})

    rate = get_rate(source, target)
    converted = (Decimal(amount) * rate).quantize(CONVERTED_AMOUNT_QUANT)
    return Conversion(
        source=source.upper(),
        target=target.upper(),
        amount=Decimal(amount),
        converted_amount=converted,
        rate=rate,
        timestamp=utcnow(),
    )


__all__ = [
    "AFRICAN_CURRENCY_RATES",
    "Conversion",
    "PIVOT_CURRENCY",
    "convert",
    "fetch_external_rate",
    "get_rate",
    "static_rate",
]
