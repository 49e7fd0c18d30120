# backend/splitbuddy/services/exchange_rates.py
from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Dict, Mapping, Optional

import requests

from splitbuddy.domain.money import round_money

logger = logging.getLogger(__name__)

_CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")


class ExchangeRateError(RuntimeError):
    """Raised when rates cannot be fetched or a conversion is impossible."""


def normalize_code(code: str) -> str:
    if not isinstance(code, str) or not _CURRENCY_CODE_RE.match(code.strip().upper()):
        raise ExchangeRateError(f"currency code must be 3 letters, got {code!r}")
    return code.strip().upper()


class ExchangeRateClient:
    """
    Fetches latest rates from ExchangeRate-API (v6, /latest/<base>).

    The HTTP session is injected so callers (and tests) control transport;
    nothing here is shared at module level.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://v6.exchangerate-api.com/v6",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def get_rates(self, base: str = "USD") -> Dict[str, Decimal]:
        """
        Return {code: multiplier} for one unit of `base`.
        """
        base = normalize_code(base)
        if not self.enabled:
            raise ExchangeRateError("EXCHANGE_RATE_API_KEY not configured")

        url = f"{self.base_url}/{self.api_key}/latest/{base}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error("Rate lookup for %s failed: %s", base, e)
            raise ExchangeRateError(f"rate lookup for {base} failed") from e
        except ValueError as e:
            raise ExchangeRateError("rate service returned invalid JSON") from e

        if not isinstance(payload, dict) or payload.get("result") == "error":
            reason = payload.get("error-type", "unknown") if isinstance(payload, dict) else "unknown"
            raise ExchangeRateError(f"rate service error: {reason}")

        raw_rates = payload.get("conversion_rates")
        if not isinstance(raw_rates, dict):
            raise ExchangeRateError("rate service response has no conversion_rates")

        rates: Dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            try:
                rates[str(code)] = Decimal(str(value))
            except InvalidOperation:
                logger.warning("Skipping unparseable rate %r for %s", value, code)
        return rates


def convert(amount: Decimal, rates: Mapping[str, Decimal], target: str) -> Decimal:
    """
    Convert an amount in the rates' base currency by multiplying with the
    target's multiplier.
    """
    target = normalize_code(target)
    if target not in rates:
        raise ExchangeRateError(f"no rate for {target}")
    return round_money(amount * rates[target])
