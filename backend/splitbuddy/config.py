from __future__ import annotations

import os
from decimal import Decimal


class Config:
    DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
    EXCHANGE_RATE_API_KEY = os.getenv("EXCHANGE_RATE_API_KEY", "").strip()
    EXCHANGE_RATE_API_URL = os.getenv("EXCHANGE_RATE_API_URL", "https://v6.exchangerate-api.com/v6")
    EXCHANGE_RATE_TIMEOUT = float(os.getenv("EXCHANGE_RATE_TIMEOUT", "10"))
    CONSISTENCY_TOLERANCE = Decimal(os.getenv("CONSISTENCY_TOLERANCE", "0.01"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
