# palmai_core/pricing.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from palmai_core.settings import settings


@dataclass(frozen=True)
class Price:
    amount: int          # minor units (paise / cents)
    currency: str


def normalize_country(country: Optional[str]) -> str:
    return (country or settings.HOME_COUNTRY).strip().upper() or settings.HOME_COUNTRY


def price_for_country(country: Optional[str]) -> Price:
    """Two price points: the home country pays in its currency, everyone else the default."""
    if normalize_country(country) == settings.HOME_COUNTRY.upper():
        return Price(settings.HOME_PRICE, settings.HOME_CURRENCY.upper())
    return Price(settings.DEFAULT_PRICE, settings.DEFAULT_CURRENCY.upper())


def format_minor(amount: int, currency: str) -> str:
    symbol = {"INR": "₹", "USD": "$"}.get(currency.upper(), currency.upper() + " ")
    return f"{symbol}{amount / 100:,.2f}"
