"""
Currency Normalization
Converts currency-tagged prices into the single reference unit used for comparison
"""
from typing import Mapping, Optional
import logging

logger = logging.getLogger(__name__)

RateTable = Mapping[str, float]


def rate_for(code: Optional[str], rate_table: Optional[RateTable]) -> float:
    """Reference units per one unit of ``code``; unknown or unusable rates fall back to 1."""
    if not code or not rate_table:
        return 1.0
    rate = rate_table.get(code.upper(), rate_table.get(code))
    try:
        rate = float(rate) if rate is not None else None
    except (TypeError, ValueError):
        rate = None
    if rate is None or rate <= 0 or rate != rate:
        return 1.0
    return rate


def has_rate(code: Optional[str], rate_table: Optional[RateTable]) -> bool:
    if not code or not rate_table:
        return False
    return code.upper() in rate_table or code in rate_table


class CurrencyNormalizer:
    """Pure conversions between item currencies and the reference unit"""

    def __init__(self, reference_currency: str = "GEL"):
        self.reference_currency = reference_currency

    @staticmethod
    def normalize(amount: Optional[float], code: Optional[str], rate_table: Optional[RateTable]) -> float:
        """Return ``amount`` expressed in the reference unit."""
        if amount is None:
            return 0.0
        return float(amount) * rate_for(code, rate_table)

    @staticmethod
    def from_reference(amount: float, code: Optional[str], rate_table: Optional[RateTable]) -> float:
        """Convert a reference-unit amount back into ``code``."""
        return float(amount) / rate_for(code, rate_table)
