import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.currency import CurrencyNormalizer, has_rate, rate_for

RATES = {"GEL": 1.0, "USD": 2.7, "EUR": 2.9, "BROKEN": 0}


def test_normalize_applies_rate():
    assert CurrencyNormalizer.normalize(10, "USD", RATES) == pytest.approx(27.0)
    assert CurrencyNormalizer.normalize(10, "usd", RATES) == pytest.approx(27.0)


def test_normalize_unknown_or_unusable_rate_uses_multiplier_one():
    assert CurrencyNormalizer.normalize(10, "JPY", RATES) == 10.0
    assert CurrencyNormalizer.normalize(10, "BROKEN", RATES) == 10.0
    assert CurrencyNormalizer.normalize(10, "", RATES) == 10.0
    assert CurrencyNormalizer.normalize(10, "USD", {}) == 10.0
    assert rate_for("NEG", {"NEG": -3}) == 1.0


def test_normalize_missing_amount_is_zero():
    assert CurrencyNormalizer.normalize(None, "USD", RATES) == 0.0


def test_from_reference_inverts_normalize():
    assert CurrencyNormalizer.from_reference(27.0, "USD", RATES) == pytest.approx(10.0)
    assert CurrencyNormalizer.from_reference(27.0, "JPY", RATES) == pytest.approx(27.0)


def test_has_rate():
    assert has_rate("EUR", RATES)
    assert not has_rate("JPY", RATES)
    assert not has_rate(None, RATES)
