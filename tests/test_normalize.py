import pandas as pd
import pytest

from gccore.normalize import coerce_numeric, first_amount, normalize_uom, parse_amount


def test_coerce_numeric_handles_currency_and_thousands():
    values = pd.Series(["$1,250.50", "3.5", "USD 12", "n/a", None])
    result = coerce_numeric(values)

    assert result.iloc[0] == pytest.approx(1250.5)
    assert result.iloc[1] == pytest.approx(3.5)
    assert result.iloc[2] == pytest.approx(12.0)
    assert pd.isna(result.iloc[3])
    assert pd.isna(result.iloc[4])


def test_parse_amount_scalars():
    assert parse_amount(4) == 4.0
    assert parse_amount("$2,000") == pytest.approx(2000.0)
    assert parse_amount(float("nan")) is None
    assert parse_amount(None) is None


def test_first_amount_prefers_dollar_amounts_over_sizes():
    assert first_amount("12x12 tile $3.50 per SF") == pytest.approx(3.5)
    assert first_amount("Total: $5,420.00") == pytest.approx(5420.0)
    assert first_amount("lead time 10 days") == pytest.approx(10.0)
    assert first_amount("call for pricing") is None


def test_normalize_uom_aliases():
    assert normalize_uom("each") == "EA"
    assert normalize_uom("Sq Ft") == "SF"
    assert normalize_uom("lf") == "LF"
    assert normalize_uom(None) == "EA"
    assert normalize_uom("box") == "BOX"
