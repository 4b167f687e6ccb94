import pytest

from app.schemas.defillama import OverviewRecord, StablecoinAsset
from app.services.matching import find_by_name, metric_value, normalize_name, strip_version


def overview(name, display_name=None, **metrics):
    return OverviewRecord(name=name, display_name=display_name, **metrics)


def test_strip_version_suffixes():
    assert strip_version("uniswap v3") == "uniswap"
    assert strip_version("aave V2") == "aave"
    assert strip_version("curve 2") == "curve"
    assert strip_version("v3 protocol") == "v3 protocol"


def test_exact_match_wins_over_version_strip():
    records = [overview("Aave V2", total_24h=1.0), overview("Aave", total_24h=2.0)]
    assert find_by_name(records, "Aave").name == "Aave"


def test_version_suffix_match():
    records = [overview("Uniswap", total_24h=1.5e9)]
    assert find_by_name(records, "Uniswap V3").name == "Uniswap"


def test_substring_match_either_direction():
    records = [overview("Hyperliquid Perps")]
    assert find_by_name(records, "Hyperliquid").name == "Hyperliquid Perps"
    records = [overview("Lido")]
    assert find_by_name(records, "Lido Finance").name == "Lido"


@pytest.mark.parametrize("query", ["aave v3", "AAVE V3", "  Aave V3  ", "\taave v3\n"])
def test_matching_is_idempotent_under_case_and_whitespace(query):
    records = [overview("Compound"), overview("Aave V3")]
    assert find_by_name(records, query).name == "Aave V3"


def test_display_name_preferred_over_name():
    records = [overview("lido-finance", display_name="Lido")]
    assert find_by_name(records, "lido").name == "lido-finance"


def test_no_match_returns_none():
    assert find_by_name([overview("Aave")], "Maker") is None
    assert find_by_name([overview("Aave")], "   ") is None
    assert find_by_name([], "Aave") is None


def test_normalize_name():
    assert normalize_name("  Aave ") == "aave"
    assert normalize_name(None) == ""


def test_metric_value_reads_declared_fields():
    record = overview("Hyperliquid", total_24h=5e9, daily_open_interest=8e9)
    assert metric_value(record, "total_24h") == 5e9
    assert metric_value(record, "daily_open_interest") == 8e9
    assert metric_value(record, "total_7d") is None


def test_metric_value_reads_computed_fields():
    asset = StablecoinAsset(id="1", name="USDT", circulating={"peggedUSD": 120e9})
    assert metric_value(asset, "total_circulating_usd") == 120e9


def test_metric_value_unknown_field_is_missing():
    record = overview("Hyperliquid", total_24h=5e9)
    assert metric_value(record, "total24h") is None
    assert metric_value(record, "dailyVolume") is None
    assert metric_value(None, "total_24h") is None
