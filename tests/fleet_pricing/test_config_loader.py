from decimal import Decimal

import pytest

from fleet_pricing.app.config.loader import load_engine_config
from fleet_pricing.engine.canonical.models import RoundingPolicy


def test_invalid_schema_version(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("schema_version: 2\ndefault_multiplier: 2\n")
    with pytest.raises(ValueError, match="Unsupported schema_version"):
        load_engine_config(path)


def test_empty_file_uses_defaults(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("")

    config = load_engine_config(path)

    assert config.default_multiplier == Decimal("2.0")
    assert config.margins.critical == Decimal("0.10")
    assert config.target_margin("ANYTHING") == Decimal("0.45")


def test_category_margins_must_be_fractions(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("schema_version: 1\ncategories:\n  ENGINE:\n    target_margin: 45\n")
    with pytest.raises(ValueError):
        load_engine_config(path)


def test_bundled_config(data_dir) -> None:
    config = load_engine_config(data_dir / "engine_config.yaml")

    assert config.default_rounding == RoundingPolicy.NEAREST_99
    assert config.multiplier("ENGINE") == Decimal("1.8")
    assert config.multiplier("UNKNOWN") == Decimal("2.0")
    assert config.duty_rate("BRAKES") == Decimal("0.18")
    assert config.min_margin("ENGINE") == Decimal("0.20")
    assert config.exchange_rate.rate == Decimal("1200")
    assert config.operating_costs.maintenance_monthly == Decimal("55000")
