import math
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from liquidation_monitor.models import (
    Position, HealthFactor, BufferPercent, MonitorCycleResult, PositionRiskResult
)


class TestPosition:

    def test_amounts_keep_decimal_precision(self, make_position):
        position = make_position(collateral_amount="1.123456789012345678901")
        assert position.collateral_amount_decimal == Decimal("1.123456789012345678901")

    def test_numeric_amounts_are_stringified(self, make_position):
        position = make_position(collateral_amount=10, debt_amount=2.5)
        assert position.collateral_amount == "10"
        assert position.debt_amount == "2.5"

    @pytest.mark.parametrize("amount", ["abc", "-1", "NaN", "Infinity", ""])
    def test_rejects_bad_amounts(self, make_position, amount):
        with pytest.raises(PydanticValidationError):
            make_position(collateral_amount=amount)

    @pytest.mark.parametrize("field, value", [
        ("collateral_value", -1.0),
        ("debt_value", -0.01),
        ("collateral_value", math.inf),
        ("debt_value", math.nan),
        ("liquidation_threshold", 1.01),
        ("liquidation_threshold", -0.1),
    ])
    def test_rejects_out_of_range_values(self, make_position, field, value):
        with pytest.raises(PydanticValidationError):
            make_position(**{field: value})

    def test_rejects_empty_identity(self, make_position):
        with pytest.raises(PydanticValidationError):
            make_position(id="")
        with pytest.raises(PydanticValidationError):
            make_position(protocol_id="")

    def test_is_frozen(self, healthy_position):
        with pytest.raises(PydanticValidationError):
            healthy_position.debt_value = 1.0


class TestTaggedValues:

    def test_finite_health_factor_rejects_infinity(self):
        with pytest.raises(ValueError):
            HealthFactor.finite(math.inf)
        with pytest.raises(ValueError):
            HealthFactor.finite(math.nan)

    def test_health_factor_comparisons(self):
        assert HealthFactor.finite(0.99).is_below(1.0)
        assert not HealthFactor.finite(1.0).is_below(1.0)
        assert not HealthFactor.unbounded().is_below(1e300)

    def test_buffer_compares_clamped_value(self):
        liquidatable = BufferPercent(signed=-20.0)
        assert liquidatable.is_below(15.0)
        # a zero threshold never alerts, even for a liquidatable position
        assert not liquidatable.is_below(0.0)

    def test_unbounded_buffer_is_never_below(self):
        assert not BufferPercent.unbounded().is_below(100.0)


class TestWireFormat:

    def test_unbounded_values_serialize_as_null(self):
        result = MonitorCycleResult(
            health_factor=[None],
            liq_price=[0.0],
            buffer_percent=[None],
            alert_threshold_hit=False,
            alert_threshold=15.0,
            positions=[PositionRiskResult(
                position_id="p1",
                protocol_id="aave-v3",
                collateral_asset="ETH",
                debt_asset="USDC",
                health_factor=None,
                liq_price=0.0,
                current_price=2500.0,
                buffer_percent=None,
                severity="safe",
            )],
        )
        payload = result.model_dump_json()
        assert '"health_factor":[null]' in payload
        assert '"buffer_percent":[null]' in payload
