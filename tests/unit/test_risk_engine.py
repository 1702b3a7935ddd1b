import math

import pytest

from liquidation_monitor.config import RiskSeverity
from liquidation_monitor.models import HealthFactor, BufferPercent
from liquidation_monitor.risk_engine import (
    health_factor, liquidation_price, buffer_percent, price_buffer_percent, classify_severity
)


class TestHealthFactor:

    def test_formula(self, healthy_position):
        hf = health_factor(healthy_position)
        assert not hf.is_unbounded
        assert hf.value == pytest.approx(25000.0 * 0.8 / 5000.0)
        assert hf.value == pytest.approx(4.0)

    def test_underwater_position(self, underwater_position):
        hf = health_factor(underwater_position)
        assert hf.value == pytest.approx(0.9090909, rel=1e-6)
        assert hf.is_below(1.0)

    @pytest.mark.parametrize("collateral_value", [0.0, 1.0, 25000.0, 1e12])
    def test_zero_debt_is_unbounded(self, make_position, collateral_value):
        position = make_position(debt_value=0.0, debt_amount="0", collateral_value=collateral_value)
        hf = health_factor(position)
        assert hf.is_unbounded
        assert hf.value is None
        assert math.isinf(hf.as_float())
        assert not hf.is_below(1.0)

    def test_zero_collateral_with_debt(self, make_position):
        hf = health_factor(make_position(collateral_value=0.0, collateral_amount="0"))
        assert hf.value == 0.0

    def test_overflowing_quotient_is_unbounded(self, make_position):
        hf = health_factor(make_position(collateral_value=1e10, debt_value=1e-310))
        assert hf.is_unbounded
        assert not hf.is_below(1.0)


class TestLiquidationPrice:

    def test_reference_position(self, healthy_position):
        sample = liquidation_price(healthy_position)
        assert sample.position_id == healthy_position.id
        assert sample.liquidation_price == pytest.approx(625.0)
        assert sample.current_price == pytest.approx(2500.0)

    def test_underwater_position_liquidation_price_above_current(self, underwater_position):
        sample = liquidation_price(underwater_position)
        assert sample.liquidation_price == pytest.approx(2750.0)
        assert sample.liquidation_price > sample.current_price

    def test_zero_collateral_amount_is_degenerate(self, make_position):
        sample = liquidation_price(make_position(collateral_amount="0"))
        assert sample.liquidation_price == 0.0
        assert sample.current_price == 0.0

    def test_zero_liquidation_threshold(self, make_position):
        sample = liquidation_price(make_position(liquidation_threshold=0.0))
        assert sample.liquidation_price == 0.0
        assert sample.current_price == pytest.approx(2500.0)

    def test_high_precision_amount(self, make_position):
        sample = liquidation_price(make_position(collateral_amount="10.000000000000000001"))
        assert sample.current_price == pytest.approx(2500.0)

    def test_dust_collateral_amount_does_not_overflow(self, make_position):
        sample = liquidation_price(make_position(collateral_amount="1e-320", collateral_value=1e10,
                                                 debt_value=1e10))
        assert math.isfinite(sample.current_price)
        assert math.isfinite(sample.liquidation_price)


class TestBufferPercent:

    def test_reference_buffer(self):
        buffer = buffer_percent(HealthFactor.finite(4.0))
        assert buffer.clamped == pytest.approx(300.0)
        assert buffer.signed == pytest.approx(300.0)

    def test_buffer_at_liquidation_point(self):
        assert buffer_percent(HealthFactor.finite(1.0)).clamped == 0.0

    @pytest.mark.parametrize("hf", [0.0, 0.5, 0.9090909, 0.999])
    def test_buffer_never_negative(self, hf):
        buffer = buffer_percent(HealthFactor.finite(hf))
        assert buffer.clamped == 0.0
        assert buffer.signed < 0

    def test_unbounded_health_factor_gives_unbounded_buffer(self):
        buffer = buffer_percent(HealthFactor.unbounded())
        assert buffer.is_unbounded
        assert buffer.clamped is None
        assert math.isinf(buffer.as_float())

    def test_huge_health_factor_gives_unbounded_buffer(self):
        buffer = buffer_percent(HealthFactor.finite(1.7e308))
        assert buffer.is_unbounded
        assert not buffer.is_below(100.0)


class TestPriceBuffer:

    def test_reference_price_buffer(self):
        assert price_buffer_percent(2500.0, 625.0) == pytest.approx(75.0)

    def test_zero_current_price(self):
        assert price_buffer_percent(0.0, 625.0) == 0.0

    def test_negative_when_below_liquidation_price(self):
        assert price_buffer_percent(2500.0, 2750.0) == pytest.approx(-10.0)


class TestSeverity:

    @pytest.mark.parametrize("signed, expected", [
        (300.0, RiskSeverity.SAFE),
        (15.5, RiskSeverity.SAFE),
        (15.0, RiskSeverity.WARNING),
        (5.0, RiskSeverity.WARNING),
        (4.99, RiskSeverity.CRITICAL),
        (0.0, RiskSeverity.CRITICAL),
        (-0.01, RiskSeverity.LIQUIDATABLE),
        (-50.0, RiskSeverity.LIQUIDATABLE),
    ])
    def test_bands(self, signed, expected):
        assert classify_severity(BufferPercent(signed=signed)) == expected

    def test_unbounded_is_safe(self):
        assert classify_severity(BufferPercent.unbounded()) == RiskSeverity.SAFE

    def test_liquidatable_and_zero_buffer_share_public_value(self):
        liquidatable = BufferPercent(signed=-9.0)
        at_edge = BufferPercent(signed=0.0)
        assert liquidatable.clamped == at_edge.clamped == 0.0
        assert classify_severity(liquidatable) != classify_severity(at_edge)
