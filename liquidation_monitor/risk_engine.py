"""
Risk calculations for a single position.

Every function here is pure and deterministic: no hidden state, no I/O.
"""
import math

from .config import settings, RiskSeverity
from .models import Position, HealthFactor, BufferPercent, LiquidationPriceSample


def health_factor(position: Position) -> HealthFactor:
    """(collateral value * liquidation threshold) / debt value.

    Unbounded without debt, and also when the quotient overflows a float (dust
    debt against large collateral).
    """
    if position.debt_value <= 0:
        return HealthFactor.unbounded()

    value = (position.collateral_value * position.liquidation_threshold) / position.debt_value
    if not math.isfinite(value):
        return HealthFactor.unbounded()
    return HealthFactor.finite(value)


def liquidation_price(position: Position) -> LiquidationPriceSample:
    """Collateral unit price at which the health factor reaches 1.0.

    A position without collateral amount, or with a zero liquidation threshold,
    is degenerate and reports 0 rather than failing. So does a price that
    overflows a float.
    """
    collateral_amount = float(position.collateral_amount_decimal)

    current_price = 0.0
    if collateral_amount > 0:
        current_price = position.collateral_value / collateral_amount

    liq_price = 0.0
    if collateral_amount > 0 and position.liquidation_threshold > 0:
        liq_price = position.debt_value / (collateral_amount * position.liquidation_threshold)

    if not math.isfinite(current_price):
        current_price = 0.0
    if not math.isfinite(liq_price):
        liq_price = 0.0

    return LiquidationPriceSample(
        position_id=position.id,
        liquidation_price=liq_price,
        current_price=current_price,
    )


def buffer_percent(hf: HealthFactor) -> BufferPercent:
    """(hf - 1) * 100, unbounded when the health factor is.

    The signed value is kept; ``.clamped`` is the public buffer, floored at 0,
    since any health factor below 1 means already liquidatable.
    """
    if hf.is_unbounded:
        return BufferPercent.unbounded()

    signed = (hf.value - 1.0) * 100
    if not math.isfinite(signed):
        return BufferPercent.unbounded()
    return BufferPercent(signed=signed)


def price_buffer_percent(current_price: float, liq_price: float) -> float:
    """Percentage drop of the collateral price before liquidation"""
    if current_price <= 0:
        return 0.0
    return ((current_price - liq_price) / current_price) * 100


def classify_severity(buffer: BufferPercent) -> str:
    """Advisory banding for presentation; never changes at-risk semantics"""
    if buffer.is_unbounded:
        return RiskSeverity.SAFE
    if buffer.signed < 0:
        return RiskSeverity.LIQUIDATABLE
    if buffer.signed > settings.SEVERITY_WARNING_BUFFER:
        return RiskSeverity.SAFE
    if buffer.signed >= settings.SEVERITY_CRITICAL_BUFFER:
        return RiskSeverity.WARNING
    return RiskSeverity.CRITICAL
