import math
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import settings


# Tagged risk values
class HealthFactor(BaseModel):
    """Finite health factor, or unbounded when the position carries no debt.

    Callers compare through ``is_unbounded`` / ``is_below`` rather than doing float
    arithmetic on an infinity; ``as_float`` exists for presentation only.
    """

    model_config = ConfigDict(frozen=True)

    value: Optional[float] = None

    @classmethod
    def finite(cls, value: float) -> "HealthFactor":
        if not math.isfinite(value):
            raise ValueError(f"finite health factor expected, got {value}")
        return cls(value=value)

    @classmethod
    def unbounded(cls) -> "HealthFactor":
        return cls(value=None)

    @property
    def is_unbounded(self) -> bool:
        return self.value is None

    def is_below(self, level: float) -> bool:
        return self.value is not None and self.value < level

    def as_float(self) -> float:
        return math.inf if self.value is None else self.value


class BufferPercent(BaseModel):
    """Safety buffer in percent.

    ``signed`` keeps ``(hf - 1) * 100`` as computed, so a liquidatable position is
    still distinguishable internally; ``clamped`` floors it at zero.
    """

    model_config = ConfigDict(frozen=True)

    signed: Optional[float] = None

    @classmethod
    def unbounded(cls) -> "BufferPercent":
        return cls(signed=None)

    @property
    def is_unbounded(self) -> bool:
        return self.signed is None

    @property
    def clamped(self) -> Optional[float]:
        if self.signed is None:
            return None
        return max(0.0, self.signed)

    def is_below(self, threshold: float) -> bool:
        return self.signed is not None and self.clamped < threshold

    def as_float(self) -> float:
        return math.inf if self.signed is None else self.clamped


# Position Models
class Position(BaseModel):
    """A single collateral/debt pairing on one protocol"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    protocol_id: str = Field(min_length=1)
    collateral_asset: str
    debt_asset: str
    collateral_amount: str = "0"
    debt_amount: str = "0"
    collateral_value: float = Field(ge=0, allow_inf_nan=False)
    debt_value: float = Field(ge=0, allow_inf_nan=False)
    liquidation_threshold: float = Field(ge=0, le=1, allow_inf_nan=False)

    @field_validator("collateral_amount", "debt_amount", mode="before")
    @classmethod
    def validate_amount(cls, v):
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str):
            raise ValueError("amount must be a decimal string")
        try:
            amount = Decimal(v)
        except InvalidOperation:
            raise ValueError(f"amount must be a decimal string, got {v!r}")
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"amount must be a finite non-negative decimal, got {v!r}")
        return v

    @property
    def collateral_amount_decimal(self) -> Decimal:
        return Decimal(self.collateral_amount)

    @property
    def debt_amount_decimal(self) -> Decimal:
        return Decimal(self.debt_amount)


class HealthFactorSample(BaseModel):
    position_id: str
    health_factor: HealthFactor
    computed_at: float


class LiquidationPriceSample(BaseModel):
    position_id: str
    liquidation_price: float
    current_price: float


class MonitoringState(BaseModel):
    """Latest samples per position; samples are overwritten, never kept historically"""

    health_factors: Dict[str, HealthFactorSample] = Field(default_factory=dict)
    liquidation_prices: Dict[str, LiquidationPriceSample] = Field(default_factory=dict)
    alert_threshold: float = settings.DEFAULT_ALERT_THRESHOLD
    alert_threshold_hit: bool = False
    last_checked: float = 0.0


class WalletMonitoringConfig(BaseModel):
    wallet: str
    protocol_ids: List[str] = []


class MonitoringConfigView(BaseModel):
    wallet: str = "Not set"
    protocol_ids: List[str] = []
    alert_threshold: float = settings.DEFAULT_ALERT_THRESHOLD
    positions_count: int = 0
    last_checked: float = 0.0
    alert_threshold_hit: bool = False


# Discovery
class DiscoveredPosition(BaseModel):
    id: str
    protocol_id: str
    collateral_asset: str
    debt_asset: str


class DiscoveryResult(BaseModel):
    success: bool = True
    positions_found: int
    protocol_ids: List[str]
    positions: List[DiscoveredPosition] = []
    message: str


class AddPositionResult(BaseModel):
    success: bool = True
    position_id: str
    updated: bool
    message: str


# Per-step reports
class HealthFactorReport(BaseModel):
    position_id: str
    health_factor: Optional[float]


class HealthFactorCheckResult(BaseModel):
    success: bool = True
    health_factors: List[HealthFactorReport]
    message: str


class LiquidationPriceReport(BaseModel):
    position_id: str
    liq_price: float
    current_price: float
    price_buffer: float


class LiquidationPriceResult(BaseModel):
    success: bool = True
    liquidation_prices: List[LiquidationPriceReport]


class BufferReport(BaseModel):
    position_id: str
    buffer_percent: Optional[float]
    health_factor: Optional[float]
    severity: str


class BufferResult(BaseModel):
    success: bool = True
    buffers: List[BufferReport]
    message: str


class AtRiskPosition(BaseModel):
    position_id: str
    buffer_percent: float
    signed_buffer_percent: float
    health_factor: Optional[float]
    severity: str


class ThresholdEvaluation(BaseModel):
    threshold: float
    any_at_risk: bool
    evaluated_count: int
    at_risk_positions: List[AtRiskPosition] = []


class AlertCheckResult(BaseModel):
    success: bool = True
    alert_threshold_hit: bool
    threshold: float
    at_risk_positions: List[AtRiskPosition] = []
    message: str


# Monitoring cycle
class PositionRiskResult(BaseModel):
    position_id: str
    protocol_id: str
    collateral_asset: str
    debt_asset: str
    health_factor: Optional[float]
    liq_price: float
    current_price: float
    buffer_percent: Optional[float]
    severity: str


class MonitorCycleResult(BaseModel):
    """Canonical snapshot of one monitoring cycle.

    Array ordering matches the ledger's position ordering at cycle start.
    Unbounded health factors and buffers are ``None``.
    """

    success: bool = True
    health_factor: List[Optional[float]]
    liq_price: List[float]
    buffer_percent: List[Optional[float]]
    alert_threshold_hit: bool
    alert_threshold: float
    positions: List[PositionRiskResult]


# API Request Models
class InitializeRequest(BaseModel):
    wallet: str
    protocol_ids: List[str]
    alert_threshold: float = settings.DEFAULT_ALERT_THRESHOLD


class SetWalletRequest(BaseModel):
    wallet: str


class DiscoverRequest(BaseModel):
    wallet: Optional[str] = None
    protocol_ids: Optional[List[str]] = None


class AddPositionRequest(BaseModel):
    protocol_id: str
    collateral_asset: str
    debt_asset: str
    collateral_amount: str
    debt_amount: str
    collateral_value: float
    debt_value: float
    liquidation_threshold: float
    position_id: Optional[str] = None

    @field_validator("collateral_amount", "debt_amount", mode="before")
    @classmethod
    def stringify_amount(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class PositionFilterRequest(BaseModel):
    position_id: Optional[str] = None


class ThresholdRequest(BaseModel):
    alert_threshold: Optional[float] = None


class SystemStatus(BaseModel):
    status: str = "operational"
    version: str = "1.0.0"
    uptime_seconds: int
    tracked_wallets: int
    alerting_wallets: int
    background_monitoring: bool
    error_summary: Dict[str, Any]
