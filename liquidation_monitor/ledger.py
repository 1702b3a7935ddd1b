"""
Position ledger: the known positions and latest monitoring state for one wallet.

A ledger belongs to exactly one monitored wallet. Replacing the wallet resets
positions and monitoring state; nothing here is shared between ledgers.
"""
import math
from typing import Dict, List, Optional, Iterable

import structlog

from .config import settings
from .error_handling import ValidationError
from .models import (
    Position, HealthFactorSample, LiquidationPriceSample, MonitoringState,
    WalletMonitoringConfig, MonitoringConfigView
)
from .security import normalize_wallet_address

logger = structlog.get_logger()


def validate_alert_threshold(alert_threshold) -> float:
    """Alert thresholds are percentages in [0, 100]"""
    if isinstance(alert_threshold, bool) or not isinstance(alert_threshold, (int, float)):
        raise ValidationError(f"Alert threshold must be a number, got {alert_threshold!r}")
    if not math.isfinite(alert_threshold) or not 0 <= alert_threshold <= 100:
        raise ValidationError(f"Alert threshold must be between 0 and 100, got {alert_threshold}")
    return float(alert_threshold)


def validate_protocol_ids(protocol_ids) -> List[str]:
    """Non-empty ordered set of protocol ids; duplicates keep their first position"""
    if isinstance(protocol_ids, str) or not protocol_ids:
        raise ValidationError("At least one protocol ID is required")

    ordered: List[str] = []
    for protocol_id in protocol_ids:
        if not isinstance(protocol_id, str) or not protocol_id.strip():
            raise ValidationError(f"Invalid protocol ID: {protocol_id!r}")
        protocol_id = protocol_id.strip()
        if protocol_id not in ordered:
            ordered.append(protocol_id)
    return ordered


class PositionLedger:
    """Positions, protocol configuration and monitoring state for a wallet"""

    def __init__(self):
        self._config: Optional[WalletMonitoringConfig] = None
        self._positions: Dict[str, Position] = {}
        self._state = MonitoringState()
        self._generation = 0

    @property
    def wallet(self) -> Optional[str]:
        return self._config.wallet if self._config else None

    @property
    def generation(self) -> int:
        """Bumped whenever the wallet configuration is replaced"""
        return self._generation

    @property
    def protocol_ids(self) -> List[str]:
        return list(self._config.protocol_ids) if self._config else []

    @property
    def is_configured(self) -> bool:
        return bool(self.wallet) and bool(self.protocol_ids)

    @property
    def positions(self) -> List[Position]:
        return list(self._positions.values())

    @property
    def alert_threshold(self) -> float:
        return self._state.alert_threshold

    @property
    def monitoring_state(self) -> MonitoringState:
        return self._state.model_copy(deep=True)

    @property
    def health_factor_samples(self) -> Dict[str, HealthFactorSample]:
        return dict(self._state.health_factors)

    @property
    def liquidation_price_samples(self) -> Dict[str, LiquidationPriceSample]:
        return dict(self._state.liquidation_prices)

    def get_position(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def health_factor_for(self, position_id: str) -> Optional[HealthFactorSample]:
        return self._state.health_factors.get(position_id)

    def liquidation_price_for(self, position_id: str) -> Optional[LiquidationPriceSample]:
        return self._state.liquidation_prices.get(position_id)

    def reset(self):
        """Forget configuration, positions and state"""
        self._config = None
        self._positions = {}
        self._state = MonitoringState()
        self._generation += 1

    def initialize(
        self,
        wallet: str,
        protocol_ids: Iterable[str],
        alert_threshold: float = settings.DEFAULT_ALERT_THRESHOLD,
    ) -> WalletMonitoringConfig:
        """Replace configuration and clear positions and monitoring state.

        Validation happens before anything is touched, so a rejected call leaves the
        ledger as it was.
        """
        normalized = normalize_wallet_address(wallet)
        protocols = validate_protocol_ids(protocol_ids)
        threshold = validate_alert_threshold(alert_threshold)

        self._config = WalletMonitoringConfig(
            wallet=normalized,
            protocol_ids=protocols,
        )
        self._positions = {}
        self._state = MonitoringState(alert_threshold=threshold)
        self._generation += 1

        logger.info("Monitoring initialized",
                    wallet=normalized,
                    protocol_ids=protocols,
                    alert_threshold=threshold)
        return self._config.model_copy()

    def set_wallet(self, wallet: str) -> str:
        """Switch the monitored wallet, keeping the configured alert threshold"""
        normalized = normalize_wallet_address(wallet)
        threshold = self._state.alert_threshold

        self._config = WalletMonitoringConfig(
            wallet=normalized,
            protocol_ids=self.protocol_ids,
        )
        self._positions = {}
        self._state = MonitoringState(alert_threshold=threshold)
        self._generation += 1

        logger.info("Monitored wallet updated", wallet=normalized)
        return normalized

    def replace_positions(self, positions: Iterable[Position]):
        """Wholesale replace; a later duplicate id overwrites the earlier entry"""
        replaced: Dict[str, Position] = {}
        for position in positions:
            replaced[position.id] = position
        self._positions = replaced
        self._drop_stale_samples()

    def upsert_position(self, position: Position) -> bool:
        """Insert or replace by id. Returns True when an existing entry was replaced.

        Samples computed for a replaced entry are dropped with it.
        """
        if not self.wallet:
            raise ValidationError("Wallet not configured. Use initialize first.")

        existed = position.id in self._positions
        self._positions[position.id] = position
        if existed:
            self._state.health_factors.pop(position.id, None)
            self._state.liquidation_prices.pop(position.id, None)
        return existed

    def upsert_health_factor(self, sample: HealthFactorSample):
        self._state.health_factors[sample.position_id] = sample

    def upsert_liquidation_price(self, sample: LiquidationPriceSample):
        self._state.liquidation_prices[sample.position_id] = sample

    def record_alert_state(self, alert_threshold_hit: bool, alert_threshold: float):
        self._state.alert_threshold_hit = alert_threshold_hit
        self._state.alert_threshold = alert_threshold

    def mark_checked(self, checked_at: float):
        self._state.last_checked = checked_at

    def get_config(self) -> MonitoringConfigView:
        """Read-only snapshot; safe defaults when uninitialized"""
        if self._config is None:
            return MonitoringConfigView(alert_threshold=self._state.alert_threshold)

        return MonitoringConfigView(
            wallet=self._config.wallet or "Not set",
            protocol_ids=list(self._config.protocol_ids),
            alert_threshold=self._state.alert_threshold,
            positions_count=len(self._positions),
            last_checked=self._state.last_checked,
            alert_threshold_hit=self._state.alert_threshold_hit,
        )

    def _drop_stale_samples(self):
        for samples in (self._state.health_factors, self._state.liquidation_prices):
            for position_id in [pid for pid in samples if pid not in self._positions]:
                del samples[position_id]
