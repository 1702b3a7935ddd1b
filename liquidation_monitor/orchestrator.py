"""
Monitoring orchestrator.

Drives one wallet's ledger through the monitoring state machine

    UNINITIALIZED -> CONFIGURED -> DISCOVERING -> MONITORED (-> MONITORED ...)

and runs the fetch -> compute -> evaluate -> persist cycle. Each wallet gets its
own orchestrator and ledger; ``WalletMonitorRegistry`` keeps them apart.
"""
import asyncio
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from .aggregator import ProtocolAggregator
from .config import settings
from .error_handling import (
    ValidationError, NotConfiguredError, NoPositionsError, PreconditionError
)
from .ledger import PositionLedger, validate_alert_threshold, validate_protocol_ids
from .models import (
    Position, HealthFactorSample, MonitoringConfigView, DiscoveredPosition, DiscoveryResult,
    AddPositionResult, HealthFactorReport, HealthFactorCheckResult, LiquidationPriceReport,
    LiquidationPriceResult, BufferReport, BufferResult, AlertCheckResult, PositionRiskResult,
    MonitorCycleResult
)
from .risk_engine import (
    health_factor, liquidation_price, buffer_percent, price_buffer_percent, classify_severity
)
from .protocols import create_default_registry
from .security import normalize_wallet_address
from . import threshold_evaluator

logger = structlog.get_logger()


class MonitorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    DISCOVERING = "discovering"
    MONITORED = "monitored"


class MonitoringOrchestrator:
    """Monitoring pipeline for a single wallet"""

    def __init__(
        self,
        aggregator: ProtocolAggregator,
        ledger: Optional[PositionLedger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.aggregator = aggregator
        self.ledger = ledger or PositionLedger()
        self._clock = clock
        self._discovery_lock = asyncio.Lock()
        self._discovering = False

    @property
    def state(self) -> MonitorState:
        if self._discovering:
            return MonitorState.DISCOVERING
        if not self.ledger.is_configured:
            return MonitorState.UNINITIALIZED
        if not self.ledger.positions:
            return MonitorState.CONFIGURED
        return MonitorState.MONITORED

    @property
    def wallet(self) -> Optional[str]:
        return self.ledger.wallet

    # Configuration

    def initialize(
        self,
        wallet: str,
        protocol_ids: Iterable[str],
        alert_threshold: float = settings.DEFAULT_ALERT_THRESHOLD,
    ) -> MonitoringConfigView:
        self.ledger.initialize(wallet, protocol_ids, alert_threshold)
        return self.ledger.get_config()

    def set_wallet(self, wallet: str) -> str:
        return self.ledger.set_wallet(wallet)

    def get_config(self) -> MonitoringConfigView:
        return self.ledger.get_config()

    # Positions

    async def discover(
        self,
        wallet: Optional[str] = None,
        protocol_ids: Optional[Iterable[str]] = None,
    ) -> DiscoveryResult:
        """Fetch positions from every protocol and replace the ledger's positions.

        ``wallet`` and ``protocol_ids`` fall back to the stored configuration. The
        ``protocol_ids`` override applies to this call only. Overlapping calls
        run one after the other. Positions fetched for a wallet that was
        re-initialized or switched mid-fetch are dropped.
        """
        async with self._discovery_lock:
            if not self.ledger.wallet:
                raise NotConfiguredError(
                    "Wallet address not configured. Use initialize first."
                )

            target_wallet = self.ledger.wallet
            if wallet is not None and normalize_wallet_address(wallet) != target_wallet:
                raise ValidationError(
                    f"Wallet {wallet} does not match the monitored wallet {target_wallet}"
                )

            if protocol_ids is not None:
                target_protocols = validate_protocol_ids(protocol_ids)
            else:
                target_protocols = self.ledger.protocol_ids
            if not target_protocols:
                raise NotConfiguredError(
                    "No protocol IDs configured. Use initialize first or pass protocol_ids."
                )

            generation = self.ledger.generation
            self._discovering = True
            try:
                positions = await self.aggregator.discover(target_wallet, target_protocols)
            finally:
                self._discovering = False

            if self.ledger.generation != generation:
                logger.warning("Discovery result discarded, wallet configuration changed",
                               wallet=target_wallet,
                               current_wallet=self.ledger.wallet)
                return DiscoveryResult(
                    success=False,
                    positions_found=0,
                    protocol_ids=target_protocols,
                    message="Discovery discarded: wallet configuration changed while fetching",
                )

            self.ledger.replace_positions(positions)
            found = self.ledger.positions

        if found:
            message = f"Found {len(found)} position(s) across {len(target_protocols)} protocol(s)"
        else:
            message = f"No positions found across {len(target_protocols)} protocol(s)"

        logger.info("Positions discovered",
                    wallet=target_wallet,
                    protocol_ids=target_protocols,
                    positions_found=len(found))

        return DiscoveryResult(
            positions_found=len(found),
            protocol_ids=target_protocols,
            positions=[
                DiscoveredPosition(
                    id=p.id,
                    protocol_id=p.protocol_id,
                    collateral_asset=p.collateral_asset,
                    debt_asset=p.debt_asset,
                )
                for p in found
            ],
            message=message,
        )

    def add_position(
        self,
        protocol_id: str,
        collateral_asset: str,
        debt_asset: str,
        collateral_amount: str,
        debt_amount: str,
        collateral_value: float,
        debt_value: float,
        liquidation_threshold: float,
        position_id: Optional[str] = None,
    ) -> AddPositionResult:
        """Manual entry; inserts or replaces by id"""
        wallet = self.ledger.wallet
        if not wallet:
            raise NotConfiguredError("Wallet not configured. Use initialize first.")

        if not position_id:
            position_id = self._next_position_id(wallet, protocol_id)

        try:
            position = Position(
                id=position_id,
                protocol_id=protocol_id,
                collateral_asset=collateral_asset,
                debt_asset=debt_asset,
                collateral_amount=collateral_amount,
                debt_amount=debt_amount,
                collateral_value=collateral_value,
                debt_value=debt_value,
                liquidation_threshold=liquidation_threshold,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid position: {e.errors()[0]['msg']}")

        updated = self.ledger.upsert_position(position)
        verb = "Updated" if updated else "Added"

        logger.info("Position stored manually",
                    wallet=wallet, position_id=position_id, updated=updated)

        return AddPositionResult(
            position_id=position_id,
            updated=updated,
            message=f"{verb} position: {collateral_asset}/{debt_asset} on {protocol_id}",
        )

    def _next_position_id(self, wallet: str, protocol_id: str) -> str:
        n = len(self.ledger.positions) + 1
        while self.ledger.get_position(f"{wallet}-{protocol_id}-{n}") is not None:
            n += 1
        return f"{wallet}-{protocol_id}-{n}"

    # Diagnostics

    def check_health_factors(self, position_id: Optional[str] = None) -> HealthFactorCheckResult:
        positions = self._select_positions(position_id)
        now = self._clock()

        reports = []
        for position in positions:
            hf = health_factor(position)
            self.ledger.upsert_health_factor(
                HealthFactorSample(position_id=position.id, health_factor=hf, computed_at=now)
            )
            reports.append(HealthFactorReport(position_id=position.id, health_factor=hf.value))

        self.ledger.mark_checked(now)

        return HealthFactorCheckResult(
            health_factors=reports,
            message=f"Checked health factors for {len(reports)} position(s)",
        )

    def calculate_liquidation_prices(self, position_id: Optional[str] = None) -> LiquidationPriceResult:
        positions = self._select_positions(position_id)

        reports = []
        for position in positions:
            sample = liquidation_price(position)
            self.ledger.upsert_liquidation_price(sample)
            reports.append(LiquidationPriceReport(
                position_id=position.id,
                liq_price=sample.liquidation_price,
                current_price=sample.current_price,
                price_buffer=price_buffer_percent(sample.current_price, sample.liquidation_price),
            ))

        return LiquidationPriceResult(liquidation_prices=reports)

    def calculate_buffers(self, position_id: Optional[str] = None) -> BufferResult:
        positions = self._select_positions(position_id)

        samples = self.ledger.health_factor_samples
        if not samples:
            raise PreconditionError(
                "Health factors not calculated. Run check_health_factors first."
            )

        reports = []
        for position in positions:
            sample = samples.get(position.id)
            if sample is None:
                continue
            buffer = buffer_percent(sample.health_factor)
            reports.append(BufferReport(
                position_id=position.id,
                buffer_percent=buffer.clamped,
                health_factor=sample.health_factor.value,
                severity=classify_severity(buffer),
            ))

        return BufferResult(
            buffers=reports,
            message=f"Calculated buffer percentages for {len(reports)} position(s)",
        )

    def check_alert_threshold(self, threshold: Optional[float] = None) -> AlertCheckResult:
        """Evaluate stored health factors; the threshold used becomes the default"""
        self._require_positions()
        threshold = self._resolve_threshold(threshold)

        evaluation = threshold_evaluator.evaluate(
            self.ledger.positions, self.ledger.health_factor_samples, threshold
        )
        self.ledger.record_alert_state(evaluation.any_at_risk, threshold)

        if evaluation.any_at_risk:
            message = (f"ALERT: {len(evaluation.at_risk_positions)} position(s) "
                       f"below {threshold:g}% buffer threshold")
        else:
            message = f"All positions are above {threshold:g}% buffer threshold"

        return AlertCheckResult(
            alert_threshold_hit=evaluation.any_at_risk,
            threshold=threshold,
            at_risk_positions=evaluation.at_risk_positions,
            message=message,
        )

    # Full cycle

    def run_monitoring_cycle(self, threshold_override: Optional[float] = None) -> MonitorCycleResult:
        """Compute every metric for every position and evaluate the alert threshold.

        Synchronous and CPU-only. Repeated calls with unchanged positions return
        identical results.
        """
        positions = self._require_positions()
        threshold = self._resolve_threshold(threshold_override)
        now = self._clock()

        samples: Dict[str, HealthFactorSample] = {}
        results: List[PositionRiskResult] = []
        for position in positions:
            hf = health_factor(position)
            liq = liquidation_price(position)
            buffer = buffer_percent(hf)

            samples[position.id] = HealthFactorSample(
                position_id=position.id, health_factor=hf, computed_at=now
            )
            self.ledger.upsert_health_factor(samples[position.id])
            self.ledger.upsert_liquidation_price(liq)

            results.append(PositionRiskResult(
                position_id=position.id,
                protocol_id=position.protocol_id,
                collateral_asset=position.collateral_asset,
                debt_asset=position.debt_asset,
                health_factor=hf.value,
                liq_price=liq.liquidation_price,
                current_price=liq.current_price,
                buffer_percent=buffer.clamped,
                severity=classify_severity(buffer),
            ))

        evaluation = threshold_evaluator.evaluate(positions, samples, threshold)
        self.ledger.record_alert_state(evaluation.any_at_risk, threshold)
        self.ledger.mark_checked(now)

        logger.info("Monitoring cycle completed",
                    wallet=self.ledger.wallet,
                    positions=len(results),
                    alert_threshold=threshold,
                    alert_threshold_hit=evaluation.any_at_risk)

        return MonitorCycleResult(
            health_factor=[r.health_factor for r in results],
            liq_price=[r.liq_price for r in results],
            buffer_percent=[r.buffer_percent for r in results],
            alert_threshold_hit=evaluation.any_at_risk,
            alert_threshold=threshold,
            positions=results,
        )

    # Preconditions

    def _require_configured(self):
        if not self.ledger.is_configured:
            raise NotConfiguredError(
                "Wallet and protocol IDs must be configured first. Use initialize."
            )

    def _require_positions(self) -> List[Position]:
        self._require_configured()
        positions = self.ledger.positions
        if not positions:
            raise NoPositionsError(
                "No positions found. Run discovery or add a position first."
            )
        return positions

    def _select_positions(self, position_id: Optional[str]) -> List[Position]:
        positions = self._require_positions()
        if position_id is None:
            return positions

        position = self.ledger.get_position(position_id)
        if position is None:
            raise ValidationError(f"Unknown position: {position_id}")
        return [position]

    def _resolve_threshold(self, threshold: Optional[float]) -> float:
        if threshold is None:
            return self.ledger.alert_threshold
        return validate_alert_threshold(threshold)


class WalletMonitorRegistry:
    """One orchestrator per normalized wallet address"""

    def __init__(self, orchestrator_factory: Callable[[], MonitoringOrchestrator]):
        self._factory = orchestrator_factory
        self._orchestrators: Dict[str, MonitoringOrchestrator] = {}

    def __len__(self) -> int:
        return len(self._orchestrators)

    def __contains__(self, wallet: str) -> bool:
        try:
            return normalize_wallet_address(wallet) in self._orchestrators
        except ValidationError:
            return False

    @property
    def wallets(self) -> List[str]:
        return list(self._orchestrators)

    def items(self):
        return list(self._orchestrators.items())

    def get(self, wallet: str) -> MonitoringOrchestrator:
        normalized = normalize_wallet_address(wallet)
        orchestrator = self._orchestrators.get(normalized)
        if orchestrator is None:
            raise NotConfiguredError(
                f"Wallet {normalized} is not monitored. Use initialize first."
            )
        return orchestrator

    def get_or_create(self, wallet: str) -> MonitoringOrchestrator:
        normalized = normalize_wallet_address(wallet)
        if normalized not in self._orchestrators:
            self._orchestrators[normalized] = self._factory()
        return self._orchestrators[normalized]

    def initialize(
        self,
        wallet: str,
        protocol_ids: Iterable[str],
        alert_threshold: float = settings.DEFAULT_ALERT_THRESHOLD,
    ) -> MonitoringConfigView:
        """Initialize (or re-initialize) monitoring for a wallet.

        A rejected configuration does not leave a new empty entry behind.
        """
        normalized = normalize_wallet_address(wallet)
        created = normalized not in self._orchestrators
        orchestrator = self.get_or_create(normalized)
        try:
            return orchestrator.initialize(normalized, protocol_ids, alert_threshold)
        except ValidationError:
            if created:
                del self._orchestrators[normalized]
            raise

    def rekey(self, old_wallet: str, new_wallet: str) -> MonitoringOrchestrator:
        """Point an existing orchestrator at a different wallet"""
        orchestrator = self.get(old_wallet)
        old = normalize_wallet_address(old_wallet)
        new = normalize_wallet_address(new_wallet)

        if new != old and new in self._orchestrators:
            raise ValidationError(f"Wallet {new} is already monitored")

        orchestrator.set_wallet(new)
        del self._orchestrators[old]
        self._orchestrators[new] = orchestrator
        return orchestrator

    def remove(self, wallet: str):
        self._orchestrators.pop(normalize_wallet_address(wallet), None)


_default_aggregator: Optional[ProtocolAggregator] = None


def default_orchestrator() -> MonitoringOrchestrator:
    """Orchestrator backed by the shipped protocol adapters"""
    global _default_aggregator
    if _default_aggregator is None:
        _default_aggregator = ProtocolAggregator(create_default_registry())
    return MonitoringOrchestrator(_default_aggregator)


# Global wallet registry
monitor_registry = WalletMonitorRegistry(default_orchestrator)
