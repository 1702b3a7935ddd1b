import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends

from .background_tasks import background_task_manager
from .error_handling import error_collector
from .models import (
    InitializeRequest, SetWalletRequest, DiscoverRequest, AddPositionRequest,
    PositionFilterRequest, ThresholdRequest, SystemStatus, MonitoringConfigView,
    DiscoveryResult, AddPositionResult, HealthFactorCheckResult, LiquidationPriceResult,
    BufferResult, AlertCheckResult, MonitorCycleResult
)
from .orchestrator import WalletMonitorRegistry, monitor_registry

logger = structlog.get_logger()

# Track application startup time for uptime calculation
app_start_time = time.time()

router = APIRouter(prefix="/api/monitor")


def get_monitor_registry() -> WalletMonitorRegistry:
    return monitor_registry


@router.get("/status", response_model=SystemStatus)
async def get_system_status(registry: WalletMonitorRegistry = Depends(get_monitor_registry)):
    """Overall service status"""
    alerting = [
        wallet for wallet, orchestrator in registry.items()
        if orchestrator.get_config().alert_threshold_hit
    ]

    return SystemStatus(
        uptime_seconds=int(time.time() - app_start_time),
        tracked_wallets=len(registry),
        alerting_wallets=len(alerting),
        background_monitoring=background_task_manager.is_running,
        error_summary=error_collector.get_error_summary(),
    )


@router.post("/initialize", response_model=MonitoringConfigView)
async def initialize_monitoring(
    request: InitializeRequest,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    """Start (or restart) monitoring a wallet on the given protocols"""
    return registry.initialize(request.wallet, request.protocol_ids, request.alert_threshold)


@router.put("/{wallet}/wallet", response_model=MonitoringConfigView)
async def set_wallet(
    wallet: str,
    request: SetWalletRequest,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    """Move monitoring to another wallet, keeping the alert threshold"""
    orchestrator = registry.rekey(wallet, request.wallet)
    return orchestrator.get_config()


@router.get("/{wallet}/config", response_model=MonitoringConfigView)
async def get_monitoring_config(
    wallet: str,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    if wallet not in registry:
        return MonitoringConfigView()
    return registry.get(wallet).get_config()


@router.post("/{wallet}/discover", response_model=DiscoveryResult)
async def discover_positions(
    wallet: str,
    request: Optional[DiscoverRequest] = None,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    """Fetch the wallet's positions from every configured protocol"""
    request = request or DiscoverRequest()
    orchestrator = registry.get(wallet)
    return await orchestrator.discover(request.wallet, request.protocol_ids)


@router.post("/{wallet}/positions", response_model=AddPositionResult)
async def add_position(
    wallet: str,
    request: AddPositionRequest,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    """Manual position entry"""
    orchestrator = registry.get(wallet)
    return orchestrator.add_position(**request.model_dump())


@router.post("/{wallet}/health-factors", response_model=HealthFactorCheckResult)
async def check_health_factors(
    wallet: str,
    request: Optional[PositionFilterRequest] = None,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    request = request or PositionFilterRequest()
    return registry.get(wallet).check_health_factors(request.position_id)


@router.post("/{wallet}/liquidation-prices", response_model=LiquidationPriceResult)
async def calculate_liquidation_prices(
    wallet: str,
    request: Optional[PositionFilterRequest] = None,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    request = request or PositionFilterRequest()
    return registry.get(wallet).calculate_liquidation_prices(request.position_id)


@router.post("/{wallet}/buffers", response_model=BufferResult)
async def calculate_buffers(
    wallet: str,
    request: Optional[PositionFilterRequest] = None,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    request = request or PositionFilterRequest()
    return registry.get(wallet).calculate_buffers(request.position_id)


@router.post("/{wallet}/alert-threshold", response_model=AlertCheckResult)
async def check_alert_threshold(
    wallet: str,
    request: Optional[ThresholdRequest] = None,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    request = request or ThresholdRequest()
    return registry.get(wallet).check_alert_threshold(request.alert_threshold)


@router.post("/{wallet}/cycle", response_model=MonitorCycleResult)
async def run_monitoring_cycle(
    wallet: str,
    request: Optional[ThresholdRequest] = None,
    registry: WalletMonitorRegistry = Depends(get_monitor_registry)
):
    """Full monitoring pass over the wallet's known positions"""
    request = request or ThresholdRequest()
    result = registry.get(wallet).run_monitoring_cycle(request.alert_threshold)

    if result.alert_threshold_hit:
        logger.warning("Alert threshold hit",
                       wallet=wallet.lower(),
                       alert_threshold=result.alert_threshold,
                       alert_threshold_hit=True)

    return result
