import asyncio
import time
from typing import Dict, List, Optional

import structlog

from .config import settings
from .error_handling import MonitorError, error_collector
from .orchestrator import MonitorState, WalletMonitorRegistry, MonitoringOrchestrator, monitor_registry

logger = structlog.get_logger()


class BackgroundTaskManager:
    """Periodically rediscovers positions and runs a monitoring cycle per wallet"""

    def __init__(self, registry: Optional[WalletMonitorRegistry] = None,
                 interval: Optional[int] = None,
                 rediscover: Optional[bool] = None):
        self.registry = registry if registry is not None else monitor_registry
        self.task_interval = interval if interval is not None else settings.BACKGROUND_TASK_INTERVAL
        self.rediscover = rediscover if rediscover is not None else settings.REDISCOVER_ON_CYCLE
        self.is_running = False
        self.tasks: List[asyncio.Task] = []

    async def start(self):
        """Start the monitoring loop"""
        if self.is_running:
            logger.warning("Background tasks already running")
            return

        self.is_running = True
        self.tasks.append(asyncio.create_task(self._monitoring_loop()))
        logger.info("Background tasks started", interval_seconds=self.task_interval)

    async def stop(self):
        """Stop the monitoring loop"""
        if not self.is_running:
            return

        logger.info("Stopping background tasks")
        self.is_running = False

        for task in self.tasks:
            task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        self.tasks.clear()

    async def _monitoring_loop(self):
        while self.is_running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Error in monitoring loop", error=str(e))

            await asyncio.sleep(self.task_interval)

    async def run_once(self) -> Dict[str, int]:
        """One pass over every monitored wallet; a failing wallet does not stop the pass"""
        start_time = time.time()
        summary = {"wallets_processed": 0, "cycles_run": 0, "alerts": 0, "failures": 0}

        for wallet, orchestrator in self.registry.items():
            summary["wallets_processed"] += 1
            try:
                alert = await self._monitor_wallet(wallet, orchestrator)
            except MonitorError as e:
                summary["failures"] += 1
                error_collector.record_error(e, {"wallet": wallet, "source": "background_monitor"})
                continue
            except Exception as e:
                summary["failures"] += 1
                logger.error("Error monitoring wallet", wallet=wallet, error=str(e))
                error_collector.record_error(e, {"wallet": wallet, "source": "background_monitor"})
                continue

            if alert is not None:
                summary["cycles_run"] += 1
                if alert:
                    summary["alerts"] += 1

        logger.info("Monitoring pass completed",
                    duration_seconds=round(time.time() - start_time, 3),
                    **summary)
        return summary

    async def _monitor_wallet(self, wallet: str, orchestrator: MonitoringOrchestrator) -> Optional[bool]:
        """Returns the alert flag, or None when there was nothing to monitor"""
        if orchestrator.state == MonitorState.UNINITIALIZED:
            return None

        if self.rediscover:
            await orchestrator.discover()

        if orchestrator.state != MonitorState.MONITORED:
            logger.debug("No positions to monitor", wallet=wallet)
            return None

        result = orchestrator.run_monitoring_cycle()
        if result.alert_threshold_hit:
            at_risk = [p.position_id for p in result.positions
                       if p.buffer_percent is not None and p.buffer_percent < result.alert_threshold]
            logger.warning("Liquidation alert",
                           wallet=wallet,
                           alert_threshold_hit=True,
                           alert_threshold=result.alert_threshold,
                           at_risk_positions=at_risk)
        return result.alert_threshold_hit


# Global background task manager
background_task_manager = BackgroundTaskManager()
