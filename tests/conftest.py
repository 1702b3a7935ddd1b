import asyncio
import os
from typing import List, Optional

import pytest
from unittest.mock import AsyncMock

# Set test environment
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "ERROR"  # Reduce noise in tests
os.environ["ENABLE_BACKGROUND_MONITORING"] = "false"

from liquidation_monitor.aggregator import ProtocolAggregator
from liquidation_monitor.error_handling import error_collector
from liquidation_monitor.models import Position
from liquidation_monitor.orchestrator import MonitoringOrchestrator, WalletMonitorRegistry
from liquidation_monitor.protocols import ProtocolAdapter, ProtocolRegistry


class StaticAdapter(ProtocolAdapter):
    """Adapter returning canned positions, or raising, after an optional delay"""

    def __init__(self, protocol_id: str, positions: Optional[List[Position]] = None,
                 error: Optional[Exception] = None, delay: float = 0.0):
        self.protocol_id = protocol_id
        self.positions = positions or []
        self.error = error
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = False

    async def fetch_positions(self, wallet_address: str) -> List[Position]:
        self.calls.append(wallet_address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return list(self.positions)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.in_flight -= 1


class FixedClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def clear_error_collector():
    error_collector.clear()
    yield
    error_collector.clear()


@pytest.fixture
def wallet_address():
    """Sample Ethereum wallet address for testing"""
    return "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5"


@pytest.fixture
def static_adapter():
    return StaticAdapter


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_position(wallet_address):
    """Factory for positions with the 25000 / 5000 / 0.8 / 10 defaults"""
    def _make(**overrides) -> Position:
        fields = {
            "id": f"{wallet_address}-aave-v3-1",
            "protocol_id": "aave-v3",
            "collateral_asset": "ETH",
            "debt_asset": "USDC",
            "collateral_amount": "10",
            "debt_amount": "5000",
            "collateral_value": 25000.0,
            "debt_value": 5000.0,
            "liquidation_threshold": 0.8,
        }
        fields.update(overrides)
        return Position(**fields)
    return _make


@pytest.fixture
def healthy_position(make_position):
    return make_position()


@pytest.fixture
def underwater_position(make_position, wallet_address):
    return make_position(id=f"{wallet_address}-aave-v3-2", debt_amount="22000", debt_value=22000.0)


@pytest.fixture
def make_orchestrator(clock):
    """Orchestrator over an in-memory protocol registry"""
    def _make(*adapters: ProtocolAdapter, timeout: float = 1.0) -> MonitoringOrchestrator:
        aggregator = ProtocolAggregator(ProtocolRegistry(adapters), timeout=timeout)
        return MonitoringOrchestrator(aggregator, clock=clock)
    return _make


@pytest.fixture
def monitor_registry(make_orchestrator, healthy_position, wallet_address):
    """Registry whose orchestrators discover one aave-v3 position; curve always fails"""
    def factory():
        return make_orchestrator(
            StaticAdapter("aave-v3", [healthy_position]),
            StaticAdapter("curve", error=RuntimeError("rpc unavailable")),
        )
    return WalletMonitorRegistry(factory)


@pytest.fixture
def mock_price_oracle():
    """Price oracle with fixed USD prices"""
    oracle = AsyncMock()
    oracle.get_token_prices.return_value = {
        "ETH": 2500.0,
        "USDC": 1.0,
        "WETH": 2000.0,
        "crvUSD": 1.0,
    }
    return oracle
