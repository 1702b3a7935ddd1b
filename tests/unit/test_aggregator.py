import asyncio

import pytest

from liquidation_monitor.aggregator import ProtocolAggregator
from liquidation_monitor.error_handling import error_collector
from liquidation_monitor.protocols import ProtocolRegistry


@pytest.mark.asyncio
class TestProtocolAggregator:

    def aggregator(self, *adapters, timeout=1.0):
        return ProtocolAggregator(ProtocolRegistry(adapters), timeout=timeout)

    async def test_failing_protocol_contributes_nothing(self, static_adapter, make_position, wallet_address):
        curve_positions = [make_position(id="c1", protocol_id="curve"),
                           make_position(id="c2", protocol_id="curve")]
        aggregator = self.aggregator(
            static_adapter("aave-v3", error=RuntimeError("node down")),
            static_adapter("curve", curve_positions),
        )

        positions = await aggregator.discover(wallet_address, ["aave-v3", "curve"])

        assert positions == curve_positions
        summary = error_collector.get_error_summary()
        assert summary["error_types"]["ProtocolFetchError"]["count"] == 1
        assert "node down" in summary["error_types"]["ProtocolFetchError"]["examples"][0]["message"]

    async def test_timeout_is_a_protocol_failure(self, static_adapter, make_position, wallet_address):
        slow = static_adapter("aave-v3", [make_position(id="slow")], delay=0.5)
        fast = static_adapter("curve", [make_position(id="fast", protocol_id="curve")])
        aggregator = self.aggregator(slow, fast, timeout=0.05)

        positions = await aggregator.discover(wallet_address, ["aave-v3", "curve"])

        assert [p.id for p in positions] == ["fast"]
        assert slow.cancelled is True
        assert error_collector.error_counts["ProtocolFetchError"] == 1

    async def test_unknown_protocol(self, static_adapter, make_position, wallet_address):
        aggregator = self.aggregator(static_adapter("aave-v3", [make_position(id="a1")]))

        positions = await aggregator.discover(wallet_address, ["compound", "aave-v3"])

        assert [p.id for p in positions] == ["a1"]
        assert error_collector.error_counts["ProtocolFetchError"] == 1

    async def test_result_order_follows_protocol_ids(self, static_adapter, make_position, wallet_address):
        # the first protocol answers last
        aave = static_adapter("aave-v3", [make_position(id="a1")], delay=0.05)
        curve = static_adapter("curve", [make_position(id="c1", protocol_id="curve")])
        aggregator = self.aggregator(aave, curve)

        positions = await aggregator.discover(wallet_address, ["aave-v3", "curve"])

        assert [p.id for p in positions] == ["a1", "c1"]

    async def test_fetches_run_concurrently(self, static_adapter, wallet_address):
        aave = static_adapter("aave-v3", delay=0.2)
        curve = static_adapter("curve", delay=0.2)
        aggregator = self.aggregator(aave, curve)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await aggregator.discover(wallet_address, ["aave-v3", "curve"])

        assert loop.time() - started < 0.35

    async def test_duplicate_identities_are_preserved(self, static_adapter, make_position, wallet_address):
        shared = make_position(id="same-id")
        aggregator = self.aggregator(
            static_adapter("aave-v3", [shared]),
            static_adapter("curve", [shared]),
        )

        positions = await aggregator.discover(wallet_address, ["aave-v3", "curve"])

        assert len(positions) == 2

    async def test_all_protocols_failing(self, static_adapter, wallet_address):
        aggregator = self.aggregator(
            static_adapter("aave-v3", error=ValueError("bad data")),
            static_adapter("curve", error=ConnectionError("refused")),
        )

        assert await aggregator.discover(wallet_address, ["aave-v3", "curve"]) == []
        assert error_collector.error_counts["ProtocolFetchError"] == 2

    async def test_cancellation_cancels_in_flight_fetches(self, static_adapter, wallet_address):
        aave = static_adapter("aave-v3", delay=5)
        curve = static_adapter("curve", delay=5)
        aggregator = self.aggregator(aave, curve, timeout=10)

        task = asyncio.create_task(aggregator.discover(wallet_address, ["aave-v3", "curve"]))
        await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert aave.cancelled and curve.cancelled
        assert error_collector.errors == []
