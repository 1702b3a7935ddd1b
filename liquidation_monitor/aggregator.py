"""
Concurrent position discovery across protocols.

Each protocol is fetched on its own with a timeout; a protocol that fails,
times out or is not registered contributes no positions and the failure is
recorded instead of propagated.
"""
import asyncio
from typing import List, Optional, Sequence

import structlog

from .config import settings
from .error_handling import ProtocolFetchError, error_collector
from .models import Position
from .protocols import ProtocolRegistry

logger = structlog.get_logger()


class ProtocolAggregator:
    def __init__(self, registry: ProtocolRegistry, timeout: Optional[float] = None):
        self.registry = registry
        self.timeout = timeout if timeout is not None else settings.PROTOCOL_FETCH_TIMEOUT_SECONDS

    async def discover(self, wallet: str, protocol_ids: Sequence[str]) -> List[Position]:
        """Union of every protocol's positions, in ``protocol_ids`` order.

        Cancelling this coroutine cancels every in-flight fetch.
        """
        results = await asyncio.gather(
            *(self._fetch_protocol(wallet, protocol_id) for protocol_id in protocol_ids)
        )

        positions: List[Position] = []
        for protocol_positions in results:
            positions.extend(protocol_positions)

        logger.info("Position discovery completed",
                    wallet=wallet,
                    protocol_ids=list(protocol_ids),
                    positions_found=len(positions))
        return positions

    async def _fetch_protocol(self, wallet: str, protocol_id: str) -> List[Position]:
        try:
            adapter = self.registry.get(protocol_id)
            positions = await asyncio.wait_for(adapter.fetch_positions(wallet), timeout=self.timeout)
        except ProtocolFetchError as e:
            error_collector.record_error(e, {"wallet": wallet, "protocol_id": protocol_id})
            return []
        except asyncio.TimeoutError:
            error_collector.record_error(
                ProtocolFetchError(protocol_id, f"timed out after {self.timeout}s"),
                {"wallet": wallet, "protocol_id": protocol_id}
            )
            return []
        except Exception as e:
            logger.error("Protocol fetch failed",
                         wallet=wallet, protocol_id=protocol_id, error=str(e))
            error_collector.record_error(
                ProtocolFetchError(protocol_id, str(e) or type(e).__name__),
                {"wallet": wallet, "protocol_id": protocol_id, "cause": type(e).__name__}
            )
            return []

        logger.debug("Protocol fetch completed",
                     wallet=wallet, protocol_id=protocol_id, positions=len(positions))
        return list(positions)
