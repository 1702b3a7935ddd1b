from typing import Dict, Iterable, List, Optional

from web3 import AsyncWeb3

from ..error_handling import ProtocolFetchError
from ..external_apis import PriceOracle, api_manager
from .aave import AaveV3Adapter
from .base import ProtocolAdapter, build_web3
from .curve import CurveAdapter


class ProtocolRegistry:
    """Protocol id -> adapter"""

    def __init__(self, adapters: Optional[Iterable[ProtocolAdapter]] = None):
        self._adapters: Dict[str, ProtocolAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProtocolAdapter):
        if not adapter.protocol_id:
            raise ValueError("adapter has no protocol_id")
        self._adapters[adapter.protocol_id] = adapter

    def get(self, protocol_id: str) -> ProtocolAdapter:
        adapter = self._adapters.get(protocol_id)
        if adapter is None:
            raise ProtocolFetchError(protocol_id, "unsupported protocol")
        return adapter

    def __contains__(self, protocol_id: str) -> bool:
        return protocol_id in self._adapters

    @property
    def protocol_ids(self) -> List[str]:
        return list(self._adapters)


def create_default_registry(price_oracle: Optional[PriceOracle] = None,
                            web3: Optional[AsyncWeb3] = None) -> ProtocolRegistry:
    """Registry with the shipped adapters sharing one web3 connection"""
    price_oracle = price_oracle or api_manager.price_oracle
    web3 = web3 or build_web3()
    return ProtocolRegistry([
        AaveV3Adapter(price_oracle, web3=web3),
        CurveAdapter(price_oracle, web3=web3),
    ])
