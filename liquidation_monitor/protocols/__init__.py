from .base import ProtocolAdapter, build_web3
from .aave import AaveV3Adapter
from .curve import CurveAdapter
from .registry import ProtocolRegistry, create_default_registry

__all__ = [
    "ProtocolAdapter",
    "build_web3",
    "AaveV3Adapter",
    "CurveAdapter",
    "ProtocolRegistry",
    "create_default_registry",
]
