"""Protocol adapter interface.

Each lending protocol resolves its raw on-chain amounts into canonical
``Position`` records on its own; the aggregator only sees this capability.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from web3 import AsyncWeb3, AsyncHTTPProvider

from ..config import settings
from ..models import Position


def build_web3(rpc_url: Optional[str] = None) -> AsyncWeb3:
    return AsyncWeb3(
        AsyncHTTPProvider(
            rpc_url or settings.ETHEREUM_RPC_URL,
            request_kwargs={"timeout": settings.PROTOCOL_FETCH_TIMEOUT_SECONDS},
        )
    )


def format_units(raw_amount: int, decimals: int) -> str:
    """Integer token units -> decimal string (e.g. 1500000, 6 -> '1.5')"""
    if raw_amount == 0:
        return "0"
    value = Decimal(raw_amount).scaleb(-decimals)
    return format(value.normalize(), "f")


def amount_from_value(value_usd: float, price_usd: float) -> str:
    """Token amount implied by a USD value; '0' when the price is unknown"""
    if price_usd <= 0:
        return "0"
    return f"{value_usd / price_usd:.6f}"


class ProtocolAdapter(ABC):
    protocol_id: str = ""

    @abstractmethod
    async def fetch_positions(self, wallet_address: str) -> List[Position]:
        """Return the wallet's borrow positions on this protocol"""
        pass
