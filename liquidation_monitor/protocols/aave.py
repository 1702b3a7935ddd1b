"""Aave V3 adapter.

The Pool's ``getUserAccountData`` only reports account-wide totals in the base
currency, so a wallet maps to a single consolidated position with ``MIXED``
assets. Token amounts are expressed in ETH (collateral) and USDC (debt)
equivalents.
"""
from typing import List, Optional

import structlog
from web3 import AsyncWeb3

from ..config import settings, PROTOCOL_CONFIGS, SupportedProtocols
from ..external_apis import PriceOracle
from ..models import Position
from .base import ProtocolAdapter, build_web3, amount_from_value
from .contracts import AAVE_POOL_ABI

logger = structlog.get_logger()

MIXED_ASSET = "MIXED"


class AaveV3Adapter(ProtocolAdapter):
    protocol_id = SupportedProtocols.AAVE_V3

    def __init__(self, price_oracle: PriceOracle, web3: Optional[AsyncWeb3] = None):
        self._web3 = web3 or build_web3()
        self._price_oracle = price_oracle
        self._pool_contract = self._web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(PROTOCOL_CONFIGS[self.protocol_id]["pool_address"]),
            abi=AAVE_POOL_ABI,
        )

    def _from_base(self, value: int) -> float:
        return value / 10 ** settings.AAVE_BASE_CURRENCY_DECIMALS

    async def fetch_positions(self, wallet_address: str) -> List[Position]:
        account_data = await self._pool_contract.functions.getUserAccountData(
            AsyncWeb3.to_checksum_address(wallet_address)
        ).call()

        total_collateral_base, total_debt_base, _, liquidation_threshold_bps = account_data[:4]

        if total_debt_base == 0:
            logger.debug("No Aave debt for wallet", wallet=wallet_address)
            return []

        collateral_value = self._from_base(total_collateral_base)
        debt_value = self._from_base(total_debt_base)

        prices = await self._price_oracle.get_token_prices(["ETH", "USDC"])

        liquidation_threshold = liquidation_threshold_bps / 10_000
        if liquidation_threshold <= 0 or liquidation_threshold > 1:
            liquidation_threshold = settings.AAVE_DEFAULT_LIQUIDATION_THRESHOLD

        return [Position(
            id=f"{wallet_address}-{self.protocol_id}-consolidated",
            protocol_id=self.protocol_id,
            collateral_asset=MIXED_ASSET,
            debt_asset=MIXED_ASSET,
            collateral_amount=amount_from_value(collateral_value, prices.get("ETH", 0.0)),
            debt_amount=amount_from_value(debt_value, prices.get("USDC", 0.0)),
            collateral_value=collateral_value,
            debt_value=debt_value,
            liquidation_threshold=liquidation_threshold,
        )]
