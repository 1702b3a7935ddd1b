"""Curve crvUSD adapter: one position per controller the wallet has a loan on"""
from typing import List, Optional

import structlog
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from ..config import settings, PROTOCOL_CONFIGS, SupportedProtocols
from ..external_apis import PriceOracle
from ..models import Position
from .base import ProtocolAdapter, build_web3, format_units
from .contracts import CURVE_CONTROLLER_ABI, ERC20_ABI

logger = structlog.get_logger()

DEBT_SYMBOL = "crvUSD"
CRVUSD_DECIMALS = 18


class CurveAdapter(ProtocolAdapter):
    protocol_id = SupportedProtocols.CURVE

    def __init__(self, price_oracle: PriceOracle, web3: Optional[AsyncWeb3] = None,
                 controllers: Optional[List[str]] = None):
        self._web3 = web3 or build_web3()
        self._price_oracle = price_oracle
        self._controllers = controllers or PROTOCOL_CONFIGS[self.protocol_id]["controllers"]

    def _contract(self, address: str, abi):
        return self._web3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    async def fetch_positions(self, wallet_address: str) -> List[Position]:
        user = AsyncWeb3.to_checksum_address(wallet_address)
        positions: List[Position] = []

        for controller_address in self._controllers:
            position = await self._fetch_controller_position(controller_address, user, wallet_address)
            if position is not None:
                positions.append(position)

        return positions

    async def _fetch_controller_position(self, controller_address: str, user: str,
                                         wallet_address: str) -> Optional[Position]:
        controller = self._contract(controller_address, CURVE_CONTROLLER_ABI)

        try:
            collateral_raw, stablecoin_raw, debt_raw, _bands = await controller.functions.user_state(user).call()
        except (ContractLogicError, BadFunctionCallOutput) as e:
            # Controllers revert for wallets that never opened a loan
            logger.debug("No Curve loan on controller",
                         controller=controller_address, wallet=wallet_address, reason=str(e))
            return None

        if debt_raw == 0 or (collateral_raw == 0 and stablecoin_raw == 0):
            return None

        token_address = await controller.functions.collateral_token().call()
        token = self._contract(token_address, ERC20_ABI)
        symbol = await token.functions.symbol().call()
        decimals = await token.functions.decimals().call()

        collateral_amount = format_units(collateral_raw, decimals)
        debt_amount = format_units(debt_raw, CRVUSD_DECIMALS)

        prices = await self._price_oracle.get_token_prices([symbol, DEBT_SYMBOL])
        collateral_price = prices.get(symbol, 0.0)
        # crvUSD is USD-pegged; assume par rather than report zero debt
        debt_price = prices.get(DEBT_SYMBOL) or 1.0

        # In soft liquidation part of the collateral sits in the bands as crvUSD
        collateral_value = (
            float(collateral_amount) * collateral_price
            + float(format_units(stablecoin_raw, CRVUSD_DECIMALS)) * debt_price
        )
        debt_value = float(debt_amount) * debt_price

        return Position(
            id=f"{wallet_address}-{self.protocol_id}-{symbol}-{DEBT_SYMBOL}",
            protocol_id=self.protocol_id,
            collateral_asset=symbol,
            debt_asset=DEBT_SYMBOL,
            collateral_amount=collateral_amount,
            debt_amount=debt_amount,
            collateral_value=collateral_value,
            debt_value=debt_value,
            liquidation_threshold=settings.CURVE_DEFAULT_LLTV,
        )
