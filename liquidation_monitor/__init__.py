"""
Liquidation Monitor - DeFi borrow position risk monitoring

Tracks a wallet's collateralized borrow positions across lending protocols and
reports how close each one is to liquidation.

Key Features:
- Position discovery on Aave V3 and Curve crvUSD, fetched concurrently
- Health factor, liquidation price and safety buffer per position
- Threshold alerting with advisory severity bands
- Per-wallet monitoring state behind a small FastAPI service
- Optional periodic background monitoring
"""

__version__ = "1.0.0"

from .config import settings

__all__ = ["settings", "__version__"]
