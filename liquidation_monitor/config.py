from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Service
    MONITOR_PORT: int = 8002

    # Data sources
    ETHEREUM_RPC_URL: str = "https://eth.llamarpc.com"
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_API_KEY: Optional[str] = None

    # Alerting
    DEFAULT_ALERT_THRESHOLD: float = 15.0
    SEVERITY_WARNING_BUFFER: float = 15.0
    SEVERITY_CRITICAL_BUFFER: float = 5.0

    # Timeouts (seconds)
    PROTOCOL_FETCH_TIMEOUT_SECONDS: float = 20.0
    PRICE_FETCH_TIMEOUT_SECONDS: float = 10.0
    PRICE_RETRY_ATTEMPTS: int = 2

    # Background monitoring
    ENABLE_BACKGROUND_MONITORING: bool = False
    BACKGROUND_TASK_INTERVAL: int = 600
    REDISCOVER_ON_CYCLE: bool = True

    # Protocol defaults
    AAVE_BASE_CURRENCY_DECIMALS: int = 8
    AAVE_DEFAULT_LIQUIDATION_THRESHOLD: float = 0.8
    CURVE_DEFAULT_LLTV: float = 0.87

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()


# Advisory severity bands for a position's buffer
class RiskSeverity:
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    LIQUIDATABLE = "liquidatable"


# Supported Protocols
class SupportedProtocols:
    AAVE_V3 = "aave-v3"
    CURVE = "curve"


NETWORK_CONFIG = {
    "ethereum": {
        "chain_id": 1,
        "name": "Ethereum Mainnet",
        "rpc_url": settings.ETHEREUM_RPC_URL,
    }
}

PROTOCOL_CONFIGS = {
    SupportedProtocols.AAVE_V3: {
        "name": "Aave V3",
        "chain_id": 1,
        "pool_address": "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2",
    },
    SupportedProtocols.CURVE: {
        "name": "Curve Finance",
        "chain_id": 1,
        "crvusd_address": "0xf939E0A03FB07F59A73314E73794Be0E57ac1b4E",
        # crvUSD controllers: WETH, WBTC, wstETH
        "controllers": [
            "0x10062051C1c7b1b4DC798c401c3A9FA7A7783D3A",
            "0x72e158d38dbd50a483501c24d7926d96e5cf74ac",
            "0x5354c132a85d9a7e8e8db1863e9c7c8f6c5f5e5e",
        ],
    },
}

# Token symbol -> CoinGecko id
TOKEN_MAP = {
    "WETH": "ethereum",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "DAI": "dai",
    "WBTC": "wrapped-bitcoin",
    "LINK": "chainlink",
    "AAVE": "aave",
    "CRV": "curve-dao-token",
    "crvUSD": "crvusd",
    "wstETH": "wrapped-steth",
}
