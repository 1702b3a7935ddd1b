import re
from typing import Optional

from .error_handling import ValidationError

# Wallet address validation regex
WALLET_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')


def verify_wallet_address(wallet_address: Optional[str]) -> bool:
    """Verify if wallet address is valid Ethereum format"""
    if not wallet_address or not isinstance(wallet_address, str):
        return False
    return bool(WALLET_ADDRESS_PATTERN.fullmatch(wallet_address))


def normalize_wallet_address(wallet_address: Optional[str]) -> str:
    """Validate a wallet address and return its lowercase key form"""
    if not verify_wallet_address(wallet_address):
        raise ValidationError(
            f"Wallet address must be a valid Ethereum address (0x followed by 40 hex characters), got {wallet_address!r}"
        )
    return wallet_address.lower()
