"""Utility helpers shared across relayer core modules."""

from __future__ import annotations

import logging
from typing import Optional, Union

from web3 import Web3

BytesLike = Union[bytes, bytearray, memoryview]

UNIVERSAL_ADDRESS_LENGTH = 32
EVM_ADDRESS_LENGTH = 20
ZERO_ADDRESS = bytes(UNIVERSAL_ADDRESS_LENGTH)


def get_logger(name: str = "liquidity_relayer") -> logging.Logger:
    """Return a configured logger that prints to stdout."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def ensure_web3_connected(web3: Web3, *, expected_chain_id: Optional[int] = None) -> None:
    """Validate that ``web3`` is connected and optionally matches the expected chain id."""
    if not web3.is_connected():
        raise ConnectionError("Failed to connect to the configured RPC endpoint")
    if expected_chain_id is not None and web3.eth.chain_id != expected_chain_id:
        raise ValueError(f"RPC chain ID mismatch: expected {expected_chain_id}, got {web3.eth.chain_id}")


def hex_to_bytes(data: str) -> bytes:
    """Convert a hex string (with or without ``0x``) to bytes."""
    data = data[2:] if data.startswith("0x") else data
    return bytes.fromhex(data)


def keccak256(data: BytesLike) -> bytes:
    """Return the Keccak-256 digest of ``data``."""
    return bytes(Web3.keccak(bytes(data)))


def to_universal_address(address: Union[str, BytesLike]) -> bytes:
    """Left-pad an EVM address (hex string or 20 bytes) to a 32-byte universal address."""
    raw = hex_to_bytes(address) if isinstance(address, str) else bytes(address)
    if len(raw) == UNIVERSAL_ADDRESS_LENGTH:
        return raw
    if len(raw) != EVM_ADDRESS_LENGTH:
        raise ValueError(f"Address must be 20 or 32 bytes, got {len(raw)}")
    return bytes(UNIVERSAL_ADDRESS_LENGTH - EVM_ADDRESS_LENGTH) + raw


def same_address(left: Union[str, BytesLike], right: Union[str, BytesLike]) -> bool:
    """Compare two addresses in any supported representation."""
    return to_universal_address(left) == to_universal_address(right)


__all__ = [
    "BytesLike",
    "EVM_ADDRESS_LENGTH",
    "UNIVERSAL_ADDRESS_LENGTH",
    "ZERO_ADDRESS",
    "ensure_web3_connected",
    "get_logger",
    "hex_to_bytes",
    "keccak256",
    "same_address",
    "to_universal_address",
]
