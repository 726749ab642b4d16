"""CCTP token burn message codec.

The layout is fixed by Circle's message transmitter: a 116-byte message
header followed by a 132-byte burn message body. Offsets must not change.
"""

from __future__ import annotations

from dataclasses import dataclass

from liquidity_relayer.core.errors import DecodeError
from liquidity_relayer.core.layout import Reader, Writer
from liquidity_relayer.core.utils import UNIVERSAL_ADDRESS_LENGTH, BytesLike, keccak256

CCTP_MESSAGE_HEADER_LENGTH = 116
CCTP_BURN_BODY_LENGTH = 132
CCTP_TOKEN_BURN_MESSAGE_LENGTH = CCTP_MESSAGE_HEADER_LENGTH + CCTP_BURN_BODY_LENGTH


@dataclass(frozen=True)
class CctpTokenBurnMessage:
    version: int
    source_domain: int
    destination_domain: int
    nonce: int
    sender: bytes
    recipient: bytes
    target_caller: bytes
    burn_token_address: bytes
    mint_recipient: bytes
    amount: int
    burn_source: bytes
    body_version: int = 0

    def __post_init__(self) -> None:
        for name in ("sender", "recipient", "target_caller", "burn_token_address", "mint_recipient", "burn_source"):
            value = getattr(self, name)
            if not isinstance(value, (bytes, bytearray)) or len(value) != UNIVERSAL_ADDRESS_LENGTH:
                raise ValueError(f"{name} must be {UNIVERSAL_ADDRESS_LENGTH} bytes")

    def encode(self) -> bytes:
        writer = Writer()
        writer.write_u32(self.version, "version")
        writer.write_u32(self.source_domain, "source_domain")
        writer.write_u32(self.destination_domain, "destination_domain")
        writer.write_u64(self.nonce, "nonce")
        writer.write_address(self.sender, "sender")
        writer.write_address(self.recipient, "recipient")
        writer.write_address(self.target_caller, "target_caller")
        writer.write_u32(self.body_version, "body_version")
        writer.write_address(self.burn_token_address, "burn_token_address")
        writer.write_address(self.mint_recipient, "mint_recipient")
        writer.write_u64_as_u256(self.amount, "amount")
        writer.write_address(self.burn_source, "burn_source")
        return writer.to_bytes()

    @classmethod
    def decode(cls, data: BytesLike) -> "CctpTokenBurnMessage":
        raw = bytes(data)
        if len(raw) != CCTP_TOKEN_BURN_MESSAGE_LENGTH:
            raise DecodeError(
                f"CCTP burn message must be {CCTP_TOKEN_BURN_MESSAGE_LENGTH} bytes, got {len(raw)}"
            )
        reader = Reader(raw)
        return cls(
            version=reader.read_u32("version"),
            source_domain=reader.read_u32("source_domain"),
            destination_domain=reader.read_u32("destination_domain"),
            nonce=reader.read_u64("nonce"),
            sender=reader.read_address("sender"),
            recipient=reader.read_address("recipient"),
            target_caller=reader.read_address("target_caller"),
            body_version=reader.read_u32("body_version"),
            burn_token_address=reader.read_address("burn_token_address"),
            mint_recipient=reader.read_address("mint_recipient"),
            amount=reader.read_u256_as_u64("amount"),
            burn_source=reader.read_address("burn_source"),
        )

    def message_hash(self) -> bytes:
        """Key under which the attestation service publishes this message."""
        return keccak256(self.encode())


def cctp_message_hash(message: BytesLike) -> bytes:
    """Hash raw CCTP message bytes without decoding them."""
    return keccak256(message)


__all__ = [
    "CCTP_TOKEN_BURN_MESSAGE_LENGTH",
    "CctpTokenBurnMessage",
    "cctp_message_hash",
]
