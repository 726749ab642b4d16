"""Signed VAA and token bridge transfer parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from liquidity_relayer.core.errors import DecodeError, UnknownPayloadType
from liquidity_relayer.core.layout import Reader, Writer
from liquidity_relayer.core.utils import BytesLike, keccak256

GUARDIAN_SIGNATURE_LENGTH = 65
TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD = 3
TOKEN_BRIDGE_PAYLOAD_OFFSET = 133


@dataclass(frozen=True)
class GuardianSignature:
    index: int
    signature: bytes


@dataclass(frozen=True)
class SignedVaa:
    """A guardian-signed observation of a published message."""

    version: int
    guardian_set_index: int
    signatures: Tuple[GuardianSignature, ...]
    timestamp: int
    nonce: int
    emitter_chain: int
    emitter_address: bytes
    sequence: int
    consistency_level: int
    payload: bytes
    body: bytes

    @property
    def hash(self) -> bytes:
        return keccak256(self.body)

    @property
    def digest(self) -> bytes:
        """Double keccak of the body, as stored by core bridge contracts."""
        return keccak256(self.hash)

    @classmethod
    def decode(cls, data: BytesLike) -> "SignedVaa":
        reader = Reader(data)
        version = reader.read_u8("version")
        if version != 1:
            raise DecodeError(f"Unsupported VAA version: {version}")
        guardian_set_index = reader.read_u32("guardian_set_index")
        count = reader.read_u8("signature count")
        signatures = tuple(
            GuardianSignature(
                index=reader.read_u8("guardian index"),
                signature=reader.read_bytes(GUARDIAN_SIGNATURE_LENGTH, field="signature"),
            )
            for _ in range(count)
        )
        body_offset = reader.offset
        timestamp = reader.read_u32("timestamp")
        nonce = reader.read_u32("nonce")
        emitter_chain = reader.read_u16("emitter_chain")
        emitter_address = reader.read_address("emitter_address")
        sequence = reader.read_u64("sequence")
        consistency_level = reader.read_u8("consistency_level")
        payload = reader.read_rest()
        return cls(
            version=version,
            guardian_set_index=guardian_set_index,
            signatures=signatures,
            timestamp=timestamp,
            nonce=nonce,
            emitter_chain=emitter_chain,
            emitter_address=emitter_address,
            sequence=sequence,
            consistency_level=consistency_level,
            payload=payload,
            body=bytes(data)[body_offset:],
        )


def encode_vaa_body(
    *,
    timestamp: int,
    nonce: int,
    emitter_chain: int,
    emitter_address: bytes,
    sequence: int,
    consistency_level: int,
    payload: bytes,
) -> bytes:
    writer = Writer()
    writer.write_u32(timestamp, "timestamp")
    writer.write_u32(nonce, "nonce")
    writer.write_u16(emitter_chain, "emitter_chain")
    writer.write_address(emitter_address, "emitter_address")
    writer.write_u64(sequence, "sequence")
    writer.write_u8(consistency_level, "consistency_level")
    writer.write_bytes(payload)
    return writer.to_bytes()


@dataclass(frozen=True)
class TokenBridgeTransfer:
    """Token bridge transfer-with-payload, used on the local bridge path."""

    amount: int
    token_address: bytes
    token_chain: int
    to_address: bytes
    to_chain: int
    from_address: bytes
    payload: bytes

    def encode(self) -> bytes:
        writer = Writer()
        writer.write_u8(TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD)
        writer.write_u256(self.amount, "amount")
        writer.write_address(self.token_address, "token_address")
        writer.write_u16(self.token_chain, "token_chain")
        writer.write_address(self.to_address, "to_address")
        writer.write_u16(self.to_chain, "to_chain")
        writer.write_address(self.from_address, "from_address")
        writer.write_bytes(self.payload)
        return writer.to_bytes()

    @classmethod
    def decode(cls, data: BytesLike) -> "TokenBridgeTransfer":
        reader = Reader(data)
        payload_id = reader.read_u8("payload id")
        if payload_id != TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD:
            raise UnknownPayloadType(payload_id, context="token bridge payload")
        return cls(
            amount=reader.read_u256("amount"),
            token_address=reader.read_address("token_address"),
            token_chain=reader.read_u16("token_chain"),
            to_address=reader.read_address("to_address"),
            to_chain=reader.read_u16("to_chain"),
            from_address=reader.read_address("from_address"),
            payload=bytes(data)[TOKEN_BRIDGE_PAYLOAD_OFFSET:],
        )


__all__ = [
    "GuardianSignature",
    "SignedVaa",
    "TOKEN_BRIDGE_PAYLOAD_OFFSET",
    "TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD",
    "TokenBridgeTransfer",
    "encode_vaa_body",
]
