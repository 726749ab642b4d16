"""Liquidity layer message codec.

Every message starts with a one-byte payload id. Deposits carry a fixed
header followed by a u16 length-prefixed nested payload whose own id sits
at a fixed offset (147), so the kind of deposit can be identified without
parsing the rest of the message. ``redeemer_message`` is the only
variable-length field of any payload and is always encoded last with a u32
length prefix.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from liquidity_relayer.core.errors import DecodeError, UnknownPayloadType
from liquidity_relayer.core.layout import U16_MAX, Reader, Writer
from liquidity_relayer.core.utils import UNIVERSAL_ADDRESS_LENGTH, ZERO_ADDRESS, BytesLike


class PayloadId(IntEnum):
    """Top-level liquidity layer message ids."""

    DEPOSIT = 1
    FAST_MARKET_ORDER = 11
    FAST_FILL = 12


class DepositPayloadId(IntEnum):
    """Ids of the payloads nested inside a deposit."""

    FILL = 16
    SLOW_ORDER_RESPONSE = 32


DEPOSIT_HEADER_LENGTH = 144
DEPOSIT_PAYLOAD_LENGTH_OFFSET = 1 + DEPOSIT_HEADER_LENGTH
DEPOSIT_PAYLOAD_ID_OFFSET = DEPOSIT_PAYLOAD_LENGTH_OFFSET + 2


def _check_address(value: bytes, field: str) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != UNIVERSAL_ADDRESS_LENGTH:
        raise ValueError(f"{field} must be {UNIVERSAL_ADDRESS_LENGTH} bytes")


def _guarded(parse):
    # Field validation in the dataclasses raises ValueError; surface it as a decode failure.
    try:
        return parse()
    except DecodeError:
        raise
    except ValueError as exc:
        raise DecodeError(str(exc)) from exc


@dataclass(frozen=True)
class Fill:
    """Instruction to pay out a filled order on the destination chain."""

    source_chain: int
    order_sender: bytes
    redeemer: bytes
    redeemer_message: bytes = b""

    def __post_init__(self) -> None:
        _check_address(self.order_sender, "order_sender")
        _check_address(self.redeemer, "redeemer")


@dataclass(frozen=True)
class SlowOrderResponse:
    """Matching engine response carrying the base fee for the slow relay."""

    base_fee: int


DepositPayload = Union[Fill, SlowOrderResponse]


@dataclass(frozen=True)
class DepositHeader:
    """CCTP transfer details shared by every deposit."""

    token_address: bytes
    amount: int
    source_cctp_domain: int
    destination_cctp_domain: int
    cctp_nonce: int
    burn_source: bytes
    mint_recipient: bytes

    def __post_init__(self) -> None:
        _check_address(self.token_address, "token_address")
        _check_address(self.burn_source, "burn_source")
        _check_address(self.mint_recipient, "mint_recipient")


@dataclass(frozen=True)
class Deposit:
    header: DepositHeader
    payload: DepositPayload


@dataclass(frozen=True)
class FastMarketOrder:
    """User order auctioned off to liquidity providers on the matching engine."""

    amount_in: int
    min_amount_out: int
    target_chain: int
    redeemer: bytes
    sender: bytes
    refund_address: bytes
    max_fee: int
    init_auction_fee: int
    deadline: int
    exclusive_relayer: bytes = ZERO_ADDRESS
    redeemer_message: bytes = b""

    def __post_init__(self) -> None:
        if self.amount_in <= 0:
            raise ValueError("amount_in must be positive")
        for name in ("redeemer", "sender", "refund_address", "exclusive_relayer"):
            _check_address(getattr(self, name), name)

    @property
    def has_exclusive_relayer(self) -> bool:
        return self.exclusive_relayer != ZERO_ADDRESS


@dataclass(frozen=True)
class FastFill:
    """Fill settled on the matching engine chain itself."""

    fill: Fill
    amount: int


LiquidityLayerMessage = Union[Deposit, FastMarketOrder, FastFill]


def _write_fill(writer: Writer, fill: Fill) -> None:
    writer.write_u8(DepositPayloadId.FILL)
    writer.write_u16(fill.source_chain, "source_chain")
    writer.write_address(fill.order_sender, "order_sender")
    writer.write_address(fill.redeemer, "redeemer")
    writer.write_prefixed_u32(fill.redeemer_message, "redeemer_message")


def encode_deposit_payload(payload: DepositPayload) -> bytes:
    """Encode the payload nested inside a deposit, including its id byte."""
    writer = Writer()
    if isinstance(payload, Fill):
        _write_fill(writer, payload)
    elif isinstance(payload, SlowOrderResponse):
        writer.write_u8(DepositPayloadId.SLOW_ORDER_RESPONSE)
        writer.write_u64(payload.base_fee, "base_fee")
    else:
        raise TypeError(f"Unsupported deposit payload: {type(payload).__name__}")
    return writer.to_bytes()


def _read_fill_body(reader: Reader) -> Fill:
    return Fill(
        source_chain=reader.read_u16("source_chain"),
        order_sender=reader.read_address("order_sender"),
        redeemer=reader.read_address("redeemer"),
        redeemer_message=reader.read_prefixed_u32("redeemer_message"),
    )


def _read_deposit_payload(reader: Reader) -> DepositPayload:
    payload_id = reader.read_u8("deposit payload id")
    if payload_id == DepositPayloadId.FILL:
        return _read_fill_body(reader)
    if payload_id == DepositPayloadId.SLOW_ORDER_RESPONSE:
        return SlowOrderResponse(base_fee=reader.read_u64("base_fee"))
    raise UnknownPayloadType(payload_id, context="deposit payload")


def decode_deposit_payload(data: BytesLike) -> DepositPayload:
    """Decode a nested deposit payload; the whole buffer must be consumed."""
    reader = Reader(data)
    payload = _guarded(lambda: _read_deposit_payload(reader))
    reader.expect_end("deposit payload")
    return payload


def _encode_deposit(message: Deposit) -> bytes:
    header = message.header
    payload = encode_deposit_payload(message.payload)
    if len(payload) > U16_MAX:
        raise ValueError(f"Deposit payload too large: {len(payload)} bytes")
    writer = Writer()
    writer.write_u8(PayloadId.DEPOSIT)
    writer.write_address(header.token_address, "token_address")
    writer.write_u64_as_u256(header.amount, "amount")
    writer.write_u32(header.source_cctp_domain, "source_cctp_domain")
    writer.write_u32(header.destination_cctp_domain, "destination_cctp_domain")
    writer.write_u64(header.cctp_nonce, "cctp_nonce")
    writer.write_address(header.burn_source, "burn_source")
    writer.write_address(header.mint_recipient, "mint_recipient")
    writer.write_u16(len(payload), "payload length")
    writer.write_bytes(payload)
    return writer.to_bytes()


def _decode_deposit(reader: Reader) -> Deposit:
    header = DepositHeader(
        token_address=reader.read_address("token_address"),
        amount=reader.read_u256_as_u64("amount"),
        source_cctp_domain=reader.read_u32("source_cctp_domain"),
        destination_cctp_domain=reader.read_u32("destination_cctp_domain"),
        cctp_nonce=reader.read_u64("cctp_nonce"),
        burn_source=reader.read_address("burn_source"),
        mint_recipient=reader.read_address("mint_recipient"),
    )
    payload_bytes = reader.read_bytes(reader.read_u16("payload length"), field="deposit payload")
    return Deposit(header=header, payload=decode_deposit_payload(payload_bytes))


def _encode_fast_market_order(order: FastMarketOrder) -> bytes:
    writer = Writer()
    writer.write_u8(PayloadId.FAST_MARKET_ORDER)
    writer.write_u64(order.amount_in, "amount_in")
    writer.write_u64(order.min_amount_out, "min_amount_out")
    writer.write_u16(order.target_chain, "target_chain")
    writer.write_address(order.redeemer, "redeemer")
    writer.write_address(order.sender, "sender")
    writer.write_address(order.refund_address, "refund_address")
    writer.write_u64(order.max_fee, "max_fee")
    writer.write_u64(order.init_auction_fee, "init_auction_fee")
    writer.write_u32(order.deadline, "deadline")
    writer.write_address(order.exclusive_relayer, "exclusive_relayer")
    writer.write_prefixed_u32(order.redeemer_message, "redeemer_message")
    return writer.to_bytes()


def _decode_fast_market_order(reader: Reader) -> FastMarketOrder:
    return FastMarketOrder(
        amount_in=reader.read_u64("amount_in"),
        min_amount_out=reader.read_u64("min_amount_out"),
        target_chain=reader.read_u16("target_chain"),
        redeemer=reader.read_address("redeemer"),
        sender=reader.read_address("sender"),
        refund_address=reader.read_address("refund_address"),
        max_fee=reader.read_u64("max_fee"),
        init_auction_fee=reader.read_u64("init_auction_fee"),
        deadline=reader.read_u32("deadline"),
        exclusive_relayer=reader.read_address("exclusive_relayer"),
        redeemer_message=reader.read_prefixed_u32("redeemer_message"),
    )


def _encode_fast_fill(message: FastFill) -> bytes:
    writer = Writer()
    writer.write_u8(PayloadId.FAST_FILL)
    _write_fill(writer, message.fill)
    writer.write_u64(message.amount, "amount")
    return writer.to_bytes()


def _decode_fast_fill(reader: Reader) -> FastFill:
    fill_id = reader.read_u8("fill id")
    if fill_id != DepositPayloadId.FILL:
        raise UnknownPayloadType(fill_id, context="fast fill payload")
    fill = _read_fill_body(reader)
    return FastFill(fill=fill, amount=reader.read_u64("amount"))


def encode_message(message: LiquidityLayerMessage) -> bytes:
    """Serialize a liquidity layer message."""
    if isinstance(message, Deposit):
        return _encode_deposit(message)
    if isinstance(message, FastMarketOrder):
        return _encode_fast_market_order(message)
    if isinstance(message, FastFill):
        return _encode_fast_fill(message)
    raise TypeError(f"Unsupported message: {type(message).__name__}")


_DECODERS = {
    PayloadId.DEPOSIT: _decode_deposit,
    PayloadId.FAST_MARKET_ORDER: _decode_fast_market_order,
    PayloadId.FAST_FILL: _decode_fast_fill,
}


def decode_message(data: BytesLike) -> LiquidityLayerMessage:
    """Strictly decode a liquidity layer message.

    Raises :class:`UnknownPayloadType` for unrecognised ids and
    :class:`DecodeError` for truncated, oversized or otherwise invalid input.
    """
    reader = Reader(data)
    payload_id = reader.read_u8("payload id")
    try:
        decoder = _DECODERS[PayloadId(payload_id)]
    except ValueError:
        raise UnknownPayloadType(payload_id) from None
    message = _guarded(lambda: decoder(reader))
    reader.expect_end("message")
    return message


def peek_payload_id(data: BytesLike) -> int:
    """Return the top-level payload id without decoding the message."""
    return Reader(data).read_u8("payload id")


def peek_deposit_payload_id(data: BytesLike) -> int:
    """Return the nested payload id of an encoded deposit."""
    return Reader(data, offset=DEPOSIT_PAYLOAD_ID_OFFSET).read_u8("deposit payload id")


__all__ = [
    "DEPOSIT_PAYLOAD_ID_OFFSET",
    "Deposit",
    "DepositHeader",
    "DepositPayload",
    "DepositPayloadId",
    "FastFill",
    "FastMarketOrder",
    "Fill",
    "LiquidityLayerMessage",
    "PayloadId",
    "SlowOrderResponse",
    "decode_deposit_payload",
    "decode_message",
    "encode_deposit_payload",
    "encode_message",
    "peek_deposit_payload_id",
    "peek_payload_id",
]
