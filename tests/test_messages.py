"""Liquidity layer codec: layouts, offsets and strict decoding."""

import pytest

from liquidity_relayer.core.errors import DecodeError, UnknownPayloadType
from liquidity_relayer.core.messages import (
    DEPOSIT_PAYLOAD_ID_OFFSET,
    Deposit,
    DepositPayloadId,
    FastFill,
    FastMarketOrder,
    PayloadId,
    SlowOrderResponse,
    decode_deposit_payload,
    decode_message,
    encode_deposit_payload,
    encode_message,
    peek_deposit_payload_id,
    peek_payload_id,
)

from factories import ARBITRUM, ETHEREUM, make_deposit, make_fill


def _order(**overrides) -> FastMarketOrder:
    fields = dict(
        amount_in=1_000_000,
        min_amount_out=990_000,
        target_chain=ARBITRUM,
        redeemer=b"\x11" * 32,
        sender=b"\x22" * 32,
        refund_address=b"\x33" * 32,
        max_fee=1000,
        init_auction_fee=100,
        deadline=0,
        redeemer_message=b"gm",
    )
    fields.update(overrides)
    return FastMarketOrder(**fields)


class TestFastMarketOrder:
    def test_reencodes_to_identical_bytes(self):
        encoded = encode_message(_order())

        decoded = decode_message(encoded)

        assert decoded == _order()
        assert encode_message(decoded) == encoded

    def test_layout(self):
        encoded = encode_message(_order())

        assert encoded[0] == PayloadId.FAST_MARKET_ORDER
        assert int.from_bytes(encoded[1:9], "big") == 1_000_000
        assert int.from_bytes(encoded[17:19], "big") == ARBITRUM
        assert len(encoded) == 1 + 8 + 8 + 2 + 32 * 3 + 8 + 8 + 4 + 32 + 4 + 2
        assert encoded[-6:-2] == (2).to_bytes(4, "big")

    def test_exclusive_relayer_defaults_to_zero(self):
        order = _order()
        assert not order.has_exclusive_relayer
        assert _order(exclusive_relayer=b"\x44" * 32).has_exclusive_relayer

    def test_zero_amount_rejected(self):
        with pytest.raises(ValueError):
            _order(amount_in=0)

    def test_zero_amount_on_the_wire_is_a_decode_error(self):
        encoded = bytearray(encode_message(_order()))
        encoded[1:9] = bytes(8)

        with pytest.raises(DecodeError):
            decode_message(bytes(encoded))


class TestDeposit:
    def test_fill_round_trip(self):
        deposit = make_deposit()

        assert decode_message(encode_message(deposit)) == deposit

    def test_header_offsets(self):
        encoded = encode_message(make_deposit(source_domain=0, destination_domain=3, nonce=42))

        assert int.from_bytes(encoded[33:65], "big") == 1_000_000
        assert int.from_bytes(encoded[65:69], "big") == 0
        assert int.from_bytes(encoded[69:73], "big") == 3
        assert int.from_bytes(encoded[73:81], "big") == 42
        assert encoded[DEPOSIT_PAYLOAD_ID_OFFSET] == DepositPayloadId.FILL
        assert int.from_bytes(encoded[145:147], "big") == len(encoded) - 147

    def test_slow_order_response_discriminator(self):
        encoded = encode_message(make_deposit(payload=SlowOrderResponse(base_fee=77)))

        assert peek_payload_id(encoded) == PayloadId.DEPOSIT
        assert peek_deposit_payload_id(encoded) == DepositPayloadId.SLOW_ORDER_RESPONSE
        assert decode_message(encoded).payload == SlowOrderResponse(base_fee=77)

    def test_unknown_nested_payload(self):
        encoded = bytearray(encode_message(make_deposit()))
        encoded[DEPOSIT_PAYLOAD_ID_OFFSET] = 99

        with pytest.raises(UnknownPayloadType) as excinfo:
            decode_message(bytes(encoded))
        assert excinfo.value.payload_id == 99

    def test_amount_must_fit_in_u64(self):
        encoded = bytearray(encode_message(make_deposit()))
        encoded[33] = 1

        with pytest.raises(DecodeError):
            decode_message(bytes(encoded))

    def test_nested_payload_must_be_consumed_entirely(self):
        payload = encode_deposit_payload(SlowOrderResponse(base_fee=1)) + b"\x00"

        with pytest.raises(DecodeError):
            decode_deposit_payload(payload)


class TestFastFill:
    def test_round_trip(self):
        message = FastFill(fill=make_fill(source_chain=ETHEREUM), amount=123)

        assert decode_message(encode_message(message)) == message


class TestStrictDecoding:
    def test_unknown_top_level_id(self):
        with pytest.raises(UnknownPayloadType):
            decode_message(b"\x07" + bytes(40))

    def test_empty_input(self):
        with pytest.raises(DecodeError):
            decode_message(b"")

    @pytest.mark.parametrize("cut", [1, 60, 146, 150])
    def test_truncated_deposit(self, cut):
        encoded = encode_message(make_deposit())

        with pytest.raises(DecodeError):
            decode_message(encoded[:cut])

    def test_trailing_bytes(self):
        with pytest.raises(DecodeError):
            decode_message(encode_message(_order()) + b"\x00")

    def test_unknown_id_is_also_a_value_error(self):
        with pytest.raises(ValueError):
            decode_message(b"\xff")

    def test_encode_rejects_other_types(self):
        with pytest.raises(TypeError):
            encode_message(object())

    def test_decoded_deposit_type(self):
        assert isinstance(decode_message(encode_message(make_deposit())), Deposit)
