import pytest

from liquidity_relayer.core.errors import DecodeError, UnknownPayloadType
from liquidity_relayer.core.utils import keccak256
from liquidity_relayer.core.vaa import TOKEN_BRIDGE_PAYLOAD_OFFSET, SignedVaa, TokenBridgeTransfer

from factories import AVALANCHE, ETHEREUM, address, make_signed_vaa, make_transfer, universal


class TestSignedVaa:
    def test_decode_body_fields(self):
        raw = make_signed_vaa(emitter_chain=ETHEREUM, emitter=address(0x02, ETHEREUM), sequence=5, payload=b"\x01\x02")

        vaa = SignedVaa.decode(raw)

        assert vaa.guardian_set_index == 4
        assert len(vaa.signatures) == 1
        assert vaa.emitter_chain == ETHEREUM
        assert vaa.emitter_address == universal(0x02, ETHEREUM)
        assert vaa.sequence == 5
        assert vaa.payload == b"\x01\x02"

    def test_hash_and_digest(self):
        raw = make_signed_vaa(emitter_chain=ETHEREUM, emitter=address(0x02, ETHEREUM), sequence=5, payload=b"x")
        vaa = SignedVaa.decode(raw)

        assert vaa.body == raw[1 + 4 + 1 + 66 :]
        assert vaa.hash == keccak256(vaa.body)
        assert vaa.digest == keccak256(keccak256(vaa.body))

    def test_unsupported_version(self):
        raw = bytearray(make_signed_vaa(emitter_chain=ETHEREUM, emitter=address(0x02, ETHEREUM), sequence=1, payload=b""))
        raw[0] = 2

        with pytest.raises(DecodeError):
            SignedVaa.decode(bytes(raw))

    def test_truncated_signatures(self):
        with pytest.raises(DecodeError):
            SignedVaa.decode(b"\x01" + bytes(4) + b"\x02" + bytes(66))


class TestTokenBridgeTransfer:
    def test_payload_offset_and_round_trip(self):
        transfer = make_transfer(to_chain=AVALANCHE)
        encoded = transfer.encode()

        assert int.from_bytes(encoded[99:101], "big") == AVALANCHE
        assert encoded[101:133] == transfer.from_address
        assert encoded[TOKEN_BRIDGE_PAYLOAD_OFFSET:] == transfer.payload
        assert TokenBridgeTransfer.decode(encoded) == transfer

    def test_plain_transfer_is_not_relayable(self):
        encoded = b"\x01" + make_transfer().encode()[1:]

        with pytest.raises(UnknownPayloadType):
            TokenBridgeTransfer.decode(encoded)
