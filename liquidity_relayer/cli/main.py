"""CLI entrypoint for running the fast transfer relayer."""

from __future__ import annotations

import argparse
import os
import sys
import threading
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from eth_account import Account

from liquidity_relayer.config import RelayerConfig, load_config
from liquidity_relayer.core.attestation import CircleAttestationClient, GuardianAttestationClient
from liquidity_relayer.core.chain import EvmChainGateway
from liquidity_relayer.core.endpoints import EndpointRegistry
from liquidity_relayer.core.listener import RelayService
from liquidity_relayer.core.messages import decode_deposit_payload, decode_message, peek_payload_id
from liquidity_relayer.core.pipeline import RelayPipeline
from liquidity_relayer.core.utils import get_logger, hex_to_bytes
from liquidity_relayer.core.vaa import TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD, SignedVaa, TokenBridgeTransfer

LOGGER = get_logger("liquidity_relayer.cli")


def build_service(config: RelayerConfig, private_key: str) -> RelayService:
    """Wire the gateway, attestation clients and pipeline for ``config``."""
    account = Account.from_key(private_key)
    LOGGER.info("Relaying as %s", account.address)

    cancel = threading.Event()
    defaults = config.defaults
    polling = dict(
        poll_interval=defaults.poll_interval,
        timeout=defaults.attestation_timeout,
        api_timeout=defaults.api_timeout,
    )
    gateway = EvmChainGateway(config=config, account=account)
    pipeline = RelayPipeline(
        config=config,
        registry=EndpointRegistry.from_config(config),
        gateway=gateway,
        guardian=GuardianAttestationClient(config.guardian_rpc_hosts, **polling),
        circle=CircleAttestationClient(config.circle_attestation_url, **polling),
        cancel=cancel,
    )
    return RelayService(pipeline=pipeline, gateway=gateway, cancel=cancel)


def describe_payload(data: bytes, *, vaa: bool = False) -> List[str]:
    """Decode a raw payload, or the payload of a signed VAA, into printable lines."""
    lines: List[str] = []
    if vaa:
        signed = SignedVaa.decode(data)
        lines.append(
            f"VAA emitter={signed.emitter_chain}/{signed.emitter_address.hex()} sequence={signed.sequence} "
            f"digest=0x{signed.digest.hex()}"
        )
        data = signed.payload

    payload_id = peek_payload_id(data)
    if payload_id == TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD:
        transfer = TokenBridgeTransfer.decode(data)
        lines.append(f"TokenBridgeTransfer to_chain={transfer.to_chain} amount={transfer.amount}")
        lines.append(repr(decode_deposit_payload(transfer.payload)))
    else:
        lines.append(repr(decode_message(data)))
    return lines


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay fast transfer settlements across chains")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Watch configured chains and relay settlements")
    run.add_argument("--config", type=Path, default=None, help="Path to relayer.json")

    decode = subparsers.add_parser("decode", help="Decode a hex-encoded VAA or liquidity layer payload")
    decode.add_argument("payload", help="Hex string, with or without 0x")
    decode.add_argument("--vaa", action="store_true", help="Treat the input as a signed VAA")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = _parse_args(argv)

    if args.command == "decode":
        try:
            for line in describe_payload(hex_to_bytes(args.payload.strip()), vaa=args.vaa):
                LOGGER.info(line)
        except ValueError as exc:
            print(f"❌ Error: {exc}")
            sys.exit(1)
        return

    private_key = (os.getenv("ETH_KEY") or "").strip()
    if not private_key:
        print("❌ Error: ETH_KEY environment variable not set")
        sys.exit(1)

    try:
        service = build_service(load_config(args.config), private_key)
    except Exception as exc:
        print(f"\n❌ Error: {exc}")
        sys.exit(1)
    service.run_forever()


if __name__ == "__main__":  # pragma: no cover - CLI entry
    main()
