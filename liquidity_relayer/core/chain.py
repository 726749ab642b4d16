"""EVM chain gateway: event polling, settlement queries and transaction submission."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from liquidity_relayer.config import RelayerConfig
from liquidity_relayer.contracts import load_contract_abi
from liquidity_relayer.core.errors import SubmissionError
from liquidity_relayer.core.utils import ensure_web3_connected, get_logger

LOGGER = get_logger("liquidity_relayer.chain")

MESSAGE_SENT_TOPIC = Web3.keccak(text="MessageSent(bytes)")


class SettlementPath(Enum):
    """How the funds of an observed message travel: CCTP burn or local token bridge."""

    CCTP = "cctp"
    LOCAL = "local"


@dataclass(frozen=True)
class PublishedMessage:
    """A ``LogMessagePublished`` event observed on a monitored chain."""

    chain: int
    block_number: int
    tx_hash: str
    log_index: int
    emitter: str
    sequence: int
    nonce: int
    payload: bytes
    consistency_level: int = 1


@dataclass(frozen=True)
class RedeemParameters:
    encoded_wormhole_message: bytes
    circle_bridge_message: bytes = b""
    circle_attestation: bytes = b""

    def as_tuple(self) -> tuple:
        return (self.encoded_wormhole_message, self.circle_bridge_message, self.circle_attestation)


@dataclass(frozen=True)
class SubmissionReceipt:
    chain: int
    tx_hash: str
    block_number: int
    gas_used: int


class EvmChainGateway:
    """Single point of contact with every configured EVM chain.

    Reads go straight to the node; writes are serialised per chain so
    concurrent settlements never race for the same signer nonce.
    """

    def __init__(
        self,
        *,
        config: RelayerConfig,
        account: Optional[LocalAccount] = None,
        web3_factory: Callable[[str], Web3] = lambda url: Web3(Web3.HTTPProvider(url)),
    ) -> None:
        self.config = config
        self.account = account
        self._web3_factory = web3_factory
        self._web3: Dict[int, Web3] = {}
        self._connect_lock = threading.Lock()
        self._send_locks: Dict[int, threading.Lock] = {chain_id: threading.Lock() for chain_id in config.chains}

    def web3(self, chain_id: int) -> Web3:
        with self._connect_lock:
            web3 = self._web3.get(chain_id)
            if web3 is None:
                chain = self.config.chain(chain_id)
                web3 = self._web3_factory(chain.ensure_rpc_url())
                ensure_web3_connected(web3, expected_chain_id=chain.evm_chain_id)
                self._web3[chain_id] = web3
                LOGGER.info("Connected to chain %s via %s", chain_id, chain.rpc_url)
            return web3

    def _contract(self, chain_id: int, address: str, abi_file: str) -> Contract:
        return self.web3(chain_id).eth.contract(address=Web3.to_checksum_address(address), abi=load_contract_abi(abi_file))

    def block_number(self, chain_id: int) -> int:
        return self.web3(chain_id).eth.block_number

    def poll_published_messages(
        self,
        chain_id: int,
        emitters: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> List[PublishedMessage]:
        """Return messages published by ``emitters`` in the inclusive block range."""
        route = self.config.route(chain_id)
        core = self._contract(chain_id, route.wormhole, "wormhole_core.json")
        messages: List[PublishedMessage] = []
        for emitter in emitters:
            logs = core.events.LogMessagePublished().get_logs(
                argument_filters={"sender": Web3.to_checksum_address(emitter)},
                from_block=from_block,
                to_block=to_block,
            )
            for log in logs:
                args = log["args"]
                messages.append(
                    PublishedMessage(
                        chain=chain_id,
                        block_number=log["blockNumber"],
                        tx_hash=Web3.to_hex(log["transactionHash"]),
                        log_index=log["logIndex"],
                        emitter=Web3.to_checksum_address(args["sender"]),
                        sequence=int(args["sequence"]),
                        nonce=int(args["nonce"]),
                        payload=bytes(args["payload"]),
                        consistency_level=int(args["consistencyLevel"]),
                    )
                )
        messages.sort(key=lambda message: (message.block_number, message.log_index))
        return messages

    def find_circle_message(self, chain_id: int, tx_hash: str) -> Optional[bytes]:
        """Return the CCTP ``MessageSent`` payload emitted in ``tx_hash``, if any."""
        route = self.config.route(chain_id)
        if route.circle_transmitter is None:
            return None
        web3 = self.web3(chain_id)
        receipt = web3.eth.get_transaction_receipt(tx_hash)
        transmitter = self._contract(chain_id, route.circle_transmitter, "circle_transmitter.json")
        for log in receipt["logs"]:
            if log["address"].lower() != route.circle_transmitter.lower():
                continue
            if not log["topics"] or bytes(log["topics"][0]) != bytes(MESSAGE_SENT_TOPIC):
                continue
            return bytes(transmitter.events.MessageSent().process_log(log)["args"]["message"])
        return None

    def is_settled(self, chain_id: int, path: SettlementPath, vaa_digest: bytes) -> bool:
        """Ask the destination chain whether this VAA was already redeemed."""
        route = self.config.route(chain_id)
        if path is SettlementPath.CCTP:
            if route.cctp is None:
                raise SubmissionError(f"Chain {chain_id} has no CCTP integration configured")
            contract = self._contract(chain_id, route.cctp, "circle_integration.json")
            return bool(contract.functions.isMessageConsumed(vaa_digest).call())
        contract = self._contract(chain_id, route.bridge, "token_bridge.json")
        return bool(contract.functions.isTransferCompleted(vaa_digest).call())

    def redeem_fill(self, chain_id: int, params: RedeemParameters) -> SubmissionReceipt:
        route = self.config.route(chain_id)
        router = self._contract(chain_id, route.router, "token_router.json")
        return self._send(chain_id, router.functions.redeemFill(params.as_tuple()))

    def execute_order(self, params: RedeemParameters, *, path: SettlementPath) -> SubmissionReceipt:
        engine = self.config.matching_engine
        contract = self._contract(engine.chain, engine.address, "matching_engine.json")
        if path is SettlementPath.CCTP:
            function = contract.get_function_by_signature("executeOrder((bytes,bytes,bytes))")(params.as_tuple())
        else:
            function = contract.get_function_by_signature("executeOrder(bytes)")(params.encoded_wormhole_message)
        return self._send(engine.chain, function)

    def _send(self, chain_id: int, function: Any) -> SubmissionReceipt:
        if self.account is None:
            raise SubmissionError("No signer configured; cannot submit transactions")
        web3 = self.web3(chain_id)
        address = self.account.address
        buffer_bps = self.config.defaults.gas_buffer_bps

        with self._send_locks.setdefault(chain_id, threading.Lock()):
            try:
                gas_estimate = function.estimate_gas({"from": address})
            except ContractLogicError as exc:
                raise SubmissionError(f"Contract would revert on chain {chain_id}: {exc}") from exc

            gas_price = web3.eth.gas_price
            max_priority_fee = getattr(web3.eth, "max_priority_fee", gas_price)
            tx = function.build_transaction(
                {
                    "from": address,
                    "gas": gas_estimate + gas_estimate * buffer_bps // 1_000_000,
                    "maxFeePerGas": gas_price + max_priority_fee,
                    "maxPriorityFeePerGas": max_priority_fee,
                    "nonce": web3.eth.get_transaction_count(address, "pending"),
                    "chainId": web3.eth.chain_id,
                    "value": 0,
                }
            )
            signed = self.account.sign_transaction(tx)
            try:
                tx_hash = web3.eth.send_raw_transaction(signed.raw_transaction)
            except (ValueError, Web3Exception) as exc:
                raise SubmissionError(f"Chain {chain_id} rejected transaction: {exc}") from exc

        tx_hex = Web3.to_hex(tx_hash)
        LOGGER.info("Submitted %s on chain %s, awaiting confirmation", tx_hex, chain_id)
        try:
            receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
        except TimeExhausted as exc:
            raise SubmissionError(f"Transaction {tx_hex} was not mined on chain {chain_id}: {exc}") from exc
        if receipt["status"] != 1:
            raise SubmissionError(f"Transaction {tx_hex} reverted on chain {chain_id}")
        LOGGER.info(
            "Transaction %s confirmed in block %s (gasUsed=%s)", tx_hex, receipt["blockNumber"], receipt["gasUsed"]
        )
        return SubmissionReceipt(
            chain=chain_id,
            tx_hash=tx_hex,
            block_number=receipt["blockNumber"],
            gas_used=receipt["gasUsed"],
        )


__all__ = [
    "EvmChainGateway",
    "MESSAGE_SENT_TOPIC",
    "PublishedMessage",
    "RedeemParameters",
    "SettlementPath",
    "SubmissionReceipt",
]
