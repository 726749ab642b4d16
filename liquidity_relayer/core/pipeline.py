"""Per-event relay pipeline.

Each observed message walks ``Observed -> Decoded -> Validated ->
AttestationPending -> Redeemable -> Submitted -> Confirmed``. Any failure
ends the walk for that message only: the outcome is logged and returned,
never raised, so one bad event cannot stall the listeners.
"""

from __future__ import annotations

import heapq
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Union

from liquidity_relayer.config import RelayerConfig
from liquidity_relayer.core.attestation import CircleAttestationClient, GuardianAttestationClient, VaaKey
from liquidity_relayer.core.cctp import CctpTokenBurnMessage, cctp_message_hash
from liquidity_relayer.core.chain import (
    EvmChainGateway,
    PublishedMessage,
    RedeemParameters,
    SettlementPath,
    SubmissionReceipt,
)
from liquidity_relayer.core.endpoints import EndpointRegistry
from liquidity_relayer.core.errors import (
    AlreadySettled,
    AttestationTimeout,
    DecodeError,
    RelayerError,
    SubmissionError,
    UnknownPayloadType,
    ValidationError,
)
from liquidity_relayer.core.messages import (
    Deposit,
    DepositPayload,
    Fill,
    PayloadId,
    SlowOrderResponse,
    decode_deposit_payload,
    decode_message,
    peek_payload_id,
)
from liquidity_relayer.core.utils import get_logger, same_address, to_universal_address
from liquidity_relayer.core.vaa import TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD, SignedVaa, TokenBridgeTransfer

LOGGER = get_logger("liquidity_relayer.pipeline")


class Stage(Enum):
    OBSERVED = "observed"
    DECODED = "decoded"
    VALIDATED = "validated"
    ATTESTATION_PENDING = "attestation_pending"
    REDEEMABLE = "redeemable"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"


class OutcomeStatus(Enum):
    CONFIRMED = "confirmed"
    ALREADY_SETTLED = "already_settled"
    DROPPED = "dropped"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class RelayOutcome:
    status: OutcomeStatus
    stage: Stage
    detail: str = ""
    tx_hash: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (OutcomeStatus.CONFIRMED, OutcomeStatus.ALREADY_SETTLED)


@dataclass(frozen=True)
class RelayOrder:
    """A decoded, relayable message and the route its settlement takes."""

    path: SettlementPath
    message: Union[Deposit, TokenBridgeTransfer]
    payload: DepositPayload
    source_chain: Optional[int] = None
    target_chain: Optional[int] = None

    @property
    def origin(self) -> bytes:
        if isinstance(self.message, Deposit):
            return self.message.header.burn_source
        return self.message.from_address


class RecentEventWindow:
    """Bounded set of recently seen ``(slot, tx_hash, log_index)`` keys.

    Keys more than ``horizon`` slots behind the newest observed slot are
    evicted. The log index is part of the key because one transaction can
    publish several messages.
    """

    def __init__(self, horizon: int) -> None:
        if horizon <= 0:
            raise ValueError("horizon must be positive")
        self.horizon = horizon
        self._lock = threading.Lock()
        self._seen: Set[Tuple[int, str, int]] = set()
        self._heap: List[Tuple[int, str, int]] = []
        self._latest = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def observe(self, slot: int, tx_hash: str, log_index: int = 0) -> bool:
        """Record a key; return ``False`` if it was already seen."""
        key = (slot, tx_hash.lower(), log_index)
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            heapq.heappush(self._heap, key)
            self._latest = max(self._latest, slot)
            floor = self._latest - self.horizon
            while self._heap and self._heap[0][0] < floor:
                self._seen.discard(heapq.heappop(self._heap))
            return True


class RelayPipeline:
    """Turn observed bridge messages into exactly-once settlement transactions."""

    def __init__(
        self,
        *,
        config: RelayerConfig,
        registry: EndpointRegistry,
        gateway: EvmChainGateway,
        guardian: GuardianAttestationClient,
        circle: CircleAttestationClient,
        cancel: Optional[threading.Event] = None,
        attestation_workers: int = 4,
    ) -> None:
        self.config = config
        self.registry = registry
        self.gateway = gateway
        self.guardian = guardian
        self.circle = circle
        self.cancel = cancel or threading.Event()
        self._windows: Dict[int, RecentEventWindow] = {}
        self._windows_lock = threading.Lock()
        self._vaa_pool = ThreadPoolExecutor(max_workers=attestation_workers, thread_name_prefix="vaa-fetch")

    def close(self) -> None:
        self._vaa_pool.shutdown(wait=False)

    def window(self, chain_id: int) -> RecentEventWindow:
        with self._windows_lock:
            window = self._windows.get(chain_id)
            if window is None:
                window = RecentEventWindow(self.config.defaults.dedup_horizon)
                self._windows[chain_id] = window
            return window

    def handle(self, event: PublishedMessage) -> RelayOutcome:
        """Run one event through every stage and report where it stopped."""
        if not self.window(event.chain).observe(event.block_number, event.tx_hash, event.log_index):
            LOGGER.debug("Skipping duplicate event %s:%s", event.tx_hash, event.log_index)
            return RelayOutcome(OutcomeStatus.DROPPED, Stage.OBSERVED, "duplicate")

        try:
            order = self.decode(event)
        except DecodeError as exc:
            LOGGER.warning("Dropping undecodable message in %s: %s", event.tx_hash, exc)
            return RelayOutcome(OutcomeStatus.DROPPED, Stage.OBSERVED, str(exc))
        if order is None:
            return RelayOutcome(OutcomeStatus.DROPPED, Stage.DECODED, "not relayable")

        try:
            order = self.validate(event, order)
        except ValidationError as exc:
            LOGGER.warning("SECURITY: rejected message in %s from chain %s: %s", event.tx_hash, event.chain, exc)
            return RelayOutcome(OutcomeStatus.REJECTED, Stage.DECODED, str(exc))
        except Exception as exc:
            LOGGER.exception("Failed to validate %s", event.tx_hash)
            return RelayOutcome(OutcomeStatus.FAILED, Stage.DECODED, str(exc))

        LOGGER.info(
            "Relaying %s from chain %s to chain %s (%s path, tx %s)",
            type(order.payload).__name__,
            order.source_chain,
            order.target_chain,
            order.path.value,
            event.tx_hash,
        )
        stage = Stage.VALIDATED
        vaa: Optional[SignedVaa] = None
        try:
            stage = Stage.ATTESTATION_PENDING
            params, vaa = self.fetch_attestations(event, order)
            stage = Stage.REDEEMABLE
            self.ensure_not_settled(order, vaa)
            stage = Stage.SUBMITTED
            receipt = self.submit(order, params)
        except AlreadySettled as exc:
            LOGGER.info("Order already executed (tx %s): %s", event.tx_hash, exc)
            return RelayOutcome(OutcomeStatus.ALREADY_SETTLED, stage, str(exc))
        except ValidationError as exc:
            LOGGER.warning("SECURITY: rejected attestation for %s: %s", event.tx_hash, exc)
            return RelayOutcome(OutcomeStatus.REJECTED, stage, str(exc))
        except AttestationTimeout as exc:
            LOGGER.warning("Gave up on %s: %s", event.tx_hash, exc)
            return RelayOutcome(OutcomeStatus.FAILED, stage, str(exc))
        except SubmissionError as exc:
            return self._after_submission_error(event, order, vaa, stage, exc)
        except Exception as exc:
            LOGGER.exception("Failed to relay %s at stage %s", event.tx_hash, stage.value)
            return RelayOutcome(OutcomeStatus.FAILED, stage, str(exc))

        LOGGER.info("Redeemed transfer from %s in txhash: %s", event.tx_hash, receipt.tx_hash)
        return RelayOutcome(OutcomeStatus.CONFIRMED, Stage.CONFIRMED, tx_hash=receipt.tx_hash)

    def _after_submission_error(
        self,
        event: PublishedMessage,
        order: RelayOrder,
        vaa: Optional[SignedVaa],
        stage: Stage,
        exc: SubmissionError,
    ) -> RelayOutcome:
        # Another relayer may have settled the same VAA first.
        if vaa is not None and stage is Stage.SUBMITTED:
            try:
                if self._is_settled(order, vaa):
                    LOGGER.info("Transfer from %s was settled concurrently: %s", event.tx_hash, exc)
                    return RelayOutcome(OutcomeStatus.ALREADY_SETTLED, stage, str(exc))
            except Exception as recheck_exc:
                LOGGER.warning("Settlement re-check failed: %s", recheck_exc)
        LOGGER.error("Settlement of %s failed: %s", event.tx_hash, exc)
        return RelayOutcome(OutcomeStatus.FAILED, stage, str(exc))

    def decode(self, event: PublishedMessage) -> Optional[RelayOrder]:
        """Decode the payload; return ``None`` for messages this relayer does not settle."""
        payload_id = peek_payload_id(event.payload)
        route = self.config.execution_routes.get(event.chain)
        if payload_id == PayloadId.DEPOSIT and route is not None and same_address(event.emitter, route.bridge):
            LOGGER.debug("Ignoring plain token bridge transfer in %s", event.tx_hash)
            return None
        try:
            if payload_id == PayloadId.DEPOSIT:
                message = decode_message(event.payload)
                return RelayOrder(path=SettlementPath.CCTP, message=message, payload=message.payload)
            if payload_id == TOKEN_BRIDGE_TRANSFER_WITH_PAYLOAD:
                transfer = TokenBridgeTransfer.decode(event.payload)
                return RelayOrder(
                    path=SettlementPath.LOCAL,
                    message=transfer,
                    payload=decode_deposit_payload(transfer.payload),
                )
        except UnknownPayloadType as exc:
            LOGGER.debug("Ignoring %s in %s", exc, event.tx_hash)
            return None
        LOGGER.debug("Ignoring payload type %s in %s", payload_id, event.tx_hash)
        return None

    def validate(self, event: PublishedMessage, order: RelayOrder) -> RelayOrder:
        """Resolve source and target chains and authenticate the sender."""
        if isinstance(order.message, Deposit):
            header = order.message.header
            source_chain = self.registry.chain_for_cctp_domain(header.source_cctp_domain)
            target_chain = self.registry.chain_for_cctp_domain(header.destination_cctp_domain)
            if source_chain != event.chain:
                raise ValidationError(
                    f"Deposit claims source domain {header.source_cctp_domain} (chain {source_chain}) "
                    f"but was observed on chain {event.chain}"
                )
        else:
            route = self.config.route(event.chain)
            if not same_address(event.emitter, route.bridge):
                raise ValidationError(f"Emitter {event.emitter} is not the token bridge of chain {event.chain}")
            source_chain = event.chain
            target_chain = order.message.to_chain

        engine = self.config.matching_engine
        if not (source_chain == engine.chain and same_address(order.origin, engine.address)):
            self.registry.verify_sender(source_chain, order.origin)
        self.registry.get(target_chain)

        if isinstance(order.payload, SlowOrderResponse) and target_chain != engine.chain:
            raise ValidationError(f"Slow order response targets chain {target_chain}, not the matching engine")
        if order.path is SettlementPath.CCTP and not self.config.route(target_chain).supports_cctp:
            raise ValidationError(f"Chain {target_chain} cannot redeem CCTP deposits")

        return RelayOrder(
            path=order.path,
            message=order.message,
            payload=order.payload,
            source_chain=source_chain,
            target_chain=target_chain,
        )

    def fetch_attestations(self, event: PublishedMessage, order: RelayOrder) -> Tuple[RedeemParameters, SignedVaa]:
        """Wait for the VAA and, on the CCTP path, the Circle attestation."""
        key = VaaKey(chain=event.chain, emitter=to_universal_address(event.emitter), sequence=event.sequence)
        LOGGER.info("Fetching Wormhole message from: %s, chainId: %s", event.emitter, event.chain)

        if order.path is SettlementPath.LOCAL:
            vaa_bytes = self.guardian.fetch(key, self.cancel)
            return RedeemParameters(encoded_wormhole_message=vaa_bytes), self._check_vaa(vaa_bytes, event)

        circle_message = self.gateway.find_circle_message(event.chain, event.tx_hash)
        if circle_message is None:
            raise RelayerError(f"Error parsing receipt, no CCTP message in txhash: {event.tx_hash}")
        self._check_burn_message(circle_message, order)

        vaa_future = self._vaa_pool.submit(self.guardian.fetch, key, self.cancel)
        attestation = self.circle.fetch(cctp_message_hash(circle_message), self.cancel)
        vaa_bytes = vaa_future.result()
        params = RedeemParameters(
            encoded_wormhole_message=vaa_bytes,
            circle_bridge_message=circle_message,
            circle_attestation=attestation,
        )
        return params, self._check_vaa(vaa_bytes, event)

    @staticmethod
    def _check_vaa(vaa_bytes: bytes, event: PublishedMessage) -> SignedVaa:
        vaa = SignedVaa.decode(vaa_bytes)
        if (
            vaa.emitter_chain != event.chain
            or vaa.sequence != event.sequence
            or vaa.emitter_address != to_universal_address(event.emitter)
            or vaa.payload != event.payload
        ):
            raise ValidationError(f"Fetched VAA does not match the observed message in {event.tx_hash}")
        return vaa

    @staticmethod
    def _check_burn_message(circle_message: bytes, order: RelayOrder) -> None:
        header = order.message.header
        burn = CctpTokenBurnMessage.decode(circle_message)
        if (
            burn.nonce != header.cctp_nonce
            or burn.source_domain != header.source_cctp_domain
            or burn.destination_domain != header.destination_cctp_domain
        ):
            raise ValidationError("CCTP burn message does not match the deposit header")

    def _is_settled(self, order: RelayOrder, vaa: SignedVaa) -> bool:
        return self.gateway.is_settled(self._settlement_chain(order), order.path, vaa.digest)

    def ensure_not_settled(self, order: RelayOrder, vaa: SignedVaa) -> None:
        if self._is_settled(order, vaa):
            raise AlreadySettled(f"VAA 0x{vaa.digest.hex()} already consumed on chain {self._settlement_chain(order)}")

    def _settlement_chain(self, order: RelayOrder) -> int:
        if isinstance(order.payload, Fill):
            return order.target_chain
        return self.config.matching_engine.chain

    def submit(self, order: RelayOrder, params: RedeemParameters) -> SubmissionReceipt:
        if isinstance(order.payload, Fill):
            LOGGER.info("Posting fill to chain: %s", order.target_chain)
            return self.gateway.redeem_fill(order.target_chain, params)
        LOGGER.info("Executing slow order on the matching engine (chain %s)", self.config.matching_engine.chain)
        return self.gateway.execute_order(params, path=order.path)


__all__ = [
    "OutcomeStatus",
    "RecentEventWindow",
    "RelayOrder",
    "RelayOutcome",
    "RelayPipeline",
    "Stage",
]
