"""Auction economics and the client-side auction model.

The economics helpers mirror the matching engine's on-chain arithmetic
exactly: every ratio is an integer fraction of ``FEE_PRECISION_MAX`` and
divisions truncate toward zero, so results never drift from the program.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from liquidity_relayer.core.endpoints import EndpointRegistry, RouterEndpoint
from liquidity_relayer.core.errors import ValidationError
from liquidity_relayer.core.messages import FastMarketOrder

FEE_PRECISION_MAX = 1_000_000

_BPS_FIELDS = (
    "user_penalty_reward_bps",
    "initial_penalty_bps",
    "min_offer_delta_bps",
    "security_deposit_bps",
)


@dataclass(frozen=True)
class AuctionParameters:
    """Parameters governing bids, deposits and late-execution penalties."""

    user_penalty_reward_bps: int
    initial_penalty_bps: int
    duration: int
    grace_period: int
    penalty_period: int
    min_offer_delta_bps: int
    security_deposit_base: int
    security_deposit_bps: int

    def __post_init__(self) -> None:
        for name in _BPS_FIELDS:
            value = getattr(self, name)
            if not 0 <= value <= FEE_PRECISION_MAX:
                raise ValidationError(f"{name} must be within [0, {FEE_PRECISION_MAX}], got {value}")
        if self.duration <= 0:
            raise ValidationError("duration must be positive")
        for name in ("grace_period", "penalty_period", "security_deposit_base"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must not be negative")


@dataclass(frozen=True)
class AuctionInfo:
    """Live state of an auction that has received at least one offer."""

    config_id: int
    vaa_hash: bytes
    amount_in: int
    security_deposit: int
    offer_price: int
    start_slot: int
    best_offer_token: bytes
    initial_offer_token: bytes


class DepositPenalty(NamedTuple):
    penalty: int
    user_reward: int


def compute_deposit_penalty(info: AuctionInfo, current_slot: int, params: AuctionParameters) -> DepositPenalty:
    """Penalty taken from the security deposit of a late winning bidder.

    Nothing is taken within the grace period. Afterwards the penalty ramps
    linearly from ``initial_penalty_bps`` of the deposit to the whole deposit
    over ``penalty_period`` slots. The user's reward is carved out of the
    computed penalty.
    """
    slots_elapsed = current_slot - info.start_slot - params.duration
    if slots_elapsed <= params.grace_period:
        return DepositPenalty(0, 0)

    amount = info.security_deposit
    penalty_period = slots_elapsed - params.grace_period

    if penalty_period >= params.penalty_period or params.initial_penalty_bps == FEE_PRECISION_MAX:
        user_reward = amount * params.user_penalty_reward_bps // FEE_PRECISION_MAX
        return DepositPenalty(amount - user_reward, user_reward)

    base_penalty = amount * params.initial_penalty_bps // FEE_PRECISION_MAX
    penalty = base_penalty + (amount - base_penalty) * penalty_period // params.penalty_period
    user_reward = penalty * params.user_penalty_reward_bps // FEE_PRECISION_MAX
    return DepositPenalty(penalty - user_reward, user_reward)


def compute_min_offer_delta(offer_price: int, params: AuctionParameters) -> int:
    """Smallest improvement a new offer must make over ``offer_price``."""
    return offer_price * params.min_offer_delta_bps // FEE_PRECISION_MAX + 1


def compute_notional_security_deposit(amount_in: int, params: AuctionParameters) -> int:
    return params.security_deposit_base + amount_in * params.security_deposit_bps // FEE_PRECISION_MAX


@dataclass(frozen=True)
class AuctionConfig:
    config_id: int
    parameters: AuctionParameters


@dataclass
class Proposal:
    """Pending auction parameter change awaiting owner confirmation."""

    proposal_id: int
    config_id: int
    parameters: AuctionParameters
    by: str
    slot_proposed_at: int
    slot_enact_delay: int
    slot_enacted_at: Optional[int] = None
    cancelled: bool = False

    @property
    def is_open(self) -> bool:
        return self.slot_enacted_at is None and not self.cancelled


class AuctionConfigLedger:
    """Versioned auction parameters with a two-phase propose/confirm update."""

    def __init__(
        self,
        *,
        owner: str,
        initial: AuctionParameters,
        owner_assistant: Optional[str] = None,
        slot_enact_delay: int = 0,
    ) -> None:
        self.owner = owner
        self.owner_assistant = owner_assistant
        self.slot_enact_delay = slot_enact_delay
        self._configs: Dict[int, AuctionConfig] = {0: AuctionConfig(0, initial)}
        self._active_id = 0
        self._proposals: List[Proposal] = []

    @property
    def active(self) -> AuctionConfig:
        return self._configs[self._active_id]

    def get(self, config_id: int) -> AuctionConfig:
        try:
            return self._configs[config_id]
        except KeyError:
            raise ValidationError(f"Unknown auction config id: {config_id}") from None

    @property
    def pending(self) -> Optional[Proposal]:
        for proposal in self._proposals:
            if proposal.is_open:
                return proposal
        return None

    def propose(self, parameters: AuctionParameters, *, by: str, slot: int) -> Proposal:
        if by not in (self.owner, self.owner_assistant):
            raise ValidationError(f"{by} is not the owner or owner assistant")
        if self.pending is not None:
            raise ValidationError("A proposal is already pending")
        proposal = Proposal(
            proposal_id=len(self._proposals),
            config_id=self._active_id + 1,
            parameters=parameters,
            by=by,
            slot_proposed_at=slot,
            slot_enact_delay=self.slot_enact_delay,
        )
        self._proposals.append(proposal)
        return proposal

    def confirm(self, proposal: Proposal, *, by: str, slot: int) -> AuctionConfig:
        if by != self.owner:
            raise ValidationError(f"Only the owner can confirm proposals, got {by}")
        if not proposal.is_open:
            raise ValidationError(f"Proposal {proposal.proposal_id} is already closed")
        if slot < proposal.slot_proposed_at + proposal.slot_enact_delay:
            raise ValidationError(
                f"Proposal {proposal.proposal_id} cannot be enacted before slot "
                f"{proposal.slot_proposed_at + proposal.slot_enact_delay}"
            )
        config = AuctionConfig(proposal.config_id, proposal.parameters)
        self._configs[config.config_id] = config
        self._active_id = config.config_id
        proposal.slot_enacted_at = slot
        return config

    def cancel(self, proposal: Proposal, *, by: str) -> None:
        if by not in (self.owner, self.owner_assistant):
            raise ValidationError(f"{by} is not the owner or owner assistant")
        if not proposal.is_open:
            raise ValidationError(f"Proposal {proposal.proposal_id} is already closed")
        proposal.cancelled = True


class AuctionStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    SETTLED = "settled"


@dataclass(frozen=True)
class AuctionEntry:
    """Immutable record of a settled auction."""

    vaa_hash: bytes
    config_id: int
    settled_slot: int
    start_slot: int
    amount_in: int
    offer_price: int
    security_deposit: int
    best_offer_token: bytes
    initial_offer_token: bytes
    penalty: int
    user_reward: int


class AuctionHistory:
    """Append-only, paginated ledger of settled auctions.

    Entries are ordered by settlement slot and keyed by VAA hash; nothing
    is ever updated or removed once appended.
    """

    def __init__(self, *, page_size: int = 256) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self._pages: List[List[AuctionEntry]] = []
        self._index: Dict[bytes, AuctionEntry] = {}

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, vaa_hash: object) -> bool:
        return vaa_hash in self._index

    def __iter__(self) -> Iterator[AuctionEntry]:
        for page in self._pages:
            yield from page

    @property
    def num_pages(self) -> int:
        return len(self._pages)

    def append(self, entry: AuctionEntry) -> None:
        if entry.vaa_hash in self._index:
            raise ValidationError(f"Auction {entry.vaa_hash.hex()} already recorded")
        if self._pages and entry.settled_slot < self._pages[-1][-1].settled_slot:
            raise ValidationError("History entries must be appended in settlement order")
        if not self._pages or len(self._pages[-1]) >= self.page_size:
            self._pages.append([])
        self._pages[-1].append(entry)
        self._index[entry.vaa_hash] = entry

    def get(self, vaa_hash: bytes) -> Optional[AuctionEntry]:
        return self._index.get(vaa_hash)

    def page(self, index: int) -> Tuple[AuctionEntry, ...]:
        if not 0 <= index < len(self._pages):
            raise IndexError(f"History page {index} does not exist")
        return tuple(self._pages[index])


@dataclass
class Auction:
    """Client-side mirror of a matching engine auction's lifecycle."""

    vaa_hash: bytes
    config: AuctionConfig
    info: AuctionInfo
    status: AuctionStatus = AuctionStatus.ACTIVE
    penalty: Optional[DepositPenalty] = field(default=None)
    target_endpoint: Optional[RouterEndpoint] = field(default=None)

    @property
    def parameters(self) -> AuctionParameters:
        return self.config.parameters

    @property
    def end_slot(self) -> int:
        return self.info.start_slot + self.parameters.duration

    @classmethod
    def place_initial_offer(
        cls,
        *,
        vaa_hash: bytes,
        order: FastMarketOrder,
        offer_price: int,
        offer_token: bytes,
        slot: int,
        config: AuctionConfig,
        endpoints: EndpointRegistry,
        now: Optional[int] = None,
    ) -> "Auction":
        """Open an auction for ``order``; its target chain must have an enabled router endpoint."""
        target_endpoint = endpoints.get(order.target_chain)
        if offer_price > order.max_fee:
            raise ValidationError(f"Offer price {offer_price} exceeds max fee {order.max_fee}")
        if now is not None and order.deadline != 0 and now >= order.deadline:
            raise ValidationError("Fast market order deadline has passed")
        security_deposit = order.max_fee + compute_notional_security_deposit(order.amount_in, config.parameters)
        info = AuctionInfo(
            config_id=config.config_id,
            vaa_hash=vaa_hash,
            amount_in=order.amount_in,
            security_deposit=security_deposit,
            offer_price=offer_price,
            start_slot=slot,
            best_offer_token=offer_token,
            initial_offer_token=offer_token,
        )
        return cls(vaa_hash=vaa_hash, config=config, info=info, target_endpoint=target_endpoint)

    def _require_status(self, status: AuctionStatus) -> None:
        if self.status is not status:
            raise ValidationError(f"Auction is {self.status.value}, expected {status.value}")

    def improve_offer(self, offer_price: int, offer_token: bytes, slot: int) -> AuctionInfo:
        """Replace the best offer; the new price must undercut by the minimum delta."""
        self._require_status(AuctionStatus.ACTIVE)
        if slot >= self.end_slot:
            raise ValidationError(f"Auction period ended at slot {self.end_slot}")
        current = self.info.offer_price
        max_accepted = current - compute_min_offer_delta(current, self.parameters)
        if offer_price > max_accepted:
            raise ValidationError(f"Offer price {offer_price} does not improve on {current} (max {max_accepted})")
        self.info = replace(self.info, offer_price=offer_price, best_offer_token=offer_token)
        return self.info

    def execute_fast_order(self, slot: int) -> DepositPenalty:
        self._require_status(AuctionStatus.ACTIVE)
        if slot < self.end_slot:
            raise ValidationError(f"Auction period has not ended (ends at slot {self.end_slot})")
        self.penalty = compute_deposit_penalty(self.info, slot, self.parameters)
        self.status = AuctionStatus.COMPLETED
        return self.penalty

    def settle(self, slot: int, history: AuctionHistory) -> AuctionEntry:
        self._require_status(AuctionStatus.COMPLETED)
        penalty = self.penalty or DepositPenalty(0, 0)
        entry = AuctionEntry(
            vaa_hash=self.vaa_hash,
            config_id=self.info.config_id,
            settled_slot=slot,
            start_slot=self.info.start_slot,
            amount_in=self.info.amount_in,
            offer_price=self.info.offer_price,
            security_deposit=self.info.security_deposit,
            best_offer_token=self.info.best_offer_token,
            initial_offer_token=self.info.initial_offer_token,
            penalty=penalty.penalty,
            user_reward=penalty.user_reward,
        )
        history.append(entry)
        self.status = AuctionStatus.SETTLED
        return entry


__all__ = [
    "Auction",
    "AuctionConfig",
    "AuctionConfigLedger",
    "AuctionEntry",
    "AuctionHistory",
    "AuctionInfo",
    "AuctionParameters",
    "AuctionStatus",
    "DepositPenalty",
    "FEE_PRECISION_MAX",
    "Proposal",
    "compute_deposit_penalty",
    "compute_min_offer_delta",
    "compute_notional_security_deposit",
]
