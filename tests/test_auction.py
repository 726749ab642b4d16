"""Auction economics and the client-side auction lifecycle."""

import pytest

from liquidity_relayer.core.auction import (
    FEE_PRECISION_MAX,
    Auction,
    AuctionConfig,
    AuctionConfigLedger,
    AuctionEntry,
    AuctionHistory,
    AuctionInfo,
    AuctionParameters,
    AuctionStatus,
    DepositPenalty,
    compute_deposit_penalty,
    compute_min_offer_delta,
    compute_notional_security_deposit,
)
from liquidity_relayer.core.endpoints import EndpointRegistry, MessageProtocol, RouterEndpoint
from liquidity_relayer.core.errors import ValidationError
from liquidity_relayer.core.messages import FastMarketOrder

from factories import ARBITRUM, universal

PARAMS = AuctionParameters(
    user_penalty_reward_bps=250_000,
    initial_penalty_bps=250_000,
    duration=2,
    grace_period=5,
    penalty_period=10,
    min_offer_delta_bps=20_000,
    security_deposit_base=4_200_000,
    security_deposit_bps=5_000,
)


def _params(**overrides) -> AuctionParameters:
    fields = dict(PARAMS.__dict__)
    fields.update(overrides)
    return AuctionParameters(**fields)


def _info(security_deposit: int = 1_000_000, start_slot: int = 100) -> AuctionInfo:
    return AuctionInfo(
        config_id=0,
        vaa_hash=b"\x01" * 32,
        amount_in=10_000_000,
        security_deposit=security_deposit,
        offer_price=500,
        start_slot=start_slot,
        best_offer_token=b"\x02" * 32,
        initial_offer_token=b"\x02" * 32,
    )


def _slot_for(slots_elapsed: int, params: AuctionParameters = PARAMS, start_slot: int = 100) -> int:
    return start_slot + params.duration + slots_elapsed


def _registry(*chains: int) -> EndpointRegistry:
    registry = EndpointRegistry(owner="owner")
    for domain, chain in enumerate(chains):
        router = universal(0x03, chain)
        registry.add(
            RouterEndpoint(chain=chain, address=router, mint_recipient=router, protocol=MessageProtocol.cctp(domain)),
            by="owner",
        )
    return registry


def _order(**overrides) -> FastMarketOrder:
    fields = dict(
        amount_in=1_000_000,
        min_amount_out=0,
        target_chain=ARBITRUM,
        redeemer=b"\x11" * 32,
        sender=b"\x22" * 32,
        refund_address=b"\x33" * 32,
        max_fee=1000,
        init_auction_fee=10,
        deadline=0,
    )
    fields.update(overrides)
    return FastMarketOrder(**fields)


class TestParameters:
    @pytest.mark.parametrize("field", ["user_penalty_reward_bps", "initial_penalty_bps", "min_offer_delta_bps"])
    def test_bps_bounds(self, field):
        _params(**{field: FEE_PRECISION_MAX})
        with pytest.raises(ValidationError):
            _params(**{field: FEE_PRECISION_MAX + 1})
        with pytest.raises(ValidationError):
            _params(**{field: -1})

    def test_duration_positive(self):
        with pytest.raises(ValidationError):
            _params(duration=0)


class TestDepositPenalty:
    def test_zero_within_grace_period(self):
        for elapsed in range(-3, PARAMS.grace_period + 1):
            assert compute_deposit_penalty(_info(), _slot_for(elapsed), PARAMS) == DepositPenalty(0, 0)

    def test_non_decreasing(self):
        previous = 0
        for elapsed in range(0, PARAMS.grace_period + PARAMS.penalty_period + 5):
            penalty, reward = compute_deposit_penalty(_info(), _slot_for(elapsed), PARAMS)
            assert penalty + reward >= previous
            previous = penalty + reward

    def test_full_deposit_at_boundary(self):
        slot = _slot_for(PARAMS.grace_period + PARAMS.penalty_period)

        penalty, reward = compute_deposit_penalty(_info(1_000_000), slot, PARAMS)

        assert reward == 1_000_000 * PARAMS.user_penalty_reward_bps // FEE_PRECISION_MAX
        assert penalty == 1_000_000 - reward

    def test_linear_ramp_uses_integer_arithmetic(self):
        slot = _slot_for(PARAMS.grace_period + 3)

        penalty, reward = compute_deposit_penalty(_info(1_000_001), slot, PARAMS)

        base = 1_000_001 * 250_000 // FEE_PRECISION_MAX
        expected = base + (1_000_001 - base) * 3 // 10
        assert reward == expected * 250_000 // FEE_PRECISION_MAX
        assert penalty == expected - reward

    def test_full_initial_penalty_skips_the_ramp(self):
        params = _params(initial_penalty_bps=FEE_PRECISION_MAX, user_penalty_reward_bps=0)

        penalty, reward = compute_deposit_penalty(_info(800), _slot_for(params.grace_period + 1, params), params)

        assert (penalty, reward) == (800, 0)


class TestOfferMath:
    def test_notional_security_deposit_is_one_percent(self):
        params = _params(security_deposit_base=0, security_deposit_bps=10_000)

        assert compute_notional_security_deposit(1_000_000, params) == 10_000

    def test_min_offer_delta_never_zero(self):
        assert compute_min_offer_delta(10, _params(min_offer_delta_bps=0)) == 1
        assert compute_min_offer_delta(1_000_000, PARAMS) == 20_001


class TestAuctionLifecycle:
    def _auction(self, offer_price: int = 1000) -> Auction:
        return Auction.place_initial_offer(
            vaa_hash=b"\x0a" * 32,
            order=_order(),
            offer_price=offer_price,
            offer_token=b"\x01" * 32,
            slot=100,
            config=AuctionConfig(0, PARAMS),
            endpoints=_registry(ARBITRUM),
        )

    def test_initial_offer_security_deposit(self):
        auction = self._auction()

        assert auction.info.security_deposit == 1000 + compute_notional_security_deposit(1_000_000, PARAMS)
        assert auction.status is AuctionStatus.ACTIVE
        assert auction.end_slot == 102

    def test_initial_offer_above_max_fee(self):
        with pytest.raises(ValidationError):
            self._auction(offer_price=1001)

    def test_initial_offer_resolves_target_endpoint(self):
        auction = self._auction()

        assert auction.target_endpoint.chain == ARBITRUM

    @pytest.mark.parametrize("target_chain", [65000, 2])
    def test_unregistered_target_chain_rejected(self, target_chain):
        with pytest.raises(ValidationError, match="No endpoint"):
            Auction.place_initial_offer(
                vaa_hash=b"\n" * 32,
                order=_order(target_chain=target_chain),
                offer_price=10,
                offer_token=b"" * 32,
                slot=100,
                config=AuctionConfig(0, PARAMS),
                endpoints=_registry(ARBITRUM),
            )

    def test_disabled_target_endpoint_rejected(self):
        registry = _registry(ARBITRUM)
        registry.disable(ARBITRUM, by="owner")

        with pytest.raises(ValidationError, match="disabled"):
            Auction.place_initial_offer(
                vaa_hash=b"\n" * 32,
                order=_order(),
                offer_price=10,
                offer_token=b"" * 32,
                slot=100,
                config=AuctionConfig(0, PARAMS),
                endpoints=registry,
            )

    def test_expired_order(self):
        with pytest.raises(ValidationError):
            Auction.place_initial_offer(
                vaa_hash=b"\x0a" * 32,
                order=_order(deadline=50),
                offer_price=10,
                offer_token=b"\x01" * 32,
                slot=100,
                config=AuctionConfig(0, PARAMS),
                endpoints=_registry(ARBITRUM),
                now=60,
            )

    def test_improved_offers_never_increase(self):
        auction = self._auction(offer_price=1000)
        prices = [auction.info.offer_price]

        for candidate in (1000, 990, 979, 950, 960, 900):
            try:
                auction.improve_offer(candidate, b"\x02" * 32, slot=101)
            except ValidationError:
                continue
            prices.append(auction.info.offer_price)

        assert prices == [1000, 979, 950, 900]
        assert auction.info.best_offer_token == b"\x02" * 32
        assert auction.info.initial_offer_token == b"\x01" * 32

    def test_offer_within_min_delta_rejected(self):
        auction = self._auction(offer_price=1000)
        delta = compute_min_offer_delta(1000, PARAMS)

        with pytest.raises(ValidationError):
            auction.improve_offer(1000 - delta + 1, b"\x02" * 32, slot=101)
        auction.improve_offer(1000 - delta, b"\x02" * 32, slot=101)

    def test_no_offers_after_auction_period(self):
        auction = self._auction()

        with pytest.raises(ValidationError):
            auction.improve_offer(1, b"\x02" * 32, slot=auction.end_slot)

    def test_execute_then_settle(self):
        auction = self._auction()
        history = AuctionHistory(page_size=2)

        with pytest.raises(ValidationError):
            auction.execute_fast_order(slot=101)
        penalty = auction.execute_fast_order(slot=auction.end_slot + PARAMS.grace_period + 1)
        entry = auction.settle(slot=200, history=history)

        assert penalty.penalty > 0
        assert auction.status is AuctionStatus.SETTLED
        assert history.get(auction.vaa_hash) == entry
        assert entry.penalty == penalty.penalty
        with pytest.raises(ValidationError):
            auction.settle(slot=201, history=history)


def _entry(tag: int, settled_slot: int) -> AuctionEntry:
    return AuctionEntry(
        vaa_hash=bytes([tag]) * 32,
        config_id=0,
        settled_slot=settled_slot,
        start_slot=1,
        amount_in=1,
        offer_price=1,
        security_deposit=1,
        best_offer_token=bytes(32),
        initial_offer_token=bytes(32),
        penalty=0,
        user_reward=0,
    )


class TestAuctionHistory:
    def test_pagination(self):
        history = AuctionHistory(page_size=2)
        for tag in range(5):
            history.append(_entry(tag, settled_slot=tag))

        assert len(history) == 5
        assert history.num_pages == 3
        assert [entry.settled_slot for entry in history.page(1)] == [2, 3]
        assert [entry.settled_slot for entry in history] == [0, 1, 2, 3, 4]
        with pytest.raises(IndexError):
            history.page(3)

    def test_duplicate_and_out_of_order_rejected(self):
        history = AuctionHistory()
        history.append(_entry(1, settled_slot=10))

        with pytest.raises(ValidationError):
            history.append(_entry(1, settled_slot=11))
        with pytest.raises(ValidationError):
            history.append(_entry(2, settled_slot=9))
        assert len(history) == 1

    def test_pages_are_snapshots(self):
        history = AuctionHistory()
        history.append(_entry(1, settled_slot=1))

        page = history.page(0)

        assert isinstance(page, tuple)
        with pytest.raises(AttributeError):
            page[0].penalty = 5


class TestConfigLedger:
    def test_two_phase_update(self):
        ledger = AuctionConfigLedger(owner="owner", initial=PARAMS, owner_assistant="assistant", slot_enact_delay=10)
        new_params = _params(duration=5)

        proposal = ledger.propose(new_params, by="assistant", slot=100)

        assert ledger.active.config_id == 0
        assert ledger.pending is proposal
        with pytest.raises(ValidationError):
            ledger.confirm(proposal, by="owner", slot=105)
        with pytest.raises(ValidationError):
            ledger.confirm(proposal, by="assistant", slot=110)

        config = ledger.confirm(proposal, by="owner", slot=110)

        assert config.config_id == 1
        assert ledger.active.parameters.duration == 5
        assert ledger.get(0).parameters == PARAMS
        assert ledger.pending is None

    def test_single_pending_proposal(self):
        ledger = AuctionConfigLedger(owner="owner", initial=PARAMS)
        proposal = ledger.propose(PARAMS, by="owner", slot=1)

        with pytest.raises(ValidationError):
            ledger.propose(PARAMS, by="owner", slot=2)
        ledger.cancel(proposal, by="owner")
        ledger.propose(PARAMS, by="owner", slot=3)

    def test_strangers_cannot_propose(self):
        ledger = AuctionConfigLedger(owner="owner", initial=PARAMS)

        with pytest.raises(ValidationError):
            ledger.propose(PARAMS, by="mallory", slot=1)
