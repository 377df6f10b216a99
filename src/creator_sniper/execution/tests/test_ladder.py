"""
Tests for the ladder execution state machine.

These tests verify:
- Ladder levels fire in order and only once
- Stop-loss only before any level fired
- Time limit sells whatever remains
- Dust and no-moon-bag closures
- Failed sells and missing prices leave state untouched
- A sell outliving the timeout is applied later and never sent twice
"""

import asyncio
import time
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from creator_sniper.execution.gateway import TradeResult
from creator_sniper.execution.ladder import LadderEngine
from creator_sniper.execution.position import CloseReason, PositionStatus
from creator_sniper.execution.price_oracle import PriceOracle
from creator_sniper.strategies.strategy import LadderLevel

TOLERANCE = Decimal("1e-18")


def assert_size_invariant(position):
    assert abs(position.remaining_size + position.total_sold - position.original_size) <= TOLERANCE


class TestLadderLevels:

    @pytest.mark.asyncio
    async def test_scenario_a_first_level_only(self, ladder, manager, launch_event, gateway, token, price_at):
        """+150% fires the +100% level only, leaving 70%."""
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")

        result = await ladder.evaluate(position)

        assert result.levels_fired == [0]
        assert position.levels_hit == [0]
        assert position.remaining_size == Decimal("70")
        assert position.status == PositionStatus.OPEN
        assert_size_invariant(position)

    @pytest.mark.asyncio
    async def test_multiple_levels_in_one_tick(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "3.5")

        result = await ladder.evaluate(position)

        assert result.levels_fired == [0, 1]
        # 100 -> 70 -> 52.5
        assert position.remaining_size == Decimal("52.5")
        assert_size_invariant(position)

    @pytest.mark.asyncio
    async def test_level_not_refired_at_same_price(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")
        await ladder.evaluate(position)

        sells_before = len(gateway.trades)
        result = await ladder.evaluate(position)

        assert result.levels_fired == []
        assert position.levels_hit == [0]
        assert position.remaining_size == Decimal("70")
        assert len(gateway.trades) == sells_before

    @pytest.mark.asyncio
    async def test_partial_exits_keep_return_on_cost_basis(self, ladder, manager, launch_event, gateway, token, price_at):
        """After selling at +150%, a later 3.3x price still reaches the +200% level."""
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")
        await ladder.evaluate(position)

        price_at(gateway, token, "3.3")
        result = await ladder.evaluate(position)

        assert result.levels_fired == [1]
        assert position.levels_hit == [0, 1]

    @pytest.mark.asyncio
    async def test_below_first_trigger_holds(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "1.9")

        result = await ladder.evaluate(position)

        assert result.levels_fired == []
        assert result.close_reason is None
        assert position.remaining_size == Decimal("100")

    @pytest.mark.asyncio
    async def test_realized_pnl_from_proceeds(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")

        await ladder.evaluate(position)

        # 30 tokens at 0.00025 = 0.0075 ETH against 0.003 ETH cost
        assert position.total_proceeds == Decimal("0.0075")
        assert position.realized_pnl == Decimal("0.0045")


class TestStopLoss:

    @pytest.mark.asyncio
    async def test_scenario_b_stop_loss_before_any_level(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        gateway.set_price(token, position.stop_loss_price)

        result = await ladder.evaluate(position)

        assert result.close_reason == CloseReason.STOP_LOSS
        assert position.status == PositionStatus.CLOSED
        assert position.close_reason == CloseReason.STOP_LOSS
        assert position.levels_hit == []
        assert position.remaining_size == Decimal("0")
        assert manager.get(token) is None
        assert manager.history() == (position,)

    @pytest.mark.asyncio
    async def test_no_stop_loss_after_level_hit(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")
        await ladder.evaluate(position)

        price_at(gateway, token, "0.1")
        result = await ladder.evaluate(position)

        assert result.close_reason is None
        assert position.status == PositionStatus.OPEN
        assert position.close_reason != CloseReason.STOP_LOSS

    @pytest.mark.asyncio
    async def test_above_stop_holds(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "0.51")

        result = await ladder.evaluate(position)

        assert result.close_reason is None


class TestTimeLimit:

    @pytest.mark.asyncio
    async def test_scenario_d_time_limit_sells_remaining(self, manager, gateway, oracle, strategy, clock, launch_event, token, price_at):
        """Deadline passes with 40% left after partial exits: sell the 40%."""
        strategy = strategy.with_overrides(
            ladder_levels=(
                LadderLevel(Decimal("100"), Decimal("0.5")),
                LadderLevel(Decimal("200"), Decimal("0.2")),
            )
        )
        ladder = LadderEngine(manager, gateway, oracle, strategy, clock=clock)
        position = await manager.open(launch_event)

        price_at(gateway, token, "3")
        await ladder.evaluate(position)
        assert position.remaining_size == Decimal("40")

        price_at(gateway, token, "1.5")
        clock.now = position.max_hold_deadline
        result = await ladder.evaluate(position)

        assert result.close_reason == CloseReason.TIME_LIMIT
        assert position.fills[-1].amount == Decimal("40")
        assert position.remaining_size == Decimal("0")
        assert position.levels_hit == [0, 1]
        assert_size_invariant(position)

    @pytest.mark.asyncio
    async def test_before_deadline_holds(self, ladder, manager, launch_event, clock):
        position = await manager.open(launch_event)
        clock.now = position.max_hold_deadline - timedelta(seconds=1)

        result = await ladder.evaluate(position)

        assert result.close_reason is None


class TestFullExit:

    @pytest.mark.asyncio
    async def test_dust_closes_position(self, manager, gateway, oracle, strategy, clock, launch_event, token, price_at):
        strategy = strategy.with_overrides(ladder_levels=(LadderLevel(Decimal("100"), Decimal("0.9995")),))
        ladder = LadderEngine(manager, gateway, oracle, strategy, clock=clock)
        position = await manager.open(launch_event)
        price_at(gateway, token, "2")

        result = await ladder.evaluate(position)

        assert result.close_reason == CloseReason.FULL_EXIT
        assert position.remaining_size == Decimal("0.05")
        assert position.status == PositionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_moon_bag_rides_after_last_level(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "4")

        result = await ladder.evaluate(position)

        assert result.levels_fired == [0, 1]
        assert result.close_reason is None
        assert position.status == PositionStatus.OPEN

    @pytest.mark.asyncio
    async def test_no_moon_bag_sells_remainder(self, manager, gateway, oracle, strategy, clock, launch_event, token, price_at):
        strategy = strategy.with_overrides(enable_moon_bag=False)
        ladder = LadderEngine(manager, gateway, oracle, strategy, clock=clock)
        position = await manager.open(launch_event)
        price_at(gateway, token, "4")

        result = await ladder.evaluate(position)

        assert result.close_reason == CloseReason.FULL_EXIT
        assert position.remaining_size == Decimal("0")
        assert position.levels_hit == [0, 1]


class TestFailures:

    @pytest.mark.asyncio
    async def test_failed_sell_leaves_state(self, ladder, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")
        gateway.fail_sells = True

        result = await ladder.evaluate(position)

        assert result.sell_failed is True
        assert position.levels_hit == []
        assert position.remaining_size == Decimal("100")
        assert position.total_sold == Decimal("0")

        # Retried on the next tick
        gateway.fail_sells = False
        result = await ladder.evaluate(position)
        assert result.levels_fired == [0]

    @pytest.mark.asyncio
    async def test_failed_stop_loss_sell_keeps_position_open(self, ladder, manager, launch_event, gateway, token):
        position = await manager.open(launch_event)
        gateway.set_price(token, position.stop_loss_price)
        gateway.fail_sells = True

        result = await ladder.evaluate(position)

        assert result.close_reason is None
        assert position.status == PositionStatus.OPEN
        assert manager.get(token) is position

    @pytest.mark.asyncio
    async def test_missing_price_skips_tick(self, ladder, manager, launch_event, gateway):
        position = await manager.open(launch_event)
        gateway.fail_quotes = True

        result = await ladder.evaluate(position)

        assert result.skipped is not None
        assert ladder.stats.skipped_ticks == 1
        assert position.remaining_size == Decimal("100")

    @pytest.mark.asyncio
    async def test_simulated_fallback_uses_last_price(self, manager, gateway, strategy, clock, launch_event, token, price_at):
        oracle = PriceOracle(gateway, cache_seconds=0, simulated_fallback=True, clock=clock)
        ladder = LadderEngine(manager, gateway, oracle, strategy, clock=clock)
        position = await manager.open(launch_event)
        await ladder.evaluate(position)

        gateway.fail_quotes = True
        result = await ladder.evaluate(position)

        assert result.skipped is None
        assert result.price == Decimal("0.0001")

    @pytest.mark.asyncio
    async def test_one_failing_position_does_not_block_others(self, ladder, manager, event_factory, gateway, token, price_at):
        other = "0x" + "ab" * 20
        gateway.set_price(other, Decimal("0.0001"))
        first = await manager.open(event_factory())
        second = await manager.open(event_factory(token=other))

        async def flaky_quote(token_address, reference_size):
            if token_address == first.token_address:
                raise RuntimeError("boom")
            return Decimal("0.00025")

        gateway.quote_price = flaky_quote
        results = await ladder.evaluate_all()

        assert [r.token_address for r in results] == [second.token_address]
        assert second.levels_hit == [0]


class TestDelayedSells:

    @pytest.fixture
    def slow_sells(self, gateway):
        """Replace the gateway's sell with one that waits for ``release``."""
        state = SimpleNamespace(release=asyncio.Event(), calls=[])

        async def slow_sell(token_address, amount):
            state.calls.append(amount)
            await state.release.wait()
            return TradeResult.filled(amount * gateway.price_of(token_address), "0xlate")

        gateway.sell = slow_sell
        return state

    @pytest.fixture
    def slow_ladder(self, manager, gateway, oracle, strategy, clock):
        return LadderEngine(manager, gateway, oracle, strategy, call_timeout=0.01, clock=clock)

    @pytest.mark.asyncio
    async def test_unconfirmed_sell_is_not_resent(self, slow_ladder, slow_sells, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")

        first = await slow_ladder.evaluate(position)
        second = await slow_ladder.evaluate(position)

        assert first.skipped == second.skipped == "sell in flight"
        assert first.sell_failed is False
        assert len(slow_sells.calls) == 1
        assert position.levels_hit == []
        assert position.remaining_size == Decimal("100")
        assert slow_ladder.stats.delayed_sells == 1

        slow_sells.release.set()
        await asyncio.sleep(0.01)
        third = await slow_ladder.evaluate(position)

        assert third.levels_fired == [0]
        assert position.levels_hit == [0]
        assert position.remaining_size == Decimal("70")
        assert position.fills[0].tx_ref == "0xlate"
        assert len(slow_sells.calls) == 1
        assert_size_invariant(position)

    @pytest.mark.asyncio
    async def test_delayed_stop_loss_closes_when_settled(self, slow_ladder, slow_sells, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "0.4")

        first = await slow_ladder.evaluate(position)
        assert first.close_reason is None
        assert position.is_open

        slow_sells.release.set()
        await asyncio.sleep(0.01)
        second = await slow_ladder.evaluate(position)

        assert second.close_reason == CloseReason.STOP_LOSS
        assert position.remaining_size == Decimal("0")
        assert manager.open_count == 0
        assert len(slow_sells.calls) == 1

    @pytest.mark.asyncio
    async def test_manual_exit_waits_for_inflight_sell(self, slow_ladder, slow_sells, manager, launch_event, gateway, token, price_at):
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")
        await slow_ladder.evaluate(position)

        assert await slow_ladder.manual_exit(token) is None
        assert len(slow_sells.calls) == 1

        slow_sells.release.set()
        await asyncio.sleep(0.01)

        # Settles level 0, then sells the remaining 70
        closed = await slow_ladder.manual_exit(token)

        assert closed is position
        assert position.levels_hit == [0]
        assert slow_sells.calls == [Decimal("30"), Decimal("70")]

    @pytest.mark.asyncio
    async def test_late_failure_retried_next_tick(self, slow_ladder, manager, launch_event, gateway, token, price_at):
        release = asyncio.Event()
        outcomes = [TradeResult.failed("reverted"), TradeResult.filled(Decimal("0.0075"), "0xretry")]

        async def slow_then_fast_sell(token_address, amount):
            if not release.is_set():
                await release.wait()
            return outcomes.pop(0)

        gateway.sell = slow_then_fast_sell
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")
        await slow_ladder.evaluate(position)

        release.set()
        await asyncio.sleep(0.01)
        result = await slow_ladder.evaluate(position)

        # The failed fill is reported, then the level fires again in the same tick
        assert result.sell_failed is True
        assert result.levels_fired == [0]
        assert position.fills[0].tx_ref == "0xretry"

    @pytest.mark.asyncio
    async def test_late_receipt_from_chain_sells_once(
        self, manager, oracle, strategy, clock, launch_event, gateway, token, price_at, zora, quote_api, web3
    ):
        """A swap mined after the call timeout is applied, never re-submitted."""
        def slow_receipt(tx_hash, timeout):
            time.sleep(0.3)
            return {"status": 1}

        web3.eth.wait_for_transaction_receipt.side_effect = slow_receipt
        quote_api.body["quote"]["amountOut"] = str(75 * 10**14)  # 0.0075 ETH for 30 tokens
        ladder = LadderEngine(manager, zora, oracle, strategy, call_timeout=0.1, clock=clock)
        position = await manager.open(launch_event)
        price_at(gateway, token, "2.5")

        first = await ladder.evaluate(position)
        second = await ladder.evaluate(position)

        assert first.skipped == second.skipped == "sell in flight"
        assert position.levels_hit == []

        await asyncio.sleep(0.5)
        assert web3.eth.send_raw_transaction.call_count == 1
        result = await ladder.evaluate(position)

        assert result.levels_fired == [0]
        assert position.fills[0].proceeds == Decimal("0.0075")
        assert position.fills[0].tx_ref == "0x" + "12" * 32
        assert web3.eth.send_raw_transaction.call_count == 1


class TestManualExit:

    @pytest.mark.asyncio
    async def test_manual_exit(self, ladder, manager, launch_event, token):
        position = await manager.open(launch_event)

        closed = await ladder.manual_exit(token)

        assert closed is position
        assert position.close_reason == CloseReason.MANUAL
        assert position.remaining_size == Decimal("0")
        assert manager.history() == (position,)

    @pytest.mark.asyncio
    async def test_manual_exit_unknown_token(self, ladder):
        assert await ladder.manual_exit("0x" + "99" * 20) is None

    @pytest.mark.asyncio
    async def test_closed_position_never_reevaluated(self, ladder, manager, launch_event, gateway, token):
        position = await manager.open(launch_event)
        await ladder.manual_exit(token)
        trades = len(gateway.trades)

        result = await ladder.evaluate(position)

        assert result.skipped == "closed"
        assert len(gateway.trades) == trades


class TestInvariants:

    @pytest.mark.parametrize(
        "path",
        [
            ["2.5", "3.5", "1.2", "8"],
            ["3.5", "0.1", "0.1"],
            ["1.1", "2.01", "2.99", "3.01"],
        ],
    )
    @pytest.mark.asyncio
    async def test_size_invariant_along_price_paths(self, ladder, manager, launch_event, gateway, token, price_at, path):
        position = await manager.open(launch_event)
        previous_levels = []

        for multiple in path:
            price_at(gateway, token, multiple)
            await ladder.evaluate(position)

            assert_size_invariant(position)
            assert position.levels_hit[: len(previous_levels)] == previous_levels
            if previous_levels:
                assert position.close_reason != CloseReason.STOP_LOSS
            previous_levels = list(position.levels_hit)
