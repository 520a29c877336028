"""Tests for the basket manager state machine and trigger evaluation."""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from basket_engine.baskets.manager import (
    BasketManager,
    get_basket_manager,
    init_basket_manager,
    reset_basket_manager,
)
from basket_engine.baskets.models import BasketConfig, BasketState
from basket_engine.core.errors import SubmissionError, ValidationError
from basket_engine.core.nonce import NonceManager
from basket_engine.execution.pipeline import SigningPipeline
from basket_engine.execution.transport import DryRunTransport
from basket_engine.utils.state_store import StateStore


class GatedTransport(DryRunTransport):
    """Holds every post until `gate` is set."""

    def __init__(self):
        super().__init__(start_oid=500)
        self.gate = asyncio.Event()

    async def post_action(self, payload):
        await self.gate.wait()
        return await super().post_action(payload)


class FailingExitTransport(DryRunTransport):
    """Rejects the first `failures` reduce-only orders."""

    def __init__(self, failures=1):
        super().__init__(start_oid=900)
        self.failures = failures
        self.rejected = 0

    async def post_action(self, payload):
        orders = payload["action"].get("orders", [])
        if orders and orders[0]["r"] and self.rejected < self.failures:
            self.rejected += 1
            raise SubmissionError("Reduce only order would increase position", retryable=False)
        return await super().post_action(payload)


class RejectAllTransport:
    async def post_action(self, payload):
        return {"status": "err", "response": "Insufficient margin to place order."}


class GarbledFillTransport(DryRunTransport):
    """Answers reduce-only orders with a fill the parser cannot read."""

    async def post_action(self, payload):
        orders = payload["action"].get("orders", [])
        if orders and orders[0]["r"]:
            fill = {"totalSz": "0.5", "avgPx": "??", "oid": 7}
            return {"status": "ok", "response": {"type": "order", "data": {"statuses": [{"filled": fill}]}}}
        return await super().post_action(payload)


def long_eth(take_profit=None, **stop_loss):
    data = {
        "symbol": "ETH",
        "entry": {"side": "buy", "size": "0.5", "price": "3000"},
        "stop_loss": {"trigger_price": "2900", **stop_loss},
    }
    if take_profit is not None:
        data["take_profit"] = take_profit
    return BasketConfig.from_dict(data)


def short_eth():
    return BasketConfig.from_dict(
        {
            "symbol": "ETH",
            "entry": {"side": "sell", "size": "1", "price": "3000", "order_type": "market"},
            "stop_loss": {"trigger_price": "3100"},
            "take_profit": {"trigger_price": "2700", "limit_price": "2705"},
        }
    )


def laddered_long(stop_loss=True):
    data = {
        "symbol": "ETH",
        "entry": {"side": "buy", "size": "0.5", "price": "3000"},
        "take_profits": [
            {"trigger_price": "3200", "size": "0.1", "limit_price": "3200"},
            {"trigger_price": "3400", "percent": "50", "limit_price": "3400"},
        ],
    }
    if stop_loss:
        data["stop_loss"] = {"trigger_price": "2900"}
    return BasketConfig.from_dict(data)


def exit_orders(transport):
    return [
        payload["action"]["orders"][0]
        for payload in transport.sent
        if payload["action"]["type"] == "order" and payload["action"]["orders"][0]["r"]
    ]


@pytest_asyncio.fixture
async def make_manager(config, signer, assets):
    managers = []

    def factory(transport, state_store=None):
        pipeline = SigningPipeline(config, signer, assets, transport, nonce_manager=NonceManager())
        mgr = BasketManager(config, pipeline, state_store=state_store)
        managers.append(mgr)
        return mgr

    yield factory
    for mgr in managers:
        mgr.stop()


async def open_basket(manager, basket_config):
    basket_id = manager.create_basket(basket_config)
    assert manager.mark_entry_filled(basket_id)
    return basket_id


# ------------------------
# Registry
# ------------------------
@pytest.mark.asyncio
async def test_create_basket_is_pending(manager):
    basket_id = manager.create_basket(long_eth())
    assert basket_id.startswith("basket_")
    assert len(basket_id.split("_")[2]) == 9
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.PENDING
    assert basket.execution_log[0].action == "basket_created"


@pytest.mark.asyncio
async def test_create_basket_rejects_bad_config(manager):
    no_exits = BasketConfig.from_dict({"symbol": "ETH", "entry": {"side": "buy", "size": "1", "price": "3000"}})
    with pytest.raises(ValidationError):
        manager.create_basket(no_exits)

    unknown = BasketConfig.from_dict(
        {"symbol": "DOGE", "entry": {"side": "buy", "size": "1", "price": "0.1"}, "stop_loss": {"trigger_price": "0.09"}}
    )
    with pytest.raises(ValidationError):
        manager.create_basket(unknown)

    inverted = BasketConfig.from_dict(
        {"symbol": "ETH", "entry": {"side": "buy", "size": "1", "price": "3000"}, "stop_loss": {"trigger_price": "3100"}}
    )
    with pytest.raises(ValidationError) as exc:
        manager.create_basket(inverted)
    assert "stop_loss trigger must be below the entry price for a long basket" in exc.value.errors
    assert manager.get_all_baskets() == []


@pytest.mark.asyncio
async def test_create_basket_rejects_bad_take_profit_levels(manager):
    sized_stop = long_eth(size="0.2")
    with pytest.raises(ValidationError) as exc:
        manager.create_basket(sized_stop)
    assert "stop_loss closes the remaining position and takes no size or percent" in exc.value.errors

    def with_levels(*levels):
        return BasketConfig.from_dict(
            {"symbol": "ETH", "entry": {"side": "buy", "size": "0.5", "price": "3000"}, "take_profits": list(levels)}
        )

    with pytest.raises(ValidationError) as exc:
        manager.create_basket(
            with_levels({"trigger_price": "3100", "percent": "60"}, {"trigger_price": "3200", "percent": "60"})
        )
    assert "take_profits close more than the entry size" in exc.value.errors

    with pytest.raises(ValidationError) as exc:
        manager.create_basket(with_levels({"trigger_price": "3100", "percent": "0.001"}))
    assert "take_profits[0] size rounds to zero at 4 decimals" in exc.value.errors

    with pytest.raises(ValidationError) as exc:
        manager.create_basket(
            with_levels({"trigger_price": "3100", "size": "0.1"}, {"trigger_price": "3100", "size": "0.1"})
        )
    assert "take_profits trigger prices must be distinct" in exc.value.errors
    assert manager.get_all_baskets() == []


@pytest.mark.parametrize(
    "level",
    [
        {"trigger_price": "3100", "percent": "101"},
        {"trigger_price": "3100", "percent": "50", "size": "0.1"},
        {"trigger_price": "3100", "percent": "0"},
    ],
)
def test_take_profit_level_rejects_bad_sizing(level):
    with pytest.raises(ValidationError):
        BasketConfig.from_dict(
            {"symbol": "ETH", "entry": {"side": "buy", "size": "0.5", "price": "3000"}, "take_profits": [level]}
        )


def test_take_profit_and_take_profits_are_exclusive():
    with pytest.raises(ValidationError):
        BasketConfig.from_dict(
            {
                "symbol": "ETH",
                "entry": {"side": "buy", "size": "0.5", "price": "3000"},
                "take_profit": {"trigger_price": "3100"},
                "take_profits": [{"trigger_price": "3200"}],
            }
        )


@pytest.mark.asyncio
async def test_update_basket_only_while_pending(manager):
    basket_id = manager.create_basket(long_eth())
    assert manager.update_basket(basket_id, laddered_long())
    basket = manager.get_basket(basket_id)
    assert len(basket.config.take_profits) == 2
    assert basket.execution_log[-1].action == "basket_updated"

    inverted = BasketConfig.from_dict(
        {"symbol": "ETH", "entry": {"side": "buy", "size": "1", "price": "3000"}, "stop_loss": {"trigger_price": "3100"}}
    )
    with pytest.raises(ValidationError):
        manager.update_basket(basket_id, inverted)
    assert manager.get_basket(basket_id).config == laddered_long()

    manager.mark_entry_filled(basket_id)
    assert manager.update_basket(basket_id, long_eth()) is False
    assert manager.update_basket("basket_0_000000000", long_eth()) is False
    assert manager.get_basket(basket_id).config == laddered_long()


@pytest.mark.asyncio
async def test_snapshots_are_copies(manager):
    basket_id = manager.create_basket(long_eth())
    snapshot = manager.get_all_baskets()[0]
    snapshot.state = BasketState.COMPLETED
    snapshot.execution_log.clear()
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.PENDING
    assert len(basket.execution_log) == 1


@pytest.mark.asyncio
async def test_cancel_unknown_and_terminal(manager):
    assert manager.cancel_basket("basket_0_000000000") is False
    basket_id = manager.create_basket(long_eth())
    assert manager.cancel_basket(basket_id) is True
    assert manager.cancel_basket(basket_id) is False
    assert manager.get_basket(basket_id) is None
    assert manager.get_history()[0].state is BasketState.CANCELLED


# ------------------------
# Entry
# ------------------------
@pytest.mark.asyncio
async def test_execute_entry_activates(manager, transport):
    basket_id = manager.create_basket(long_eth())
    assert await manager.execute_entry(basket_id) is True
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert basket.entry_oid == 1000
    assert not basket.entry_filled
    entry = transport.sent[0]["action"]["orders"][0]
    assert entry == {"a": 4, "b": True, "p": "3000", "s": "0.5", "r": False, "t": {"limit": {"tif": "Gtc"}}}


@pytest.mark.asyncio
async def test_market_entry_uses_aggressive_ioc(manager, transport):
    basket_id = manager.create_basket(short_eth())
    assert await manager.execute_entry(basket_id)
    entry = transport.sent[0]["action"]["orders"][0]
    assert entry["b"] is False
    assert entry["p"] == "2850"
    assert entry["t"] == {"limit": {"tif": "Ioc"}}


@pytest.mark.asyncio
async def test_failed_entry_stays_pending(make_manager):
    manager = make_manager(RejectAllTransport())
    basket_id = manager.create_basket(long_eth())
    assert await manager.execute_entry(basket_id) is False
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.PENDING
    assert "Insufficient margin" in basket.last_error


@pytest.mark.asyncio
async def test_execute_entry_only_from_pending(manager):
    basket_id = await open_basket(manager, long_eth())
    assert await manager.execute_entry(basket_id) is False
    assert manager.mark_entry_filled(basket_id) is False


@pytest.mark.asyncio
async def test_cancel_pulls_resting_entry(manager, transport):
    basket_id = manager.create_basket(long_eth())
    await manager.execute_entry(basket_id)
    assert manager.cancel_basket(basket_id)
    await manager.drain()
    assert transport.last_payload["action"] == {"type": "cancel", "cancels": [{"a": 4, "o": 1000}]}
    assert manager.get_history()[0].execution_log[-1].action == "order_cancelled"


# ------------------------
# Triggers
# ------------------------
@pytest.mark.asyncio
async def test_stop_loss_market_exit(manager, transport):
    basket_id = await open_basket(manager, long_eth())
    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()

    assert manager.get_basket(basket_id) is None
    done = manager.get_history()[0]
    assert done.state is BasketState.COMPLETED
    assert done.exit_reason == "stop_loss"
    assert done.exit_oid == 1000

    (order,) = exit_orders(transport)
    assert order == {"a": 4, "b": False, "p": "2660", "s": "0.5", "r": True, "t": {"limit": {"tif": "Ioc"}}}


@pytest.mark.asyncio
async def test_take_profit_limit_exit_for_short(manager, transport):
    await open_basket(manager, short_eth())
    await manager.simulate_stop_loss_trigger("ETH", "2950")
    assert exit_orders(transport) == []

    await manager.simulate_stop_loss_trigger("ETH", "2690")
    await manager.drain()
    (order,) = exit_orders(transport)
    assert order["b"] is True
    assert order["p"] == "2705"
    assert order["s"] == "1"
    assert order["t"] == {"limit": {"tif": "Gtc"}}
    assert manager.get_history()[0].exit_reason == "take_profit"


@pytest.mark.asyncio
async def test_partial_take_profit_keeps_stop_loss(manager, transport):
    events = []
    manager.add_listener(events.append)
    basket_id = await open_basket(manager, laddered_long())

    await manager.simulate_stop_loss_trigger("ETH", "3250")
    await manager.drain()
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert basket.remaining_size == Decimal("0.4")
    assert basket.take_profits_done == [0]
    assert events[-1].action == "take_profit_triggered"
    assert events[-1].details["level"] == 0
    assert Decimal(events[-1].details["remaining"]) == Decimal("0.4")

    await manager.simulate_stop_loss_trigger("ETH", "2000")
    await manager.drain()
    assert [o["s"] for o in exit_orders(transport)] == ["0.1", "0.4"]
    done = manager.get_history()[0]
    assert done.state is BasketState.COMPLETED
    assert done.exit_reason == "stop_loss"
    assert done.remaining_size == 0


@pytest.mark.asyncio
async def test_crossed_take_profit_levels_fire_nearest_first(manager, transport):
    basket_id = await open_basket(manager, laddered_long())
    for price in ("3500", "3500", "3600"):
        await manager.simulate_stop_loss_trigger("ETH", price)
        await manager.drain()

    assert [(o["p"], o["s"]) for o in exit_orders(transport)] == [("3200", "0.1"), ("3400", "0.25")]
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert basket.take_profits_done == [0, 1]
    assert basket.remaining_size == Decimal("0.15")

    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()
    assert exit_orders(transport)[-1]["s"] == "0.15"
    assert manager.get_history()[0].state is BasketState.COMPLETED


@pytest.mark.asyncio
async def test_take_profit_only_basket_completes_after_last_level(manager, transport):
    await open_basket(manager, laddered_long(stop_loss=False))
    await manager.simulate_stop_loss_trigger("ETH", "3300")
    await manager.drain()
    assert len(manager.get_all_baskets()) == 1

    await manager.simulate_stop_loss_trigger("ETH", "3450")
    await manager.drain()
    assert manager.get_all_baskets() == []
    done = manager.get_history()[0]
    assert done.state is BasketState.COMPLETED
    assert done.remaining_size == Decimal("0.15")


@pytest.mark.asyncio
async def test_trigger_pulls_resting_entry_before_exit(manager, transport):
    basket_id = manager.create_basket(long_eth())
    assert await manager.execute_entry(basket_id)
    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()

    assert [p["action"]["type"] for p in transport.sent] == ["order", "cancel", "order"]
    assert transport.sent[1]["action"]["cancels"] == [{"a": 4, "o": 1000}]
    done = manager.get_history()[0]
    assert done.state is BasketState.COMPLETED
    assert done.entry_pulled
    actions = [e.action for e in done.execution_log]
    assert actions[2:] == ["stop_loss_triggered", "order_cancelled", "stop_loss_executed"]


@pytest.mark.asyncio
async def test_resting_entry_is_pulled_once(manager, transport):
    basket_id = manager.create_basket(laddered_long())
    assert await manager.execute_entry(basket_id)
    await manager.simulate_stop_loss_trigger("ETH", "3250")
    await manager.drain()
    assert manager.cancel_basket(basket_id)
    await manager.drain()

    cancels = [p for p in transport.sent if p["action"]["type"] == "cancel"]
    assert len(cancels) == 1
    assert manager.get_history()[0].state is BasketState.CANCELLED


@pytest.mark.asyncio
async def test_non_positive_tick_is_rejected(manager, transport):
    basket_id = await open_basket(manager, long_eth())
    for price in ("0", "-1"):
        with pytest.raises(ValidationError):
            await manager.simulate_stop_loss_trigger("ETH", price)
        with pytest.raises(ValidationError):
            await manager.on_price_tick("ETH", price)
    await manager.drain()
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert transport.sent == []

    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()
    assert manager.get_history()[0].state is BasketState.COMPLETED
    assert len(exit_orders(transport)) == 1


@pytest.mark.asyncio
async def test_unexpected_exit_error_returns_to_active(manager, transport, monkeypatch):
    basket_id = await open_basket(manager, long_eth())
    real_price = manager.pipeline.aggressive_price

    def broken(*args, **kwargs):
        raise RuntimeError("tick table missing")

    monkeypatch.setattr(manager.pipeline, "aggressive_price", broken)
    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert "tick table missing" in basket.last_error
    assert basket.execution_log[-1].action == "exit_failed"

    monkeypatch.setattr(manager.pipeline, "aggressive_price", real_price)
    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()
    assert manager.get_history()[0].state is BasketState.COMPLETED


@pytest.mark.asyncio
async def test_unreadable_exit_response_returns_to_active(make_manager):
    manager = make_manager(GarbledFillTransport())
    basket_id = await open_basket(manager, long_eth())
    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert "malformed fill" in basket.last_error


@pytest.mark.asyncio
async def test_pending_and_other_symbols_do_not_fire(manager, transport):
    manager.create_basket(long_eth())
    await open_basket(manager, long_eth())
    await manager.simulate_stop_loss_trigger("BTC", "1")
    await manager.drain()
    assert exit_orders(transport) == []

    await manager.simulate_stop_loss_trigger("ETH", "2000")
    await manager.drain()
    assert len(exit_orders(transport)) == 1
    assert [b.state for b in manager.get_all_baskets()] == [BasketState.PENDING]


@pytest.mark.asyncio
async def test_trigger_is_idempotent(make_manager):
    transport = GatedTransport()
    manager = make_manager(transport)
    basket_id = await open_basket(manager, long_eth())

    for price in ("2850", "2800", "2700"):
        await manager.simulate_stop_loss_trigger("ETH", price)
    assert manager.get_basket(basket_id).state is BasketState.TRIGGERED

    transport.gate.set()
    await manager.drain()
    assert len(exit_orders(transport)) == 1
    assert manager.get_history()[0].state is BasketState.COMPLETED


@pytest.mark.asyncio
async def test_failed_exit_returns_to_active_and_retries(make_manager):
    transport = FailingExitTransport(failures=1)
    manager = make_manager(transport)
    events = []
    manager.add_listener(events.append)
    basket_id = await open_basket(manager, long_eth())

    await manager.simulate_stop_loss_trigger("ETH", "2850")
    await manager.drain()
    basket = manager.get_basket(basket_id)
    assert basket.state is BasketState.ACTIVE
    assert "Reduce only" in basket.last_error
    assert events[-1].action == "exit_failed"

    await manager.simulate_stop_loss_trigger("ETH", "2840")
    await manager.drain()
    done = manager.get_history()[0]
    assert done.state is BasketState.COMPLETED
    assert done.last_error is None
    assert events[-1].action == "stop_loss_triggered"
    assert manager.metrics.snapshot()["counters"]["exit_failures"] == 1


@pytest.mark.asyncio
async def test_cancel_wins_over_in_flight_exit(make_manager):
    transport = GatedTransport()
    manager = make_manager(transport)
    basket_id = await open_basket(manager, long_eth())

    await manager.simulate_stop_loss_trigger("ETH", "2800")
    assert manager.get_basket(basket_id).state is BasketState.TRIGGERED
    assert manager.cancel_basket(basket_id)

    transport.gate.set()
    await manager.drain()
    done = manager.get_history()[0]
    assert done.state is BasketState.CANCELLED
    assert done.exit_oid is None
    assert done.execution_log[-1].action == "exit_after_cancel"


@pytest.mark.asyncio
async def test_cancel_before_submission_aborts_trigger(manager, transport):
    basket_id = await open_basket(manager, long_eth())
    manager._evaluate("ETH", Decimal("2800"))
    assert manager.cancel_basket(basket_id)
    await manager.drain()
    assert exit_orders(transport) == []
    assert manager.get_history()[0].execution_log[-1].action == "trigger_aborted"


@pytest.mark.asyncio
async def test_cancelled_basket_ignores_ticks(manager, transport):
    basket_id = await open_basket(manager, long_eth())
    manager.cancel_basket(basket_id)
    await manager.simulate_stop_loss_trigger("ETH", "2000")
    await manager.drain()
    assert transport.sent == []


@pytest.mark.asyncio
async def test_ticks_on_one_symbol_are_ordered(manager, transport):
    await open_basket(manager, long_eth(take_profit={"trigger_price": "3100"}))
    await manager.on_price_tick("ETH", "3150")
    await manager.on_price_tick("ETH", "2800")
    await manager.drain()
    (order,) = exit_orders(transport)
    assert manager.get_history()[0].exit_reason == "take_profit"
    assert order["p"] == "2992.5"


@pytest.mark.asyncio
async def test_listener_errors_are_contained(manager):
    def broken(event):
        raise RuntimeError("listener blew up")

    seen = []
    manager.add_listener(broken)
    manager.add_listener(seen.append)
    basket_id = manager.create_basket(long_eth())
    await manager.execute_entry(basket_id)
    assert [e.action for e in seen] == ["entry_submitted"]
    assert seen[0].details["oid"] == 1000


@pytest.mark.asyncio
async def test_events_are_persisted(make_manager, tmp_path):
    store = StateStore(str(tmp_path))
    manager = make_manager(DryRunTransport(), state_store=store)
    basket_id = await open_basket(manager, long_eth())
    await manager.simulate_stop_loss_trigger("ETH", "2800")
    await manager.drain()

    actions = [r["action"] for r in store.read_jsonl("basket_events") if r["basket_id"] == basket_id]
    assert actions == ["basket_created", "entry_filled", "stop_loss_triggered", "stop_loss_executed"]
    closed = store.read_jsonl("baskets_closed")
    assert closed[0]["state"] == "completed"


@pytest.mark.asyncio
async def test_process_wide_manager(config, pipeline):
    reset_basket_manager()
    with pytest.raises(RuntimeError):
        get_basket_manager()
    manager = init_basket_manager(config, pipeline)
    try:
        assert get_basket_manager() is manager
        with pytest.raises(RuntimeError):
            init_basket_manager(config, pipeline)
    finally:
        reset_basket_manager()
