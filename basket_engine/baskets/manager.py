"""
Basket Manager

Registry of entry + stop-loss/take-profit baskets driven by price ticks.

State machine per basket:
    PENDING -> ACTIVE      entry acknowledged (execute_entry / mark_entry_filled)
    ACTIVE  -> TRIGGERED   stop-loss or a take-profit level crossed on a tick
    TRIGGERED -> COMPLETED exit accepted and nothing is left to manage
    TRIGGERED -> ACTIVE    partial take-profit accepted, or exit submission failed
    PENDING | ACTIVE | TRIGGERED -> CANCELLED   cancel_basket

Ticks are queued per symbol and evaluated in arrival order by one worker task
per symbol. Exit submissions run in their own tasks so a slow exchange round
trip never holds up tick evaluation. A basket is marked TRIGGERED before its
exit is submitted, which is what keeps further ticks from firing it again.

Take-profit levels close part of the position each. The stop-loss always
closes whatever is left, so it keeps protecting the basket after a partial
exit.
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from decimal import Decimal
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from basket_engine.baskets.models import (
    Basket,
    BasketConfig,
    BasketExecution,
    BasketLogEntry,
    BasketState,
    ExitLeg,
)
from basket_engine.core.config import Config
from basket_engine.core.errors import (
    EncodingError,
    SignatureIntegrityError,
    SubmissionError,
    ValidationError,
)
from basket_engine.execution.orders import LimitOrderType, MarketOrderType, OrderRequest
from basket_engine.execution.pipeline import SigningPipeline
from basket_engine.monitoring.metrics import MetricsCollector
from basket_engine.utils.precision import Number, to_decimal
from basket_engine.utils.state_store import StateStore

logger = logging.getLogger(__name__)

STOP_LOSS = "stop_loss"
TAKE_PROFIT = "take_profit"

Listener = Callable[[BasketExecution], None]
_Tick = Tuple[Decimal, Optional[asyncio.Future]]
# (reason, take-profit level index or None for the stop-loss)
Trigger = Tuple[str, Optional[int]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _tick_price(price: Number) -> Decimal:
    px = to_decimal(price, "price")
    if px <= 0:
        raise ValidationError([f"price must be > 0, got {price}"])
    return px


def find_trigger(basket: Basket, price: Decimal) -> Optional[Trigger]:
    """
    Which exit (if any) a price fires for a basket.

    Long: stop-loss at price <= trigger, take-profit at price >= trigger.
    Short: reversed. Stop-loss wins if both hold. When several pending
    take-profit levels are crossed, the one nearest the entry fires first.
    """
    long = basket.config.entry.is_buy
    sl = basket.config.stop_loss
    if sl is not None:
        if (long and price <= sl.trigger_price) or (not long and price >= sl.trigger_price):
            return STOP_LOSS, None

    crossed = []
    for i in basket.pending_take_profits():
        trigger = basket.config.take_profits[i].trigger_price
        if (long and price >= trigger) or (not long and price <= trigger):
            crossed.append((trigger, i))
    if not crossed:
        return None
    _, level = min(crossed) if long else max(crossed)
    return TAKE_PROFIT, level


class BasketManager:
    """
    Owns every live basket and evaluates triggers against incoming ticks.

    Callers only go through the public operations; snapshots returned by the
    getters are copies.
    """

    def __init__(
        self,
        config: Config,
        pipeline: SigningPipeline,
        state_store: Optional[StateStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.state_store = state_store
        self.metrics = metrics or pipeline.metrics
        self._baskets: Dict[str, Basket] = {}
        self._history: Deque[Basket] = deque(maxlen=config.baskets.history_size)
        self._queues: Dict[str, "asyncio.Queue[_Tick]"] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    # ------------------------
    # Registry operations
    # ------------------------
    def create_basket(self, config: BasketConfig) -> str:
        """
        Register a basket in PENDING state.

        Raises:
            ValidationError: config has no exit leg or inconsistent triggers
        """
        self._check_config(config)

        now = _now_ms()
        basket_id = f"basket_{now}_{uuid.uuid4().hex[:9]}"
        basket = Basket(id=basket_id, config=config, created_at=now, updated_at=now)
        self._baskets[basket_id] = basket
        self.metrics.incr("baskets_created")
        self._log(basket, "basket_created", f"Basket created for {config.symbol}")
        return basket_id

    def update_basket(self, basket_id: str, config: BasketConfig) -> bool:
        """
        Replace the config of a PENDING basket.

        Returns:
            False if the basket is unknown or its entry was already acknowledged

        Raises:
            ValidationError: the new config is invalid (the old one is kept)
        """
        basket = self._baskets.get(basket_id)
        if basket is None or basket.state is not BasketState.PENDING:
            return False
        self._check_config(config)

        basket.config = config
        basket.remaining_size = config.entry.size
        basket.take_profits_done = []
        basket.updated_at = _now_ms()
        self._log(basket, "basket_updated", f"Basket config replaced for {config.symbol}")
        return True

    def cancel_basket(self, basket_id: str) -> bool:
        """Cancel any non-terminal basket. False if unknown or already terminal."""
        basket = self._baskets.get(basket_id)
        if basket is None or basket.state.is_terminal:
            return False

        resting_entry = self._resting_entry(basket)
        previous = basket.state
        self._finish(basket, BasketState.CANCELLED)
        self._log(basket, "basket_cancelled", f"Cancelled from {previous.value}")
        self.metrics.incr("baskets_cancelled")
        self._emit(basket, "cancelled", {"previous_state": previous.value})

        if resting_entry is not None:
            basket.entry_pulled = True
            self._pull_resting_order(basket, resting_entry)
        return True

    def get_basket(self, basket_id: str) -> Optional[Basket]:
        basket = self._baskets.get(basket_id)
        return basket.snapshot() if basket is not None else None

    def get_all_baskets(self) -> List[Basket]:
        return [b.snapshot() for b in self._baskets.values()]

    def get_history(self) -> List[Basket]:
        """Recently completed or cancelled baskets, oldest first."""
        return [b.snapshot() for b in self._history]

    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def _check_config(self, config: BasketConfig) -> None:
        known = bool(config.symbol) and config.symbol in self.pipeline.assets
        sz_decimals = self.pipeline.assets.sz_decimals(config.symbol) if known else None
        errors = config.validate(sz_decimals)
        if config.symbol and not known:
            errors.append(f"unknown symbol {config.symbol!r}")
        if errors:
            raise ValidationError(errors)

    # ------------------------
    # Entry
    # ------------------------
    async def execute_entry(self, basket_id: str) -> bool:
        """
        Sign and submit the entry leg of a PENDING basket.

        Returns:
            True if the exchange accepted the entry (basket is now ACTIVE)

        Raises:
            ValidationError, EncodingError, SignatureIntegrityError: nothing was sent
        """
        basket = self._baskets.get(basket_id)
        if basket is None or basket.state is not BasketState.PENDING:
            return False

        signed = self.pipeline.sign_action(self.pipeline.build_order_action([self._entry_request(basket)]))
        try:
            report = await self.pipeline.submit(signed)
        except SubmissionError as e:
            basket.last_error = str(e)
            self._log(basket, "entry_failed", f"Entry submission failed: {e}")
            return False

        oid = report.first_oid
        filled = any(s.status == "filled" for s in report.statuses)
        if basket.state is not BasketState.PENDING:
            # Cancelled while the entry was in flight
            self._log(basket, "entry_after_cancel", "Entry accepted after cancellation", oid)
            if oid is not None and not filled:
                self._pull_resting_order(basket, oid)
            return False

        basket.entry_oid = oid
        basket.entry_filled = filled
        basket.last_error = None
        self._transition(basket, BasketState.ACTIVE)
        self._log(basket, "entry_executed", f"Entry order accepted ({'filled' if filled else 'resting'})", oid)
        self._emit(basket, "entry_submitted", {"oid": oid, "filled": filled})
        return True

    def mark_entry_filled(self, basket_id: str, oid: Optional[int] = None) -> bool:
        """Activate a PENDING basket whose entry was placed outside the manager."""
        basket = self._baskets.get(basket_id)
        if basket is None or basket.state is not BasketState.PENDING:
            return False
        basket.entry_oid = oid if oid is not None else basket.entry_oid
        basket.entry_filled = True
        self._transition(basket, BasketState.ACTIVE)
        self._log(basket, "entry_filled", "Entry acknowledged externally", oid)
        return True

    # ------------------------
    # Price ticks
    # ------------------------
    async def on_price_tick(self, symbol: str, price: Number) -> None:
        """
        Queue a tick for ordered evaluation on its symbol.

        Raises:
            ValidationError: price is not a positive decimal
        """
        await self._queue_for(symbol).put((_tick_price(price), None))

    async def simulate_stop_loss_trigger(self, symbol: str, price: Number) -> None:
        """Inject a synthetic tick and wait until it has been evaluated."""
        px = _tick_price(price)
        done = asyncio.get_running_loop().create_future()
        await self._queue_for(symbol).put((px, done))
        await done

    async def drain(self) -> None:
        """Wait for queued ticks and in-flight exit submissions to finish."""
        while True:
            for queue in list(self._queues.values()):
                await queue.join()
            if not self._inflight:
                break
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def close(self) -> None:
        """Stop tick workers after draining outstanding work."""
        await self.drain()
        self.stop()

    def stop(self) -> None:
        """Cancel tick workers immediately."""
        for task in self._workers.values():
            task.cancel()
        self._workers.clear()
        self._queues.clear()

    def _queue_for(self, symbol: str) -> "asyncio.Queue[_Tick]":
        queue = self._queues.get(symbol)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[symbol] = queue
            self._workers[symbol] = asyncio.create_task(self._symbol_worker(symbol, queue))
        return queue

    async def _symbol_worker(self, symbol: str, queue: "asyncio.Queue[_Tick]") -> None:
        while True:
            price, done = await queue.get()
            try:
                self._evaluate(symbol, price)
            except Exception as e:
                logger.exception("Tick evaluation failed for %s @ %s", symbol, price)
                if done is not None and not done.done():
                    done.set_exception(e)
            finally:
                queue.task_done()
                if done is not None and not done.done():
                    done.set_result(None)

    def _evaluate(self, symbol: str, price: Decimal) -> None:
        for basket in list(self._baskets.values()):
            # State check on every tick: only ACTIVE baskets can fire
            if basket.symbol != symbol or basket.state is not BasketState.ACTIVE:
                continue
            trigger = find_trigger(basket, price)
            if trigger is None:
                continue
            reason, level = trigger
            self._transition(basket, BasketState.TRIGGERED)
            self.metrics.incr("baskets_triggered")
            label = reason if level is None else f"{reason}[{level}]"
            self._log(basket, f"{reason}_triggered", f"{label} condition met at {price}")
            self._spawn(self._submit_exit(basket, reason, level, price))

    # ------------------------
    # Exit submission
    # ------------------------
    async def _submit_exit(self, basket: Basket, reason: str, level: Optional[int], price: Decimal) -> None:
        try:
            await self._run_exit(basket, reason, level, price)
        except Exception as e:
            logger.exception("Basket %s: %s exit crashed", basket.id, reason)
            if basket.state is BasketState.TRIGGERED:
                self._fail_exit(basket, reason, f"unexpected error: {e!r}")
            else:
                basket.last_error = f"unexpected error: {e!r}"
                self._log(basket, "exit_error", f"{reason} exit raised after leaving TRIGGERED: {e!r}")

    async def _run_exit(self, basket: Basket, reason: str, level: Optional[int], price: Decimal) -> None:
        if basket.state is not BasketState.TRIGGERED:
            self._log(basket, "trigger_aborted", f"{reason} not submitted: basket is {basket.state.value}")
            return

        # No new exposure once the basket starts exiting
        resting_entry = self._resting_entry(basket)
        if resting_entry is not None:
            basket.entry_pulled = True
            await self._cancel_resting(basket, resting_entry)

        leg = basket.config.stop_loss if level is None else basket.config.take_profits[level]
        size = self._exit_size(basket, leg, level)
        try:
            request = self._exit_request(basket, leg, size, price)
            signed = self.pipeline.sign_action(self.pipeline.build_order_action([request]))
        except (ValidationError, EncodingError, SignatureIntegrityError) as e:
            logger.error("Basket %s: %s exit could not be signed: %s", basket.id, reason, e)
            self._fail_exit(basket, reason, f"signing failed: {e}")
            return

        # Cancellation must win over a trigger that has not reached the exchange yet
        if basket.state is not BasketState.TRIGGERED:
            self._log(basket, "trigger_aborted", f"{reason} not submitted: basket is {basket.state.value}")
            return

        try:
            report = await self.pipeline.submit(signed)
        except SubmissionError as e:
            self._fail_exit(basket, reason, str(e))
            return

        oid = report.first_oid
        if basket.state is not BasketState.TRIGGERED:
            self._log(basket, "exit_after_cancel", f"{reason} exit accepted after cancellation", oid)
            return

        basket.exit_oid = oid
        basket.exit_reason = reason
        basket.last_error = None
        basket.remaining_size -= size
        if level is not None:
            basket.take_profits_done.append(level)
        self._log(basket, f"{reason}_executed", f"{reason} exit of {size} accepted at {price}", oid)

        details = {"price": str(price), "oid": oid, "size": str(size), "remaining": str(basket.remaining_size)}
        if level is not None:
            details["level"] = level
        if self._has_open_exposure(basket):
            self._transition(basket, BasketState.ACTIVE)
            self.metrics.incr("partial_exits")
        else:
            self._finish(basket, BasketState.COMPLETED)
            self.metrics.incr("baskets_completed")
        self._emit(basket, f"{reason}_triggered", details)

    def _exit_size(self, basket: Basket, leg: ExitLeg, level: Optional[int]) -> Decimal:
        if level is None:
            return basket.remaining_size
        sz_decimals = self.pipeline.assets.sz_decimals(basket.symbol)
        return min(leg.quantity(basket.config.entry.size, sz_decimals), basket.remaining_size)

    def _has_open_exposure(self, basket: Basket) -> bool:
        """Whether anything is left for this basket to close."""
        if basket.remaining_size <= 0:
            return False
        return basket.config.stop_loss is not None or bool(basket.pending_take_profits())

    def _fail_exit(self, basket: Basket, reason: str, error: str) -> None:
        self.metrics.incr("exit_failures")
        basket.last_error = error
        self._log(basket, "exit_failed", f"{reason} exit failed: {error}")
        if basket.state is BasketState.TRIGGERED:
            self._transition(basket, BasketState.ACTIVE)
        self._emit(basket, "exit_failed", {"reason": reason, "error": error})

    @staticmethod
    def _resting_entry(basket: Basket) -> Optional[int]:
        if basket.entry_oid is None or basket.entry_filled or basket.entry_pulled:
            return None
        return basket.entry_oid

    def _pull_resting_order(self, basket: Basket, oid: int) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Basket %s: no event loop, entry order %s left resting", basket.id, oid)
            self._log(basket, "entry_left_resting", "No event loop to cancel the resting entry", oid)
            return
        self._spawn(self._cancel_resting(basket, oid))

    async def _cancel_resting(self, basket: Basket, oid: int) -> None:
        try:
            await self.pipeline.cancel_orders([(basket.symbol, oid)])
        except (SubmissionError, ValidationError, EncodingError, SignatureIntegrityError) as e:
            basket.last_error = f"cancel of order {oid} failed: {e}"
            self._log(basket, "order_cancel_failed", basket.last_error, oid)
            return
        self._log(basket, "order_cancelled", "Resting entry order cancelled", oid)

    # ------------------------
    # Helpers
    # ------------------------
    def _entry_request(self, basket: Basket) -> OrderRequest:
        entry = basket.config.entry
        if entry.order_type == "market":
            price = self.pipeline.aggressive_price(
                basket.symbol, entry.is_buy, entry.price, self.config.baskets.market_slippage
            )
            order_type = MarketOrderType()
        else:
            price = entry.price
            order_type = LimitOrderType(entry.tif)
        return OrderRequest(
            asset=basket.symbol,
            is_buy=entry.is_buy,
            size=entry.size,
            limit_price=price,
            order_type=order_type,
        )

    def _exit_request(self, basket: Basket, leg: ExitLeg, size: Decimal, price: Decimal) -> OrderRequest:
        is_buy = not basket.config.entry.is_buy
        if leg.limit_price is not None:
            limit_price = leg.limit_price
            order_type = LimitOrderType("Gtc")
        else:
            limit_price = self.pipeline.aggressive_price(
                basket.symbol, is_buy, price, self.config.baskets.market_slippage
            )
            order_type = MarketOrderType()
        return OrderRequest(
            asset=basket.symbol,
            is_buy=is_buy,
            size=size,
            limit_price=limit_price,
            reduce_only=True,
            order_type=order_type,
        )

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _transition(self, basket: Basket, state: BasketState) -> None:
        logger.info("Basket %s: %s -> %s", basket.id, basket.state.value, state.value)
        basket.state = state
        basket.updated_at = _now_ms()

    def _finish(self, basket: Basket, state: BasketState) -> None:
        self._transition(basket, state)
        self._baskets.pop(basket.id, None)
        self._history.append(basket)
        if self.state_store is not None:
            self.state_store.append_jsonl("baskets_closed", basket.to_dict())

    def _log(self, basket: Basket, action: str, details: str, order_id: Optional[int] = None) -> None:
        entry = BasketLogEntry(timestamp=_now_ms(), action=action, details=details, order_id=order_id)
        basket.execution_log.append(entry)
        logger.debug("Basket %s: %s %s", basket.id, action, details)
        if self.state_store is not None:
            self.state_store.append_jsonl(
                "basket_events",
                {"basket_id": basket.id, "timestamp": entry.timestamp, "action": action, "details": details, "order_id": order_id},
            )

    def _emit(self, basket: Basket, action: str, details: dict) -> None:
        event = BasketExecution(basket_id=basket.id, action=action, timestamp=_now_ms(), details=details)
        for callback in self._listeners:
            try:
                callback(event)
            except Exception:
                logger.exception("Basket listener failed on %s for %s", action, basket.id)


# Process-wide instance
_manager: Optional[BasketManager] = None


def init_basket_manager(
    config: Config,
    pipeline: SigningPipeline,
    state_store: Optional[StateStore] = None,
    metrics: Optional[MetricsCollector] = None,
) -> BasketManager:
    """Create the process-wide basket manager. Call once at startup."""
    global _manager
    if _manager is not None:
        raise RuntimeError("basket manager already initialized; call reset_basket_manager() first")
    _manager = BasketManager(config, pipeline, state_store=state_store, metrics=metrics)
    return _manager


def get_basket_manager() -> BasketManager:
    if _manager is None:
        raise RuntimeError("basket manager not initialized; call init_basket_manager() at startup")
    return _manager


def reset_basket_manager() -> None:
    """Tear down the process-wide manager (stops tick workers)."""
    global _manager
    if _manager is not None:
        _manager.stop()
    _manager = None
