"""
Signing Pipeline

Turns order requests into signed, validated payloads and posts them:

    requests -> order wires -> validate -> encode -> hash -> sign
             -> recover/verify -> validate payload -> transport

Transport errors are retried with exponential backoff; exchange-level
rejections are reported immediately.
"""

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from basket_engine.core.config import Config
from basket_engine.core.errors import SubmissionError
from basket_engine.core.nonce import NonceManager, get_nonce_manager
from basket_engine.execution.assets import AssetTable
from basket_engine.execution.orders import (
    Action,
    CancelAction,
    ExecutionReport,
    Grouping,
    OrderAction,
    OrderRequest,
    OrderStatus,
)
from basket_engine.execution.split import ScaleBias, plan_split, split_order_requests
from basket_engine.execution.transport import ExchangeTransport
from basket_engine.execution.validator import validate_order_payload
from basket_engine.monitoring.metrics import MetricsCollector
from basket_engine.signing.action_hash import build_action_hash
from basket_engine.signing.encoder import action_to_wire, encode_action
from basket_engine.signing.signer import ActionSigner, SignedAction
from basket_engine.utils.precision import Number, format_price, to_decimal

logger = logging.getLogger(__name__)


def parse_exchange_response(response: Any, nonce: int) -> ExecutionReport:
    """
    Convert an /exchange response into an ExecutionReport.

    Raises:
        SubmissionError: non-ok status or any per-order error
    """
    if not isinstance(response, dict) or response.get("status") != "ok":
        raise SubmissionError(f"exchange rejected action: {response!r}", response=response, retryable=False)

    body = response.get("response") or {}
    raw_statuses = (body.get("data") or {}).get("statuses", []) if isinstance(body, dict) else []
    statuses: List[OrderStatus] = []
    errors: List[str] = []
    for raw in raw_statuses:
        if isinstance(raw, dict) and "resting" in raw:
            statuses.append(OrderStatus(status="resting", oid=raw["resting"].get("oid")))
        elif isinstance(raw, dict) and "filled" in raw:
            filled = raw["filled"]
            try:
                filled_sz = Decimal(str(filled.get("totalSz", "0")))
                avg_px = Decimal(str(filled["avgPx"])) if filled.get("avgPx") is not None else None
            except (InvalidOperation, ValueError, AttributeError, TypeError) as e:
                raise SubmissionError(
                    f"malformed fill in exchange response: {filled!r}", response=response, retryable=False
                ) from e
            if not filled_sz.is_finite() or (avg_px is not None and not avg_px.is_finite()):
                raise SubmissionError(
                    f"malformed fill in exchange response: {filled!r}", response=response, retryable=False
                )
            statuses.append(OrderStatus(status="filled", oid=filled.get("oid"), filled_sz=filled_sz, avg_px=avg_px))
        elif isinstance(raw, dict) and "error" in raw:
            statuses.append(OrderStatus(status="error", error_msg=str(raw["error"])))
            errors.append(str(raw["error"]))
        else:
            statuses.append(OrderStatus(status="success"))

    if errors:
        raise SubmissionError("; ".join(errors), response=response, retryable=False)
    return ExecutionReport(nonce=nonce, statuses=statuses, response=response)


class SigningPipeline:
    """
    Builds, signs and submits L1 actions for one signer.

    The nonce manager is shared process-wide so that the basket manager and
    direct callers never reuse a nonce.
    """

    def __init__(
        self,
        config: Config,
        signer: ActionSigner,
        assets: AssetTable,
        transport: ExchangeTransport,
        nonce_manager: Optional[NonceManager] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.signer = signer
        self.assets = assets
        self.transport = transport
        self.nonces = nonce_manager or get_nonce_manager()
        self.metrics = metrics or MetricsCollector(config)
        self.vault_address = config.exchange.vault_address

    # ------------------------
    # Building and signing
    # ------------------------
    def build_order_action(
        self,
        requests: Sequence[OrderRequest],
        grouping: Grouping = Grouping.NA,
    ) -> OrderAction:
        return OrderAction.from_requests(requests, self.assets, grouping)

    def sign_action(self, action: Action, nonce: Optional[int] = None) -> SignedAction:
        """
        Encode, hash and sign an action.

        Raises:
            ValidationError: malformed action or payload
            EncodingError: unencodable action, bad vault address
            SignatureIntegrityError: recovered signer mismatch
        """
        wire = action_to_wire(action)
        encoded = encode_action(wire)
        if nonce is None:
            nonce = self.nonces.next_nonce()
        expires_after = None
        if self.config.signing.expires_after_ms is not None:
            expires_after = nonce + self.config.signing.expires_after_ms

        digest = build_action_hash(encoded, nonce, self.vault_address, expires_after)
        signature = self.signer.sign(digest)
        signed = SignedAction(
            action=wire,
            nonce=nonce,
            signature=signature,
            vault_address=self.vault_address,
            expires_after=expires_after,
        )
        validate_order_payload(signed.to_payload()).raise_for_errors()
        self.metrics.incr("actions_signed")
        logger.debug("Signed %s action nonce=%d hash=0x%s", wire.get("type"), nonce, digest.hex())
        return signed

    # ------------------------
    # Submission
    # ------------------------
    async def submit(self, signed: SignedAction) -> ExecutionReport:
        """Post a signed action and parse the exchange response."""
        payload = signed.to_payload()
        started = time.monotonic()
        try:
            response = await self._with_retries(self.transport.post_action, payload)
            report = parse_exchange_response(response, signed.nonce)
        except SubmissionError as e:
            self.metrics.incr("submissions_failed")
            logger.warning("Submission failed nonce=%d: %s", signed.nonce, e)
            raise
        self.metrics.incr("submissions_ok")
        self.metrics.record("submit_latency_ms", (time.monotonic() - started) * 1000)
        logger.info("Submitted %s action nonce=%d oids=%s", signed.action.get("type"), signed.nonce, report.oids)
        return report

    async def place_orders(
        self,
        requests: Sequence[OrderRequest],
        grouping: Grouping = Grouping.NA,
    ) -> ExecutionReport:
        signed = self.sign_action(self.build_order_action(requests, grouping))
        return await self.submit(signed)

    async def place_split_order(
        self,
        asset: str,
        is_buy: bool,
        min_price: Number,
        max_price: Number,
        split_count: int,
        scale_bias: Optional[ScaleBias],
        total_quantity: Number,
        tif: str = "Gtc",
        reduce_only: bool = False,
    ) -> ExecutionReport:
        """Plan a split order and submit every leg in one action. scale_bias=None uses split.default_bias."""
        if scale_bias is None:
            scale_bias = ScaleBias(self.config.split.default_bias)
        sz_decimals = self.assets.sz_decimals(asset)
        legs = plan_split(min_price, max_price, split_count, scale_bias, total_quantity, sz_decimals)
        requests = split_order_requests(
            asset,
            is_buy,
            legs,
            sz_decimals=sz_decimals,
            tif=tif,
            reduce_only=reduce_only,
            max_decimals=self.config.execution.max_decimals,
        )
        return await self.place_orders(requests)

    async def cancel_orders(self, items: Iterable[Tuple[str, int]]) -> ExecutionReport:
        """Cancel resting orders given (symbol, oid) pairs."""
        signed = self.sign_action(CancelAction.from_oids(self.assets, items))
        return await self.submit(signed)

    # ------------------------
    # Helpers
    # ------------------------
    def aggressive_price(self, asset: str, is_buy: bool, reference_px: Number, slippage: float) -> str:
        """IOC limit price that crosses the book by `slippage` from the reference price."""
        px = to_decimal(reference_px, "reference_px")
        factor = Decimal(1) + Decimal(str(slippage)) if is_buy else Decimal(1) - Decimal(str(slippage))
        return format_price(px * factor, self.assets.sz_decimals(asset), self.config.execution.max_decimals)

    async def _with_retries(self, func, *args, **kwargs):
        """Call transport with retries/backoff for retryable errors."""
        max_attempts = self.config.execution.max_submit_attempts
        delay = self.config.execution.retry_delay_sec
        for attempt in range(1, max_attempts + 1):
            try:
                return await func(*args, **kwargs)
            except SubmissionError as e:
                if not e.retryable or attempt == max_attempts:
                    raise
                logger.info("Retrying submission (attempt %d/%d): %s", attempt, max_attempts, e)
                await asyncio.sleep(delay)
                delay *= 2
