"""Execution: order model, wire validation, split planning and the signing pipeline."""

from basket_engine.execution.assets import AssetInfo, AssetTable
from basket_engine.execution.orders import (
    CancelAction,
    Cloid,
    ExecutionReport,
    Grouping,
    LimitOrderType,
    MarketOrderType,
    OrderAction,
    OrderRequest,
    TriggerOrderType,
)
from basket_engine.execution.validator import ValidationResult, validate_order_payload
from basket_engine.execution.split import ScaleBias, SplitLeg, plan_split

__all__ = [
    "AssetInfo",
    "AssetTable",
    "CancelAction",
    "Cloid",
    "ExecutionReport",
    "Grouping",
    "LimitOrderType",
    "MarketOrderType",
    "OrderAction",
    "OrderRequest",
    "TriggerOrderType",
    "ValidationResult",
    "validate_order_payload",
    "ScaleBias",
    "SplitLeg",
    "plan_split",
]
