"""
Order Wire Validator

Checks a signed-action payload (or a bare action wire) for the shape the
exchange expects before anything is sent. Pure: never mutates input, and
collects every violation instead of stopping at the first one.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping

from basket_engine.core.errors import ValidationError


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        if not self.is_valid:
            raise ValidationError(self.errors)


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid index/oid/nonce
    return isinstance(value, int) and not isinstance(value, bool)


def _check_order(order: Any, index: int, errors: List[str]) -> None:
    if not isinstance(order, Mapping):
        errors.append(f"Order {index}: must be an object")
        return
    if not _is_int(order.get("a")):
        errors.append(f"Order {index}: asset (a) must be number")
    if not isinstance(order.get("b"), bool):
        errors.append(f"Order {index}: isBuy (b) must be boolean")
    if not isinstance(order.get("s"), str):
        errors.append(f"Order {index}: size (s) must be string")
    if not isinstance(order.get("p"), str):
        errors.append(f"Order {index}: price (p) must be string")
    if not isinstance(order.get("r"), bool):
        errors.append(f"Order {index}: reduceOnly (r) must be boolean")
    if not order.get("t"):
        errors.append(f"Order {index}: missing type (t) field")


def _check_cancel(cancel: Any, index: int, errors: List[str]) -> None:
    if not isinstance(cancel, Mapping):
        errors.append(f"Cancel {index}: must be an object")
        return
    if not _is_int(cancel.get("a")):
        errors.append(f"Cancel {index}: asset (a) must be number")
    if not _is_int(cancel.get("o")):
        errors.append(f"Cancel {index}: oid (o) must be number")


def _collect_action_errors(action: Any, errors: List[str]) -> None:
    if not isinstance(action, Mapping):
        errors.append("action must be an object")
        return

    action_type = action.get("type")
    if not action_type:
        errors.append("Missing action.type")

    if action_type == "cancel":
        cancels = action.get("cancels")
        if not isinstance(cancels, list):
            errors.append("Missing action.cancels")
        else:
            for i, cancel in enumerate(cancels):
                _check_cancel(cancel, i, errors)
        return

    orders = action.get("orders")
    if orders is None:
        errors.append("Missing action.orders")
    elif not isinstance(orders, list):
        errors.append("action.orders must be a list")
    else:
        if not orders:
            errors.append("action.orders must not be empty")
        for i, order in enumerate(orders):
            _check_order(order, i, errors)

    if not action.get("grouping"):
        errors.append("Missing action.grouping")


def validate_action(action: Any) -> ValidationResult:
    """Validate an action wire on its own (before it is signed)."""
    errors: List[str] = []
    _collect_action_errors(action, errors)
    return ValidationResult(is_valid=not errors, errors=errors)


def validate_order_payload(payload: Any) -> ValidationResult:
    """
    Validate a full signed-action payload.

    Args:
        payload: {action, nonce, signature, vaultAddress?, expiresAfter?}

    Returns:
        ValidationResult with every violation found
    """
    errors: List[str] = []
    if not isinstance(payload, Mapping):
        return ValidationResult(is_valid=False, errors=["payload must be an object"])

    if "action" not in payload or payload.get("action") is None:
        errors.append("Missing action field")
    if "nonce" not in payload or payload.get("nonce") is None:
        errors.append("Missing nonce field")
    elif not _is_int(payload["nonce"]) or payload["nonce"] <= 0:
        errors.append("nonce must be a positive integer")
    if "signature" not in payload or payload.get("signature") is None:
        errors.append("Missing signature field")

    if payload.get("action") is not None:
        _collect_action_errors(payload["action"], errors)

    signature = payload.get("signature")
    if signature is not None:
        if not isinstance(signature, Mapping):
            errors.append("signature must be an object")
        else:
            if not isinstance(signature.get("r"), str) or not signature.get("r"):
                errors.append("Missing signature.r")
            if not isinstance(signature.get("s"), str) or not signature.get("s"):
                errors.append("Missing signature.s")
            if not _is_int(signature.get("v")):
                errors.append("Missing or invalid signature.v")

    vault = payload.get("vaultAddress")
    if vault is not None and not (isinstance(vault, str) and vault.startswith("0x") and len(vault) == 42):
        errors.append("vaultAddress must be a 0x-prefixed 20-byte hex address")

    expires_after = payload.get("expiresAfter")
    if expires_after is not None and not _is_int(expires_after):
        errors.append("expiresAfter must be an integer")

    return ValidationResult(is_valid=not errors, errors=errors)
