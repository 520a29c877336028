"""
Canonical Action Encoder

Serializes an action wire into the MessagePack bytes the exchange hashes.
Field order is the schema order the wire dicts are built in; keys are never
sorted.
"""

from typing import Any, Dict, Mapping

import msgpack

from basket_engine.core.errors import EncodingError
from basket_engine.execution.validator import validate_action


def action_to_wire(action: Any) -> Dict[str, Any]:
    """Return the wire dict for an OrderAction/CancelAction or an existing wire mapping."""
    if hasattr(action, "to_wire"):
        return action.to_wire()
    if isinstance(action, Mapping):
        return dict(action)
    raise EncodingError(f"cannot encode action of type {type(action).__name__}")


def encode_action(action: Any) -> bytes:
    """
    Encode an action into canonical bytes.

    Raises:
        ValidationError: action wire is missing required fields
        EncodingError: wire contains values MessagePack cannot represent
    """
    wire = action_to_wire(action)
    validate_action(wire).raise_for_errors()
    try:
        return msgpack.packb(wire)
    except (TypeError, ValueError, OverflowError) as e:
        raise EncodingError(f"action is not encodable: {e}") from e
