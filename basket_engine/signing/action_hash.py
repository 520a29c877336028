"""
Action Hash Builder

Preimage layout, in order:
    encoded_action
    nonce                     8 bytes, big-endian unsigned
    0x00                      no vault address
  | 0x01 + 20 address bytes   vault address present
    [0x00 + expires_after]    only when an expiry is set, 8 bytes big-endian

The digest is Keccak-256 of the concatenation.
"""

from typing import Any, Optional, Union

from eth_utils import keccak

from basket_engine.core.errors import EncodingError
from basket_engine.signing.encoder import encode_action

U64_MAX = 2**64 - 1

Address = Union[str, bytes]


def _u64(value: int, name: str) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{name} must be an integer, got {value!r}")
    if not 0 <= value <= U64_MAX:
        raise EncodingError(f"{name} does not fit in u64: {value}")
    return value.to_bytes(8, "big")


def address_to_bytes(address: Address) -> bytes:
    """20 raw address bytes from a hex string (0x optional) or bytes."""
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
    else:
        hex_part = address[2:] if address.startswith("0x") else address
        try:
            raw = bytes.fromhex(hex_part)
        except ValueError:
            raise EncodingError(f"address is not hex: {address!r}") from None
    if len(raw) != 20:
        raise EncodingError(f"address must be 20 bytes, got {len(raw)}")
    return raw


def build_action_hash(
    encoded_action: bytes,
    nonce: int,
    vault_address: Optional[Address] = None,
    expires_after: Optional[int] = None,
) -> bytes:
    """
    Hash encoded action bytes together with nonce, vault and expiry.

    Args:
        encoded_action: Output of encode_action
        nonce: Anti-replay nonce (u64)
        vault_address: Optional vault/sub-account address
        expires_after: Optional expiry timestamp in ms (u64)

    Returns:
        32-byte Keccak-256 digest
    """
    data = bytes(encoded_action) + _u64(nonce, "nonce")
    if vault_address is None:
        data += b"\x00"
    else:
        data += b"\x01" + address_to_bytes(vault_address)
    if expires_after is not None:
        data += b"\x00" + _u64(expires_after, "expires_after")
    return keccak(data)


def action_hash(
    action: Any,
    nonce: int,
    vault_address: Optional[Address] = None,
    expires_after: Optional[int] = None,
) -> bytes:
    """Encode then hash an action."""
    return build_action_hash(encode_action(action), nonce, vault_address, expires_after)
