"""Tests for the L1 action hash."""

import msgpack
import pytest
from eth_utils import keccak, to_hex
from hyperliquid.utils import signing as sdk_signing

from basket_engine.core.errors import EncodingError
from basket_engine.execution.orders import LimitOrderType, OrderAction, OrderRequest
from basket_engine.signing.action_hash import action_hash, address_to_bytes, build_action_hash

NONCE = 1677777606040
VAULT = "0x1719884eb866cb12b2287399b15f7db5e7d775ea"


def eth_ioc_action():
    return {
        "type": "order",
        "orders": [
            {"a": 4, "b": True, "p": "1670.1", "s": "0.0147", "r": False, "t": {"limit": {"tif": "Ioc"}}}
        ],
        "grouping": "na",
    }


def test_known_answer_vector():
    digest = action_hash(eth_ioc_action(), NONCE)
    assert to_hex(digest) == "0x0fcbeda5ae3c4950a548021552a4fea2226858c4453571bf3f24ba017eac2908"


def test_typed_order_matches_known_answer(assets):
    request = OrderRequest(
        asset="ETH",
        is_buy=True,
        size="0.0147",
        limit_price="1670.1",
        order_type=LimitOrderType("Ioc"),
    )
    action = OrderAction.from_requests([request], assets)
    assert action.to_wire() == eth_ioc_action()
    assert to_hex(action_hash(action, NONCE)) == "0x0fcbeda5ae3c4950a548021552a4fea2226858c4453571bf3f24ba017eac2908"


@pytest.mark.parametrize(
    "vault,expires_after",
    [(None, None), (VAULT, None), (None, NONCE + 60_000), (VAULT, NONCE + 60_000)],
)
def test_matches_sdk_action_hash(vault, expires_after):
    action = eth_ioc_action()
    ours = action_hash(action, NONCE, vault, expires_after)
    assert ours == sdk_signing.action_hash(action, vault, NONCE, expires_after)


def test_vault_and_expiry_layout():
    encoded = msgpack.packb(eth_ioc_action())
    nonce_bytes = NONCE.to_bytes(8, "big")
    vault_bytes = bytes.fromhex(VAULT[2:])
    expiry = NONCE + 5000

    assert build_action_hash(encoded, NONCE) == keccak(encoded + nonce_bytes + b"\x00")
    assert build_action_hash(encoded, NONCE, VAULT) == keccak(encoded + nonce_bytes + b"\x01" + vault_bytes)
    assert build_action_hash(encoded, NONCE, VAULT, expiry) == keccak(
        encoded + nonce_bytes + b"\x01" + vault_bytes + b"\x00" + expiry.to_bytes(8, "big")
    )


def test_nonce_changes_hash():
    assert action_hash(eth_ioc_action(), NONCE) != action_hash(eth_ioc_action(), NONCE + 1)


@pytest.mark.parametrize("nonce", [-1, 2**64, True, 1.5])
def test_rejects_nonce_outside_u64(nonce):
    with pytest.raises(EncodingError):
        build_action_hash(b"\x80", nonce)


def test_address_to_bytes():
    assert address_to_bytes(VAULT) == bytes.fromhex(VAULT[2:])
    assert address_to_bytes(VAULT[2:]) == bytes.fromhex(VAULT[2:])
    with pytest.raises(EncodingError):
        address_to_bytes("0x1234")
    with pytest.raises(EncodingError):
        address_to_bytes("0xzz" + "0" * 38)
