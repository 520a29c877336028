"""
Structured-Data Signer

Signs an action hash as an EIP-712 "phantom agent" and verifies the signature
by recovering the signer address before anything leaves the process.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import to_hex

from basket_engine.core.errors import EncodingError, SignatureIntegrityError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

AGENT_DOMAIN = {
    "chainId": 1337,
    "name": "Exchange",
    "verifyingContract": ZERO_ADDRESS,
    "version": "1",
}

AGENT_TYPES = {
    "Agent": [
        {"name": "source", "type": "string"},
        {"name": "connectionId", "type": "bytes32"},
    ],
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
}


def build_phantom_agent(action_hash: bytes, is_mainnet: bool = True) -> Dict[str, Any]:
    return {"source": "a" if is_mainnet else "b", "connectionId": action_hash}


def build_typed_data(action_hash: bytes, is_mainnet: bool = True) -> Dict[str, Any]:
    """Full EIP-712 message wrapping the action hash."""
    if len(action_hash) != 32:
        raise EncodingError(f"action hash must be 32 bytes, got {len(action_hash)}")
    return {
        "domain": AGENT_DOMAIN,
        "types": AGENT_TYPES,
        "primaryType": "Agent",
        "message": build_phantom_agent(action_hash, is_mainnet),
    }


@dataclass(frozen=True)
class Signature:
    r: int
    s: int
    v: int

    def to_wire(self) -> Dict[str, Any]:
        return {"r": to_hex(self.r), "s": to_hex(self.s), "v": self.v}

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "Signature":
        return cls(r=int(data["r"], 16), s=int(data["s"], 16), v=int(data["v"]))


def recover_signer(action_hash: bytes, signature: Signature, is_mainnet: bool = True) -> str:
    """Recover the checksummed address that produced `signature` over `action_hash`."""
    signable = encode_typed_data(full_message=build_typed_data(action_hash, is_mainnet))
    return Account.recover_message(signable, vrs=(signature.v, signature.r, signature.s))


class ActionSigner:
    """
    EIP-712 signer for L1 actions.

    Every signature is recovered and compared to the key's address; a mismatch
    raises SignatureIntegrityError so the action is never submitted.
    """

    def __init__(self, account: LocalAccount, is_mainnet: bool = True):
        self._account = account
        self.is_mainnet = is_mainnet

    @classmethod
    def from_key(cls, secret_key: str, is_mainnet: bool = True) -> "ActionSigner":
        return cls(Account.from_key(secret_key), is_mainnet=is_mainnet)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, action_hash: bytes) -> Signature:
        signable = encode_typed_data(full_message=build_typed_data(action_hash, self.is_mainnet))
        signed = self._account.sign_message(signable)
        signature = Signature(r=signed.r, s=signed.s, v=signed.v)

        recovered = Account.recover_message(signable, vrs=(signature.v, signature.r, signature.s))
        if recovered.lower() != self.address.lower():
            logger.error("Signature self-check failed: expected %s, recovered %s", self.address, recovered)
            raise SignatureIntegrityError(self.address, recovered)
        return signature


@dataclass(frozen=True)
class SignedAction:
    """An action wire with its nonce and verified signature, ready to post."""

    action: Dict[str, Any]
    nonce: int
    signature: Signature
    vault_address: Optional[str] = None
    expires_after: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action,
            "nonce": self.nonce,
            "signature": self.signature.to_wire(),
        }
        if self.vault_address is not None:
            payload["vaultAddress"] = self.vault_address
        if self.expires_after is not None:
            payload["expiresAfter"] = self.expires_after
        return payload
