"""Signing: canonical encoding, action hashing, EIP-712 phantom-agent signatures."""

from basket_engine.signing.encoder import encode_action
from basket_engine.signing.action_hash import action_hash, build_action_hash
from basket_engine.signing.signer import ActionSigner, Signature, SignedAction, recover_signer

__all__ = [
    "encode_action",
    "action_hash",
    "build_action_hash",
    "ActionSigner",
    "Signature",
    "SignedAction",
    "recover_signer",
]
