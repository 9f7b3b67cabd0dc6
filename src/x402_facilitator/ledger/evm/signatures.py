"""
EVM Signature Utilities

Helpers for the packed ``r || s || v`` signature format carried by x402
payloads, and a local EIP-712 signer for ERC-3009
``transferWithAuthorization``. Signing is performed in-process using
``eth_account``; no RPC calls are made.

Exported helpers
----------------
EVMECDSASignature
    (v, r, s) components with conversion to and from the packed hex form.

build_erc3009_typed_data
    Wrap an authorization and its domain in an ``ERC3009TypedData`` envelope
    without signing.

sign_transfer_authorization
    Build, sign and return a complete ``ExactPayload`` ready to be placed in
    a payment payload.
"""

import os
from typing import Optional

from eth_account import Account
from eth_utils import to_hex
from pydantic import Field

from ...schemas.bases import CanonicalModel
from ...schemas.messages import ExactAuthorization, ExactPayload
from ..bases import AuthorizationDomain
from .standards import ERC3009TypedData, TransferWithAuthorizationMessage


class EVMECDSASignature(CanonicalModel):
    """
    EVM ECDSA signature components.

    Attributes:
        v: ECDSA recovery ID (27 or 28).
        r: r component, 0x-prefixed 64-char hex string.
        s: s component, 0x-prefixed 64-char hex string.

    Example::

        sig = EVMECDSASignature.from_packed_hex(payload.signature)
        sig.to_packed_hex() == payload.signature.lower()
    """

    v: int = Field(..., ge=27, le=28, description="ECDSA recovery ID (27 or 28)")
    r: str = Field(..., description="Signature r component (32 bytes hex)")
    s: str = Field(..., description="Signature s component (32 bytes hex)")

    @classmethod
    def from_packed_hex(cls, signature: str) -> "EVMECDSASignature":
        """
        Split a packed 65-byte signature into (v, r, s).

        Recovery ids 0/1 are normalized to 27/28.

        Raises:
            ValueError: If the signature is not 65 bytes of hex.
        """
        body = signature[2:] if signature[:2].lower() == "0x" else signature
        if len(body) != 130:
            raise ValueError(f"Expected a 65-byte signature, got {len(body) // 2} bytes")
        try:
            v = int(body[128:130], 16)
            int(body[:128], 16)
        except ValueError as exc:
            raise ValueError("Signature is not valid hexadecimal") from exc
        if v < 27:
            v += 27
        return cls(v=v, r="0x" + body[0:64].lower(), s="0x" + body[64:128].lower())

    def to_packed_hex(self) -> str:
        """Encode as a 0x-prefixed 132-character ``r || s || v`` hex string."""
        r = self.r.replace("0x", "").replace("0X", "").zfill(64)
        s = self.s.replace("0x", "").replace("0X", "").zfill(64)
        return "0x" + r + s + format(self.v, "02x")

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.to_packed_hex()[2:])


def build_erc3009_typed_data(
    authorization: ExactAuthorization,
    domain: AuthorizationDomain,
) -> ERC3009TypedData:
    """Wrap ``authorization`` in an EIP-712 envelope for ``domain``."""
    return ERC3009TypedData(
        domain=domain,
        message=TransferWithAuthorizationMessage.from_authorization(authorization),
    )


def sign_transfer_authorization(
    *,
    private_key: str,
    domain: AuthorizationDomain,
    recipient: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: Optional[str] = None,
) -> ExactPayload:
    """
    Sign an ERC-3009 ``transferWithAuthorization`` and return the "exact" payload.

    Args:
        private_key:  Hex-encoded secp256k1 key of the payer.
        domain:       EIP-712 domain of the token.
        recipient:    Address receiving the tokens.
        value:        Amount in the token's smallest unit.
        valid_after:  Unix timestamp after which the authorization is valid.
        valid_before: Unix timestamp before which it must be submitted.
        nonce:        Optional bytes32 hex string; random when omitted.

    Returns:
        ExactPayload: Packed signature plus the signed authorization.

    Raises:
        ValueError: If ``valid_after >= valid_before``.

    Example::

        payload = sign_transfer_authorization(
            private_key="0x...",
            domain=registry.resolve_domain("eip155:84532", usdc_address),
            recipient="0xRecipient",
            value=1_000_000,
            valid_after=0,
            valid_before=int(time.time()) + 300,
        )
    """
    if valid_after >= valid_before:
        raise ValueError(
            f"valid_after ({valid_after}) must be strictly less than "
            f"valid_before ({valid_before})"
        )

    account = Account.from_key(private_key)
    authorization = ExactAuthorization(
        from_=account.address,
        to=recipient,
        value=value,
        valid_after=valid_after,
        valid_before=valid_before,
        nonce=nonce if nonce is not None else "0x" + os.urandom(32).hex(),
    )

    typed_data = build_erc3009_typed_data(authorization, domain)
    signed = Account.sign_typed_data(private_key, full_message=typed_data.to_dict())

    return ExactPayload(signature=to_hex(signed.signature), authorization=authorization)
