"""
EVM Signature Verification Helpers

Off-chain verification of ERC-3009 ``transferWithAuthorization`` signatures.
The EIP-712 struct hash is rebuilt from the authorization fields and its
domain, the signer is recovered from (v, r, s) and compared to
``authorization.from``.

When a Web3 provider is supplied and ECDSA recovery does not match, an
on-chain ERC-1271 ``isValidSignature`` call is attempted so that
smart-contract wallets are also supported.
"""

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, Web3Exception

from ...engine.exceptions import LedgerUnavailableError
from ...schemas.messages import ExactAuthorization
from ..bases import AuthorizationDomain
from .signatures import EVMECDSASignature, build_erc3009_typed_data
from .standards import ERC1271_MAGIC_VALUE, get_erc1271_abi

logger = logging.getLogger(__name__)


def encode_authorization(authorization: ExactAuthorization, domain: AuthorizationDomain) -> SignableMessage:
    """Build the EIP-712 signable message for ``authorization`` under ``domain``."""
    typed_data = build_erc3009_typed_data(authorization, domain)
    return encode_typed_data(full_message=typed_data.to_dict())


def recover_authorization_signer(
    authorization: ExactAuthorization,
    signature: str,
    domain: AuthorizationDomain,
) -> Optional[str]:
    """
    Recover the address that signed ``authorization``.

    Returns:
        Optional[str]: Checksummed signer address, or None if the signature
        is malformed or recovery fails.
    """
    try:
        sig = EVMECDSASignature.from_packed_hex(signature)
        signable = encode_authorization(authorization, domain)
        return Account.recover_message(signable, vrs=(sig.v, int(sig.r, 16), int(sig.s, 16)))
    except Exception as exc:
        logger.debug("Signature recovery failed: %s", exc)
        return None


async def verify_authorization_signature(
    authorization: ExactAuthorization,
    signature: str,
    domain: AuthorizationDomain,
    w3: Optional[AsyncWeb3] = None,
) -> bool:
    """
    Verify an ERC-3009 authorization signature.

    Tries EOA ECDSA recovery first. If the recovered address does not match
    and ``w3`` is supplied, falls back to ERC-1271 ``isValidSignature`` on
    the ``from`` address.

    Args:
        authorization: Signed authorization fields.
        signature:     Packed 65-byte signature hex.
        domain:        EIP-712 domain of the token.
        w3:            Optional provider for the ERC-1271 fallback.

    Returns:
        ``True`` if the signature is valid for ``authorization.from``.

    Raises:
        LedgerUnavailableError: If the ERC-1271 call fails at the transport level.
    """
    # ---- EOA: ECDSA recovery ----
    recovered = recover_authorization_signer(authorization, signature, domain)
    if recovered is not None and recovered.lower() == authorization.from_.lower():
        return True

    if w3 is None:
        return False

    # ---- ERC-1271: smart-contract wallet ----
    try:
        signable = encode_authorization(authorization, domain)
        sig_bytes = bytes.fromhex(signature[2:] if signature[:2].lower() == "0x" else signature)
    except ValueError:
        return False

    msg_hash: bytes = keccak(b"\x19" + signable.version + signable.header + signable.body)
    try:
        if not await w3.eth.get_code(AsyncWeb3.to_checksum_address(authorization.from_)):
            return False
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(authorization.from_),
            abi=get_erc1271_abi(),
        )
        result: bytes = await contract.functions.isValidSignature(msg_hash, sig_bytes).call()
    except (ContractLogicError, ValueError):
        return False
    except (Web3Exception, OSError) as exc:
        raise LedgerUnavailableError(f"ERC-1271 check failed: {exc}") from exc

    return bytes(result) == ERC1271_MAGIC_VALUE
