from dataclasses import dataclass, field
from typing import Dict, Any, List

from ..bases import AuthorizationDomain
from ...schemas.messages import ExactAuthorization


#: Magic value returned by a valid ERC-1271 ``isValidSignature`` call.
ERC1271_MAGIC_VALUE: bytes = b"\x16\x26\xba\x7e"


# -----------------------------
# EIP-3009: Transfer With Authorization
# -----------------------------


@dataclass
class TransferWithAuthorizationMessage:
    """
    Message payload for EIP-3009 "TransferWithAuthorization".

    The EIP names the payer field `from`, a Python reserved word; this
    class uses `authorizer` and maps it back in `to_dict()`.

    Attributes:
        authorizer: Address authorizing the transfer (maps to `from`).
        recipient: Address receiving the tokens (maps to `to`).
        value: Amount of tokens to transfer (uint256).
        validAfter: Unix timestamp after which the authorization becomes valid.
        validBefore: Unix timestamp before which the authorization expires.
        nonce: Unique bytes32 hex string preventing replay.
    """
    authorizer: str
    recipient: str
    value: int
    validAfter: int
    validBefore: int
    nonce: str

    @classmethod
    def from_authorization(cls, authorization: ExactAuthorization) -> "TransferWithAuthorizationMessage":
        return cls(
            authorizer=authorization.from_,
            recipient=authorization.to,
            value=authorization.amount,
            validAfter=authorization.valid_after_ts,
            validBefore=authorization.valid_before_ts,
            nonce=authorization.nonce,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.authorizer,
            "to": self.recipient,
            "value": self.value,
            "validAfter": self.validAfter,
            "validBefore": self.validBefore,
            "nonce": self.nonce,
        }


@dataclass
class ERC3009TypedData:
    """
    ERC-3009 typed data in the ``{types, primaryType, domain, message}``
    layout consumed by ``eth_account`` EIP-712 routines.
    """
    domain: AuthorizationDomain
    message: TransferWithAuthorizationMessage

    primary_type: str = "TransferWithAuthorization"

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "TransferWithAuthorization": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ],
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }


# -----------------------------
# Contract ABIs
# -----------------------------

def get_balance_abi() -> List[Dict[str, Any]]:
    """ABI for ERC-20 ``balanceOf``."""
    return [
        {
            "name": "balanceOf",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "account", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_erc3009_abi() -> List[Dict[str, Any]]:
    """
    ABI for ERC-3009 ``transferWithAuthorization``.

    Example::

        contract = web3.eth.contract(address=token_address, abi=get_erc3009_abi())
        tx = contract.functions.transferWithAuthorization(
            from_addr, to_addr, value,
            valid_after, valid_before, nonce_bytes32,
            v, r_bytes32, s_bytes32,
        ).build_transaction({...})
    """
    return [
        {
            "name": "transferWithAuthorization",
            "type": "function",
            "stateMutability": "nonpayable",
            "inputs": [
                {"name": "from",        "type": "address"},
                {"name": "to",          "type": "address"},
                {"name": "value",       "type": "uint256"},
                {"name": "validAfter",  "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce",       "type": "bytes32"},
                {"name": "v",           "type": "uint8"},
                {"name": "r",           "type": "bytes32"},
                {"name": "s",           "type": "bytes32"},
            ],
            "outputs": [],
        },
    ]


def get_erc1271_abi() -> List[Dict[str, Any]]:
    """ABI for ERC-1271 ``isValidSignature(bytes32, bytes) returns (bytes4)``."""
    return [
        {
            "inputs": [
                {"name": "_hash", "type": "bytes32"},
                {"name": "_signature", "type": "bytes"},
            ],
            "name": "isValidSignature",
            "outputs": [{"name": "", "type": "bytes4"}],
            "stateMutability": "view",
            "type": "function",
        }
    ]
