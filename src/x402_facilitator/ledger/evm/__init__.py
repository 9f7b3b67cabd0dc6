from .client import EVMLedgerClient
from .signatures import (
    EVMECDSASignature,
    build_erc3009_typed_data,
    sign_transfer_authorization,
)
from .verifies import (
    encode_authorization,
    recover_authorization_signer,
    verify_authorization_signature,
)

__all__ = [
    "EVMLedgerClient",
    "EVMECDSASignature",
    "build_erc3009_typed_data",
    "sign_transfer_authorization",
    "encode_authorization",
    "recover_authorization_signer",
    "verify_authorization_signature",
]
