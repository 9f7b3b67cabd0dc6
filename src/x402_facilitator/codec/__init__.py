from .codec import (
    build_payment_required,
    decode_payload,
    decode_payment_required,
    decode_requirement,
    decode_settlement,
    encode_payload,
    encode_payment_required,
    encode_requirement,
    encode_settlement,
    load_payload,
    load_payment_required,
    load_requirement,
    load_settlement,
    payment_required_headers,
    settlement_headers,
)
from .headers import (
    ALL_PAYMENT_HEADERS,
    HEADER_FAMILIES,
    V1_HEADERS,
    V2_HEADERS,
    HeaderFamily,
    find_payment_header,
    headers_for,
)

__all__ = [
    "build_payment_required",
    "decode_payload",
    "decode_payment_required",
    "decode_requirement",
    "decode_settlement",
    "encode_payload",
    "encode_payment_required",
    "encode_requirement",
    "encode_settlement",
    "load_payload",
    "load_payment_required",
    "load_requirement",
    "load_settlement",
    "payment_required_headers",
    "settlement_headers",
    "ALL_PAYMENT_HEADERS",
    "HEADER_FAMILIES",
    "V1_HEADERS",
    "V2_HEADERS",
    "HeaderFamily",
    "find_payment_header",
    "headers_for",
]
