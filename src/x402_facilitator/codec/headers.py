"""
Header families for the two wire versions.

| Purpose                       | V1                   | V2                  |
|-------------------------------|----------------------|---------------------|
| Server declares requirements  | X-PAYMENT-REQUIRED   | PAYMENT-REQUIRED    |
| Client attaches payload       | X-PAYMENT            | PAYMENT-SIGNATURE   |
| Server echoes settlement      | X-PAYMENT-RESPONSE   | PAYMENT-RESPONSE    |
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from ..schemas.versions import ProtocolVersion


@dataclass(frozen=True)
class HeaderFamily:
    """Fixed header names used by one protocol version."""
    version: ProtocolVersion
    payment_required: str
    payment: str
    payment_response: str


V1_HEADERS = HeaderFamily(
    version=ProtocolVersion.V1,
    payment_required="X-PAYMENT-REQUIRED",
    payment="X-PAYMENT",
    payment_response="X-PAYMENT-RESPONSE",
)

V2_HEADERS = HeaderFamily(
    version=ProtocolVersion.V2,
    payment_required="PAYMENT-REQUIRED",
    payment="PAYMENT-SIGNATURE",
    payment_response="PAYMENT-RESPONSE",
)

HEADER_FAMILIES: Dict[ProtocolVersion, HeaderFamily] = {
    ProtocolVersion.V1: V1_HEADERS,
    ProtocolVersion.V2: V2_HEADERS,
}

#: Every header name that may carry x402 data, for CORS exposure.
ALL_PAYMENT_HEADERS: Tuple[str, ...] = tuple(
    name
    for family in (V1_HEADERS, V2_HEADERS)
    for name in (family.payment_required, family.payment, family.payment_response)
)


def headers_for(version: ProtocolVersion) -> HeaderFamily:
    return HEADER_FAMILIES[ProtocolVersion(version)]


def _lookup(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def find_payment_header(headers: Mapping[str, str]) -> Optional[Tuple[ProtocolVersion, str]]:
    """
    Locate the client payment header in either family.

    Header names are matched case-insensitively. When both families are
    present the V2 header wins.

    Args:
        headers: Request headers (any mapping, e.g. Starlette ``Headers``).

    Returns:
        ``(version, value)`` for the header found, or None when the request
        carries no non-empty payment header.
    """
    for family in (V2_HEADERS, V1_HEADERS):
        value = _lookup(headers, family.payment)
        if value is not None and value.strip():
            return family.version, value
    return None
