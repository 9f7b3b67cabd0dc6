"""
Network identifier helpers.

x402 V2 identifies chains with CAIP-2 strings (``eip155:8453``) while V1
messages use short legacy names (``base``). This module holds the immutable
alias table between the two forms and the parsing helpers used by the wire
models and the network registry.
"""

import re
from types import MappingProxyType
from typing import Mapping, Tuple


#: Legacy V1 network names mapped to EIP-155 chain ids.
V1_NETWORK_ALIASES: Mapping[str, int] = MappingProxyType({
    "ethereum": 1,
    "ethereum-sepolia": 11155111,
    "base": 8453,
    "base-sepolia": 84532,
    "polygon": 137,
    "arbitrum": 42161,
    "optimism": 10,
    "skale-base": 1187947933,
    "skale-base-sepolia": 324705682,
})

_CHAIN_ID_TO_ALIAS: Mapping[int, str] = MappingProxyType(
    {chain_id: name for name, chain_id in V1_NETWORK_ALIASES.items()}
)

_CAIP2_PATTERN = re.compile(r"^([-a-z0-9]{3,8}):([-_a-zA-Z0-9]{1,32})$")


def parse_caip2(network: str) -> Tuple[str, str]:
    """
    Split a CAIP-2 identifier into namespace and reference.

    Args:
        network: Identifier such as ``eip155:84532``.

    Returns:
        Tuple[str, str]: ``(namespace, reference)``.

    Raises:
        ValueError: If ``network`` is not a well-formed CAIP-2 string.
    """
    if not isinstance(network, str):
        raise ValueError(f"Network must be a string, got {type(network).__name__}")
    match = _CAIP2_PATTERN.match(network.strip())
    if match is None:
        raise ValueError(f"Invalid CAIP-2 network identifier: '{network}'")
    return match.group(1), match.group(2)


def is_caip2(network: str) -> bool:
    """Return True if ``network`` is a well-formed CAIP-2 identifier."""
    try:
        parse_caip2(network)
    except ValueError:
        return False
    return True


def chain_id_of(network: str) -> int:
    """
    Extract the EIP-155 chain id from a CAIP-2 identifier or V1 alias.

    Raises:
        ValueError: If the network is not an EIP-155 chain or the reference
            is not a positive integer.
    """
    if network in V1_NETWORK_ALIASES:
        return V1_NETWORK_ALIASES[network]

    namespace, reference = parse_caip2(network)
    if namespace != "eip155":
        raise ValueError(f"Unsupported network namespace '{namespace}' in '{network}'")
    try:
        chain_id = int(reference)
    except ValueError as exc:
        raise ValueError(f"Chain reference '{reference}' is not an integer") from exc
    if chain_id <= 0:
        raise ValueError(f"Chain id must be positive, got {chain_id}")
    return chain_id


def to_caip2(network: str) -> str:
    """
    Normalize a V1 alias or CAIP-2 identifier to CAIP-2 form.

    Example:
        to_caip2("base-sepolia")   # "eip155:84532"
        to_caip2("eip155:8453")    # "eip155:8453"
    """
    if network in V1_NETWORK_ALIASES:
        return f"eip155:{V1_NETWORK_ALIASES[network]}"
    parse_caip2(network)
    return network.strip()


def to_v1_network(network: str) -> str:
    """
    Render a network in V1 form: the legacy alias when one exists, else CAIP-2.
    """
    if network in V1_NETWORK_ALIASES:
        return network
    namespace, reference = parse_caip2(network)
    if namespace == "eip155" and reference.isdigit():
        alias = _CHAIN_ID_TO_ALIAS.get(int(reference))
        if alias is not None:
            return alias
    return network
