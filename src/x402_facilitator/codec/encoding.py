"""
Transport framing for x402 header values.

Header values are JSON objects wrapped in Base64. Some call sites use the
URL-safe alphabet without padding, so decoding accepts either alphabet with
or without padding. Payload headers may also carry raw JSON; ``load_json``
probes the first non-whitespace character to tell the two apart.
"""

import base64
import binascii
import json
from typing import Any, Dict, Union

from ..engine.exceptions import DecodeError


def b64encode(data: bytes, *, urlsafe: bool = False) -> bytes:
    if urlsafe:
        return base64.urlsafe_b64encode(data).rstrip(b"=")
    return base64.b64encode(data)


def b64decode(data: bytes) -> bytes:
    """Decode standard or URL-safe Base64, restoring stripped padding."""
    compact = b"".join(data.split())
    compact = compact.replace(b"-", b"+").replace(b"_", b"/")
    padding = b"=" * (-len(compact) % 4)
    try:
        return base64.b64decode(compact + padding, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid Base64 data: {exc}") from exc


def dump_json(obj: Dict[str, Any], *, urlsafe: bool = False) -> bytes:
    """Serialize ``obj`` to compact JSON and wrap it in Base64."""
    raw = json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return b64encode(raw.encode("utf-8"), urlsafe=urlsafe)


def load_json(data: Union[bytes, str]) -> Dict[str, Any]:
    """
    Parse a header value that is either raw JSON or Base64-wrapped JSON.

    Args:
        data: Header value as bytes or str.

    Returns:
        Dict[str, Any]: The decoded JSON object.

    Raises:
        DecodeError: If the value is empty, not valid Base64, not valid
            UTF-8 JSON, or does not decode to a JSON object.
    """
    if isinstance(data, str):
        try:
            data = data.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise DecodeError(f"Message is not valid UTF-8 text: {exc}") from exc
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"Expected bytes or str, got {type(data).__name__}")

    stripped = bytes(data).lstrip()
    if not stripped:
        raise DecodeError("Empty message")

    raw = stripped if stripped[:1] == b"{" else b64decode(stripped)

    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Invalid JSON: {exc}") from exc

    if not isinstance(obj, dict):
        raise DecodeError(f"Expected a JSON object, got {type(obj).__name__}")
    return obj
