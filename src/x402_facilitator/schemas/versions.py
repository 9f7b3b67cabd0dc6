from enum import IntEnum
from typing import Any, List


class ProtocolVersion(IntEnum):
    V1 = 1
    V2 = 2

    @classmethod
    def from_value(cls, value: Any) -> "ProtocolVersion":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Unsupported protocol version: {value}")


SUPPORTED_VERSIONS: List[ProtocolVersion] = [ProtocolVersion.V1, ProtocolVersion.V2]
