from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .codec import Codec
from .constants import F_TYPE


def make_envelope(msg_type: str, **fields: Any) -> dict:
    env: dict[str, Any] = {F_TYPE: str(msg_type)}
    for k, v in fields.items():
        if v is not None:
            env[k] = v
    return env


def validate_envelope(env: Any) -> None:
    """Check routing structure only. Payload fields are never inspected."""
    if not isinstance(env, dict):
        raise TypeError("envelope must be a map")

    t = env.get(F_TYPE)
    if t is None:
        raise ValueError("missing envelope type")
    if not isinstance(t, str):
        raise TypeError("envelope type must be a string")
    if not t:
        raise ValueError("envelope type must not be empty")


def field_str(env: dict, key: str) -> str | None:
    """Return a correlating field if it is a usable, non-empty string."""
    v = env.get(key)
    if isinstance(v, str) and v:
        return v
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return None


@dataclass(frozen=True)
class Frame:
    """
    An inbound envelope together with the bytes it arrived as.

    Destinations that share the source codec receive ``raw`` verbatim; any
    other destination gets ``env`` re-encoded with its own codec.
    """

    env: dict
    raw: bytes | str | None = None
    codec: Codec | None = None

    def encoded_for(self, codec: Codec) -> bytes | str:
        if self.raw is not None and self.codec is codec:
            return self.raw
        return codec.encode(self.env)
