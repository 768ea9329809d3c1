from __future__ import annotations

import json

import cbor2


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes):
    return cbor2.loads(b)


class Codec:
    """Serializer bound to a transport's framing."""

    name = "base"

    def encode(self, obj) -> bytes | str:
        raise NotImplementedError

    def decode(self, data: bytes | str):
        raise NotImplementedError


class CborCodec(Codec):
    """CBOR maps, used on Reticulum links."""

    name = "cbor"

    def encode(self, obj) -> bytes:
        return encode(obj)

    def decode(self, data: bytes | str):
        if isinstance(data, str):
            raise TypeError("CBOR frames must be bytes")
        return decode(bytes(data))


class JsonCodec(Codec):
    """JSON text, used on WebSocket connections."""

    name = "json"

    def encode(self, obj) -> str:
        return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)

    def decode(self, data: bytes | str):
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        return json.loads(data)


CBOR = CborCodec()
JSON = JsonCodec()
