"""Body serializers selected by the message's serialization type."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from hormmanage.message import Message

SERIALIZATION_TYPE_JSON = 0
SERIALIZATION_TYPE_XML = 1


class Serializer(ABC):
    """Turns a body into bytes and back."""

    @abstractmethod
    def serialize(self, body: Any) -> bytes:
        """Serialize ``body`` to bytes."""

    @abstractmethod
    def deserialize(self, data: bytes) -> Any:
        """Deserialize ``data`` into a body."""


class JSONSerialization(Serializer):
    """JSON bodies."""

    def serialize(self, body: Any) -> bytes:
        return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    def deserialize(self, data: bytes) -> Any:
        return json.loads(data)


class XMLSerialization(Serializer):
    """XML export: the body is passed through as text."""

    def serialize(self, body: Any) -> bytes:
        if isinstance(body, (bytes, bytearray)):
            return bytes(body)
        return str(body).encode("utf-8")

    def deserialize(self, data: bytes) -> Any:
        return data


_serializers: dict[int, Serializer] = {}


def register_serializer(serialization_type: int, serializer: Serializer) -> None:
    """Register ``serializer`` for ``serialization_type``."""
    _serializers[serialization_type] = serializer


def get_serializer(serialization_type: int) -> Serializer | None:
    """Return the serializer for ``serialization_type``, if any."""
    return _serializers.get(serialization_type)


def _serializer_for(msg: Message | None) -> Serializer:
    if msg is None:
        raise ValueError("not find serializationType")
    serializer = get_serializer(msg.serialization_type)
    if serializer is None:
        raise LookupError("serializer not registered")
    return serializer


def deserialize(msg: Message | None, data: bytes | None) -> Any:
    """Deserialize ``data`` with the serializer chosen by ``msg``; empty data gives None."""
    if not data:
        return None
    return _serializer_for(msg).deserialize(data)


def serialize(msg: Message | None, body: Any) -> bytes | None:
    """Serialize ``body`` with the serializer chosen by ``msg``; None gives None."""
    if body is None:
        return None
    return _serializer_for(msg).serialize(body)


register_serializer(SERIALIZATION_TYPE_JSON, JSONSerialization())
register_serializer(SERIALIZATION_TYPE_XML, XMLSerialization())