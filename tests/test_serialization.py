import pytest

from hormmanage.message import Message
from hormmanage.serialization import (
    SERIALIZATION_TYPE_JSON,
    SERIALIZATION_TYPE_XML,
    JSONSerialization,
    Serializer,
    deserialize,
    get_serializer,
    register_serializer,
    serialize,
)


def test_default_serializers_registered():
    assert get_serializer(SERIALIZATION_TYPE_JSON).serialize({"a": 1}) == b'{"a":1}'
    assert get_serializer(SERIALIZATION_TYPE_XML).serialize("<a/>") == b"<a/>"


def test_json_round_trip():
    msg = Message(serialization_type=SERIALIZATION_TYPE_JSON)
    body = {"name": "x", "items": [1, 2, 3], "ok": True}
    assert deserialize(msg, serialize(msg, body)) == body


def test_json_is_compact():
    assert JSONSerialization().serialize({"a": 1}) == b'{"a":1}'


def test_serialize_none_gives_none():
    assert serialize(None, None) is None


def test_deserialize_empty_gives_none():
    assert deserialize(Message(), b"") is None


def test_missing_message_raises():
    with pytest.raises(ValueError):
        serialize(None, {"a": 1})
    with pytest.raises(ValueError):
        deserialize(None, b"{}")


def test_unregistered_type_raises():
    msg = Message(serialization_type=12345)
    with pytest.raises(LookupError):
        serialize(msg, [1])


def test_xml_passes_text_through():
    msg = Message(serialization_type=SERIALIZATION_TYPE_XML)
    assert serialize(msg, "<a>1</a>") == b"<a>1</a>"
    assert deserialize(msg, b"<b/>") == b"<b/>"


def test_register_custom_serializer():
    class Upper(Serializer):
        def serialize(self, body):
            return str(body).upper().encode()

        def deserialize(self, data):
            return data.decode().lower()

    register_serializer(42, Upper())
    msg = Message(serialization_type=42)
    assert serialize(msg, "abc") == b"ABC"
    assert deserialize(msg, b"ABC") == "abc"


def test_serializer_is_abstract():
    with pytest.raises(TypeError):
        Serializer()