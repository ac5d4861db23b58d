import pytest

from metashrew.flush import DecodeError, KeyValueFlush


def test_encode_pins_wire_bytes():
    assert KeyValueFlush(entries=[b"k", b"v"]).encode() == b"\x0a\x01k\x0a\x01v"


def test_empty_message_encodes_to_nothing():
    assert KeyValueFlush().encode() == b""


def test_decode_empty_gives_no_entries():
    decoded = KeyValueFlush.decode(b"")
    assert decoded.entries == []
    assert decoded.unknown == b""


@pytest.mark.parametrize(
    "entries",
    [
        [b"key", b"value"],
        [b"", b""],
        [b"a" * 300, b"b" * 20000],
        [bytes(range(256)), b"x", b"y", b"z"],
    ],
)
def test_round_trip(entries):
    message = KeyValueFlush(entries=list(entries))
    assert KeyValueFlush.decode(message.encode()) == message


def test_pairs_groups_keys_and_values():
    message = KeyValueFlush(entries=[b"k1", b"v1", b"k2", b"v2"])
    assert list(message.pairs()) == [(b"k1", b"v1"), (b"k2", b"v2")]


def test_pairs_drops_trailing_entry():
    message = KeyValueFlush(entries=[b"k1", b"v1", b"orphan"])
    assert list(message.pairs()) == [(b"k1", b"v1")]


def test_unknown_varint_field_is_kept():
    known = KeyValueFlush(entries=[b"a"]).encode()
    extra = b"\x10\x05"
    decoded = KeyValueFlush.decode(extra + known)
    assert decoded.entries == [b"a"]
    assert decoded.unknown == extra
    assert decoded.encode() == known + extra


def test_unknown_group_is_skipped():
    group = b"\x1b\x08\x01\x1c"  # field 3 start, inner varint field 1, field 3 end
    known = KeyValueFlush(entries=[b"k", b"v"]).encode()
    decoded = KeyValueFlush.decode(known + group)
    assert decoded.entries == [b"k", b"v"]
    assert decoded.unknown == group


def test_unknown_fixed_fields_are_skipped():
    fixed32 = b"\x15" + b"\x00" * 4
    fixed64 = b"\x19" + b"\x00" * 8
    known = KeyValueFlush(entries=[b"q"]).encode()
    decoded = KeyValueFlush.decode(fixed32 + known + fixed64)
    assert decoded.entries == [b"q"]
    assert decoded.unknown == fixed32 + fixed64


def test_truncated_entry_raises():
    data = KeyValueFlush(entries=[b"hello"]).encode()
    with pytest.raises(DecodeError):
        KeyValueFlush.decode(data[:-1])


def test_truncated_varint_raises():
    with pytest.raises(DecodeError):
        KeyValueFlush.decode(b"\x0a\x80")


def test_invalid_wire_type_raises():
    with pytest.raises(DecodeError):
        KeyValueFlush.decode(b"\x0e")


def test_field_number_zero_raises():
    with pytest.raises(DecodeError):
        KeyValueFlush.decode(b"\x02\x00")


def test_stray_end_group_raises():
    with pytest.raises(DecodeError):
        KeyValueFlush.decode(b"\x0c")


def test_unterminated_group_raises():
    with pytest.raises(DecodeError):
        KeyValueFlush.decode(b"\x1b\x08\x01")


def test_decode_error_is_value_error():
    with pytest.raises(ValueError):
        KeyValueFlush.decode(b"\x0a\x05ab")