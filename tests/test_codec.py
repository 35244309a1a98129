from __future__ import annotations

import pytest

from datastore.codec import (
    decode_history_entry,
    decode_latest,
    encode_history_value,
    encode_latest,
    history_entry_path,
    timestamp_key,
)
from models.records import DataPoint


def test_timestamp_key_is_zero_padded_so_key_order_is_time_order() -> None:
    assert timestamp_key(42) == "0000000000042"
    assert timestamp_key(999) < timestamp_key(1000)
    with pytest.raises(ValueError):
        timestamp_key(-1)


def test_history_entry_path_layout() -> None:
    assert (
        history_entry_path("tank-1", "2024-03-10", 1710072000000)
        == "history/tank-1/2024-03-10/1710072000000"
    )


def test_history_value_carries_level_only() -> None:
    assert encode_history_value(DataPoint(1, 2.5)) == {"level": 2.5}
    assert decode_history_entry("0000000000001", {"level": 2.5}) == DataPoint(1, 2.5)


def test_history_decoder_accepts_older_shapes() -> None:
    assert decode_history_entry("7", {"l": 3}) == DataPoint(7, 3.0)
    # Key wins over a timestamp embedded in the value.
    assert decode_history_entry("8", {"lv": 1.0, "timestamp": 5}) == DataPoint(8, 1.0)
    assert decode_history_entry("9", 4.5) == DataPoint(9, 4.5)


@pytest.mark.parametrize(
    ("key", "value"),
    [("not-a-time", {"level": 1.0}), ("1", {"level": "high"}), ("1", {}), ("1", True)],
)
def test_history_decoder_rejects_malformed_records(key, value) -> None:
    with pytest.raises(ValueError):
        decode_history_entry(key, value)


def test_latest_record_encoding_and_shorthand_decoding() -> None:
    assert encode_latest(DataPoint(10, 1.5)) == {"timestamp": 10, "level": 1.5}
    assert decode_latest({"timestamp": 10, "level": 1.5}) == DataPoint(10, 1.5)
    assert decode_latest({"t": 11, "lv": 2}) == DataPoint(11, 2.0)
    assert decode_latest(None) is None


@pytest.mark.parametrize("value", [["not", "a", "record"], {"level": 1.0}, {"timestamp": "x", "level": 1.0}])
def test_latest_decoder_rejects_malformed_records(value) -> None:
    with pytest.raises(ValueError):
        decode_latest(value)
