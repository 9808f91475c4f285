"""
Legacy encoding and message id tests.

The expected ids come from the JavaScript reference stack, so these pin
the serializer to ``JSON.stringify(value, null, 2)`` and the hash input
to Node's "binary" encoding.
"""

import pytest

from ssb_validate.legacy import (
    binary_bytes,
    format_number,
    message_id,
    message_id_for_value,
    to_legacy_json,
    utf16_length,
)
from tests import feed_data
from tests.feed_data import load


# =============================================================================
# MESSAGE IDS OF REAL MESSAGES
# =============================================================================

class TestRealMessageIds:
    """Keys of published messages are reproduced byte for byte."""

    @pytest.mark.parametrize("name", [
        "MESSAGE_1",
        "MESSAGE_2",
        "MESSAGE_3",
        "MESSAGE_PRIVATE",
        "MESSAGE_PRIVATE_PREV",
        "MESSAGE_WITH_UNICODE",
        "MESSAGE_WITH_UNICODE_PREV",
    ])
    def test_key_matches_value_hash(self, name):
        message = load(getattr(feed_data, name))
        assert message.compute_id() == message.key

    def test_bare_value_hashes_like_its_record(self):
        record = load(feed_data.MESSAGE_1)
        bare = load(feed_data.MESSAGE_VALUE_1)
        assert bare.key is None
        assert bare.compute_id() == record.key

    def test_serialized_value_is_reproduced(self):
        """The bare value fixture is already in legacy form."""
        bare = load(feed_data.MESSAGE_VALUE_2)
        assert to_legacy_json(bare.value) == feed_data.MESSAGE_VALUE_2

    def test_swapped_author_and_sequence_keep_their_order(self):
        message = load(feed_data.MESSAGE_PRIVATE)
        text = message.text
        assert text.index('"sequence"') < text.index('"author"')

    def test_single_character_change_changes_id(self):
        value = dict(load(feed_data.MESSAGE_VALUE_1).value)
        before = message_id_for_value(value)
        value["timestamp"] += 1
        assert message_id_for_value(value) != before


# =============================================================================
# SERIALIZER
# =============================================================================

class TestLegacyJson:

    def test_indent_and_separators(self):
        text = to_legacy_json({"a": 1, "b": [True, None], "c": {}})
        assert text == '{\n  "a": 1,\n  "b": [\n    true,\n    null\n  ],\n  "c": {}\n}'

    def test_empty_containers_are_compact(self):
        assert to_legacy_json([]) == "[]"
        assert to_legacy_json({"x": []}) == '{\n  "x": []\n}'

    def test_non_ascii_is_not_escaped(self):
        assert to_legacy_json("employers’") == '"employers’"'

    def test_control_characters_are_escaped(self):
        assert to_legacy_json("a\nb\x01") == '"a\\nb\\u0001"'

    def test_key_order_is_preserved(self):
        text = to_legacy_json({"z": 1, "a": 2})
        assert text.index('"z"') < text.index('"a"')

    def test_rejects_non_string_keys(self):
        with pytest.raises(TypeError):
            to_legacy_json({1: "x"})

    def test_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            to_legacy_json({"x": object()})


class TestFormatNumber:
    """Numbers print as JavaScript prints them."""

    @pytest.mark.parametrize("number,expected", [
        (0, "0"),
        (-0.0, "0"),
        (1470186877575, "1470186877575"),
        (1.0, "1"),
        (1.5, "1.5"),
        (0.1, "0.1"),
        (1571140555382.0059, "1571140555382.0059"),
        (1e20, "100000000000000000000"),
        (1.2345678901234568e20, "123456789012345680000"),
        (1e21, "1e+21"),
        (1.5e300, "1.5e+300"),
        (0.000001, "0.000001"),
        (1e-7, "1e-7"),
        (-2.5e-8, "-2.5e-8"),
        (float("nan"), "null"),
        (float("inf"), "null"),
    ])
    def test_format(self, number, expected):
        assert format_number(number) == expected

    def test_booleans_are_not_numbers(self):
        assert to_legacy_json([True, 1]) == "[\n  true,\n  1\n]"


# =============================================================================
# LENGTH AND HASH INPUT
# =============================================================================

class TestUtf16:

    def test_ascii_length(self):
        assert utf16_length("abc") == 3

    def test_bmp_character_counts_once(self):
        assert utf16_length("’") == 1

    def test_astral_character_counts_twice(self):
        assert utf16_length("😀") == 2

    def test_binary_keeps_low_byte(self):
        # U+2019 is 0x2019; only 0x19 is hashed.
        assert binary_bytes("a’") == b"a\x19"

    def test_message_id_format(self):
        mid = message_id("{}")
        assert mid.startswith("%")
        assert mid.endswith("=.sha256")
        assert len(mid) == 1 + 44 + len(".sha256")
