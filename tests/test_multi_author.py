"""
Multi-author batches and interleaved feeds.
"""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from ssb_validate.batch import (
    FeedsResult,
    MultiAuthorResult,
    validate_feeds,
    validate_multi_author,
    validate_sequential,
)
from ssb_validate.chain import ChainState, ValidationMode
from ssb_validate.errors import ChainErrorKind, HashErrorKind, ShapeErrorKind
from ssb_validate.message import Message
from tests import feed_data
from tests.feed_data import AUTHOR_A, AUTHOR_B, build_feed, load, make_value, with_value

MIXED = [
    feed_data.MESSAGE_3,
    feed_data.MESSAGE_1,
    feed_data.MESSAGE_2_INCORRECT_KEY,
    feed_data.MESSAGE_WITH_EXTRA_FIELD,
    feed_data.MESSAGE_PRIVATE,
    feed_data.MESSAGE_WITH_UNICODE,
    feed_data.MESSAGE_PRIVATE_INVALID,
]


def _mixed():
    return [load(r) for r in MIXED]


# =============================================================================
# MULTI-AUTHOR
# =============================================================================

class TestMultiAuthor:

    def test_all_failures_in_index_order(self):
        result = validate_multi_author(_mixed())
        assert isinstance(result, MultiAuthorResult)
        assert not result.is_valid
        assert [f.index for f in result.failures] == [2, 3, 6]
        assert [f.error.kind for f in result.failures] == [
            HashErrorKind.KEY_MISMATCH,
            ShapeErrorKind.UNEXPECTED_FIELD,
            ShapeErrorKind.NON_CANONICAL_BASE64,
        ]
        assert result.first.index == 2

    def test_stop_at_first(self):
        result = validate_multi_author(_mixed(), stop_at_first=True)
        assert [f.index for f in result.failures] == [2]

    def test_valid_collection(self):
        messages = build_feed(5, AUTHOR_A) + build_feed(5, AUTHOR_B)
        random.Random(3).shuffle(messages)
        result = validate_multi_author(messages)
        assert result.is_valid
        assert result.first is None
        result.raise_if_invalid()

    def test_linkage_is_not_checked(self):
        # Unrelated sequence numbers and previous links are fine.
        messages = [load(feed_data.MESSAGE_3), load(feed_data.MESSAGE_1), load(feed_data.MESSAGE_3)]
        assert validate_multi_author(messages).is_valid

    def test_raise_if_invalid(self):
        result = validate_multi_author(_mixed())
        with pytest.raises(Exception) as exc_info:
            result.raise_if_invalid()
        assert exc_info.value.kind is HashErrorKind.KEY_MISMATCH

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 100])
    @pytest.mark.parametrize("stop_at_first", [False, True])
    def test_parallel_matches_sequential(self, chunk_size, stop_at_first):
        expected = validate_multi_author(_mixed(), stop_at_first=stop_at_first)
        actual = validate_multi_author(
            _mixed(),
            parallel=True,
            stop_at_first=stop_at_first,
            chunk_size=chunk_size,
            max_workers=3,
        )
        assert actual == expected

    def test_external_executor(self):
        with ThreadPoolExecutor(max_workers=2) as executor:
            result = validate_multi_author(_mixed(), chunk_size=2, executor=executor)
        assert [f.index for f in result.failures] == [2, 3, 6]

    def test_agrees_with_multi_author_mode(self):
        messages = _mixed()
        sequential = validate_sequential(messages, None, ValidationMode.OUT_OF_ORDER_MULTI_AUTHOR)
        assert sequential.index == validate_multi_author(messages).first.index


# =============================================================================
# INTERLEAVED FEEDS
# =============================================================================

def _interleave(*feeds):
    out = []
    for group in zip(*feeds):
        out.extend(group)
    return out


class TestFeeds:

    def test_two_valid_feeds(self):
        a = build_feed(4, AUTHOR_A)
        b = build_feed(4, AUTHOR_B)
        result = validate_feeds(_interleave(a, b))
        assert isinstance(result, FeedsResult)
        assert result.is_valid
        assert result.failures == []
        assert result.states[AUTHOR_A] == ChainState.from_message(a[-1])
        assert result.states[AUTHOR_B] == ChainState.from_message(b[-1])

    def test_continues_from_known_states(self):
        a = build_feed(6, AUTHOR_A)
        b = build_feed(6, AUTHOR_B)
        states = {
            AUTHOR_A: ChainState.from_message(a[2]),
            AUTHOR_B: ChainState.from_message(b[2]),
        }
        result = validate_feeds(_interleave(a[3:], b[3:]), states)
        assert result.is_valid
        assert result.states[AUTHOR_A].sequence == 6
        assert result.states[AUTHOR_B].sequence == 6

    def test_caller_mapping_is_not_modified(self):
        a = build_feed(3, AUTHOR_A)
        states = {AUTHOR_A: ChainState.from_message(a[0])}
        validate_feeds(a[1:], states)
        assert states[AUTHOR_A].sequence == 1

    def test_failure_index_refers_to_input(self):
        a = build_feed(4, AUTHOR_A)
        b = build_feed(4, AUTHOR_B)
        b[2] = with_value(b[2], previous="%fork=.sha256")
        messages = _interleave(a, b)
        result = validate_feeds(messages)
        assert not result.is_valid
        assert result.results[AUTHOR_A].is_valid
        failed = result.results[AUTHOR_B]
        assert failed.index == 5
        assert messages[5] is b[2]
        assert failed.error.kind is ChainErrorKind.PREVIOUS_HASH_MISMATCH
        assert result.states[AUTHOR_B].sequence == 2
        assert [f.index for f in result.failures] == [5]

    def test_unknown_author_starts_empty(self):
        b = build_feed(3, AUTHOR_B)
        result = validate_feeds(b[1:], {AUTHOR_A: ChainState()})
        assert result.results[AUTHOR_B].error.kind is ChainErrorKind.EXPECTED_FIRST_MESSAGE
        assert AUTHOR_B not in result.states

    def test_message_without_author(self):
        value = make_value(AUTHOR_A, 1, None)
        value["author"] = None
        messages = build_feed(2, AUTHOR_B) + [Message(value=value)]
        result = validate_feeds(messages)
        assert result.results[None].index == 2
        assert result.results[None].error.kind is ShapeErrorKind.INVALID_FIELD_TYPE
        assert result.results[AUTHOR_B].is_valid

    def test_parallel(self):
        a = build_feed(10, AUTHOR_A)
        b = build_feed(10, AUTHOR_B)
        b[7] = with_value(b[7], sequence=20)
        messages = _interleave(a, b)
        assert validate_feeds(messages, parallel=True) == validate_feeds(messages)

    def test_out_of_order_mode(self):
        a = build_feed(5, AUTHOR_A)
        b = build_feed(5, AUTHOR_B)
        messages = a + b
        random.Random(11).shuffle(messages)
        result = validate_feeds(messages, mode=ValidationMode.OUT_OF_ORDER_SINGLE_AUTHOR)
        assert result.is_valid
        assert result.states[AUTHOR_A].sequence == 5
        assert result.states[AUTHOR_B].sequence == 5
