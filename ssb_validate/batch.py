"""Batch validation of feeds.

Entry points:

    validate_sequential    fold validate_message over one author's messages
    validate_parallel      same outcome, computed by a worker pool
    validate_multi_author  independent checks over many authors' messages
    validate_feeds         interleaved feeds against a caller-owned state map

Parallel strategy
─────────────────

Chain linkage is the only sequential dependency between messages, so it is
isolated into a cheap stitch pass:

    1. Partition the messages into contiguous chunks.
    2. Each worker checks shape and key for every message of its chunk and
       linkage between neighbours inside the chunk. It returns the state the
       chunk ends in and its first local failure.
    3. The stitch pass walks the chunks in order, checking only the linkage of
       each chunk's head against the running state (with ``check_linkage``,
       the same function the sequential path uses) and combining states.

The earliest failing index wins no matter which worker finishes first, so
the result is identical to ``validate_sequential`` for every chunking.
"""

from __future__ import annotations

import os
from collections import defaultdict
from concurrent.futures import (
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from ssb_validate.chain import (
    ChainState,
    ValidationMode,
    advance,
    check_linkage,
    combine,
    validate_message,
)
from ssb_validate.config import get_config
from ssb_validate.errors import FeedValidationError
from ssb_validate.hashlink import check_key
from ssb_validate.legacy import message_id
from ssb_validate.message import Message
from ssb_validate.observability import Component, get_logger, timed_operation
from ssb_validate.shape import check_shape

_log = get_logger("batch", Component.BATCH)


class IndexedError(NamedTuple):
    """An error and the zero-based index of the message that caused it."""
    index: int
    error: FeedValidationError


@dataclass(frozen=True)
class BatchResult:
    """Outcome of validating an ordered batch.

    On success ``state`` is the final chain state. On failure it is the state
    reached just before the offending message.
    """
    is_valid: bool
    state: ChainState
    index: Optional[int] = None
    error: Optional[FeedValidationError] = None

    @classmethod
    def success(cls, state: ChainState) -> "BatchResult":
        return cls(is_valid=True, state=state)

    @classmethod
    def failure(cls, state: ChainState, failure: IndexedError) -> "BatchResult":
        return cls(is_valid=False, state=state, index=failure.index, error=failure.error)

    def raise_if_invalid(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass(frozen=True)
class MultiAuthorResult:
    """Every invalid entry of a multi-author batch, ordered by index."""
    failures: Tuple[IndexedError, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.failures

    @property
    def first(self) -> Optional[IndexedError]:
        return self.failures[0] if self.failures else None

    def raise_if_invalid(self) -> None:
        if self.failures:
            raise self.failures[0].error


@dataclass(frozen=True)
class FeedsResult:
    """Per-author results of ``validate_feeds`` plus the updated state map."""
    results: Dict[Optional[str], BatchResult] = field(default_factory=dict)
    states: Dict[str, ChainState] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return all(r.is_valid for r in self.results.values())

    @property
    def failures(self) -> List[IndexedError]:
        found = [
            IndexedError(r.index, r.error)
            for r in self.results.values()
            if r.index is not None and r.error is not None
        ]
        return sorted(found, key=lambda f: f.index)


class _Stage(Enum):
    SHAPE = "shape"
    CHAIN = "chain"
    KEY = "key"


@dataclass(frozen=True)
class ChunkResult:
    """What one worker reports about its contiguous slice of the batch."""
    start: int
    end: int
    exit_state: ChainState
    failure: Optional[IndexedError] = None
    stage: Optional[_Stage] = None
    failures: Tuple[IndexedError, ...] = ()


def _validate_chunk(
    messages: Sequence[Message],
    start: int,
    mode: ValidationMode,
) -> ChunkResult:
    """Validate a chunk assuming an unknown predecessor for its head message."""
    local = ChainState()
    end = start + len(messages)

    for offset, message in enumerate(messages):
        index = start + offset
        text = message.text

        error = check_shape(message.value, text)
        if error is not None:
            return ChunkResult(start, end, local, IndexedError(index, error), _Stage.SHAPE)

        if offset:
            chain_error = check_linkage(local, message, mode)
            if chain_error is not None:
                return ChunkResult(start, end, local, IndexedError(index, chain_error), _Stage.CHAIN)

        msg_id = message_id(text)
        key_error = check_key(message, msg_id)
        if key_error is not None:
            return ChunkResult(start, end, local, IndexedError(index, key_error), _Stage.KEY)

        local = advance(local, message, msg_id, mode)

    return ChunkResult(start, end, local)


def _check_independent_chunk(
    messages: Sequence[Message],
    start: int,
    stop_at_first: bool,
) -> ChunkResult:
    """Shape and key checks only; no state crosses message boundaries."""
    found: List[IndexedError] = []
    for offset, message in enumerate(messages):
        text = message.text
        error: Optional[FeedValidationError] = check_shape(message.value, text)
        if error is None:
            error = check_key(message, message_id(text))
        if error is not None:
            found.append(IndexedError(start + offset, error))
            if stop_at_first:
                break
    return ChunkResult(start, start + len(messages), ChainState(), failures=tuple(found))


def _partition(total: int, chunk_size: int, workers: int) -> List[Tuple[int, int]]:
    if total == 0:
        return []
    if chunk_size <= 0:
        chunk_size = -(-total // max(workers, 1))
    return [(s, min(s + chunk_size, total)) for s in range(0, total, chunk_size)]


def _resolve_workers(max_workers: Optional[int]) -> int:
    if max_workers is None:
        max_workers = get_config().batch.max_workers.get()
    if max_workers <= 0:
        max_workers = os.cpu_count() or 1
    return max_workers


def _make_executor(workers: int) -> Executor:
    if get_config().batch.executor.get() == "process":
        return ProcessPoolExecutor(max_workers=workers)
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ssb-validate")


def _run_chunks(
    bounds: List[Tuple[int, int]],
    submit_args,
    executor: Optional[Executor],
    workers: int,
    inline: bool,
    cancel_after_failure: bool,
) -> Dict[int, ChunkResult]:
    """Run one worker call per chunk and collect results keyed by chunk number.

    ``submit_args(start, end)`` returns the callable and its arguments. When
    ``cancel_after_failure`` is set, chunks starting after a known failing
    index are cancelled if they have not started yet.
    """
    results: Dict[int, ChunkResult] = {}

    if inline:
        for n, (s, e) in enumerate(bounds):
            fn, args = submit_args(s, e)
            results[n] = fn(*args)
            if cancel_after_failure and _earliest_failure(results[n]) is not None:
                break
        return results

    own_executor = executor is None
    pool = executor if executor is not None else _make_executor(workers)
    try:
        futures: Dict[Future, int] = {}
        for n, (s, e) in enumerate(bounds):
            fn, args = submit_args(s, e)
            futures[pool.submit(fn, *args)] = n

        earliest: Optional[int] = None
        for fut in as_completed(futures):
            if fut.cancelled():
                continue
            n = futures[fut]
            try:
                result = fut.result()
            except Exception:
                _log.error("validation worker failed", exc_info=True, chunk=n, start=bounds[n][0])
                for other in futures:
                    other.cancel()
                raise
            results[n] = result

            failed_at = _earliest_failure(result)
            if cancel_after_failure and failed_at is not None:
                if earliest is None or failed_at < earliest:
                    earliest = failed_at
                    for other, m in futures.items():
                        if bounds[m][0] > earliest:
                            other.cancel()
    finally:
        if own_executor:
            pool.shutdown(wait=True)

    return results


def _earliest_failure(result: ChunkResult) -> Optional[int]:
    if result.failure is not None:
        return result.failure.index
    if result.failures:
        return result.failures[0].index
    return None


def _stitch(
    messages: Sequence[Message],
    bounds: List[Tuple[int, int]],
    results: Mapping[int, ChunkResult],
    initial_state: ChainState,
    mode: ValidationMode,
) -> BatchResult:
    running = initial_state
    for n, (start, _end) in enumerate(bounds):
        chunk = results[n]
        failure = chunk.failure

        if failure is not None and failure.index == start and chunk.stage is _Stage.SHAPE:
            return BatchResult.failure(running, failure)

        boundary = check_linkage(running, messages[start], mode)
        if boundary is not None:
            return BatchResult.failure(running, IndexedError(start, boundary))

        if failure is not None:
            return BatchResult.failure(combine(running, chunk.exit_state, mode), failure)

        running = combine(running, chunk.exit_state, mode)
    return BatchResult.success(running)


def _log_rejection(operation: str, failure: Optional[IndexedError]) -> None:
    if failure is not None:
        _log.debug(
            "batch rejected",
            operation=operation,
            index=failure.index,
            kind=failure.error.kind.value,
            field=failure.error.field,
        )


@timed_operation(_log, "validate_sequential")
def validate_sequential(
    messages: Iterable[Message],
    initial_state: Optional[ChainState] = None,
    mode: ValidationMode = ValidationMode.STRICT,
) -> BatchResult:
    """Validate messages in order, stopping at the first failure.

    Args:
        messages: One author's messages in feed order.
        initial_state: State before the first message; empty when omitted.
        mode: Linkage rules to apply.

    Returns:
        ``BatchResult`` with the final state, or the failing index and error.
    """
    state = initial_state if initial_state is not None else ChainState()
    for index, message in enumerate(messages):
        result = validate_message(message, state, mode)
        if not result.is_valid:
            failure = IndexedError(index, result.error)
            _log_rejection("validate_sequential", failure)
            return BatchResult.failure(state, failure)
        state = result.state
    return BatchResult.success(state)


@timed_operation(_log, "validate_parallel")
def validate_parallel(
    messages: Iterable[Message],
    initial_state: Optional[ChainState] = None,
    mode: ValidationMode = ValidationMode.STRICT,
    *,
    chunk_size: Optional[int] = None,
    max_workers: Optional[int] = None,
    executor: Optional[Executor] = None,
) -> BatchResult:
    """Validate messages using a worker pool.

    The outcome (validity, failing index, error and state) is the same as
    ``validate_sequential`` for any ``chunk_size`` and ``max_workers``.

    Args:
        messages: One author's messages in feed order.
        initial_state: State before the first message; empty when omitted.
        mode: Linkage rules to apply.
        chunk_size: Messages per chunk; defaults to ``batch.chunk_size``.
        max_workers: Pool size; defaults to ``batch.max_workers``.
        executor: Externally managed pool; it is not shut down here.
    """
    msgs = list(messages)
    state = initial_state if initial_state is not None else ChainState()

    cfg = get_config().batch
    workers = _resolve_workers(max_workers)
    explicit = chunk_size is not None or executor is not None
    if chunk_size is None:
        chunk_size = cfg.chunk_size.get()
    bounds = _partition(len(msgs), chunk_size, workers)
    inline = executor is None and (
        len(bounds) <= 1 or (not explicit and len(msgs) < cfg.min_parallel_batch.get())
    )

    def submit_args(s: int, e: int):
        return _validate_chunk, (msgs[s:e], s, mode)

    results = _run_chunks(bounds, submit_args, executor, workers, inline, True)
    outcome = _stitch(msgs, bounds, results, state, mode)
    if not outcome.is_valid:
        _log_rejection("validate_parallel", IndexedError(outcome.index, outcome.error))
    return outcome


@timed_operation(_log, "validate_multi_author")
def validate_multi_author(
    messages: Iterable[Message],
    *,
    parallel: bool = False,
    stop_at_first: bool = False,
    chunk_size: Optional[int] = None,
    max_workers: Optional[int] = None,
    executor: Optional[Executor] = None,
) -> MultiAuthorResult:
    """Validate an unordered collection from any number of authors.

    Each message is checked on its own (shape and key); ``previous`` and
    ``sequence`` are never compared across messages. All failures are
    returned, ordered by index, unless ``stop_at_first`` is set.
    """
    msgs = list(messages)

    if not parallel and executor is None:
        result = _check_independent_chunk(msgs, 0, stop_at_first)
        for f in result.failures:
            _log_rejection("validate_multi_author", f)
        return MultiAuthorResult(result.failures)

    cfg = get_config().batch
    workers = _resolve_workers(max_workers)
    bounds = _partition(len(msgs), chunk_size if chunk_size is not None else cfg.chunk_size.get(), workers)

    def submit_args(s: int, e: int):
        return _check_independent_chunk, (msgs[s:e], s, stop_at_first)

    inline = len(bounds) <= 1 and executor is None
    results = _run_chunks(bounds, submit_args, executor, workers, inline, stop_at_first)
    found = sorted((f for r in results.values() for f in r.failures), key=lambda f: f.index)
    if stop_at_first:
        found = found[:1]
    for f in found:
        _log_rejection("validate_multi_author", f)
    return MultiAuthorResult(tuple(found))


@timed_operation(_log, "validate_feeds")
def validate_feeds(
    messages: Iterable[Message],
    states: Optional[Mapping[str, ChainState]] = None,
    mode: ValidationMode = ValidationMode.STRICT,
    *,
    parallel: bool = False,
) -> FeedsResult:
    """Validate interleaved messages from several feeds.

    Messages are grouped by author, keeping their relative order, and each
    feed is folded from ``states[author]`` (empty when absent). The mapping is
    owned by the caller and is not modified; the updated states are returned
    in ``FeedsResult.states``. Reported indices refer to ``messages``.
    """
    states = dict(states or {})
    groups: Dict[Optional[str], List[Tuple[int, Message]]] = defaultdict(list)
    for index, message in enumerate(messages):
        author = message.author if isinstance(message.author, str) else None
        groups[author].append((index, message))

    results: Dict[Optional[str], BatchResult] = {}
    for author, entries in groups.items():
        initial = states.get(author) if author is not None else None
        feed = [m for _, m in entries]
        if parallel:
            outcome = validate_parallel(feed, initial, mode)
        else:
            outcome = validate_sequential(feed, initial, mode)

        if outcome.index is not None:
            outcome = BatchResult(
                is_valid=False,
                state=outcome.state,
                index=entries[outcome.index][0],
                error=outcome.error,
            )
        results[author] = outcome
        if author is not None and not outcome.state.is_empty:
            states[author] = outcome.state

    return FeedsResult(results=results, states=states)
