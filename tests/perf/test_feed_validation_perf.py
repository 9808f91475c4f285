import os
import time

import pytest


@pytest.mark.perf
def test_parallel_feed_validation_throughput():
    """Perf harness: validate one long feed sequentially and in parallel.

    Skipped unless SSBV_RUN_PERF=1.

    Configure:
      - SSBV_PERF_MESSAGES: feed length (default: 20_000)
      - SSBV_PERF_WORKERS: worker count for the parallel run (default: cpu count)

    Prints throughput for both runs; asserts only that they agree.
    """
    from concurrent.futures import ProcessPoolExecutor

    from ssb_validate.batch import validate_parallel, validate_sequential
    from tests.feed_data import build_feed

    count = int(os.environ.get("SSBV_PERF_MESSAGES", "20000"))
    workers = int(os.environ.get("SSBV_PERF_WORKERS", "0")) or (os.cpu_count() or 1)

    feed = build_feed(count)

    t0 = time.perf_counter()
    sequential = validate_sequential(feed)
    dt_seq = time.perf_counter() - t0

    t0 = time.perf_counter()
    with ProcessPoolExecutor(max_workers=workers) as executor:
        parallel = validate_parallel(feed, executor=executor, chunk_size=max(count // (workers * 4), 1))
    dt_par = time.perf_counter() - t0

    assert sequential.is_valid
    assert parallel == sequential

    print(f"sequential: {count} messages in {dt_seq:.3f}s ({count / dt_seq:.1f} msg/s)")
    print(f"parallel ({workers} workers): {count} messages in {dt_par:.3f}s ({count / dt_par:.1f} msg/s)")


@pytest.mark.perf
def test_multi_author_throughput():
    """Perf harness: independent checks over many small feeds."""
    from ssb_validate.batch import validate_multi_author
    from tests.feed_data import build_feed

    authors = int(os.environ.get("SSBV_PERF_AUTHORS", "200"))
    messages = []
    for i in range(authors):
        messages.extend(build_feed(50, author=f"@{i:043d}=.ed25519"))

    t0 = time.perf_counter()
    result = validate_multi_author(messages, parallel=True)
    dt = time.perf_counter() - t0

    assert result.is_valid
    print(f"multi-author: {len(messages)} messages in {dt:.3f}s ({len(messages) / dt:.1f} msg/s)")
