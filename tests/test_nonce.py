"""Tests for the nonce manager."""

import threading

from basket_engine.core.nonce import NonceManager, get_nonce_manager, reset_nonce_manager


def test_strictly_increasing_with_frozen_clock():
    manager = NonceManager(clock=lambda: 1_700_000_000_000)
    nonces = [manager.next_nonce() for _ in range(5)]
    assert nonces == [1_700_000_000_000 + i for i in range(5)]
    assert manager.last_nonce == nonces[-1]


def test_clock_going_backwards():
    ticks = iter([2000, 1000, 3000])
    manager = NonceManager(clock=lambda: next(ticks))
    assert [manager.next_nonce() for _ in range(3)] == [2000, 2001, 3000]


def test_unique_across_threads():
    manager = NonceManager(clock=lambda: 42)
    results = []
    lock = threading.Lock()

    def worker():
        local = [manager.next_nonce() for _ in range(500)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 4000
    assert len(set(results)) == 4000
    assert max(results) == manager.last_nonce


def test_process_wide_default():
    reset_nonce_manager()
    try:
        assert get_nonce_manager() is get_nonce_manager()
    finally:
        reset_nonce_manager()
