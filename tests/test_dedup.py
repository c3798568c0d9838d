import threading

from pitchup import DedupGuard, get_dedup_guard


def test_second_admit_rejected_until_release():
    guard = DedupGuard()
    assert guard.try_admit("u1") is True
    assert guard.try_admit("u1") is False
    assert guard.rejected_count == 1
    assert guard.is_active("u1")

    assert guard.release("u1") is True
    assert guard.release("u1") is False
    assert guard.try_admit("u1") is True


def test_users_are_independent():
    guard = DedupGuard()
    assert guard.try_admit("u1")
    assert guard.try_admit("u2")
    assert guard.active_users() == ["u1", "u2"]
    assert guard.admitted_at("u3") is None


def test_concurrent_admits_for_one_user_never_both_win():
    guard = DedupGuard()

    for _ in range(20):
        guard.reset()
        barrier = threading.Barrier(16)
        results = []
        results_lock = threading.Lock()

        def contender():
            barrier.wait()
            admitted = guard.try_admit("u1")
            with results_lock:
                results.append(admitted)

        threads = [threading.Thread(target=contender) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
        assert results.count(False) == 15


def test_global_guard_is_shared():
    assert get_dedup_guard() is get_dedup_guard()
