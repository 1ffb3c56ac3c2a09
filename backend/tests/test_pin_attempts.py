from backend.app.security import PinAttemptTracker


class _Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _tracker(clock):
    return PinAttemptTracker(max_attempts=5, lockout_seconds=15 * 60, attempt_window_seconds=5 * 60, clock=clock)


def test_fresh_staff_id_is_allowed():
    t = _tracker(_Clock())
    assert t.check_attempts("s1") == {"allowed": True, "remaining_attempts": 5, "locked_until": None}


def test_five_failures_lock_out_until_lockout_elapses():
    clock = _Clock()
    t = _tracker(clock)
    for _ in range(5):
        t.record_failed_attempt("s1")
        clock.advance(10)

    check = t.check_attempts("s1")
    assert check["allowed"] is False
    assert check["remaining_attempts"] == 0
    assert check["locked_until"] is not None

    # Still locked past the attempt window; only the lockout duration releases it.
    clock.advance(6 * 60)
    assert t.check_attempts("s1")["allowed"] is False

    clock.advance(15 * 60)
    assert t.check_attempts("s1") == {"allowed": True, "remaining_attempts": 5, "locked_until": None}
    assert len(t) == 0


def test_remaining_attempts_counts_down():
    clock = _Clock()
    t = _tracker(clock)
    t.record_failed_attempt("s1")
    t.record_failed_attempt("s1")
    assert t.check_attempts("s1")["remaining_attempts"] == 3


def test_quiet_period_longer_than_window_forgets_failures():
    clock = _Clock()
    t = _tracker(clock)
    for _ in range(4):
        t.record_failed_attempt("s1")
    clock.advance(5 * 60 + 1)
    assert t.check_attempts("s1")["remaining_attempts"] == 5

    t.record_failed_attempt("s1")
    assert t.check_attempts("s1")["remaining_attempts"] == 4


def test_failures_after_window_start_a_new_count():
    clock = _Clock()
    t = _tracker(clock)
    for _ in range(4):
        t.record_failed_attempt("s1")
    clock.advance(5 * 60 + 1)
    t.record_failed_attempt("s1")
    assert t.check_attempts("s1")["allowed"] is True


def test_reset_clears_record_and_ids_are_independent():
    clock = _Clock()
    t = _tracker(clock)
    for _ in range(5):
        t.record_failed_attempt("s1")
    t.record_failed_attempt("s2")

    t.reset_attempts("s1")
    assert t.check_attempts("s1")["allowed"] is True
    assert t.check_attempts("s2")["remaining_attempts"] == 4


def test_cleanup_purges_only_stale_records():
    clock = _Clock()
    t = _tracker(clock)
    t.record_failed_attempt("old")
    clock.advance(16 * 60)
    t.record_failed_attempt("recent")

    assert t.cleanup() == 1
    assert len(t) == 1
    assert t.check_attempts("recent")["remaining_attempts"] == 4


def test_purge_timer_start_stop():
    t = _tracker(_Clock())
    t.start_purge_timer(3600)
    assert t._purge_timer is not None
    t.stop_purge_timer()
    assert t._purge_timer is None
