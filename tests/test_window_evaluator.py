"""Unit tests for the fixed-window evaluation algorithm."""

from __future__ import annotations

from apithrottle.adapters.counter_store.window_evaluator import (
    WINDOW_EVALUATOR_LUA,
    WINDOWS,
    bucket_key,
    evaluate_windows,
)


class RecordingOps:
    """Plain dict counters that remember every command issued."""

    def __init__(self) -> None:
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}
        self.calls: list[tuple] = []

    def incr(self, key: str) -> int:
        self.calls.append(("incr", key))
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    def expire(self, key: str, seconds: int) -> None:
        self.calls.append(("expire", key, seconds))
        self.ttls[key] = seconds


def test_windows_match_script_definitions() -> None:
    assert WINDOWS == ((60, "m"), (3600, "h"), (86400, "d"))
    assert "{60, 'm'}, {3600, 'h'}, {86400, 'd'}" in WINDOW_EVALUATOR_LUA


def test_bucket_key_encodes_window_and_index(t0: int) -> None:
    assert bucket_key("k", "m", 60, t0) == f"k:m:60:{t0 // 60}"
    assert bucket_key("k", "h", 3600, t0) == f"k:h:3600:{t0 // 3600}"
    assert bucket_key("k", "m", 60, t0 + 59) == bucket_key("k", "m", 60, t0)
    assert bucket_key("k", "m", 60, t0 + 60) != bucket_key("k", "m", 60, t0)


def test_allows_up_to_limit_then_throttles(t0: int) -> None:
    ops = RecordingOps()

    assert evaluate_windows(ops, "k", [3, 0, 0, t0]) is False
    assert evaluate_windows(ops, "k", [3, 0, 0, t0]) is False
    assert evaluate_windows(ops, "k", [3, 0, 0, t0]) is False
    assert evaluate_windows(ops, "k", [3, 0, 0, t0]) is True
    assert evaluate_windows(ops, "k", [3, 0, 0, t0]) is True


def test_zero_limits_touch_no_counters(t0: int) -> None:
    ops = RecordingOps()

    for _ in range(50):
        assert evaluate_windows(ops, "k", [0, 0, 0, t0]) is False

    assert ops.calls == []


def test_only_configured_windows_are_counted(t0: int) -> None:
    ops = RecordingOps()

    evaluate_windows(ops, "k", [0, 5, 0, t0])

    assert ops.counters == {f"k:h:3600:{t0 // 3600}": 1}
    assert ops.ttls == {f"k:h:3600:{t0 // 3600}": 3600}


def test_each_increment_sets_expiry_to_window_length(t0: int) -> None:
    ops = RecordingOps()

    evaluate_windows(ops, "k", [1, 1, 1, t0])

    minute, hour, day = (bucket_key("k", tag, s, t0) for s, tag in WINDOWS)
    assert ops.calls == [
        ("incr", minute),
        ("expire", minute, 60),
        ("incr", hour),
        ("expire", hour, 3600),
        ("incr", day),
        ("expire", day, 86400),
    ]


def test_minute_breach_short_circuits_but_keeps_earlier_counts(t0: int) -> None:
    ops = RecordingOps()
    limits = [1, 100, 1000, t0]

    assert evaluate_windows(ops, "k", limits) is False
    assert evaluate_windows(ops, "k", limits) is True

    minute, hour, day = (bucket_key("k", tag, s, t0) for s, tag in WINDOWS)
    assert ops.counters[minute] == 2
    # The rejected request stopped at the minute window
    assert ops.counters[hour] == 1
    assert ops.counters[day] == 1


def test_hour_breach_counts_against_minute_window(t0: int) -> None:
    ops = RecordingOps()
    limits = [10, 1, 0, t0]

    assert evaluate_windows(ops, "k", limits) is False
    assert evaluate_windows(ops, "k", limits) is True

    assert ops.counters[bucket_key("k", "m", 60, t0)] == 2
    assert ops.counters[bucket_key("k", "h", 3600, t0)] == 2


def test_new_minute_bucket_starts_from_one(t0: int) -> None:
    ops = RecordingOps()

    assert evaluate_windows(ops, "k", [1, 0, 0, t0]) is False
    assert evaluate_windows(ops, "k", [1, 0, 0, t0]) is True
    assert evaluate_windows(ops, "k", [1, 0, 0, t0 + 61]) is False

    assert ops.counters[bucket_key("k", "m", 60, t0 + 61)] == 1


def test_fewer_limits_than_windows(t0: int) -> None:
    ops = RecordingOps()

    assert evaluate_windows(ops, "k", [1, t0]) is False
    assert evaluate_windows(ops, "k", [1, t0]) is True
    assert set(ops.counters) == {bucket_key("k", "m", 60, t0)}


def test_keys_do_not_share_counters(t0: int) -> None:
    ops = RecordingOps()

    assert evaluate_windows(ops, "1.2.3.4:GetThing", [1, 0, 0, t0]) is False
    assert evaluate_windows(ops, "5.6.7.8:GetThing", [1, 0, 0, t0]) is False
    assert evaluate_windows(ops, "1.2.3.4:ListThings", [1, 0, 0, t0]) is False
    assert evaluate_windows(ops, "1.2.3.4:GetThing", [1, 0, 0, t0]) is True
