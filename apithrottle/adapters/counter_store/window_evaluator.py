"""Fixed-window evaluation algorithm.

``WINDOW_EVALUATOR_LUA`` runs inside Redis (EVALSHA) so increment, expire
and compare happen atomically for all windows of one key. ``evaluate_windows``
is the same algorithm over a minimal incr/expire protocol; the in-memory
store runs it under a lock.

Arguments: KEYS[1] = caller key, ARGV = [per_minute, per_hour, per_day, now].
Each window with a positive limit increments
``{key}:{tag}:{seconds}:{now // seconds}``, sets its TTL to ``seconds`` and
short-circuits with 1 (throttle) once a total exceeds its limit. Counters of
windows checked before the triggering one stay incremented. Returns 0 when
every window is within its limit.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from apithrottle.core.quota import WindowKind

WINDOWS: tuple[tuple[int, str], ...] = tuple((kind.seconds, kind.tag) for kind in WindowKind)

WINDOW_EVALUATOR_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[#ARGV])
local windows = {{60, 'm'}, {3600, 'h'}, {86400, 'd'}}

for i = 1, math.min(#ARGV - 1, #windows) do
    local limit = tonumber(ARGV[i])
    if limit and limit > 0 then
        local seconds = windows[i][1]
        local bucket = math.floor(now / seconds)
        local bucket_key = key .. ':' .. windows[i][2] .. ':' .. seconds .. ':' .. bucket
        local total = redis.call('INCR', bucket_key)
        redis.call('EXPIRE', bucket_key, seconds)
        if total > limit then
            return 1
        end
    end
end

return 0
"""


class CounterOps(Protocol):
    def incr(self, key: str) -> int: ...

    def expire(self, key: str, seconds: int) -> None: ...


def bucket_key(key: str, tag: str, seconds: int, now_seconds: int) -> str:
    """Counter key for the fixed window containing now_seconds.

    Examples:
        >>> bucket_key("1.2.3.4:GetThing", "m", 60, 125)
        '1.2.3.4:GetThing:m:60:2'
    """
    return f"{key}:{tag}:{seconds}:{now_seconds // seconds}"


def evaluate_windows(ops: CounterOps, key: str, args: Sequence[int]) -> bool:
    """Run the window evaluator against ops.

    Args:
        ops: Counter primitives of the backing store.
        key: Caller key.
        args: [per_minute, per_hour, per_day, now_seconds]; trailing value
            is always the timestamp, limits may be fewer than three.

    Returns:
        True when a window limit is exceeded.
    """

    *limits, now_seconds = args
    for (seconds, tag), limit in zip(WINDOWS, limits):
        if limit <= 0:
            continue
        counter = bucket_key(key, tag, seconds, now_seconds)
        total = ops.incr(counter)
        ops.expire(counter, seconds)
        if total > limit:
            return True
    return False
