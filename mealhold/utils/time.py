"""Wall-clock helpers. Persisted timestamps are integer epoch milliseconds."""

import math
import time

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * MS_PER_SECOND)


def ceil_seconds(ms: int) -> int:
    """Whole seconds left, rounding up so a countdown reads 0 only when it is due."""
    return max(0, math.ceil(ms / MS_PER_SECOND))


def format_mmss(seconds: int) -> str:
    """Format seconds as mm:ss."""
    minutes, secs = divmod(abs(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"
