import random
from datetime import datetime, timedelta, timezone

def backoff_seconds(
    attempts: int,
    base_delay_seconds: int = 5,
    max_delay_seconds: int = 300,
    jitter: bool = True
) -> float:
    """
    Delay before the next retry, exponential with a ceiling.

    Formula:
        delay = min(base * (2 ^ attempts), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    Args:
        attempts: Failed executions so far, *before* the one that just failed.
                  The first retry (attempts=0) waits ``base`` seconds.
    """
    if attempts < 0:
        attempts = 0

    # 2^20 * base is far past any sane ceiling; cap to keep the int small.
    safe_attempts = min(attempts, 20)

    delay = min(base_delay_seconds * (2 ** safe_attempts), max_delay_seconds)

    if jitter:
        # Up to 10% extra so a burst of failures does not retry in lockstep
        delay += random.uniform(0, delay * 0.1)

    return delay

def calculate_next_run(
    attempts: int,
    base_delay_seconds: int = 5,
    max_delay_seconds: int = 300,
    jitter: bool = True,
    now: datetime | None = None,
) -> datetime:
    now = now or datetime.now(timezone.utc)
    delay = backoff_seconds(attempts, base_delay_seconds, max_delay_seconds, jitter)
    return now + timedelta(seconds=delay)
