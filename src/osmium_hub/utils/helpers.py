import time

def next_schedule_id(last_id: int = 0) -> int:
    """
    Generate a schedule id from the creation instant.
    Format: milliseconds since the epoch, e.g. 1760707200123

    An instant that is not later than `last_id` becomes `last_id + 1`, so
    callers that feed back the previous value get unique, increasing ids.

    Args:
        last_id: The id issued last by the caller

    Returns:
        The new schedule identifier
    """
    candidate = int(time.time() * 1000)
    if candidate <= last_id:
        candidate = last_id + 1
    return candidate

def build_cron_expression(hour: int, minute: int) -> str:
    """Daily recurrence at hour:minute, standard 5-field cron syntax"""
    return f"{minute} {hour} * * *"
