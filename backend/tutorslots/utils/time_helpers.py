from datetime import datetime, time


def time_to_string(t: time) -> str:
    """Always return HH:MM format"""
    return t.strftime("%H:%M")


def string_to_time(time_str: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` wall-clock strings."""
    normalized = time_str.strip()
    if len(normalized) == 5:
        normalized += ":00"
    return datetime.strptime(normalized, "%H:%M:%S").time()


def minutes_since_midnight(t: time) -> int:
    return t.hour * 60 + t.minute


def time_from_minutes(total_minutes: int) -> time:
    return time(total_minutes // 60, total_minutes % 60)
