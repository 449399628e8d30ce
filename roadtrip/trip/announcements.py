def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


def format_trip_duration(minutes: int) -> str:
    """Spoken duration for the trip-start announcement."""
    if minutes < 60:
        return f"{minutes} minutes"
    hours, mins = divmod(minutes, 60)
    return f"{_plural(hours, 'hour')} and {mins} minutes"


def format_time_left(minutes: int) -> str:
    """Spoken, kid-friendly time remaining."""
    if minutes < 60:
        return f"{minutes} minutes"
    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"about {_plural(hours, 'hour')}"
    return f"about {_plural(hours, 'hour')} and {mins} minutes"


def trip_announcement(destination_name: str, duration_minutes: int, distance_miles: float) -> str:
    return (
        f"Let's go to {destination_name}! It will take about "
        f"{format_trip_duration(duration_minutes)} and is {distance_miles:.1f} miles away."
    )


def progress_announcement(duration_minutes: int, distance_miles: float) -> str:
    return (
        f"We have {distance_miles:.1f} miles to go. "
        f"That's {format_time_left(duration_minutes)} until we get there!"
    )


def arrival_announcement(destination_name: str) -> str:
    return f"Yay! You made it to {destination_name}! Great job!"
