"""Duration strings used in configuration ("30s", "5m", "7d", "PT5M", "P7D")."""

import re


class DurationParseError(ValueError):
    """Raised when a duration string cannot be parsed."""

    pass


_ISO_PATTERN = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$")
_HUMAN_PATTERN = re.compile(r"(\d+)\s*([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(duration_str: str) -> int:
    """
    Parse a duration string to seconds.

    Accepts human-readable values ("30s", "5m", "1h30m", "7d") and ISO-8601
    durations ("PT5M", "P7D").

    Args:
        duration_str: Duration string to parse

    Returns:
        Duration in seconds

    Raises:
        DurationParseError: If the string is empty, malformed or zero

    Examples:
        >>> parse_duration("7d")
        604800
        >>> parse_duration("PT90S")
        90
    """
    duration_str = duration_str.strip()
    if not duration_str:
        raise DurationParseError("Duration string cannot be empty")

    if duration_str.upper().startswith("P"):
        total = _parse_iso8601(duration_str.upper())
    else:
        total = _parse_human_readable(duration_str.lower())

    if total == 0:
        raise DurationParseError(f"Duration cannot be zero: '{duration_str}'")
    return total


def _parse_iso8601(value: str) -> int:
    match = _ISO_PATTERN.match(value)
    if not match:
        raise DurationParseError(
            f"Invalid ISO-8601 duration format: '{value}'. "
            "Expected format like 'P7D', 'PT1H30M' or 'PT30S'"
        )

    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * 86400
        + int(hours or 0) * 3600
        + int(minutes or 0) * 60
        + int(float(seconds or 0))
    )


def _parse_human_readable(value: str) -> int:
    parts = _HUMAN_PATTERN.findall(value)
    if not parts:
        raise DurationParseError(
            f"Invalid duration format: '{value}'. "
            "Expected format like '30s', '5m', '1h', '7d' or '1h30m'"
        )

    # Reject leftovers such as "5x" or "m5"
    if "".join(num + unit for num, unit in parts) != re.sub(r"\s+", "", value):
        raise DurationParseError(
            f"Invalid characters in duration: '{value}'. "
            "Use only digits and units: s (seconds), m (minutes), h (hours), d (days)"
        )

    return sum(int(num) * _UNIT_SECONDS[unit] for num, unit in parts)


def validate_duration_range(
    duration_seconds: int,
    min_seconds: int,
    max_seconds: int,
    label: str = "Duration",
) -> None:
    """
    Check that a parsed duration lies within bounds.

    Args:
        duration_seconds: Value to check
        min_seconds: Smallest allowed value
        max_seconds: Largest allowed value
        label: Name used in the error message

    Raises:
        DurationParseError: If the value is out of range
    """
    if duration_seconds < min_seconds:
        raise DurationParseError(
            f"{label} too short: {seconds_to_human_readable(duration_seconds)}. "
            f"Minimum is {seconds_to_human_readable(min_seconds)}."
        )
    if duration_seconds > max_seconds:
        raise DurationParseError(
            f"{label} too long: {seconds_to_human_readable(duration_seconds)}. "
            f"Maximum is {seconds_to_human_readable(max_seconds)}."
        )


def seconds_to_human_readable(seconds: int) -> str:
    """Render seconds in the largest whole unit ("15 minutes", "7 days")."""
    for unit_seconds, name in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds:
            amount = seconds // unit_seconds
            return f"{amount} {name}{'s' if amount != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
