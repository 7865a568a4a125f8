"""
Date/time helpers shared by the appointment store and the lifecycle workflow.

Instants cross the wire as ISO-8601 strings in UTC and are stored as naive
UTC datetimes. Form fields (date ``YYYY-MM-DD`` and time ``HH:MM``) are
expressed in the business timezone.
"""
import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

UTC = datetime.timezone.utc
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"
SLOT_INCREMENT = datetime.timedelta(minutes=15)


def get_timezone(name):
    if isinstance(name, datetime.tzinfo):
        return name
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        raise ValueError(f"Unknown timezone: {name}")


def parse_date(value):
    """Parse a ``YYYY-MM-DD`` string; raises ValueError on anything else."""
    if not isinstance(value, str):
        raise ValueError("date must be a string")
    return datetime.datetime.strptime(value.strip(), DATE_FORMAT).date()


def parse_time(value):
    """Parse an ``HH:MM`` string; raises ValueError on anything else."""
    if not isinstance(value, str):
        raise ValueError("time must be a string")
    return datetime.datetime.strptime(value.strip(), TIME_FORMAT).time()


def combine_date_time(date_str, time_str, tz="UTC"):
    """
    Combine separate date and time fields into an aware UTC instant.

    Raises ValueError when either part is malformed or when the local time
    does not exist in ``tz`` (e.g. inside a DST gap).
    """
    tzinfo = get_timezone(tz)
    local = datetime.datetime.combine(parse_date(date_str), parse_time(time_str))
    aware = local.replace(tzinfo=tzinfo)
    instant = aware.astimezone(UTC)

    # Nonexistent wall-clock times do not survive the round trip
    if instant.astimezone(tzinfo).replace(tzinfo=None) != local:
        raise ValueError(f"{date_str} {time_str} does not exist in {tz}")
    return instant


def split_instant(instant, tz="UTC"):
    """Decompose an instant into (date, time) form fields in ``tz``."""
    instant = to_utc(instant)
    local = instant.astimezone(get_timezone(tz))
    return local.strftime(DATE_FORMAT), local.strftime(TIME_FORMAT)


def parse_instant(value):
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
    if isinstance(value, datetime.datetime):
        return to_utc(value)
    if not isinstance(value, str) or not value:
        raise ValueError("timestamp must be a non-empty ISO-8601 string")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_utc(datetime.datetime.fromisoformat(value))


def to_utc(value):
    # Naive datetimes are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_naive_utc(value):
    return to_utc(value).replace(tzinfo=None)


def format_instant(value):
    if value is None:
        return None
    return to_utc(value).isoformat().replace("+00:00", "Z")


def intervals_overlap(start_a, end_a, start_b, end_b):
    """Half-open overlap: [a_start, a_end) and [b_start, b_end)."""
    return start_a < end_b and start_b < end_a


def find_conflicts(start, duration_minutes, booked, exclude_id=None):
    """
    Return the booked entries that overlap ``[start, start + duration)``.

    ``booked`` is an iterable of mappings with ``id``, ``date`` (instant or ISO
    string), ``total_duration`` (minutes) and ``status``. Cancelled entries and
    the entry identified by ``exclude_id`` never conflict.
    """
    start = to_utc(start)
    end = start + datetime.timedelta(minutes=duration_minutes or 0)

    conflicts = []
    for entry in booked:
        if exclude_id is not None and str(entry.get("id")) == str(exclude_id):
            continue
        if entry.get("status") == "cancelled":
            continue

        other_start = parse_instant(entry["date"])
        other_end = other_start + datetime.timedelta(
            minutes=entry.get("total_duration") or 0
        )
        if intervals_overlap(start, end, other_start, other_end):
            conflicts.append(entry)
    return conflicts


def available_slots(day, duration_minutes, busy_intervals, workday_start, workday_end, tz="UTC"):
    """
    List the ``HH:MM`` start times on ``day`` where a slot of the given length
    fits between workday bounds without touching any busy interval.
    """
    tzinfo = get_timezone(tz)
    service_duration = datetime.timedelta(minutes=duration_minutes)

    current_time = datetime.datetime.combine(day, parse_time(workday_start), tzinfo)
    end_of_shift = datetime.datetime.combine(day, parse_time(workday_end), tzinfo)

    busy = sorted((to_utc(s), to_utc(e)) for s, e in busy_intervals)

    slots = []
    while (current_time + service_duration) <= end_of_shift:
        slot_end_time = current_time + service_duration
        is_available = True

        for busy_start, busy_end in busy:
            if intervals_overlap(current_time, slot_end_time, busy_start, busy_end):
                is_available = False
                break

        if is_available:
            slots.append(current_time.strftime(TIME_FORMAT))

        current_time += SLOT_INCREMENT

    return slots
