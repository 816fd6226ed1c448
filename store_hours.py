# store_hours.py
import logging
from datetime import datetime, date, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from zoneinfo import ZoneInfo

from order_status import READY_STATUSES


logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"

# Python weekday(): 0 = Monday
WEEKDAY_KEYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

DAY_LABELS = {
    "monday": "Segunda",
    "tuesday": "Terça",
    "wednesday": "Quarta",
    "thursday": "Quinta",
    "friday": "Sexta",
    "saturday": "Sábado",
    "sunday": "Domingo",
}

MIN_PREP_MINUTES = 1
MAX_PREP_MINUTES = 180


def _tz(tz_name=None):
    return ZoneInfo(tz_name or DEFAULT_TIMEZONE)


def now_local(tz_name=None) -> datetime:
    return datetime.now(_tz(tz_name))


def to_local(dt: datetime, tz_name=None) -> datetime:
    """Convert a stored (naive UTC) datetime into the store timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(_tz(tz_name))


def to_utc_naive(dt: datetime, tz_name=None) -> datetime:
    """Inverse of to_local: naive values are read as store-local wall time."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_tz(tz_name))
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def local_date_string(dt=None, tz_name=None) -> str:
    d = to_local(dt, tz_name) if dt else now_local(tz_name)
    return d.strftime("%Y-%m-%d")


def start_of_local_day(d: date, tz_name=None) -> datetime:
    """UTC-naive instant at which the given local calendar day starts."""
    return to_utc_naive(datetime.combine(d, time(0, 0)), tz_name)


def parse_hhmm(value) -> int:
    parts = str(value or "0:0").split(":")
    try:
        hours = int(parts[0] or 0)
    except ValueError:
        hours = 0
    try:
        minutes = int(parts[1] or 0) if len(parts) > 1 else 0
    except ValueError:
        minutes = 0
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def day_key(d) -> str:
    return WEEKDAY_KEYS[d.weekday()]


def hours_for(opening_hours, d):
    if not opening_hours:
        return None
    return opening_hours.get(day_key(d))


def _minutes_of(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def is_open(opening_hours, now: datetime = None) -> bool:
    if not opening_hours:
        return True

    now = now or now_local()
    today = hours_for(opening_hours, now)
    if not today or today.get("closed"):
        return False

    current = _minutes_of(now)
    open_m = parse_hhmm(today.get("open"))
    close_m = parse_hhmm(today.get("close"))

    if close_m < open_m:
        return current >= open_m or current < close_m
    return open_m <= current < close_m


def today_hours(opening_hours, now: datetime = None):
    if not opening_hours:
        return None
    return hours_for(opening_hours, now or now_local())


def next_open_time(opening_hours, now: datetime = None):
    if not opening_hours:
        return None

    now = now or now_local()
    today = hours_for(opening_hours, now)
    if today and not today.get("closed"):
        if _minutes_of(now) < parse_hhmm(today.get("open")):
            return {"day": "Hoje", "time": today.get("open")}

    for i in range(1, 8):
        d = now + timedelta(days=i)
        h = hours_for(opening_hours, d)
        if h and not h.get("closed"):
            label = "Amanhã" if i == 1 else DAY_LABELS[day_key(d)]
            return {"day": label, "time": h.get("open")}

    return None


def next_available_days(opening_hours, count=7, now: datetime = None):
    now = now or now_local()
    days = []
    for i in range(count):
        d = (now + timedelta(days=i)).date()
        if opening_hours:
            h = hours_for(opening_hours, d)
            if not h or h.get("closed"):
                continue
        days.append(d)
    return days


def schedule_slots(opening_hours, d: date, now: datetime = None, step=30, lead=30):
    """Bookable ``HH:MM`` slots for a local calendar day.

    Slots run every ``step`` minutes from opening up to ``close - step``;
    overnight windows stop at midnight. For today only slots at least
    ``lead`` minutes ahead of ``now`` are offered.
    """
    now = now or now_local()
    if opening_hours:
        h = hours_for(opening_hours, d)
        if not h or h.get("closed"):
            return []
        open_m = parse_hhmm(h.get("open"))
        close_m = parse_hhmm(h.get("close"))
        if close_m <= open_m:
            close_m = 24 * 60
    else:
        open_m, close_m = 0, 24 * 60

    earliest = 0
    if d == now.date():
        earliest = _minutes_of(now) + lead
    elif d < now.date():
        return []

    slots = []
    m = open_m
    while m + step <= close_m:
        if m >= earliest:
            slots.append(format_hhmm(m))
        m += step
    return slots


def is_valid_slot(opening_hours, when: datetime, now: datetime = None, step=30, lead=30, max_days=7) -> bool:
    now = now or now_local()
    if when.date() not in next_available_days(opening_hours, max_days, now):
        return False
    return format_hhmm(_minutes_of(when)) in schedule_slots(opening_hours, when.date(), now, step, lead)


def average_preparation_minutes(history_by_order):
    """Average confirmed -> ready time in whole minutes.

    ``history_by_order`` maps an order id to its status history entries
    (``status``, ``created_at``) in chronological order. Samples outside
    the 1..180 minute window are ignored. Returns
    ``{"average_minutes", "sample_size"}`` or None.
    """
    samples = []
    for entries in history_by_order.values():
        confirmed = next((h for h in entries if h["status"] == "confirmed"), None)
        ready = next((h for h in entries if h["status"] in READY_STATUSES), None)
        if not confirmed or not ready:
            continue
        diff = (ready["created_at"] - confirmed["created_at"]).total_seconds() / 60.0
        if MIN_PREP_MINUTES < diff < MAX_PREP_MINUTES:
            samples.append(diff)

    if not samples:
        return None

    avg = Decimal(str(sum(samples) / len(samples))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    logger.debug("preparation average %s min over %d orders", avg, len(samples))
    return {"average_minutes": int(avg), "sample_size": len(samples)}
