"""
Cron expression evaluation for the uploader scheduler.

Understands the Quartz dialect used by the upload schedule, e.g. the
default ``0 * * * * ?`` (every minute, at second zero).

Cron support:
- 6 or 7 fields: second minute hour day_of_month month day_of_week [year]
- Supported tokens per field: '*', '?', '*/n', 'a', 'a/n', 'a,b,c', 'a-b', 'a-b/n'
- Month names (JAN-DEC) and day names (SUN-SAT), case-insensitive
- Day of week runs 1-7 with 1 = Sunday
- '?' is only valid in the day fields; at least one of the two must be
  '?' or '*'
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from zoneinfo import ZoneInfo

from auto_uploader.errors import CronParseError

__all__ = ["CronParseError", "CronSpec", "next_fire_time", "parse_cron"]

_MONTH_NAMES = {
    name: i
    for i, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"],
        start=1,
    )
}
_DAY_NAMES = {
    name: i for i, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"], start=1)
}

_MIN_YEAR = 1970
_MAX_YEAR = 2099


@dataclass(frozen=True)
class CronSpec:
    seconds: set[int]
    minutes: set[int]
    hours: set[int]
    dom: set[int]  # 1-31
    months: set[int]  # 1-12
    dow: set[int]  # 1-7 (1=Sunday)
    years: set[int] | None  # None = every year
    dom_any: bool
    dow_any: bool


def next_fire_time(expr: str, *, now: datetime, timezone: str | None = None) -> datetime:
    """
    Compute the next fire time strictly after *now*.

    Args:
        expr: Quartz cron expression (e.g. "0 */5 * * * ?")
        now: Reference point; naive values are taken to be in *timezone*
        timezone: Optional timezone name; defaults to the tz of *now*, else UTC

    Raises:
        CronParseError: If the expression is invalid or never fires
    """
    tz = ZoneInfo(timezone) if timezone else (now.tzinfo or dt_timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    else:
        now = now.astimezone(tz)

    spec = parse_cron(expr)
    start = now.replace(microsecond=0) + timedelta(seconds=1)
    return _find_next_match(spec, start)


def _find_next_match(spec: CronSpec, cursor: datetime) -> datetime:
    # 370 days covers the leap-year edge; explicit years extend the window.
    horizon_days = 370
    if spec.years:
        horizon_days = max(horizon_days, (max(spec.years) - cursor.year + 1) * 366)
    limit = cursor + timedelta(days=horizon_days)
    cur = cursor

    while cur <= limit:
        if spec.years is not None and cur.year not in spec.years:
            if cur.year > max(spec.years):
                break
            cur = cur.replace(year=cur.year + 1, month=1, day=1, hour=0, minute=0, second=0)
            continue
        if cur.month not in spec.months:
            cur = _ceil_month(cur)
            continue
        if not _day_match(spec, cur):
            cur = _ceil_day(cur)
            continue
        if cur.hour not in spec.hours:
            cur = _ceil_hour(cur)
            continue
        if cur.minute not in spec.minutes:
            cur = _ceil_minute(cur)
            continue
        if cur.second not in spec.seconds:
            cur = cur + timedelta(seconds=1)
            continue
        return cur

    raise CronParseError("cron expression produced no next fire time within safety window")


def _day_match(spec: CronSpec, dt: datetime) -> bool:
    if spec.dom_any and spec.dow_any:
        return True
    if spec.dow_any:
        return dt.day in spec.dom
    # Python: Monday=0..Sunday=6; Quartz: Sunday=1..Saturday=7
    quartz_dow = (dt.weekday() + 1) % 7 + 1
    return quartz_dow in spec.dow


def _ceil_month(dt: datetime) -> datetime:
    return (dt.replace(day=1, hour=0, minute=0, second=0) + timedelta(days=32)).replace(day=1)


def _ceil_day(dt: datetime) -> datetime:
    return (dt + timedelta(days=1)).replace(hour=0, minute=0, second=0)


def _ceil_hour(dt: datetime) -> datetime:
    return (dt + timedelta(hours=1)).replace(minute=0, second=0)


def _ceil_minute(dt: datetime) -> datetime:
    return (dt + timedelta(minutes=1)).replace(second=0)


def parse_cron(expr: str) -> CronSpec:
    """Parse a Quartz cron expression into a :class:`CronSpec`."""
    parts = [p for p in expr.strip().split() if p]
    if len(parts) not in (6, 7):
        raise CronParseError(f"cron must have 6 or 7 fields, got {len(parts)}: {expr!r}")

    for i, part in enumerate(parts):
        if part == "?" and i not in (3, 5):
            raise CronParseError(f"'?' is only allowed in the day fields: {expr!r}")

    dom_any = parts[3] in ("*", "?")
    dow_any = parts[5] in ("*", "?")
    if not dom_any and not dow_any:
        raise CronParseError(
            f"day-of-month and day-of-week cannot both be restricted: {expr!r}"
        )

    years = None
    if len(parts) == 7 and parts[6] != "*":
        years = _parse_field(parts[6], min_v=_MIN_YEAR, max_v=_MAX_YEAR)

    return CronSpec(
        seconds=_parse_field(parts[0], min_v=0, max_v=59),
        minutes=_parse_field(parts[1], min_v=0, max_v=59),
        hours=_parse_field(parts[2], min_v=0, max_v=23),
        dom=_parse_field(parts[3], min_v=1, max_v=31),
        months=_parse_field(parts[4], min_v=1, max_v=12, names=_MONTH_NAMES),
        dow=_parse_field(parts[5], min_v=1, max_v=7, names=_DAY_NAMES),
        years=years,
        dom_any=dom_any,
        dow_any=dow_any,
    )


def _value(token: str, full: str, names: dict[str, int] | None) -> int:
    if names and token.upper() in names:
        return names[token.upper()]
    if not token.isdigit():
        raise CronParseError(f"invalid value in field: {full!r}")
    return int(token)


def _parse_field(
    token: str,
    *,
    min_v: int,
    max_v: int,
    names: dict[str, int] | None = None,
) -> set[int]:
    token = token.strip()
    if token in ("*", "?"):
        return set(range(min_v, max_v + 1))

    values: set[int] = set()
    for part in token.split(","):
        part = part.strip()
        if not part:
            continue
        step = 1
        stepped = False
        if "/" in part:
            base, step_s = part.split("/", 1)
            step_s = step_s.strip()
            if not step_s.isdigit() or int(step_s) == 0:
                raise CronParseError(f"invalid step in field: {token!r}")
            step = int(step_s)
            stepped = True
            part = base.strip()

        if part == "*":
            values.update(range(min_v, max_v + 1, step))
            continue

        if "-" in part:
            a_s, b_s = part.split("-", 1)
            a = _value(a_s.strip(), token, names)
            b = _value(b_s.strip(), token, names)
            if a > b:
                raise CronParseError(f"range start > end in field: {token!r}")
            if a < min_v or b > max_v:
                raise CronParseError(f"range out of bounds in field: {token!r}")
            values.update(range(a, b + 1, step))
            continue

        v = _value(part, token, names)
        if v < min_v or v > max_v:
            raise CronParseError(f"value out of bounds in field: {token!r}")
        if stepped:
            # "a/n" means every n starting at a
            values.update(range(v, max_v + 1, step))
        else:
            values.add(v)

    if not values:
        raise CronParseError(f"empty field: {token!r}")
    return values
