"""Dashboard statistics over already-fetched delivery lists.

Everything here is a pure function of its inputs: no I/O, no mutation of the
records passed in. Callers pass ``now`` explicitly when they need stable
results; it defaults to the current UTC time. Day windows (today, this week,
this month, the daily series) start at midnight in ``tz``, UTC unless given.
"""
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional
import logging
import math
import os

from pydantic import BaseModel

logger = logging.getLogger(__name__)

PAYOUT_RATE = int(os.getenv("PAYOUT_RATE", 10)) # rupees per paid delivery
NOT_FOUND = "not_found"


class DashboardStats(BaseModel):
    total: int = 0
    today: int = 0
    this_week: int = 0
    this_month: int = 0
    paid: int = 0
    corrected: int = 0
    earnings: int = 0
    avg_per_day: int = 0


class GroupStats(BaseModel):
    name: str
    total: int = 0
    delivered: int = 0
    not_found: int = 0
    completion: int = 0
    earnings: int = 0


class ZoneStats(GroupStats):
    staff: int = 0


class StaffStats(GroupStats):
    staff_id: Optional[int] = None
    zone: Optional[str] = None
    ward: Optional[str] = None


class WardStats(BaseModel):
    name: str
    properties: int = 0
    deliveries: int = 0
    paid: int = 0
    earnings: int = 0


class PayoutRow(BaseModel):
    name: str
    staff_id: Optional[int] = None
    total: int = 0
    paid: int = 0
    rate: int = 0
    payout: int = 0


class DailyCount(BaseModel):
    date: str
    count: int


class Dashboard(BaseModel):
    stats: DashboardStats
    zones: List[ZoneStats]
    staff: List[StaffStats]
    top_staff: List[StaffStats]
    daily: List[DailyCount]
    payouts: List[PayoutRow] = []
    wards_by_zone: Dict[str, List[WardStats]] = {}
    coverage: int = 0


# --- helpers ---

def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now(now: Optional[datetime], tz: tzinfo = timezone.utc) -> datetime:
    now = _utc(now) if now is not None else datetime.now(timezone.utc)
    return now.astimezone(tz)


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def is_delivered(delivery) -> bool:
    return delivery.data_source != NOT_FOUND


def completion_rate(delivered: int, total: int) -> int:
    """Percentage rounded half-up; an empty group is 0%."""
    if total <= 0:
        return 0
    return int(math.floor(delivered * 100 / total + 0.5))


def _zone_and_ward(delivery):
    prop = getattr(delivery, "property", None)
    ward = getattr(prop, "ward", None) if prop is not None else None
    if ward is None:
        return None, None
    return ward.corporate_name, ward.ward_name


# --- aggregations ---

def count_since(deliveries: Iterable, since: datetime) -> int:
    since = _utc(since)
    return sum(1 for d in deliveries if _utc(d.delivery_date) >= since)


def average_per_day(deliveries: List, now: Optional[datetime] = None) -> int:
    """Total deliveries divided by whole days since the earliest one (at least 1)."""
    if not deliveries:
        return 0
    now = _now(now)
    earliest = min(_utc(d.delivery_date) for d in deliveries)
    days = max(1, (now - earliest) // timedelta(days=1))
    return int(math.floor(len(deliveries) / days + 0.5))


def summarize(deliveries: List, now: Optional[datetime] = None, rate: int = PAYOUT_RATE,
              tz: tzinfo = timezone.utc) -> DashboardStats:
    """Counts and earnings; day windows start at midnight in ``tz``."""
    now = _now(now, tz)
    today = start_of_day(now)
    paid = sum(1 for d in deliveries if is_delivered(d))

    return DashboardStats(
        total=len(deliveries),
        today=count_since(deliveries, today),
        this_week=count_since(deliveries, today - timedelta(days=7)),
        this_month=count_since(deliveries, today - timedelta(days=30)),
        paid=paid,
        corrected=sum(1 for d in deliveries if d.correction_status != "None"),
        earnings=paid * rate,
        avg_per_day=average_per_day(deliveries, now),
    )


def zone_rollup(deliveries: List, rate: int = PAYOUT_RATE) -> List[ZoneStats]:
    """Per-zone counts, zones in first-seen order."""
    zones: Dict[str, ZoneStats] = {}
    staff_seen: Dict[str, set] = {}

    for delivery in deliveries:
        zone_name, _ = _zone_and_ward(delivery)
        if zone_name is None:
            logger.warning("Delivery %s has no property/ward data, skipped", getattr(delivery, "id", None))
            continue

        zone = zones.setdefault(zone_name, ZoneStats(name=zone_name))
        zone.total += 1
        if is_delivered(delivery):
            zone.delivered += 1
        else:
            zone.not_found += 1

        staff = getattr(delivery, "staff", None)
        if staff is not None:
            staff_seen.setdefault(zone_name, set()).add(staff.id)

    for name, zone in zones.items():
        zone.completion = completion_rate(zone.delivered, zone.total)
        zone.earnings = zone.delivered * rate
        zone.staff = len(staff_seen.get(name, ()))
    return list(zones.values())


def staff_rollup(deliveries: List, rate: int = PAYOUT_RATE) -> List[StaffStats]:
    """Per-staff counts, staff in first-seen order.

    A staff member's zone and ward are taken from their first delivery.
    """
    rows: Dict[object, StaffStats] = {}

    for delivery in deliveries:
        staff = getattr(delivery, "staff", None)
        if staff is None:
            logger.warning("Delivery %s has no staff data, skipped", getattr(delivery, "id", None))
            continue

        key = staff.id if staff.id is not None else staff.full_name
        row = rows.get(key)
        if row is None:
            zone_name, ward_name = _zone_and_ward(delivery)
            row = rows[key] = StaffStats(name=staff.full_name, staff_id=staff.id, zone=zone_name, ward=ward_name)
        row.total += 1
        if is_delivered(delivery):
            row.delivered += 1
        else:
            row.not_found += 1

    for row in rows.values():
        row.completion = completion_rate(row.delivered, row.total)
        row.earnings = row.delivered * rate
    return list(rows.values())


def payout_rows(staff: List[StaffStats], rate: int = PAYOUT_RATE) -> List[PayoutRow]:
    return [
        PayoutRow(name=row.name, staff_id=row.staff_id, total=row.total, paid=row.delivered, rate=rate, payout=row.delivered * rate)
        for row in staff
    ]


def top_n(rows: List[GroupStats], n: int = 10, key: str = "total") -> List:
    # sorted() is stable, so ties keep first-seen order
    return sorted(rows, key=lambda r: getattr(r, key), reverse=True)[:n]


def daily_counts(deliveries: List, now: Optional[datetime] = None, days: int = 7,
                 tz: tzinfo = timezone.utc) -> List[DailyCount]:
    """Deliveries per calendar day for the last ``days`` days, oldest first."""
    today = start_of_day(_now(now, tz)).date()
    buckets = {today - timedelta(days=i): 0 for i in range(days - 1, -1, -1)}
    for delivery in deliveries:
        day = _utc(delivery.delivery_date).astimezone(tz).date()
        if day in buckets:
            buckets[day] += 1
    return [DailyCount(date=day.isoformat(), count=count) for day, count in buckets.items()]


def ward_breakdown(properties: List, deliveries: List, rate: int = PAYOUT_RATE) -> Dict[str, List[WardStats]]:
    """Property and delivery counts per ward, grouped by zone.

    Wards come from the property list; deliveries for wards with no listed
    property are ignored.
    """
    by_zone: Dict[str, Dict[str, WardStats]] = {}

    for prop in properties:
        ward = getattr(prop, "ward", None)
        if ward is None:
            logger.warning("Property %s has no ward data, skipped", getattr(prop, "id", None))
            continue
        wards = by_zone.setdefault(ward.corporate_name, {})
        row = wards.setdefault(ward.ward_name, WardStats(name=ward.ward_name))
        row.properties += 1

    for delivery in deliveries:
        zone_name, ward_name = _zone_and_ward(delivery)
        row = by_zone.get(zone_name, {}).get(ward_name)
        if row is None:
            continue
        row.deliveries += 1
        if is_delivered(delivery):
            row.paid += 1

    result = {}
    for zone_name, wards in by_zone.items():
        for row in wards.values():
            row.earnings = row.paid * rate
        result[zone_name] = list(wards.values())
    return result


def coverage_rate(properties: List, deliveries: List) -> int:
    """Delivered deliveries as a percentage of all properties."""
    delivered = sum(1 for d in deliveries if is_delivered(d))
    return completion_rate(delivered, len(properties))


def build_dashboard(
    deliveries: List,
    properties: Optional[List] = None,
    now: Optional[datetime] = None,
    rate: int = PAYOUT_RATE,
    top: int = 10,
    tz: tzinfo = timezone.utc,
) -> Dashboard:
    now = _now(now, tz)
    staff = staff_rollup(deliveries, rate)
    properties = properties or []
    return Dashboard(
        stats=summarize(deliveries, now, rate, tz),
        zones=zone_rollup(deliveries, rate),
        staff=staff,
        top_staff=top_n(staff, top),
        payouts=payout_rows(staff, rate),
        daily=daily_counts(deliveries, now, tz=tz),
        wards_by_zone=ward_breakdown(properties, deliveries, rate),
        coverage=coverage_rate(properties, deliveries),
    )
