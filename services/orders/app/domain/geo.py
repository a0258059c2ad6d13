"""Delivery geometry: distance from the hub, radius checks and ETAs."""
import math
from datetime import date, datetime, time, timedelta
from typing import Optional

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def parse_slot_start(slot_timing: str) -> time:
    """Start time of a slot string such as ``"13:00 - 14:00"``."""
    start = slot_timing.split("-", 1)[0].strip()
    hours, minutes = start.split(":")
    return time(int(hours), int(minutes))


def estimate_delivery_time(
    now: datetime,
    distance_km: float,
    order_date: Optional[date] = None,
    slot_timing: Optional[str] = None,
    slot_buffer_minutes: int = 30,
    base_prep_minutes: int = 30,
    minutes_per_km: float = 3,
    max_eta_minutes: int = 120,
) -> datetime:
    if order_date and slot_timing:
        slot_start = datetime.combine(order_date, parse_slot_start(slot_timing))
        return slot_start + timedelta(minutes=slot_buffer_minutes)
    minutes = base_prep_minutes + math.ceil(distance_km * minutes_per_km)
    return now + timedelta(minutes=min(minutes, max_eta_minutes))
