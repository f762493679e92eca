# slotgate/utils/geo.py
"""Great-circle distance helpers for the gate geofence and nearby-parking search."""

from geopy.distance import great_circle


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return great_circle((lat1, lng1), (lat2, lng2)).meters


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return great_circle((lat1, lng1), (lat2, lng2)).km
