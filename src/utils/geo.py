"""
Geography Utilities
===================
Shared utilities for bearing calculations and map bounds.
"""

import math
from typing import Iterable, List, Tuple


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the initial great-circle bearing from one point to another.

    Args:
        lat1, lon1: Coordinates of the start point
        lat2, lon2: Coordinates of the destination

    Returns:
        Compass bearing in degrees, in [0, 360)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)

    y = math.sin(delta_lon) * math.cos(lat2_rad)
    x = (math.cos(lat1_rad) * math.sin(lat2_rad) -
         math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lon))

    return (math.degrees(math.atan2(y, x)) + 360) % 360


def average_bearing(bearings: Iterable[float]) -> float:
    """
    Circular mean of a set of bearings.

    Averages unit vectors rather than raw degrees, so 350 and 10 average to 0
    instead of 180.

    Args:
        bearings: Bearings in degrees

    Returns:
        Mean bearing in degrees, in [0, 360)
    """
    bearings = list(bearings)
    if not bearings:
        raise ValueError("average_bearing() needs at least one bearing")

    sin_sum = sum(math.sin(math.radians(b)) for b in bearings)
    cos_sum = sum(math.cos(math.radians(b)) for b in bearings)

    return (math.degrees(math.atan2(sin_sum, cos_sum)) + 360) % 360


def get_bounds(points: List[Tuple[float, float]]) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """
    Calculate bounding box for a set of coordinates.

    Args:
        points: List of (lat, lon) tuples

    Returns:
        ((min_lat, min_lon), (max_lat, max_lon))
    """
    if not points:
        return ((0, 0), (0, 0))

    lats = [p[0] for p in points]
    lons = [p[1] for p in points]

    return ((min(lats), min(lons)), (max(lats), max(lons)))


def offset_point(lat: float, lon: float, bearing: float, distance_m: float) -> Tuple[float, float]:
    """
    Point distance_m metres from (lat, lon) along bearing.

    Flat-earth approximation, good enough for short map ticks.
    """
    metres_per_degree = 111320.0
    bearing_rad = math.radians(bearing)
    dlat = distance_m * math.cos(bearing_rad) / metres_per_degree
    dlon = distance_m * math.sin(bearing_rad) / (metres_per_degree * math.cos(math.radians(lat)))
    return (lat + dlat, lon + dlon)
