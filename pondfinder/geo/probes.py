"""Probe-point geometry for the concentric ring search.

Uses a local equirectangular approximation: one degree of latitude is
~111 320 m everywhere, and a degree of longitude shrinks with cos(latitude).
Good to well under a metre at the few-hundred-metre scale the resolver uses.
"""

import math
from typing import List, NamedTuple, Tuple

METERS_PER_DEGREE_LAT = 111_320.0

# Bearings in degrees, clockwise from north
PROBE_ANGLES: Tuple[int, ...] = (0, 45, 90, 135, 180, 225, 270, 315)

BASE_RING_RADII: Tuple[float, ...] = (100.0, 250.0)


class ProbePoint(NamedTuple):
    lat: float
    lng: float


def meters_to_degrees(lat: float, meters: float) -> Tuple[float, float]:
    """Return (degrees of latitude, degrees of longitude) spanning ``meters``."""
    dlat = meters / METERS_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(lat))
    # Clamp so a probe at the poles does not divide by zero
    dlng = dlat / max(cos_lat, 1e-12)
    return dlat, dlng


def offset_point(lat: float, lng: float, meters: float, bearing_deg: float) -> ProbePoint:
    """Point ``meters`` away from (lat, lng) along ``bearing_deg``."""
    dlat, dlng = meters_to_degrees(lat, meters)
    rad = math.radians(bearing_deg)
    return ProbePoint(lat + dlat * math.cos(rad), lng + dlng * math.sin(rad))


def ring_radii(max_radius_meters: float) -> List[float]:
    """Radii of the three search rings, always probed nearest first.

    The outer ring is the caller's maximum. A maximum below 250 m would
    otherwise make the last ring smaller than the second, so the radii are
    sorted ascending; all three rings are still probed.
    """
    if max_radius_meters <= 0:
        raise ValueError("max_radius_meters must be positive")
    return sorted([*BASE_RING_RADII, float(max_radius_meters)])


def ring_probes(lat: float, lng: float, radius_meters: float) -> List[ProbePoint]:
    """The 8 probes of one ring, in PROBE_ANGLES order."""
    return [offset_point(lat, lng, radius_meters, angle) for angle in PROBE_ANGLES]
