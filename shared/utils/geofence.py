"""
shared/utils/geofence.py
Point-in-polygon checks for service regions.

Polygons are ordered vertex lists, implicitly closed. A vertex is either a
dict with "lat"/"lng" keys or a (lat, lng) pair.
"""

from typing import Iterable, Optional, Sequence


def _vertex(point) -> tuple[float, float]:
    if isinstance(point, dict):
        return float(point["lat"]), float(point["lng"])
    lat, lng = point
    return float(lat), float(lng)


def _bounding_box(vertices: Sequence[tuple[float, float]]) -> tuple[float, float, float, float]:
    lats = [v[0] for v in vertices]
    lngs = [v[1] for v in vertices]
    return min(lats), max(lats), min(lngs), max(lngs)


def point_in_polygon(lat: Optional[float], lng: Optional[float], polygon: Optional[Iterable]) -> bool:
    """Return True if (lat, lng) falls inside the polygon.

    Ray casting: a ray is cast from the point along the longitude axis and
    polygon edges that straddle the point's latitude are counted. An odd
    count means the point is inside. Edges whose endpoints lie on the same
    side of the ray (including horizontal edges) are skipped before the
    intersection is computed, so there is never a division by zero.
    """
    if lat is None or lng is None or not polygon:
        return False

    vertices = [_vertex(p) for p in polygon]
    if len(vertices) < 3:
        return False

    lat = float(lat)
    lng = float(lng)

    # ── Fast bounding-box rejection ──────────────────────────
    south, north, west, east = _bounding_box(vertices)
    if lat < south or lat > north or lng < west or lng > east:
        return False

    # ── Ray casting ──────────────────────────────────────────
    inside = False
    j = len(vertices) - 1
    for i in range(len(vertices)):
        yi, xi = vertices[i]
        yj, xj = vertices[j]
        if (yi > lat) != (yj > lat):
            crossing_lng = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < crossing_lng:
                inside = not inside
        j = i

    return inside


def find_containing_regions(lat: Optional[float], lng: Optional[float], regions: Iterable) -> list:
    """Return the active regions (objects with .polygon and .is_active) that contain the point."""
    return [
        region
        for region in regions
        if region.is_active and point_in_polygon(lat, lng, region.polygon)
    ]
