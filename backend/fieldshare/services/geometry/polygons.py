# backend/fieldshare/services/geometry/polygons.py
"""
Polygon primitives for field boundaries.

Input is GeoJSON-style lon/lat (EPSG:4326). Every distance and length that
leaves this module is in metres: the two polygons involved are projected into
a local azimuthal equidistant CRS centred between them before shapely
measures anything. Antimeridian-crossing fields are not supported.
"""
from __future__ import annotations

import math
from functools import lru_cache
from math import radians, sin, cos, asin, sqrt
from typing import List, Tuple, Union

from pyproj import CRS, Geod, Transformer
from shapely.geometry import Polygon, box, mapping
from shapely.ops import transform
from shapely.validation import explain_validity

from fieldshare.exceptions import GeometryError

EARTH_RADIUS_M = 6371000.0
SQ_M_PER_ACRE = 4046.8564224
METRES_PER_DEGREE_LAT = 110574.0
METRES_PER_DEGREE_LON_EQUATOR = 111320.0
# haversine and per-degree figures are within 1% of WGS84; prefilter margins get this factor
PREFILTER_SLACK = 1.02

_WGS84 = CRS.from_epsg(4326)
_GEOD = Geod(ellps="WGS84")

PolygonLike = Union[Polygon, dict, list, tuple]


def haversine_m(lon1, lat1, lon2, lat2) -> float:
    dlon, dlat = radians(lon2 - lon1), radians(lat2 - lat1)
    a = sin(dlat/2)**2 + cos(radians(lat1))*cos(radians(lat2))*sin(dlon/2)**2
    return 2 * EARTH_RADIUS_M * asin(sqrt(a))


def _is_position(value) -> bool:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return False
    return all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value[:2])


def _clean_ring(ring, index: int) -> List[Tuple[float, float]]:
    if not isinstance(ring, (list, tuple)):
        raise GeometryError("ring must be a list of positions", {"ring": index})
    points = []
    for pos in ring:
        if not _is_position(pos):
            raise GeometryError("ring contains an invalid position", {"ring": index, "position": pos})
        lon, lat = float(pos[0]), float(pos[1])
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise GeometryError("coordinates must be finite", {"ring": index})
        if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
            raise GeometryError("coordinate out of lon/lat range", {"ring": index, "position": [lon, lat]})
        points.append((lon, lat))
    if len(points) < 4:
        raise GeometryError(
            "ring needs at least 4 positions (3 distinct points, closed)",
            {"ring": index, "positions": len(points)},
        )
    if points[0] != points[-1]:
        raise GeometryError("ring is not closed: last position must equal the first", {"ring": index})
    if len(set(points[:-1])) < 3:
        raise GeometryError("ring needs at least 3 distinct points", {"ring": index})
    return points


def _rings_from(geometry) -> List[List[Tuple[float, float]]]:
    if isinstance(geometry, dict):
        gtype = geometry.get("type")
        if gtype == "Feature":
            return _rings_from(geometry.get("geometry"))
        if gtype != "Polygon":
            raise GeometryError("geometry.type must be Polygon", {"type": gtype})
        coords = geometry.get("coordinates")
    elif isinstance(geometry, (list, tuple)):
        coords = geometry
    else:
        raise GeometryError(
            "geometry must be a GeoJSON object or a coordinate array",
            {"type": type(geometry).__name__},
        )
    if not isinstance(coords, (list, tuple)) or not coords:
        raise GeometryError("polygon has no coordinates")
    # a single bare ring is taken as the exterior
    if _is_position(coords[0]):
        coords = [coords]
    return [_clean_ring(ring, i) for i, ring in enumerate(coords)]


def _check_polygon(poly: Polygon) -> Polygon:
    if poly.is_empty:
        raise GeometryError("polygon is empty")
    if not poly.is_valid:
        raise GeometryError("polygon is invalid", {"reason": explain_validity(poly)})
    if poly.area <= 0:
        raise GeometryError("polygon has no area")
    return poly


def parse_polygon(geometry: PolygonLike) -> Polygon:
    """Build a validated shapely Polygon from GeoJSON, a Feature or raw rings."""
    if isinstance(geometry, Polygon):
        return _check_polygon(geometry)
    rings = _rings_from(geometry)
    return _check_polygon(Polygon(rings[0], rings[1:]))


def _as_polygon(geometry: PolygonLike) -> Polygon:
    return geometry if isinstance(geometry, Polygon) else parse_polygon(geometry)


@lru_cache(maxsize=256)
def _aeqd_transformer(lon0: float, lat0: float) -> Transformer:
    local = CRS.from_proj4(f"+proj=aeqd +lat_0={lat0} +lon_0={lon0} +datum=WGS84 +units=m +no_defs")
    return Transformer.from_crs(_WGS84, local, always_xy=True)


def _project_pair(a: Polygon, b: Polygon) -> Tuple[Polygon, Polygon]:
    ca, cb = a.centroid, b.centroid
    lon0 = round((ca.x + cb.x) / 2, 3)
    lat0 = round((ca.y + cb.y) / 2, 3)
    tf = _aeqd_transformer(lon0, lat0)
    return transform(tf.transform, a), transform(tf.transform, b)


def min_distance(a: PolygonLike, b: PolygonLike) -> float:
    """Minimum boundary-to-boundary distance in metres; 0 when touching or overlapping."""
    pa, pb = _as_polygon(a), _as_polygon(b)
    if pa.intersects(pb):
        return 0.0
    qa, qb = _project_pair(pa, pb)
    return float(qa.distance(qb))


def intersects(a: PolygonLike, b: PolygonLike) -> bool:
    """True only when the interiors share area; a shared edge or corner is not enough."""
    pa, pb = _as_polygon(a), _as_polygon(b)
    return pa.relate_pattern(pb, "T********")


def shared_boundary_length(a: PolygonLike, b: PolygonLike, tolerance_m: float) -> float:
    """Length in metres of a's boundary lying within tolerance_m of b."""
    pa, pb = _as_polygon(a), _as_polygon(b)
    qa, qb = _project_pair(pa, pb)
    if tolerance_m <= 0:
        shared = qa.boundary.intersection(qb.boundary)
    else:
        shared = qa.boundary.intersection(qb.buffer(tolerance_m))
    return float(shared.length)


def centroid_lonlat(poly: Polygon) -> Tuple[float, float]:
    c = poly.centroid
    return c.x, c.y


def bounding_radius_m(poly: Polygon) -> float:
    lon, lat = centroid_lonlat(poly)
    return max(haversine_m(lon, lat, x, y) for x, y in poly.exterior.coords)


def area_acres(poly: Polygon) -> float:
    area_m2, _ = _GEOD.geometry_area_perimeter(poly)
    return abs(area_m2) / SQ_M_PER_ACRE


def metres_to_degrees(margin_m: float, lat: float) -> Tuple[float, float]:
    """(dlon, dlat) covering at least margin_m around latitude lat."""
    dlat = margin_m / METRES_PER_DEGREE_LAT
    coslat = max(cos(radians(min(abs(lat), 89.0))), 0.01)
    dlon = margin_m / (METRES_PER_DEGREE_LON_EQUATOR * coslat)
    return dlon, dlat


def to_geojson(poly: Polygon) -> dict:
    geom = mapping(poly)
    return {
        "type": "Polygon",
        "coordinates": [[list(pt) for pt in ring] for ring in geom["coordinates"]],
    }


def approximate_geojson(poly: Polygon, decimals: int) -> dict:
    """Exterior ring rounded to `decimals` places; holes are dropped."""
    points: List[Tuple[float, float]] = []
    for x, y in poly.exterior.coords:
        pt = (round(x, decimals), round(y, decimals))
        if not points or points[-1] != pt:
            points.append(pt)
    if len(set(points)) < 3:
        # collapsed below the rounding grid: fall back to the rounded envelope
        step = 10 ** -decimals
        minx, miny, maxx, maxy = (round(v, decimals) for v in poly.bounds)
        if maxx <= minx:
            maxx = round(minx + step, decimals)
        if maxy <= miny:
            maxy = round(miny + step, decimals)
        points = [(float(x), float(y)) for x, y in box(minx, miny, maxx, maxy).exterior.coords]
    if points[0] != points[-1]:
        points.append(points[0])
    return {"type": "Polygon", "coordinates": [[list(pt) for pt in points]]}
