"""
GeoJSON geometry helpers used by the nearest neighbor analysis.

These functions work on plain GeoJSON mappings (``dict`` Features and
FeatureCollections) and delegate the geometry itself to Shapely. Two
coordinate models are supported throughout:

    - geodesic (default): coordinates are ``[longitude, latitude]`` in degrees,
      distances are great-circle (haversine) and areas are spherical.
    - planar: coordinates are projected and expressed in meters, distances are
      Euclidean and areas are planar.
"""

import copy
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from pyproj import Geod

from shapely.errors import ShapelyError
from shapely.geometry import box, mapping, shape, Point, Polygon, MultiPolygon
from shapely.geometry.base import BaseGeometry

from .exceptions import DegenerateInputError, InvalidInputError
from .units import length_to_radians, radians_to_length

# Sphere used for polygon areas (WGS84 semi-major axis)
AREA_EARTH_RADIUS = 6378137.0

_SPHERE = Geod(a=AREA_EARTH_RADIUS, f=0.0)

BBox = Tuple[float, float, float, float]


# =============================================================================
# FEATURE ACCESS
# =============================================================================


def feature_collection(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Wrap a list of Features into a GeoJSON FeatureCollection."""
    return {'type': 'FeatureCollection', 'features': list(features)}


def feature_each(collection: Dict[str, Any]) -> Iterator[Tuple[Dict[str, Any], int]]:
    """
    Iterate over the Features of a FeatureCollection (or a single Feature).

    Yields:
        Tuple[dict, int]: Each feature together with its index, in input order.

    Raises:
        InvalidInputError: If ``collection`` is neither a Feature nor a
                           FeatureCollection.
    """
    if not isinstance(collection, dict):
        raise InvalidInputError(
            f"Expected a GeoJSON Feature or FeatureCollection, got {type(collection).__name__}"
        )

    kind = collection.get('type')
    if kind == 'FeatureCollection':
        features = collection.get('features')
        if not isinstance(features, list):
            raise InvalidInputError("FeatureCollection 'features' must be a list")
        for index, feature in enumerate(features):
            yield feature, index
    elif kind == 'Feature':
        yield collection, 0
    else:
        raise InvalidInputError(
            f"Expected a GeoJSON Feature or FeatureCollection, got type '{kind}'"
        )


def to_shape(obj: Any) -> BaseGeometry:
    """
    Build a Shapely geometry from a Feature, a geometry mapping or a geometry.

    Raises:
        InvalidInputError: If there is no geometry or Shapely cannot read it.
    """
    if isinstance(obj, BaseGeometry):
        return obj
    if not isinstance(obj, dict):
        raise InvalidInputError(f"Cannot read geometry from {type(obj).__name__}")

    geom = obj.get('geometry') if obj.get('type') == 'Feature' else obj
    if geom is None:
        raise InvalidInputError("Feature has no geometry")

    try:
        return shape(geom)
    except (ShapelyError, ValueError, TypeError, KeyError, AttributeError, IndexError) as e:
        raise InvalidInputError(f"Invalid geometry: {e}") from e


def get_coord(obj: Any) -> Tuple[float, float]:
    """
    Extract the ``(x, y)`` coordinate of a point-like object.

    Accepts a Point Feature, a Point geometry mapping, a Shapely Point, or a
    coordinate pair.
    """
    if isinstance(obj, Point):
        return (obj.x, obj.y)
    if isinstance(obj, dict):
        geom = obj.get('geometry') if obj.get('type') == 'Feature' else obj
        if not isinstance(geom, dict) or geom.get('type') != 'Point':
            raise InvalidInputError("Expected a Point Feature or Point geometry")
        obj = geom.get('coordinates')
    if isinstance(obj, (list, tuple, np.ndarray)) and len(obj) >= 2:
        return (float(obj[0]), float(obj[1]))
    raise InvalidInputError(f"Cannot read a coordinate from {obj!r}")


# =============================================================================
# MEASUREMENT
# =============================================================================


def bbox(collection: Dict[str, Any]) -> BBox:
    """
    Compute the bounding box of every geometry in a collection.

    Returns:
        Tuple[float, float, float, float]: ``(min_x, min_y, max_x, max_y)``.

    Raises:
        DegenerateInputError: If the collection has no non-empty geometry.
    """
    bounds = []
    for feature, _ in feature_each(collection):
        geom = to_shape(feature)
        if not geom.is_empty:
            bounds.append(geom.bounds)

    if not bounds:
        raise DegenerateInputError("Cannot compute the bounding box of an empty collection")

    arr = np.array(bounds, dtype=float)
    return (
        float(arr[:, 0].min()),
        float(arr[:, 1].min()),
        float(arr[:, 2].max()),
        float(arr[:, 3].max()),
    )


def bbox_polygon(bounds: Sequence[float], properties: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Turn ``(min_x, min_y, max_x, max_y)`` into a Polygon Feature."""
    min_x, min_y, max_x, max_y = (float(v) for v in bounds[:4])
    polygon = box(min_x, min_y, max_x, max_y, ccw=True)
    return {
        'type': 'Feature',
        'properties': properties if properties is not None else {},
        'geometry': mapping(polygon),
    }


def centroid(feature: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a Feature to a Point Feature at its geometric centroid.

    Points map to themselves. The feature's properties are copied onto the
    returned Point.

    Raises:
        InvalidInputError: If the feature has no (or an empty) geometry.
    """
    geom = to_shape(feature)
    if geom.is_empty:
        raise InvalidInputError("Cannot compute the centroid of an empty geometry")

    center = geom.centroid
    properties = feature.get('properties') if isinstance(feature, dict) else None
    return {
        'type': 'Feature',
        'properties': copy.deepcopy(properties) if properties else {},
        'geometry': {'type': 'Point', 'coordinates': [center.x, center.y]},
    }


def area(feature: Any, geodesic: bool = True) -> float:
    """
    Area of a (Multi)Polygon in square meters.

    Geodesic areas are measured on a sphere of radius ``AREA_EARTH_RADIUS``;
    planar areas assume coordinates already in meters. Geometries without an
    interior (points, lines) have zero area.
    """
    geom = to_shape(feature)
    if not isinstance(geom, (Polygon, MultiPolygon)) or geom.is_empty:
        return 0.0

    if geodesic:
        signed_area, _ = _SPHERE.geometry_area_perimeter(geom)
        return abs(float(signed_area))
    return float(geom.area)


def pairwise_distances(
    origin: Sequence[float],
    coords: np.ndarray,
    units: str = 'kilometers',
    geodesic: bool = True
) -> np.ndarray:
    """
    Distances from one coordinate to each row of an ``(m, 2)`` array.

    Formula (geodesic, haversine):
        a = sin²(Δφ/2) + cos φ1 · cos φ2 · sin²(Δλ/2)
        d = 2 · atan2(√a, √(1 − a))   [radians]
    """
    coords = np.asarray(coords, dtype=float).reshape(-1, 2)
    x0, y0 = float(origin[0]), float(origin[1])

    if geodesic:
        lon1, lat1 = np.radians(x0), np.radians(y0)
        lon2 = np.radians(coords[:, 0])
        lat2 = np.radians(coords[:, 1])

        a = (
            np.sin((lat2 - lat1) / 2) ** 2
            + np.sin((lon2 - lon1) / 2) ** 2 * np.cos(lat1) * np.cos(lat2)
        )
        a = np.clip(a, 0.0, 1.0)
        arc = 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))
        return radians_to_length(arc, units)

    meters = np.hypot(coords[:, 0] - x0, coords[:, 1] - y0)
    return radians_to_length(length_to_radians(meters, 'meters'), units)


def distance(a: Any, b: Any, units: str = 'kilometers', geodesic: bool = True) -> float:
    """
    Distance between two point-like objects in ``units``.

    Raises:
        UnitError: If ``units`` is unknown.
    """
    origin = get_coord(a)
    target = np.array([get_coord(b)], dtype=float)
    return float(pairwise_distances(origin, target, units=units, geodesic=geodesic)[0])


def nearest_point(
    target: Any,
    points: Dict[str, Any],
    units: str = 'kilometers',
    geodesic: bool = True
) -> Dict[str, Any]:
    """
    Find the Point Feature in ``points`` closest to ``target``.

    The match is returned as a copy carrying two extra properties:
    ``featureIndex`` (its position in ``points``) and ``distanceToPoint``.
    When several points are equally close the first one in collection order
    wins. The target itself is NOT excluded: callers pass a collection that
    already leaves it out.

    Raises:
        DegenerateInputError: If ``points`` is empty.
    """
    candidates = [feature for feature, _ in feature_each(points)]
    if not candidates:
        raise DegenerateInputError("Cannot search for a nearest point in an empty collection")

    coords = np.array([get_coord(f) for f in candidates], dtype=float)
    dists = pairwise_distances(get_coord(target), coords, units=units, geodesic=geodesic)
    best = int(np.argmin(dists))

    match = copy.deepcopy(candidates[best])
    properties = match.get('properties') or {}
    properties['featureIndex'] = best
    properties['distanceToPoint'] = float(dists[best])
    match['properties'] = properties
    return match


def unit_sphere_vectors(coords: np.ndarray) -> np.ndarray:
    """
    Map ``[lon, lat]`` degrees onto 3D unit vectors.

    Straight-line (chord) distance between the vectors grows monotonically
    with great-circle distance, so Euclidean spatial indexes return the same
    nearest neighbors as a haversine search.
    """
    coords = np.asarray(coords, dtype=float).reshape(-1, 2)
    lon = np.radians(coords[:, 0])
    lat = np.radians(coords[:, 1])
    return np.column_stack([
        np.cos(lat) * np.cos(lon),
        np.cos(lat) * np.sin(lon),
        np.sin(lat),
    ])
