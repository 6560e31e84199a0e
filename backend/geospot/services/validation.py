"""GeoJSON geometry and FeatureCollection validation.

Two layers of checks run before anything is written to the store:

- validate_geometry() inspects a single geometry object and returns a
  GeometryError describing the first problem found, or None. It never
  raises, so callers decide whether a bad geometry aborts the upload.
- validate_feature_collection() checks the document envelope and every
  feature, delegating geometries to validate_geometry(). The first
  offending feature raises InvalidGeoJSONError; no partial result is
  returned.

Rules:
    - ``type`` must be one of the seven GeoJSON geometry types.
    - A position is ``[x, y]`` or ``[x, y, z]``; values are finite numbers.
    - All positions of one geometry have the same dimension.
    - A LineString has at least two positions.
    - A Polygon has at least one linear ring; a ring has at least four
      positions and its first and last positions are equal.
    - Multi* geometries are arrays of their single-part coordinates.
    - GeometryCollection members are validated recursively, up to
      MAX_COLLECTION_DEPTH nested collections.

Example:
    >>> from geospot.services import validation
    >>> validation.validate_geometry({"type": "Point", "coordinates": [1, 2]})
    >>> error = validation.validate_geometry(
    ...     {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}
    ... )
    >>> error.kind
    'UnclosedRing'
"""

from __future__ import annotations

import dataclasses
import math
from typing import TYPE_CHECKING, Any, Literal

from geospot.core import errors
from geospot.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

GeometryErrorKind = Literal[
    "MalformedType",
    "ArityMismatch",
    "UnclosedRing",
    "NonFiniteCoordinate",
]

GEOMETRY_TYPES = frozenset(
    {
        "Point",
        "LineString",
        "Polygon",
        "MultiPoint",
        "MultiLineString",
        "MultiPolygon",
        "GeometryCollection",
    }
)


@dataclasses.dataclass(frozen=True)
class GeometryError:
    """Why a geometry was rejected.

    Attributes:
        kind: Category of the failure.
        message: Human-readable description.
        path: Location of the offending element inside the geometry,
            e.g. ``geometry.coordinates[0][3]``.
    """

    kind: GeometryErrorKind
    message: str
    path: str = "geometry"

    def __str__(self) -> str:
        return f"{self.message} (at {self.path})"


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_finite(value: float) -> bool:
    try:
        return math.isfinite(value)
    except OverflowError:
        # Integers too large for a float.
        return False


def _check_position(position: Any, path: str) -> GeometryError | None:
    if not isinstance(position, list | tuple) or len(position) not in (2, 3):
        return GeometryError(
            "ArityMismatch",
            "a position must be [x, y] or [x, y, z]",
            path,
        )
    for i, value in enumerate(position):
        if not _is_number(value):
            return GeometryError(
                "ArityMismatch",
                "coordinate values must be numbers",
                f"{path}[{i}]",
            )
        if not _is_finite(value):
            return GeometryError(
                "NonFiniteCoordinate",
                "coordinate values must be finite",
                f"{path}[{i}]",
            )
    return None


def _check_positions(
    positions: Any,
    path: str,
    minimum: int,
) -> GeometryError | None:
    if not isinstance(positions, list | tuple):
        return GeometryError(
            "ArityMismatch",
            "expected an array of positions",
            path,
        )
    if len(positions) < minimum:
        return GeometryError(
            "ArityMismatch",
            f"expected at least {minimum} positions, got {len(positions)}",
            path,
        )
    for i, position in enumerate(positions):
        error = _check_position(position, f"{path}[{i}]")
        if error is not None:
            return error
    return None


def _check_line_string(positions: Any, path: str) -> GeometryError | None:
    return _check_positions(positions, path, minimum=2)


def _check_ring(ring: Any, path: str) -> GeometryError | None:
    error = _check_positions(ring, path, minimum=4)
    if error is not None:
        return error
    if list(ring[0]) != list(ring[-1]):
        return GeometryError(
            "UnclosedRing",
            "linear ring is not closed: first and last positions differ",
            path,
        )
    return None


def _check_polygon(rings: Any, path: str) -> GeometryError | None:
    if not isinstance(rings, list | tuple):
        return GeometryError(
            "ArityMismatch",
            "expected an array of linear rings",
            path,
        )
    if not rings:
        return GeometryError(
            "ArityMismatch",
            "a polygon needs at least one linear ring",
            path,
        )
    for i, ring in enumerate(rings):
        error = _check_ring(ring, f"{path}[{i}]")
        if error is not None:
            return error
    return None


def _each(
    check: Callable[[Any, str], GeometryError | None],
) -> Callable[[Any, str], GeometryError | None]:
    """Lift a single-part check to the matching Multi* coordinates."""

    def check_all(parts: Any, path: str) -> GeometryError | None:
        if not isinstance(parts, list | tuple):
            return GeometryError("ArityMismatch", "expected an array", path)
        for i, part in enumerate(parts):
            error = check(part, f"{path}[{i}]")
            if error is not None:
                return error
        return None

    return check_all


_COORDINATE_CHECKS: dict[str, Callable[[Any, str], GeometryError | None]] = {
    "Point": _check_position,
    "LineString": _check_line_string,
    "Polygon": _check_polygon,
    "MultiPoint": _each(_check_position),
    "MultiLineString": _each(_check_line_string),
    "MultiPolygon": _each(_check_polygon),
}

# Array levels between ``coordinates`` and the positions it holds.
_POSITION_DEPTH = {
    "LineString": 1,
    "MultiPoint": 1,
    "Polygon": 2,
    "MultiLineString": 2,
    "MultiPolygon": 3,
}

MAX_COLLECTION_DEPTH = 16


def _iter_positions(
    coordinates: Any,
    path: str,
    depth: int,
) -> Iterator[tuple[Any, str]]:
    if depth == 0:
        yield coordinates, path
        return
    for i, part in enumerate(coordinates):
        yield from _iter_positions(part, f"{path}[{i}]", depth - 1)


def _check_dimensions(
    coordinates: Any,
    path: str,
    depth: int,
) -> GeometryError | None:
    """All positions of one geometry must be 2D, or all 3D."""
    expected = None
    for position, position_path in _iter_positions(coordinates, path, depth):
        if expected is None:
            expected = len(position)
        elif len(position) != expected:
            return GeometryError(
                "ArityMismatch",
                f"mixed position dimensions: expected {expected} values, "
                f"got {len(position)}",
                position_path,
            )
    return None


def validate_geometry(
    geometry: Any,
    path: str = "geometry",
) -> GeometryError | None:
    """Check one GeoJSON geometry object.

    Args:
        geometry: Decoded geometry value.
        path: Location prefix used in error paths.

    Returns:
        None if the geometry is valid, otherwise the first GeometryError.
    """
    return _validate_geometry(geometry, path, 0)


def _validate_geometry(
    geometry: Any,
    path: str,
    collection_depth: int,
) -> GeometryError | None:
    if not isinstance(geometry, dict):
        return GeometryError(
            "MalformedType",
            "geometry must be a JSON object",
            path,
        )

    geom_type = geometry.get("type")
    if not isinstance(geom_type, str) or geom_type not in GEOMETRY_TYPES:
        return GeometryError(
            "MalformedType",
            f"unrecognized geometry type {geom_type!r}",
            f"{path}.type",
        )

    if geom_type == "GeometryCollection":
        if collection_depth >= MAX_COLLECTION_DEPTH:
            return GeometryError(
                "ArityMismatch",
                f"GeometryCollections nest more than {MAX_COLLECTION_DEPTH} "
                "levels deep",
                path,
            )
        members = geometry.get("geometries")
        if not isinstance(members, list):
            return GeometryError(
                "ArityMismatch",
                "GeometryCollection requires a 'geometries' array",
                f"{path}.geometries",
            )
        for i, member in enumerate(members):
            error = _validate_geometry(
                member,
                f"{path}.geometries[{i}]",
                collection_depth + 1,
            )
            if error is not None:
                return error
        return None

    if "coordinates" not in geometry:
        return GeometryError(
            "ArityMismatch",
            f"{geom_type} requires a 'coordinates' member",
            path,
        )
    coordinates = geometry["coordinates"]
    coordinates_path = f"{path}.coordinates"
    error = _COORDINATE_CHECKS[geom_type](coordinates, coordinates_path)
    if error is not None or geom_type == "Point":
        return error
    return _check_dimensions(
        coordinates,
        coordinates_path,
        _POSITION_DEPTH[geom_type],
    )


def _validate_feature(feature: Any, index: int) -> db_models.ValidatedFeature:
    if not isinstance(feature, dict) or feature.get("type") != "Feature":
        raise errors.InvalidGeoJSONError(
            "expected an object with type 'Feature'",
            index=index,
        )

    geometry = feature.get("geometry")
    if geometry is None:
        error: GeometryError | None = GeometryError(
            "MalformedType",
            "feature has no geometry",
        )
    else:
        error = validate_geometry(geometry)
    if error is not None:
        raise errors.InvalidGeoJSONError(str(error), index=index, cause=error)

    properties = feature.get("properties")
    if properties is None:
        properties = {}
    elif not isinstance(properties, dict):
        raise errors.InvalidGeoJSONError(
            "'properties' must be an object or null",
            index=index,
        )

    return db_models.ValidatedFeature(geometry=geometry, properties=properties)


def validate_feature_collection(
    document: Any,
) -> list[db_models.ValidatedFeature]:
    """Validate a decoded GeoJSON FeatureCollection.

    Args:
        document: Decoded JSON document.

    Returns:
        Validated features in the order they appear in ``features``.
        An empty ``features`` array yields an empty list.

    Raises:
        InvalidGeoJSONError: On the first structural or geometry fault.
            ``index`` identifies the feature, ``cause`` holds the
            GeometryError when a geometry was rejected.
    """
    if not isinstance(document, dict):
        raise errors.InvalidGeoJSONError("document must be a JSON object")
    if document.get("type") != "FeatureCollection":
        raise errors.InvalidGeoJSONError(
            "top-level type must be 'FeatureCollection'"
        )

    features = document.get("features")
    if not isinstance(features, list):
        raise errors.InvalidGeoJSONError("'features' must be an array")

    return [
        _validate_feature(feature, index)
        for index, feature in enumerate(features)
    ]
