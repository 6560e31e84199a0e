"""Tests for single-geometry validation.

validate_geometry() must accept every well-formed GeoJSON geometry type
and return a GeometryError of the right kind, with a path pointing at the
offending element, for malformed input. It never raises.
"""

from __future__ import annotations

from typing import Any

import pytest

from geospot.services import validation

RING = [[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]


@pytest.mark.parametrize(
    "geometry",
    [
        {"type": "Point", "coordinates": [1.5, -2]},
        {"type": "Point", "coordinates": [1, 2, 3]},
        {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
        {"type": "Polygon", "coordinates": [RING]},
        {"type": "Polygon", "coordinates": [RING, RING]},
        {"type": "MultiPoint", "coordinates": [[0, 0], [1, 1]]},
        {"type": "MultiPoint", "coordinates": []},
        {"type": "MultiLineString", "coordinates": [[[0, 0], [1, 1]]]},
        {"type": "MultiPolygon", "coordinates": [[RING], [RING]]},
        {
            "type": "GeometryCollection",
            "geometries": [
                {"type": "Point", "coordinates": [0, 0]},
                {
                    "type": "GeometryCollection",
                    "geometries": [{"type": "Polygon", "coordinates": [RING]}],
                },
            ],
        },
        {"type": "GeometryCollection", "geometries": []},
    ],
)
def test_valid_geometries(geometry: dict[str, Any]) -> None:
    assert validation.validate_geometry(geometry) is None


@pytest.mark.parametrize(
    "geometry",
    [
        {"type": "Ploygon", "coordinates": [RING]},
        {"type": "Feature", "coordinates": [0, 0]},
        {"coordinates": [0, 0]},
        {"type": ["Point"], "coordinates": [0, 0]},
        "POINT (0 0)",
        None,
    ],
)
def test_malformed_type(geometry: Any) -> None:
    error = validation.validate_geometry(geometry)
    assert error is not None
    assert error.kind == "MalformedType"


def test_malformed_type_path_points_at_type() -> None:
    error = validation.validate_geometry({"type": "Ploygon", "coordinates": []})
    assert error is not None
    assert error.path == "geometry.type"
    assert "Ploygon" in error.message


@pytest.mark.parametrize(
    "geometry",
    [
        {"type": "Point", "coordinates": [1]},
        {"type": "Point", "coordinates": [1, 2, 3, 4]},
        {"type": "Point", "coordinates": [[1, 2]]},
        {"type": "Point", "coordinates": ["1", 2]},
        {"type": "Point", "coordinates": [True, 2]},
        {"type": "Point"},
        {"type": "LineString", "coordinates": [[0, 0]]},
        {"type": "LineString", "coordinates": [0, 0]},
        {"type": "Polygon", "coordinates": []},
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [0, 0]]]},
        {"type": "MultiPoint", "coordinates": [0, 0]},
        {"type": "MultiPolygon", "coordinates": [[[[0, 0], [1, 1]]]]},
        {"type": "GeometryCollection"},
        {"type": "GeometryCollection", "geometries": [{"type": "Point"}]},
    ],
)
def test_arity_mismatch(geometry: dict[str, Any]) -> None:
    error = validation.validate_geometry(geometry)
    assert error is not None
    assert error.kind == "ArityMismatch"


def test_unclosed_ring() -> None:
    open_ring = [[0, 0], [1, 0], [1, 1], [0, 1]]
    error = validation.validate_geometry(
        {"type": "Polygon", "coordinates": [RING, open_ring + [[0, 2]]]}
    )
    assert error is not None
    assert error.kind == "UnclosedRing"
    assert error.path == "geometry.coordinates[1]"


def test_unclosed_ring_inside_multipolygon() -> None:
    open_ring = [[0, 0], [1, 0], [1, 1], [0, 1], [0, 0.5]]
    error = validation.validate_geometry(
        {"type": "MultiPolygon", "coordinates": [[RING], [open_ring]]}
    )
    assert error is not None
    assert error.kind == "UnclosedRing"
    assert error.path == "geometry.coordinates[1][0]"


def test_ring_closed_with_int_and_float_positions() -> None:
    ring = [[0, 0], [1, 0], [1, 1], [0.0, 0.0]]
    assert validation.validate_geometry(
        {"type": "Polygon", "coordinates": [ring]}
    ) is None


@pytest.mark.parametrize(
    "value",
    [float("nan"), float("inf"), float("-inf"), 10**400],
)
def test_non_finite_coordinate(value: float) -> None:
    error = validation.validate_geometry(
        {"type": "LineString", "coordinates": [[0, 0], [1, value]]}
    )
    assert error is not None
    assert error.kind == "NonFiniteCoordinate"
    assert error.path == "geometry.coordinates[1][1]"


def test_nested_collection_error_path() -> None:
    error = validation.validate_geometry(
        {
            "type": "GeometryCollection",
            "geometries": [
                {"type": "Point", "coordinates": [0, 0]},
                {"type": "Point", "coordinates": [0, float("nan")]},
            ],
        }
    )
    assert error is not None
    assert error.kind == "NonFiniteCoordinate"
    assert error.path == "geometry.geometries[1].coordinates[1]"


def test_error_string_includes_path() -> None:
    error = validation.GeometryError("UnclosedRing", "ring is open", "x")
    assert str(error) == "ring is open (at x)"


@pytest.mark.parametrize(
    ("geometry", "path"),
    [
        (
            {"type": "LineString", "coordinates": [[0, 0], [1, 1, 1]]},
            "geometry.coordinates[1]",
        ),
        (
            {"type": "MultiPoint", "coordinates": [[0, 0, 0], [1, 1]]},
            "geometry.coordinates[1]",
        ),
        (
            {
                "type": "Polygon",
                "coordinates": [
                    RING,
                    [[0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 0, 1]],
                ],
            },
            "geometry.coordinates[1][0]",
        ),
        (
            {
                "type": "MultiPolygon",
                "coordinates": [
                    [[[0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 0, 1]]],
                    [RING],
                ],
            },
            "geometry.coordinates[1][0][0]",
        ),
    ],
)
def test_mixed_position_dimensions(geometry: dict[str, Any], path: str) -> None:
    error = validation.validate_geometry(geometry)
    assert error is not None
    assert error.kind == "ArityMismatch"
    assert error.path == path


def test_uniform_3d_positions_are_valid() -> None:
    ring = [[0, 0, 1], [1, 0, 1], [1, 1, 2], [0, 0, 1]]
    assert validation.validate_geometry(
        {"type": "MultiPolygon", "coordinates": [[ring], [ring]]}
    ) is None


def _nested_collection(levels: int) -> dict[str, Any]:
    geometry: dict[str, Any] = {"type": "Point", "coordinates": [0, 0]}
    for _ in range(levels):
        geometry = {"type": "GeometryCollection", "geometries": [geometry]}
    return geometry


def test_collection_nesting_limit() -> None:
    limit = validation.MAX_COLLECTION_DEPTH
    assert validation.validate_geometry(_nested_collection(limit)) is None

    error = validation.validate_geometry(_nested_collection(limit + 1))
    assert error is not None
    assert error.kind == "ArityMismatch"


def test_very_deep_collection_does_not_recurse_without_bound() -> None:
    error = validation.validate_geometry(_nested_collection(5000))
    assert error is not None
    assert error.kind == "ArityMismatch"
