from __future__ import annotations

from typing import Any

from pricemap.core.normalize import normalize_key


NAME_PROPERTIES = ("name", "nazwa", "osiedle", "DZIELNICY")


def feature_geometry(geojson: dict[str, Any] | None) -> dict[str, Any] | None:
    # Stored boundaries are either a full Feature or a bare geometry.
    if not geojson:
        return None
    if "geometry" in geojson:
        return geojson.get("geometry")
    return geojson


def feature_name(feature: dict[str, Any]) -> str | None:
    properties = feature.get("properties") or {}
    for key in NAME_PROPERTIES:
        value = properties.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def district_slug(name: str) -> str:
    return normalize_key(name)


def iter_points(geometry: dict[str, Any] | None) -> list[list[float]]:
    """All [lng, lat] vertices of a Polygon or MultiPolygon, rings flattened."""
    if not geometry:
        return []
    coordinates = geometry.get("coordinates") or []
    geometry_type = geometry.get("type")
    if geometry_type == "Polygon":
        return [point for ring in coordinates for point in ring]
    if geometry_type == "MultiPolygon":
        return [point for polygon in coordinates for ring in polygon for point in ring]
    return []


def centroid(geometry: dict[str, Any] | None) -> tuple[float, float] | None:
    """
    Mean of all vertices, returned as (lat, lng). Good enough for label placement.
    """
    points = iter_points(geometry)
    if not points:
        return None
    lng = sum(point[0] for point in points) / len(points)
    lat = sum(point[1] for point in points) / len(points)
    return lat, lng
