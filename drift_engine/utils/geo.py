"""Great-circle distance helpers used by the discovery feed."""

from __future__ import annotations

import math

from sqlalchemy import Float, case, func

EARTH_RADIUS_MILES = 3959.0

_RADIANS = math.pi / 180.0


def haversine_miles_sql(lat_column, lon_column, origin_lat: float, origin_lon: float):
    """SQL expression for the distance in miles from a fixed origin to the
    point stored in ``lat_column`` / ``lon_column``.

    NULL when either column is NULL.  Uses ``sin``, ``cos``, ``asin`` and
    ``sqrt``: PostgreSQL has them, SQLite gets them from
    ``drift_engine.database.register_sqlite_math``.
    """
    lat_rad = lat_column * _RADIANS
    half_d_lat = func.sin((lat_rad - math.radians(origin_lat)) / 2, type_=Float)
    half_d_lon = func.sin((lon_column - origin_lon) * _RADIANS / 2, type_=Float)
    cos_product = math.cos(math.radians(origin_lat)) * func.cos(lat_rad, type_=Float)
    a = half_d_lat * half_d_lat + cos_product * half_d_lon * half_d_lon
    # Rounding can push ``a`` a hair outside [0, 1]; asin/sqrt reject that.
    a = case((a > 1.0, 1.0), (a < 0.0, 0.0), else_=a)
    return 2 * EARTH_RADIUS_MILES * func.asin(func.sqrt(a, type_=Float), type_=Float)


def has_coordinates(lat: float | None, lon: float | None) -> bool:
    return lat is not None and lon is not None
