"""Unit tests for distance and canonical-pair helpers."""
import uuid

import pytest
from sqlalchemy import Float, literal, select

from drift_engine.database import session_scope
from drift_engine.utils.geo import has_coordinates, haversine_miles_sql
from drift_engine.utils.pairs import canonical_pair


@pytest.fixture
def distance(session_factory):
    """Return ``async (lat1, lon1, lat2, lon2) -> miles`` evaluated by the store."""

    async def _distance(lat1, lon1, lat2, lon2):
        expr = haversine_miles_sql(literal(lat2, Float), literal(lon2, Float), lat1, lon1)
        async with session_scope(session_factory) as db:
            return (await db.execute(select(expr))).scalar_one()

    return _distance


class TestHaversine:

    @pytest.mark.asyncio
    async def test_same_point_is_zero(self, distance):
        assert await distance(51.5, -0.12, 51.5, -0.12) == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_london_to_paris(self, distance):
        """London -> Paris is roughly 213 miles."""
        d = await distance(51.5074, -0.1278, 48.8566, 2.3522)
        assert 211 < d < 216

    @pytest.mark.asyncio
    async def test_symmetric(self, distance):
        a = await distance(40.7128, -74.0060, 34.0522, -118.2437)
        b = await distance(34.0522, -118.2437, 40.7128, -74.0060)
        assert a == pytest.approx(b)

    @pytest.mark.asyncio
    async def test_antimeridian(self, distance):
        """Points either side of 180 degrees are close, not half a world apart."""
        assert await distance(0.0, 179.9, 0.0, -179.9) < 20

    @pytest.mark.asyncio
    async def test_missing_coordinates_give_null(self, distance):
        assert await distance(51.5, -0.12, None, -0.12) is None

    def test_has_coordinates(self):
        assert has_coordinates(0.0, 0.0)
        assert not has_coordinates(None, 1.0)
        assert not has_coordinates(1.0, None)


class TestCanonicalPair:

    def test_order_independent(self):
        a, b = uuid.uuid4(), uuid.uuid4()
        assert canonical_pair(a, b) == canonical_pair(b, a)

    def test_lo_sorts_first(self):
        lo, hi = canonical_pair(uuid.UUID(int=9), uuid.UUID(int=3))
        assert lo.int == 3 and hi.int == 9

    def test_self_pair_rejected(self):
        a = uuid.uuid4()
        with pytest.raises(ValueError):
            canonical_pair(a, a)
