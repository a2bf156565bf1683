"""
PostgreSQL integration tests: PostGIS radius lookups and pgvector need
matching, which SQLite cannot run.

Requires:
    - PostgreSQL with the postgis and vector extensions (TEST_DATABASE_URL)

Skipped automatically when the database is unreachable.
"""

import math
import uuid

import pytest
from sqlalchemy import select

from linksy.db import dal
from linksy.db.models import Need, NeedCategory, Provider, ProviderLocation
from linksy.search.needs import match_needs
from linksy.search.proximity import METERS_PER_MILE, ring_search

DIMS = 1536


def _basis(*weights):
    """Unit vector with the given leading components."""
    norm = math.sqrt(sum(w * w for w in weights))
    return [w / norm for w in weights] + [0.0] * (DIMS - len(weights))


@pytest.fixture()
def geo_directory(pg_session):
    """Providers at increasing distances from downtown St. Augustine."""
    db = pg_session
    near = Provider(id=uuid.uuid4(), name="Near")
    mid = Provider(id=uuid.uuid4(), name="Mid")
    far = Provider(id=uuid.uuid4(), name="Far")
    paused = Provider(id=uuid.uuid4(), name="Paused", provider_status="paused")
    db.add_all([near, mid, far, paused])
    db.flush()

    def loc(provider, lat, lng):
        return ProviderLocation(
            id=uuid.uuid4(), provider_id=provider.id, is_primary=True,
            latitude=lat, longitude=lng, geom=f"SRID=4326;POINT({lng} {lat})",
        )

    db.add_all([
        loc(near, 29.90, -81.32),     # < 1 mile
        loc(mid, 30.10, -81.40),      # ~15 miles
        loc(far, 30.3322, -81.6557),  # ~36 miles
        loc(paused, 29.90, -81.32),
    ])
    db.flush()
    return {"near": near, "mid": mid, "far": far, "paused": paused}


class TestNearbyProviders:
    def test_radius_filter(self, pg_session, geo_directory):
        ids = dal.get_nearby_provider_ids(29.8947, -81.3145, 10 * METERS_PER_MILE, db=pg_session)
        assert set(ids) == {str(geo_directory["near"].id)}

    def test_paused_excluded(self, pg_session, geo_directory):
        ids = dal.get_nearby_provider_ids(29.8947, -81.3145, 10 * METERS_PER_MILE, db=pg_session)
        assert str(geo_directory["paused"].id) not in ids

    def test_ring_search_widens(self, pg_session, geo_directory):
        result = ring_search(
            {"lat": 29.8947, "lng": -81.3145},
            lambda lat, lng, meters: dal.get_nearby_provider_ids(lat, lng, meters, db=pg_session),
        )
        assert result.radius_miles == 25
        assert set(result.provider_ids) == {str(geo_directory["near"].id), str(geo_directory["mid"].id)}

    def test_save_coordinates_makes_location_searchable(self, pg_session, geo_directory):
        provider = Provider(id=uuid.uuid4(), name="Geocoded later")
        pg_session.add(provider)
        pg_session.flush()
        location = ProviderLocation(id=uuid.uuid4(), provider_id=provider.id, address_line1="2 King St")
        pg_session.add(location)
        pg_session.flush()

        assert dal.save_location_coordinates(str(location.id), 29.895, -81.314, db=pg_session) == 1

        ids = dal.get_nearby_provider_ids(29.8947, -81.3145, 1 * METERS_PER_MILE, db=pg_session)
        assert str(provider.id) in ids
        row = pg_session.execute(select(ProviderLocation).where(ProviderLocation.id == location.id)).scalar_one()
        pg_session.refresh(row)
        assert row.geocode_source == "google"


class TestMatchNeedsPgvector:
    @pytest.fixture()
    def embedded_needs(self, pg_session):
        category = NeedCategory(id=uuid.uuid4(), name="Housing")
        pg_session.add(category)
        pg_session.flush()
        needs = {
            "exact": Need(id=uuid.uuid4(), category_id=category.id, name="Rent Assistance",
                          embedding=_basis(1.0)),
            "close": Need(id=uuid.uuid4(), category_id=category.id, name="Utility Assistance",
                          embedding=_basis(1.0, 1.0)),
            "unrelated": Need(id=uuid.uuid4(), category_id=category.id, name="Legal Aid",
                              embedding=_basis(0.0, 1.0)),
            "inactive": Need(id=uuid.uuid4(), category_id=category.id, name="Old Need",
                             embedding=_basis(1.0), is_active=False),
        }
        pg_session.add_all(needs.values())
        pg_session.flush()
        return needs

    def test_threshold_and_order(self, pg_session, embedded_needs):
        results = match_needs(_basis(1.0), db=pg_session)

        assert [r["name"] for r in results] == ["Rent Assistance", "Utility Assistance"]
        assert results[0]["similarity"] == pytest.approx(1.0, abs=1e-4)
        assert results[1]["similarity"] == pytest.approx(0.7071, abs=1e-3)
        assert results[0]["category"] == "Housing"

    def test_limit(self, pg_session, embedded_needs):
        assert len(match_needs(_basis(1.0), db=pg_session, limit=1)) == 1
