"""Integration tests for prediction API endpoints"""
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from skyintel.core.utils import utcnow
from skyintel.models import ProximityEventRecord, TrajectoryPredictionRecord


def _trajectory_body(**overrides):
    body = {
        "aircraft_id": "a12345",
        "icao_hex": "A12345",
        "latitude": 47.6062,
        "longitude": -122.3321,
        "altitude": 10668.0,
        "heading": 270.0,
        "ground_speed": 230.0,
        "turn_rate": 0.0,
        "vertical_rate": 0.0,
    }
    body.update(overrides)
    return body


def _event_record(event_id, risk="WARNING", a="aaa001", b="bbb002", age=timedelta(0)):
    return ProximityEventRecord(
        id=event_id,
        aircraft_a_id=a,
        aircraft_b_id=b,
        icao_hex_a=a,
        icao_hex_b=b,
        detected_at=utcnow() - age,
        horizontal_separation_meters=3000.0,
        vertical_separation_meters=200.0,
        closure_rate_mps=-80.0,
        risk_level=risk,
    )


@pytest.mark.asyncio
class TestTrajectoryEndpoints:
    """Tests for /api/v1/predictions/trajectory"""

    async def test_get_requires_identifier(self, client: AsyncClient):
        response = await client.get("/api/v1/predictions/trajectory")
        assert response.status_code == 400
        assert response.json() == {
            "success": False, "error": "aircraftId or icaoHex is required",
        }

    async def test_get_unknown_aircraft_is_empty(self, client: AsyncClient):
        response = await client.get("/api/v1/predictions/trajectory?aircraftId=nobody")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}

    async def test_post_missing_fields(self, client: AsyncClient):
        body = _trajectory_body()
        del body["latitude"]
        del body["longitude"]

        response = await client.post("/api/v1/predictions/trajectory", json=body)
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Missing required fields: latitude, longitude"

    async def test_post_out_of_range_position(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/predictions/trajectory", json=_trajectory_body(latitude=95.0)
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_post_malformed_field(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/predictions/trajectory", json=_trajectory_body(heading="west")
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_post_then_get(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/predictions/trajectory",
            json=_trajectory_body(observed_at=utcnow().isoformat()),
        )
        assert response.status_code == 200
        created = response.json()["data"]
        assert [p["horizon_seconds"] for p in created] == [60, 300, 900]
        assert len({p["generated_at"] for p in created}) == 1
        assert all(p["reconciliation_status"] == "pending" for p in created)
        assert all(p["icao_hex"] == "a12345" for p in created)
        # Westbound: longitude decreases with horizon
        longitudes = [p["predicted_longitude"] for p in created]
        assert longitudes == sorted(longitudes, reverse=True)
        radii = [p["uncertainty_radius_meters"] for p in created]
        assert radii == sorted(radii) and radii[0] > 0
        assert all(0 < p["confidence"] <= 0.7 for p in created)

        response = await client.get("/api/v1/predictions/trajectory?aircraftId=a12345")
        assert response.status_code == 200
        fetched = response.json()["data"]
        assert [p["prediction_id"] for p in fetched] == [p["prediction_id"] for p in created]

        response = await client.get("/api/v1/predictions/trajectory?icaoHex=A12345")
        assert len(response.json()["data"]) == 3

    async def test_get_returns_latest_generation(self, client: AsyncClient):
        await client.post("/api/v1/predictions/trajectory", json=_trajectory_body())
        second = await client.post("/api/v1/predictions/trajectory", json=_trajectory_body())
        second_ids = {p["prediction_id"] for p in second.json()["data"]}

        response = await client.get("/api/v1/predictions/trajectory?aircraftId=a12345")
        assert {p["prediction_id"] for p in response.json()["data"]} == second_ids


@pytest.mark.asyncio
class TestProximityEndpoint:
    """Tests for /api/v1/predictions/proximity"""

    async def test_empty(self, client: AsyncClient):
        response = await client.get("/api/v1/predictions/proximity")
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}

    async def test_filters(self, client: AsyncClient, db_session: AsyncSession):
        db_session.add_all([
            _event_record("e1", risk="CRITICAL"),
            _event_record("e2", risk="WARNING", a="ccc003", b="ddd004"),
            _event_record("e3", risk="ADVISORY", age=timedelta(hours=30)),
        ])
        await db_session.commit()

        response = await client.get("/api/v1/predictions/proximity")
        assert sorted(e["event_id"] for e in response.json()["data"]) == ["e1", "e2"]

        response = await client.get("/api/v1/predictions/proximity?riskLevel=CRITICAL")
        assert [e["event_id"] for e in response.json()["data"]] == ["e1"]

        response = await client.get("/api/v1/predictions/proximity?aircraftId=ddd004")
        assert [e["event_id"] for e in response.json()["data"]] == ["e2"]

        response = await client.get("/api/v1/predictions/proximity?hours=48")
        assert len(response.json()["data"]) == 3

        response = await client.get("/api/v1/predictions/proximity?limit=1")
        assert len(response.json()["data"]) == 1

    @pytest.mark.parametrize("query", ["riskLevel=NONE", "riskLevel=SEVERE", "hours=0", "limit=0"])
    async def test_invalid_query(self, client: AsyncClient, query):
        response = await client.get(f"/api/v1/predictions/proximity?{query}")
        assert response.status_code == 400
        assert response.json()["success"] is False


@pytest.mark.asyncio
class TestStatsEndpoint:
    """Tests for /api/v1/predictions/stats"""

    async def test_empty_stats(self, client: AsyncClient):
        response = await client.get("/api/v1/predictions/stats")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["trajectory"] == []
        assert data["proximity"]["total_events"] == 0
        assert data["proximity"]["events_by_risk"] == {"CRITICAL": 0, "WARNING": 0, "ADVISORY": 0}
        assert data["proximity"]["mean_closure_rate_mps"] is None

    async def test_stats_with_data(self, client: AsyncClient, db_session: AsyncSession):
        now = utcnow()
        for i, error in enumerate([10.0, 20.0, 30.0]):
            db_session.add(TrajectoryPredictionRecord(
                id=f"p{i}",
                aircraft_id="a12345",
                icao_hex="a12345",
                generated_at=now - timedelta(minutes=10),
                horizon_seconds=60,
                target_time=now - timedelta(minutes=9),
                predicted_latitude=47.6,
                predicted_longitude=-122.3,
                actual_latitude=47.6,
                actual_longitude=-122.3,
                error_distance_meters=error,
                uncertainty_radius_meters=15.0,
                reconciled_at=now - timedelta(minutes=9),
                reconciliation_status="matched",
            ))
        db_session.add(TrajectoryPredictionRecord(
            id="expired",
            aircraft_id="a12345",
            icao_hex="a12345",
            generated_at=now - timedelta(minutes=20),
            horizon_seconds=300,
            target_time=now - timedelta(minutes=15),
            predicted_latitude=47.6,
            predicted_longitude=-122.3,
            reconciled_at=now - timedelta(minutes=10),
            reconciliation_status="no_ground_truth",
        ))
        db_session.add(_event_record("e1", risk="CRITICAL"))
        await db_session.commit()

        response = await client.get("/api/v1/predictions/stats")
        assert response.status_code == 200
        data = response.json()["data"]

        (bucket,) = data["trajectory"]
        assert bucket["horizon_seconds"] == 60
        assert bucket["sample_count"] == 3
        assert bucket["mean_error_meters"] == pytest.approx(20.0)
        assert bucket["median_error_meters"] == pytest.approx(20.0)
        assert bucket["icao_hex"] is None
        assert bucket["accurate_count"] == 1
        assert bucket["accuracy_rate"] == pytest.approx(1 / 3)

        assert data["proximity"]["total_events"] == 1
        assert data["proximity"]["events_by_risk"]["CRITICAL"] == 1

        response = await client.get("/api/v1/predictions/stats?byIcao=true")
        assert response.json()["data"]["trajectory"][0]["icao_hex"] == "a12345"
