"""Integration tests for position context API endpoints"""
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from skyintel.core.utils import utcnow
from skyintel.models import Infrastructure, StrikeEvent


@pytest_asyncio.fixture
async def seeded_infrastructure(db_session: AsyncSession):
    db_session.add_all([
        Infrastructure(
            name="Boeing Field",
            infrastructure_type="airport",
            latitude=47.53,
            longitude=-122.30,
            icao_code="KBFI",
            strategic_importance="high",
        ),
        Infrastructure(
            name="Joint Base Lewis-McChord",
            infrastructure_type="military_base",
            latitude=47.08,
            longitude=-122.58,
            strategic_importance="critical",
            military_presence=True,
        ),
        Infrastructure(
            name="Decommissioned Plant",
            infrastructure_type="power_plant",
            latitude=47.50,
            longitude=-122.30,
            is_active=False,
        ),
        Infrastructure(
            name="Suva Harbour",
            infrastructure_type="port",
            latitude=-17.0,
            longitude=179.5,
            strategic_importance="medium",
        ),
    ])
    await db_session.commit()


@pytest.mark.asyncio
class TestPositionContext:
    """Tests for /api/v1/context"""

    async def test_requires_coordinates(self, client: AsyncClient):
        response = await client.get("/api/v1/context?lat=47.5")
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "lat and lon are required"}

    async def test_out_of_range(self, client: AsyncClient):
        response = await client.get("/api/v1/context?lat=95&lon=0")
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_empty_area(self, client: AsyncClient):
        response = await client.get("/api/v1/context?lat=0&lon=-30")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["nearest_infrastructure"] is None
        assert data["recent_strikes"] == []
        assert data["combined_score"] == 0
        assert data["intelligence_value"] == "low"
        assert data["context_summary"] == "No significant context"

    async def test_nearest_infrastructure(self, client: AsyncClient, seeded_infrastructure):
        response = await client.get("/api/v1/context?lat=47.53&lon=-122.30&alt=3000")
        assert response.status_code == 200
        data = response.json()["data"]

        nearest = data["nearest_infrastructure"]
        assert nearest["name"] == "Boeing Field"
        assert nearest["distance_m"] == pytest.approx(0.0, abs=0.1)
        assert data["infrastructure_score"] == pytest.approx(0.8)
        assert data["intelligence_value"] == "moderate"
        assert "Boeing Field" in data["context_summary"]
        assert data["altitude"] == 3000

    async def test_recent_strikes_raise_value(
        self, client: AsyncClient, db_session: AsyncSession, seeded_infrastructure
    ):
        db_session.add_all([
            StrikeEvent(
                event_type="missile",
                latitude=47.53,
                longitude=-122.30,
                location_name="Georgetown",
                confidence=1.0,
                reported_at=utcnow(),
            ),
            StrikeEvent(
                event_type="drone",
                latitude=47.53,
                longitude=-122.30,
                confidence=1.0,
                reported_at=utcnow() - timedelta(hours=12),
            ),
            StrikeEvent(
                event_type="artillery",
                latitude=48.5,
                longitude=-122.30,
                confidence=1.0,
                reported_at=utcnow(),
            ),
        ])
        await db_session.commit()

        response = await client.get("/api/v1/context?lat=47.53&lon=-122.30")
        data = response.json()["data"]

        assert [s["event_type"] for s in data["recent_strikes"]] == ["missile"]
        assert data["strike_score"] == pytest.approx(1.0, abs=0.01)
        assert data["intelligence_value"] == "critical"
        assert "1 strike report(s) nearby" in data["context_summary"]


@pytest.mark.asyncio
class TestInfrastructureEndpoint:
    """Tests for /api/v1/context/infrastructure"""

    async def test_all_active_by_name(self, client: AsyncClient, seeded_infrastructure):
        response = await client.get("/api/v1/context/infrastructure")
        assert response.status_code == 200
        names = [i["name"] for i in response.json()["data"]]
        assert names == ["Boeing Field", "Joint Base Lewis-McChord", "Suva Harbour"]

    async def test_filter_by_type(self, client: AsyncClient, seeded_infrastructure):
        response = await client.get("/api/v1/context/infrastructure?types=airport,military_base")
        names = [i["name"] for i in response.json()["data"]]
        assert names == ["Boeing Field", "Joint Base Lewis-McChord"]

    async def test_unknown_type(self, client: AsyncClient):
        response = await client.get("/api/v1/context/infrastructure?types=airport,spaceport")
        assert response.status_code == 400
        assert response.json()["error"] == "Unknown infrastructure type(s): spaceport"

    async def test_bounds(self, client: AsyncClient, seeded_infrastructure):
        response = await client.get(
            "/api/v1/context/infrastructure?north=47.7&south=47.3&east=-122.0&west=-122.5"
        )
        assert [i["name"] for i in response.json()["data"]] == ["Boeing Field"]

    async def test_bounds_across_antimeridian(self, client: AsyncClient, seeded_infrastructure):
        response = await client.get(
            "/api/v1/context/infrastructure?north=-16&south=-18&east=-179&west=179"
        )
        assert [i["name"] for i in response.json()["data"]] == ["Suva Harbour"]

    async def test_partial_bounds_rejected(self, client: AsyncClient):
        response = await client.get("/api/v1/context/infrastructure?north=48&south=47")
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_inverted_bounds_rejected(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/context/infrastructure?north=47&south=48&east=-122&west=-123"
        )
        assert response.status_code == 400
        assert response.json()["error"] == "south must not exceed north"
