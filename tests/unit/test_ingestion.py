"""Tests for ADS-B feed ingestion"""
import copy
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from skyintel.core.errors import UpstreamError
from skyintel.services import ingestion
from skyintel.services.ingestion import TurnRateTracker, fetch_aircraft_states, parse_aircraft_json


@pytest.fixture
def tracker():
    return TurnRateTracker()


def _by_hex(states):
    return {s.icao_hex: s for s in states}


class TestParseAircraftJson:
    """Tests for aircraft.json conversion"""

    def test_drops_aircraft_without_position(self, sample_aircraft_data, tracker):
        states = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))
        assert set(states) == {"a12345", "ae1234", "b99999"}

    def test_hex_is_identity(self, sample_aircraft_data, tracker):
        state = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))["a12345"]
        assert state.aircraft_id == "a12345"
        assert state.icao_hex == "a12345"

    def test_observed_at_from_feed_clock(self, sample_aircraft_data, tracker, fixed_now):
        states = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))
        assert states["a12345"].observed_at == fixed_now - timedelta(seconds=1)
        assert states["ae1234"].observed_at == fixed_now - timedelta(seconds=2)
        assert states["b99999"].observed_at == fixed_now

    def test_unit_conversion(self, sample_aircraft_data, tracker):
        state = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))["a12345"]
        assert state.altitude == pytest.approx(35100 * 0.3048)
        assert state.ground_speed == pytest.approx(450 * 1852 / 3600)
        assert state.heading == 180.0
        assert state.vertical_rate == pytest.approx(-500 * 0.3048 / 60)

    def test_baro_altitude_fallback_and_geom_rate(self, sample_aircraft_data, tracker):
        state = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))["ae1234"]
        assert state.altitude == pytest.approx(25000 * 0.3048)
        assert state.vertical_rate == pytest.approx(1500 * 0.3048 / 60)

    def test_ground_altitude(self, sample_aircraft_data, tracker):
        state = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))["b99999"]
        assert state.altitude == 0.0
        assert state.heading is None
        assert state.vertical_rate is None

    def test_reported_track_rate_used(self, sample_aircraft_data, tracker):
        state = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))["ae1234"]
        assert state.turn_rate == 1.5

    def test_turn_rate_unknown_on_first_sighting(self, sample_aircraft_data, tracker):
        state = _by_hex(parse_aircraft_json(sample_aircraft_data, tracker=tracker))["a12345"]
        assert state.turn_rate is None

    def test_turn_rate_derived_from_successive_tracks(self, sample_aircraft_data, tracker):
        parse_aircraft_json(sample_aircraft_data, tracker=tracker)

        later = copy.deepcopy(sample_aircraft_data)
        later["now"] += 10
        later["aircraft"][0]["track"] = 200
        state = _by_hex(parse_aircraft_json(later, tracker=tracker))["a12345"]
        assert state.turn_rate == pytest.approx(2.0)

    def test_missing_now_uses_argument(self, sample_aircraft_data, tracker, fixed_now):
        payload = dict(sample_aircraft_data)
        del payload["now"]
        later = fixed_now + timedelta(minutes=5)
        states = _by_hex(parse_aircraft_json(payload, now=later, tracker=tracker))
        assert states["b99999"].observed_at == later

    def test_empty_payload(self, tracker):
        assert parse_aircraft_json({"now": 1734782400.0}, tracker=tracker) == []


class TestTurnRateTracker:
    """Tests for derived turn rate"""

    def test_wraps_through_north(self, tracker, fixed_now):
        tracker.update("a1", 350.0, fixed_now)
        assert tracker.update("a1", 10.0, fixed_now + timedelta(seconds=10)) == pytest.approx(2.0)

    def test_left_turn_is_negative(self, tracker, fixed_now):
        tracker.update("a1", 10.0, fixed_now)
        assert tracker.update("a1", 350.0, fixed_now + timedelta(seconds=5)) == pytest.approx(-4.0)

    def test_gap_too_long(self, tracker, fixed_now):
        tracker.update("a1", 90.0, fixed_now)
        assert tracker.update("a1", 120.0, fixed_now + timedelta(seconds=120)) is None

    def test_same_timestamp(self, tracker, fixed_now):
        tracker.update("a1", 90.0, fixed_now)
        assert tracker.update("a1", 120.0, fixed_now) is None

    def test_missing_track(self, tracker, fixed_now):
        assert tracker.update("a1", None, fixed_now) is None

    def test_prune(self, tracker, fixed_now):
        tracker.update("a1", 90.0, fixed_now)
        tracker.prune(fixed_now + timedelta(seconds=1))
        assert tracker.update("a1", 100.0, fixed_now + timedelta(seconds=5)) is None


@pytest.mark.asyncio
class TestFetchAircraftStates:
    """Tests for fetching the live feed"""

    async def test_source_unavailable(self):
        with patch('skyintel.services.ingestion.safe_request', new_callable=AsyncMock) as mock_request:
            mock_request.return_value = None
            with pytest.raises(UpstreamError):
                await fetch_aircraft_states()

    async def test_fetch_parses_payload(self, sample_aircraft_data):
        ingestion.turn_rate_tracker.clear()
        with patch('skyintel.services.ingestion.safe_request', new_callable=AsyncMock) as mock_request:
            mock_request.return_value = sample_aircraft_data
            states = await fetch_aircraft_states()

        assert len(states) == 3
        mock_request.assert_awaited_once_with("http://ultrafeeder:80/tar1090/data/aircraft.json")


class TestReportTime:
    """The same position report keeps its observation time across polls"""

    def test_feed_clock_wins_over_argument(self, sample_aircraft_data, tracker, fixed_now):
        states = _by_hex(parse_aircraft_json(
            sample_aircraft_data, now=fixed_now + timedelta(seconds=3.7), tracker=tracker
        ))
        assert states["b99999"].observed_at == fixed_now

    def test_repeated_poll_same_report(self, tracker, fixed_now):
        report = {"hex": "a12345", "lat": 47.0, "lon": -122.0, "alt_baro": 30000}
        first = {"now": fixed_now.timestamp() - 0.8, "aircraft": [dict(report, seen_pos=1.0)]}
        second = {"now": fixed_now.timestamp() + 2.9, "aircraft": [dict(report, seen_pos=4.7)]}

        (a,) = parse_aircraft_json(first, now=fixed_now, tracker=tracker)
        (b,) = parse_aircraft_json(second, now=fixed_now + timedelta(seconds=3), tracker=tracker)
        assert a.observed_at == b.observed_at == fixed_now - timedelta(seconds=2)
