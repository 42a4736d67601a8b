"""Tests for kinematic extrapolation"""
import math

import pytest
from skyintel.core.errors import ValidationError
from skyintel.core.utils import destination_point, enu_offset_m, haversine_m, initial_bearing
from skyintel.services.kinematics import extrapolate

ONE_DEGREE_M = 6371008.8 * math.pi / 180


class TestStraightFlight:
    """Zero turn rate follows the great circle"""

    def test_due_east_on_equator(self, make_state):
        state = make_state(latitude=0.0, longitude=0.0, heading=90.0, ground_speed=100.0)
        predicted = extrapolate(state, 60)
        assert predicted.latitude == pytest.approx(0.0, abs=1e-9)
        assert predicted.longitude == pytest.approx(6000 / ONE_DEGREE_M, rel=1e-9)
        assert predicted.heading == 90.0

    @pytest.mark.parametrize("heading", [0.0, 45.0, 137.0, 270.0, 359.0])
    def test_position_on_great_circle(self, make_state, heading):
        state = make_state(heading=heading, ground_speed=230.0, turn_rate=0.0)
        predicted = extrapolate(state, 300)

        expected = destination_point(state.latitude, state.longitude, heading, 230.0 * 300)
        assert predicted.latitude == pytest.approx(expected[0], abs=1e-9)
        assert predicted.longitude == pytest.approx(expected[1], abs=1e-9)
        bearing = initial_bearing(
            state.latitude, state.longitude, predicted.latitude, predicted.longitude
        )
        assert (bearing - heading + 180) % 360 - 180 == pytest.approx(0.0, abs=1e-6)
        assert predicted.heading == heading

    def test_distance_travelled(self, make_state):
        state = make_state(heading=200.0, ground_speed=150.0)
        predicted = extrapolate(state, 900)
        assert haversine_m(
            state.latitude, state.longitude, predicted.latitude, predicted.longitude
        ) == pytest.approx(150.0 * 900, rel=1e-9)

    def test_turn_rate_below_epsilon_is_straight(self, make_state):
        state = make_state(heading=10.0, ground_speed=200.0, turn_rate=1e-9)
        predicted = extrapolate(state, 60)
        assert predicted.heading == 10.0


class TestCoordinatedTurn:
    """Constant turn rate follows a circular arc"""

    RATE = 3.0  # standard rate turn, deg/s
    SPEED = 100.0

    @property
    def radius(self):
        return self.SPEED / math.radians(self.RATE)

    def test_half_circle_right(self, make_state):
        state = make_state(heading=0.0, ground_speed=self.SPEED, turn_rate=self.RATE)
        predicted = extrapolate(state, 60)

        east, north = enu_offset_m(
            state.latitude, state.longitude, predicted.latitude, predicted.longitude
        )
        assert east == pytest.approx(2 * self.radius, rel=1e-3)
        assert north == pytest.approx(0.0, abs=2.0)
        assert predicted.heading == pytest.approx(180.0)

    def test_half_circle_left(self, make_state):
        state = make_state(heading=0.0, ground_speed=self.SPEED, turn_rate=-self.RATE)
        predicted = extrapolate(state, 60)

        east, _ = enu_offset_m(
            state.latitude, state.longitude, predicted.latitude, predicted.longitude
        )
        assert east == pytest.approx(-2 * self.radius, rel=1e-3)
        assert predicted.heading == pytest.approx(180.0)

    def test_quarter_turn(self, make_state):
        state = make_state(heading=0.0, ground_speed=self.SPEED, turn_rate=self.RATE)
        predicted = extrapolate(state, 30)

        east, north = enu_offset_m(
            state.latitude, state.longitude, predicted.latitude, predicted.longitude
        )
        assert east == pytest.approx(self.radius, rel=1e-3)
        assert north == pytest.approx(self.radius, rel=1e-3)
        assert predicted.heading == pytest.approx(90.0)

    def test_full_circle_returns_to_start(self, make_state):
        state = make_state(heading=45.0, ground_speed=self.SPEED, turn_rate=self.RATE)
        predicted = extrapolate(state, 120)

        assert haversine_m(
            state.latitude, state.longitude, predicted.latitude, predicted.longitude
        ) == pytest.approx(0.0, abs=0.5)
        assert predicted.heading == pytest.approx(45.0)

    def test_heading_wraps(self, make_state):
        state = make_state(heading=350.0, ground_speed=self.SPEED, turn_rate=self.RATE)
        predicted = extrapolate(state, 10)
        assert predicted.heading == pytest.approx(20.0)


class TestDegenerateInputs:
    """Missing rates and edge horizons"""

    def test_zero_dt_returns_input_unchanged(self, make_state):
        state = make_state(
            altitude=10000.0, heading=271.3, ground_speed=210.0, turn_rate=1.5, vertical_rate=-5.0
        )
        predicted = extrapolate(state, 0)
        assert predicted.latitude == state.latitude
        assert predicted.longitude == state.longitude
        assert predicted.altitude == state.altitude
        assert predicted.heading == state.heading
        assert predicted.ground_speed == state.ground_speed
        assert predicted.dt_seconds == 0

    def test_negative_dt_rejected(self, make_state):
        with pytest.raises(ValidationError):
            extrapolate(make_state(heading=0.0, ground_speed=100.0), -1)

    def test_missing_heading_holds_position(self, make_state):
        state = make_state(ground_speed=200.0)
        predicted = extrapolate(state, 300)
        assert (predicted.latitude, predicted.longitude) == (state.latitude, state.longitude)
        assert predicted.heading is None

    def test_missing_speed_holds_position(self, make_state):
        state = make_state(heading=90.0)
        predicted = extrapolate(state, 300)
        assert (predicted.latitude, predicted.longitude) == (state.latitude, state.longitude)
        assert predicted.heading == 90.0

    def test_climb(self, make_state):
        predicted = extrapolate(make_state(altitude=1000.0, vertical_rate=5.0), 60)
        assert predicted.altitude == pytest.approx(1300.0)

    def test_descent_floors_at_zero(self, make_state):
        predicted = extrapolate(make_state(altitude=300.0, vertical_rate=-10.0), 60)
        assert predicted.altitude == 0.0

    def test_unknown_altitude_stays_unknown(self, make_state):
        predicted = extrapolate(make_state(vertical_rate=10.0), 60)
        assert predicted.altitude is None

    def test_missing_vertical_rate_is_level(self, make_state):
        predicted = extrapolate(make_state(altitude=3000.0), 900)
        assert predicted.altitude == 3000.0
