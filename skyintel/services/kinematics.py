"""
Kinematic extrapolation of aircraft state.

Pure functions only: no I/O, no shared state, safe to call from any task
or thread.
"""
import math

from skyintel.core.errors import ValidationError
from skyintel.core.utils import destination_point, wrap_heading
from skyintel.domain import AircraftState, PredictedState

DEFAULT_TURN_RATE_EPSILON = 1e-6  # deg/s


def _arc_displacement(
    heading: float, speed: float, turn_rate: float, dt: float
) -> tuple[float, float]:
    """
    East/north displacement in meters of a coordinated turn.

    Constant speed and constant turn rate; heading is measured clockwise
    from north, so x = east = sin(h), y = north = cos(h).
    """
    omega = math.radians(turn_rate)
    radius = speed / omega  # signed: negative for left turns
    h0 = math.radians(heading)
    h1 = h0 + omega * dt
    east = radius * (math.cos(h0) - math.cos(h1))
    north = radius * (math.sin(h1) - math.sin(h0))
    return east, north


def extrapolate(
    state: AircraftState,
    dt_seconds: float,
    turn_rate_epsilon: float = DEFAULT_TURN_RATE_EPSILON,
) -> PredictedState:
    """
    Predict where `state` will be after `dt_seconds`.

    Missing heading, ground speed, turn rate or vertical rate are taken as
    zero rate: the aircraft holds its position, track and altitude for the
    quantity that is unknown.
    """
    if dt_seconds < 0:
        raise ValidationError("dt_seconds must not be negative")

    heading = state.heading
    speed = state.ground_speed or 0.0
    turn_rate = state.turn_rate or 0.0
    vertical_rate = state.vertical_rate or 0.0

    if dt_seconds == 0:
        return PredictedState(
            latitude=state.latitude,
            longitude=state.longitude,
            altitude=state.altitude,
            heading=state.heading,
            ground_speed=state.ground_speed,
            dt_seconds=0.0,
        )

    start_heading = wrap_heading(heading) if heading is not None else 0.0
    straight = abs(turn_rate) < turn_rate_epsilon

    if heading is None or speed <= 0:
        lat, lon = state.latitude, state.longitude
    elif straight:
        lat, lon = destination_point(
            state.latitude, state.longitude, start_heading, speed * dt_seconds
        )
    else:
        east, north = _arc_displacement(start_heading, speed, turn_rate, dt_seconds)
        chord = math.hypot(east, north)
        chord_bearing = math.degrees(math.atan2(east, north))
        lat, lon = destination_point(state.latitude, state.longitude, chord_bearing, chord)

    if heading is None:
        predicted_heading = None
    elif straight:
        predicted_heading = start_heading
    else:
        predicted_heading = wrap_heading(start_heading + turn_rate * dt_seconds)

    altitude = state.altitude
    if altitude is not None:
        altitude = max(0.0, altitude + vertical_rate * dt_seconds)

    return PredictedState(
        latitude=lat,
        longitude=lon,
        altitude=altitude,
        heading=predicted_heading,
        ground_speed=state.ground_speed,
        dt_seconds=float(dt_seconds),
    )
