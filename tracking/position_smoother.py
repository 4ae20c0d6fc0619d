# position_smoother.py
import math

import numpy as np

from tracking.errors import InvalidCoordinateError
from tracking.kalman_filter import KalmanFilter1D

DEFAULT_MEASUREMENT_NOISE = 0.01
DEFAULT_PROCESS_NOISE = 3.0


def validate_coordinate(lat, lng):
    """Coerce a raw GPS fix to floats, raising InvalidCoordinateError if unusable."""
    if isinstance(lat, bool) or isinstance(lng, bool):
        raise InvalidCoordinateError(f"Coordinates must be numbers, got lat={lat!r} lng={lng!r}")
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        raise InvalidCoordinateError(f"Coordinates must be numbers, got lat={lat!r} lng={lng!r}")

    if not (math.isfinite(lat) and math.isfinite(lng)):
        raise InvalidCoordinateError(f"Coordinates must be finite, got lat={lat} lng={lng}")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinateError(f"Latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinateError(f"Longitude out of range: {lng}")
    return lat, lng


class PositionSmoother:
    """Two independent scalar filters, one per axis, for a single position stream."""

    def __init__(self, measurement_noise=DEFAULT_MEASUREMENT_NOISE,
                 process_noise=DEFAULT_PROCESS_NOISE):
        self.lat_filter = KalmanFilter1D(measurement_noise, process_noise)
        self.lng_filter = KalmanFilter1D(measurement_noise, process_noise)
        self.update_count = 0

    def update(self, lat, lng):
        # validate before touching either filter so a bad fix can't poison state
        lat, lng = validate_coordinate(lat, lng)
        smoothed = (self.lat_filter.update(lat), self.lng_filter.update(lng))
        self.update_count += 1
        return smoothed

    def snapshot(self):
        return (
            self.lat_filter.estimate, self.lat_filter.error_covariance,
            self.lng_filter.estimate, self.lng_filter.error_covariance,
            self.update_count,
        )

    def restore(self, state):
        (self.lat_filter.estimate, self.lat_filter.error_covariance,
         self.lng_filter.estimate, self.lng_filter.error_covariance,
         self.update_count) = state


def smooth_track(points, measurement_noise=DEFAULT_MEASUREMENT_NOISE,
                 process_noise=DEFAULT_PROCESS_NOISE):
    """Smooth a recorded sequence of (lat, lng) fixes, returning an (n, 2) array."""
    smoother = PositionSmoother(measurement_noise, process_noise)
    out = np.empty((len(points), 2), dtype=np.float64)
    for i, point in enumerate(points):
        if not isinstance(point, (list, tuple)) or len(point) != 2:
            raise InvalidCoordinateError(f"Track point {i} is not a (lat, lng) pair: {point!r}")
        lat, lng = point
        out[i] = smoother.update(lat, lng)
    return out
