# session_registry.py
import threading
import time

from tracking.errors import SessionConflictError, SessionNotFoundError
from tracking.position_smoother import (
    DEFAULT_MEASUREMENT_NOISE,
    DEFAULT_PROCESS_NOISE,
    PositionSmoother,
)


class TrackingSession:
    def __init__(self, order_id, driver_id, smoother):
        self.order_id = order_id
        self.driver_id = driver_id
        self.smoother = smoother
        self.last_position = None
        self.started_at = time.time()


class TrackingRegistry:
    """
    Active delivery sessions keyed by order id. Each session owns its own
    smoother; ending a session drops it and its filter state with it.
    """

    def __init__(self, measurement_noise=DEFAULT_MEASUREMENT_NOISE,
                 process_noise=DEFAULT_PROCESS_NOISE):
        self.measurement_noise = measurement_noise
        self.process_noise = process_noise
        self.sessions = {}  # order_id -> TrackingSession
        self._lock = threading.Lock()

    def __contains__(self, order_id):
        with self._lock:
            return order_id in self.sessions

    @property
    def active_count(self):
        with self._lock:
            return len(self.sessions)

    def start(self, order_id, driver_id):
        with self._lock:
            session = self.sessions.get(order_id)
            if session is not None:
                if session.driver_id != driver_id:
                    raise SessionConflictError(order_id, driver_id, session.driver_id)
                return session

            smoother = PositionSmoother(self.measurement_noise, self.process_noise)
            session = TrackingSession(order_id, driver_id, smoother)
            self.sessions[order_id] = session
            return session

    def get(self, order_id):
        with self._lock:
            return self.sessions.get(order_id)

    def update(self, order_id, driver_id, lat, lng, persist=None):
        """
        Smooth one fix for an active session. If `persist` is given it is
        called with (session, position) under the lock; when it raises, the
        filters are rolled back to where they were before this fix.
        """
        with self._lock:
            session = self.sessions.get(order_id)
            if session is None:
                raise SessionNotFoundError(order_id)
            if session.driver_id != driver_id:
                raise SessionConflictError(order_id, driver_id, session.driver_id)

            state = session.smoother.snapshot()
            previous = session.last_position
            session.last_position = session.smoother.update(lat, lng)
            if persist is not None:
                try:
                    persist(session, session.last_position)
                except Exception:
                    session.smoother.restore(state)
                    session.last_position = previous
                    raise
            return session.last_position

    def end(self, order_id):
        with self._lock:
            return self.sessions.pop(order_id, None)
