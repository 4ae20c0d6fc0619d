# errors.py

class TrackingError(Exception):
    """Base class for tracking failures surfaced to callers."""


class InvalidCoordinateError(TrackingError, ValueError):
    pass


class SessionNotFoundError(TrackingError, KeyError):
    def __init__(self, order_id):
        super().__init__(order_id)
        self.order_id = order_id

    def __str__(self):
        return f"No active tracking session for order {self.order_id}"


class SessionConflictError(TrackingError):
    def __init__(self, order_id, driver_id, owner_id):
        super().__init__(
            f"Order {order_id} is tracked by driver {owner_id}, not {driver_id}"
        )
        self.order_id = order_id
        self.driver_id = driver_id
        self.owner_id = owner_id
