import os
import time
import logging

from flask import Flask, request, jsonify
from flask_cors import CORS
from sqlalchemy import create_engine, Column, Integer, String, Float
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

# Custom imports
from tracking.errors import InvalidCoordinateError, SessionConflictError, SessionNotFoundError
from tracking.position_smoother import smooth_track, validate_coordinate
from tracking.session_registry import TrackingRegistry

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

app = Flask(__name__)
CORS(app)

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///tracking.db")
MEASUREMENT_NOISE = float(os.environ.get("KALMAN_MEASUREMENT_NOISE", 0.01))
PROCESS_NOISE = float(os.environ.get("KALMAN_PROCESS_NOISE", 3))

engine = create_engine(DATABASE_URL, echo=False)
Base = declarative_base()

class TrackedLocation(Base):
    __tablename__ = "tracked_locations"
    id = Column(Integer, primary_key=True)
    order_id = Column(String, unique=True, nullable=False)
    driver_id = Column(String)
    raw_lat = Column(Float)
    raw_lng = Column(Float)
    lat = Column(Float)           # smoothed
    lng = Column(Float)           # smoothed
    update_count = Column(Integer, default=0)
    status = Column(String)       # "in_transit" or "delivered"
    updated_at = Column(Float)

Base.metadata.create_all(engine)
Session = sessionmaker(bind=engine)
session = Session()

registry = TrackingRegistry(MEASUREMENT_NOISE, PROCESS_NOISE)


def location_to_dict(loc):
    return {
        "order_id": loc.order_id,
        "driver_id": loc.driver_id,
        "status": loc.status,
        "update_count": loc.update_count,
        "tracked_location": None if loc.lat is None else {"lat": loc.lat, "lng": loc.lng},
        "raw_location": None if loc.raw_lat is None else {"lat": loc.raw_lat, "lng": loc.raw_lng},
        "updated_at": loc.updated_at,
    }


def get_driver_id(data):
    driver_id = data.get("driver_id")
    if driver_id is None or driver_id == "":
        return None
    return str(driver_id)


def commit():
    """Commit the shared session, rolling it back on failure so later requests can still use it."""
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logging.exception("Database commit failed; session rolled back")
        raise


def record_fix(order_id, driver_id, lat, lng):
    """Smooth one raw fix for an active session and store the result."""
    raw_lat, raw_lng = validate_coordinate(lat, lng)
    stored = {}

    def persist(tracking, position):
        try:
            loc = session.query(TrackedLocation).filter_by(order_id=order_id).first()
            if not loc:
                loc = TrackedLocation(order_id=order_id, driver_id=driver_id, status="in_transit")
                session.add(loc)
            loc.raw_lat = raw_lat
            loc.raw_lng = raw_lng
            loc.lat, loc.lng = position
            loc.update_count = tracking.smoother.update_count
            loc.updated_at = time.time()
            commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        stored["loc"] = loc

    registry.update(order_id, driver_id, raw_lat, raw_lng, persist=persist)
    return stored["loc"]


@app.errorhandler(InvalidCoordinateError)
def handle_invalid_coordinate(e):
    logging.warning(f"Rejected fix: {e}")
    return jsonify({"error": str(e)}), 400

@app.errorhandler(SessionNotFoundError)
def handle_session_not_found(e):
    return jsonify({"error": str(e)}), 404

@app.errorhandler(SessionConflictError)
def handle_session_conflict(e):
    logging.warning(str(e))
    return jsonify({"error": str(e)}), 409


@app.route("/api/orders/<order_id>/tracking", methods=["POST"])
def start_tracking(order_id):
    """Open a tracking session for an order; a new filter pair is created per session."""
    data = request.get_json(silent=True) or {}
    driver_id = get_driver_id(data)
    if driver_id is None:
        return jsonify({"error": "driver_id is required"}), 400

    tracking = registry.start(order_id, driver_id)
    fresh = tracking.smoother.update_count == 0

    try:
        loc = session.query(TrackedLocation).filter_by(order_id=order_id).first()
        if not loc:
            loc = TrackedLocation(order_id=order_id)
            session.add(loc)
        if fresh:
            # nothing from a previous delivery survives into a new session
            loc.raw_lat = loc.raw_lng = None
            loc.lat = loc.lng = None
            loc.update_count = 0
        loc.driver_id = driver_id
        loc.status = "in_transit"
        loc.updated_at = time.time()
        commit()
    except SQLAlchemyError:
        session.rollback()
        if fresh:
            registry.end(order_id)
        raise

    logging.info(f"Tracking started for order {order_id} by driver {driver_id}")
    return jsonify({
        "message": f"Tracking started for order {order_id}",
        "order_id": order_id,
        "driver_id": driver_id,
        "started_at": tracking.started_at,
    }), 201

@app.route("/api/orders/<order_id>/location", methods=["POST"])
def update_location(order_id):
    data = request.get_json(silent=True) or {}
    driver_id = get_driver_id(data)
    if driver_id is None:
        return jsonify({"error": "driver_id is required"}), 400
    if "lat" not in data or "lng" not in data:
        return jsonify({"error": "lat and lng are required"}), 400

    loc = record_fix(order_id, driver_id, data["lat"], data["lng"])
    return jsonify({
        "order_id": order_id,
        "lat": loc.lat,
        "lng": loc.lng,
        "raw_lat": loc.raw_lat,
        "raw_lng": loc.raw_lng,
        "update_count": loc.update_count,
    })

@app.route("/api/orders/<order_id>/location", methods=["GET"])
def get_location(order_id):
    """Return the latest smoothed location for an order."""
    loc = session.query(TrackedLocation).filter_by(order_id=order_id).first()
    if not loc:
        return jsonify({"error": "Order has not been tracked"}), 404
    return jsonify(location_to_dict(loc))

@app.route("/api/orders/<order_id>/delivered", methods=["POST"])
def mark_delivered(order_id):
    data = request.get_json(silent=True) or {}
    driver_id = get_driver_id(data)
    if driver_id is None:
        return jsonify({"error": "driver_id is required"}), 400

    tracking = registry.get(order_id)
    if tracking is None:
        raise SessionNotFoundError(order_id)
    if tracking.driver_id != driver_id:
        raise SessionConflictError(order_id, driver_id, tracking.driver_id)

    # last known position, sent alongside the delivery
    if "lat" in data and "lng" in data:
        record_fix(order_id, driver_id, data["lat"], data["lng"])

    registry.end(order_id)

    loc = session.query(TrackedLocation).filter_by(order_id=order_id).first()
    loc.status = "delivered"
    loc.updated_at = time.time()
    commit()

    logging.info(f"Order {order_id} delivered; tracking session closed")
    return jsonify(location_to_dict(loc))

@app.route("/api/tracks/smooth", methods=["POST"])
def smooth_recorded_track():
    """Smooth a recorded track in one pass with a fresh filter pair."""
    data = request.get_json(silent=True) or {}
    points = data.get("points")
    if not isinstance(points, list):
        return jsonify({"error": "points must be a list of [lat, lng] pairs"}), 400

    smoothed = smooth_track(points, MEASUREMENT_NOISE, PROCESS_NOISE)
    return jsonify({"points": smoothed.tolist()})

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5000)
