#backend/fleetwatch/models/telemetry.py
from sqlalchemy import Column, Integer, String, BigInteger, Float
from fleetwatch.database import BaseTelemetry

class VehiclePosition(BaseTelemetry):
    """
    One telemetry reading, appended by the ingestion feed.
    Optional motion columns stay NULL when the unit did not report them.
    """
    __tablename__ = "vehicle_positions"

    id = Column(Integer, primary_key=True)
    device_id = Column(String(64), index=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=True)
    accel_x = Column(Float, nullable=True)
    accel_y = Column(Float, nullable=True)
    accel_z = Column(Float, nullable=True)
    pitch = Column(Float, nullable=True)
    roll = Column(Float, nullable=True)
    # Epoch seconds; NULL when the feed sent an unreadable timestamp
    created_at = Column(BigInteger, index=True, nullable=True)
