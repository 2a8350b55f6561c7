#backend/fleetwatch/models/fleet.py
from sqlalchemy import Column, Integer, String, BigInteger, ForeignKey
from sqlalchemy.orm import relationship
from fleetwatch.database import BaseFleet

class Vehicle(BaseFleet):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    plate_number = Column(String(32), index=True, nullable=False)
    model = Column(String(255), nullable=True)
    vehicle_type = Column(String(50), nullable=True)
    status = Column(String(20), default="active")  # active, inactive, maintenance
    admin_id = Column(Integer, index=True, nullable=False)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    devices = relationship("Device", back_populates="vehicle", cascade="all, delete-orphan")

class Device(BaseFleet):
    __tablename__ = "devices"

    # Opaque identifier reported by the telemetry unit
    id = Column(String(64), primary_key=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), index=True, nullable=False)
    created_at = Column(BigInteger, nullable=False)

    vehicle = relationship("Vehicle", back_populates="devices")

class FleetUser(BaseFleet):
    __tablename__ = "fleet_users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=True)
    address = Column(String(255), nullable=True)
    cin = Column(String(32), nullable=True)
    company_name = Column(String(255), nullable=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True)
    admin_id = Column(Integer, index=True, nullable=False)
    created_at = Column(BigInteger, nullable=False)
