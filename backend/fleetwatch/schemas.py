#backend/fleetwatch/schemas.py
from datetime import datetime
from typing import Any, Optional, List, Literal

from pydantic import BaseModel, Field

VehicleStatus = Literal["active", "inactive", "maintenance"]
AlertType = Literal["critical", "warning", "info"]

# ============================================================================
# ACCOUNTS
# ============================================================================
class AccountBase(BaseModel):
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None

class AdminRegister(AccountBase):
    password: str = Field(min_length=6)

class DeveloperCreate(AccountBase):
    password: str = Field(min_length=6)
    assigned_vehicle_ids: List[int] = []
    assigned_user_ids: List[int] = []

class DeveloperUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company_name: Optional[str] = None
    is_active: Optional[bool] = None
    assigned_vehicle_ids: Optional[List[int]] = None
    assigned_user_ids: Optional[List[int]] = None

class AccountResponse(AccountBase):
    id: int
    role: str
    is_active: bool
    admin_id: Optional[int] = None
    assigned_vehicle_ids: List[int] = []
    assigned_user_ids: List[int] = []
    permissions: List[str] = []

    class Config:
        from_attributes = True

class Token(BaseModel):
    access_token: str
    token_type: str

# ============================================================================
# VEHICLES
# ============================================================================
class VehicleBase(BaseModel):
    plate_number: str = Field(min_length=1)
    model: Optional[str] = None
    vehicle_type: Optional[str] = "car"
    status: VehicleStatus = "active"

class VehicleCreate(VehicleBase):
    device_ids: List[str] = []
    developer_ids: List[int] = []

class VehicleUpdate(BaseModel):
    plate_number: Optional[str] = None
    model: Optional[str] = None
    vehicle_type: Optional[str] = None
    status: Optional[VehicleStatus] = None
    device_ids: Optional[List[str]] = None
    developer_ids: Optional[List[int]] = None

class VehicleResponse(VehicleBase):
    id: int
    admin_id: int
    device_ids: List[str] = []
    developer_ids: List[int] = []

# ============================================================================
# FLEET USERS
# ============================================================================
class FleetUserBase(BaseModel):
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    cin: Optional[str] = None
    company_name: Optional[str] = None
    vehicle_id: Optional[int] = None

class FleetUserCreate(FleetUserBase):
    pass

class FleetUserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    cin: Optional[str] = None
    company_name: Optional[str] = None
    vehicle_id: Optional[int] = None

class FleetUserResponse(FleetUserBase):
    id: int
    admin_id: int

    class Config:
        from_attributes = True

# ============================================================================
# TELEMETRY
# ============================================================================
class PositionIn(BaseModel):
    """Ad-hoc sample for the classify endpoint; loose types on purpose."""
    device_id: str = "adhoc"
    latitude: float = 0.0
    longitude: float = 0.0
    speed: Optional[Any] = None
    accel_x: Optional[Any] = None
    accel_y: Optional[Any] = None
    accel_z: Optional[Any] = None
    pitch: Optional[Any] = None
    roll: Optional[Any] = None
    created_at: Optional[Any] = None

class ClassificationResponse(BaseModel):
    severity: AlertType
    reasons: List[str]
    description: str

class PositionResponse(BaseModel):
    id: int
    device_id: str
    vehicle_id: Optional[int] = None
    plate_number: Optional[str] = None
    latitude: float
    longitude: float
    speed: Optional[float] = None
    accel_x: Optional[float] = None
    accel_y: Optional[float] = None
    accel_z: Optional[float] = None
    pitch: Optional[float] = None
    roll: Optional[float] = None
    created_at: Optional[datetime] = None

class AlertResponse(BaseModel):
    id: int
    vehicle_id: int
    plate_number: str = "Unknown"
    type: AlertType
    description: str
    timestamp: Optional[datetime] = None
    device_id: str
    latitude: float
    longitude: float
    speed: Optional[float] = None
    accel_x: Optional[float] = None
    accel_y: Optional[float] = None
    accel_z: Optional[float] = None
    pitch: Optional[float] = None
    roll: Optional[float] = None

class DashboardResponse(BaseModel):
    vehicles_total: int
    vehicles_active: int
    vehicles_inactive: int
    vehicles_maintenance: int
    users_total: int
    developers_total: Optional[int] = None
    alerts_total: int
    alerts_by_type: dict

class ExportExcelRequest(BaseModel):
    tables: List[str]  # vehicles, devices, users, developers, alerts
