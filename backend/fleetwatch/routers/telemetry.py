# ==============================================================================
# == backend/fleetwatch/routers/telemetry.py - Positions & derived alerts
# ==============================================================================

import logging
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from .. import schemas, auth, crud
from ..config import settings
from ..database import get_auth_db, get_fleet_db, get_telemetry_db
from ..models import auth as model_auth
from ..models import fleet as model_fleet
from ..processors.alerts import Alert, build_alert, latest_per_vehicle
from ..processors.classifier import classify
from ..processors.samples import PositionSample, within_window

logger = logging.getLogger(__name__)

# one year; wider windows overflow datetime arithmetic
MAX_ALERT_WINDOW_HOURS = 24 * 365
router = APIRouter(
    prefix="/api/telemetry",
    tags=["Telemetry"]
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

async def collect_alert_records(
    vehicles: List[model_fleet.Vehicle],
    telemetry_db: AsyncSession,
    hours: float,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """
    Derive one alert per position sample of the given vehicles within the
    trailing window, newest first.
    """
    now = now or datetime.now(timezone.utc)
    device_map = {d.id: v.id for v in vehicles for d in v.devices}
    if not device_map:
        return []

    since = int((now - timedelta(hours=hours)).timestamp())
    rows = await crud.get_positions(telemetry_db, device_map.keys(), since=since)
    samples = within_window((PositionSample.from_row(r) for r in rows), now=now, hours=hours)
    return [build_alert(s, device_map[s.device_id]) for s in samples]

def _alert_dict(alert: Alert, plates: dict) -> dict:
    data = asdict(alert)
    data["plate_number"] = plates.get(alert.vehicle_id, "Unknown")
    return data

async def collect_alerts(
    vehicles: List[model_fleet.Vehicle],
    telemetry_db: AsyncSession,
    hours: float,
    now: Optional[datetime] = None,
) -> List[dict]:
    """Windowed alerts as plain dicts, enriched with the plate number."""
    plates = {v.id: v.plate_number for v in vehicles}
    records = await collect_alert_records(vehicles, telemetry_db, hours, now=now)
    return [_alert_dict(a, plates) for a in records]

def _matches(alert: dict, search: str) -> bool:
    needle = search.lower()
    return (
        needle in alert["description"].lower()
        or needle in alert["type"].lower()
        or needle in (alert.get("plate_number") or "").lower()
    )

async def _visible_vehicles(account, fleet_db: AsyncSession) -> List[model_fleet.Vehicle]:
    vehicle_ids = await crud.visible_vehicle_ids(account, fleet_db)
    return await crud.get_vehicles(fleet_db, vehicle_ids)

def _position_dict(row, vehicle: Optional[model_fleet.Vehicle]) -> dict:
    sample = PositionSample.from_row(row)
    return {
        "id": sample.id,
        "device_id": sample.device_id,
        "vehicle_id": vehicle.id if vehicle else None,
        "plate_number": vehicle.plate_number if vehicle else None,
        "latitude": sample.latitude,
        "longitude": sample.longitude,
        "speed": sample.speed,
        "accel_x": sample.accel_x,
        "accel_y": sample.accel_y,
        "accel_z": sample.accel_z,
        "pitch": sample.pitch,
        "roll": sample.roll,
        "created_at": sample.created_at,
    }

# ============================================================================
# POSITIONS (map)
# ============================================================================

@router.get("/positions/latest", response_model=List[schemas.PositionResponse])
async def get_latest_positions(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    telemetry_db: AsyncSession = Depends(get_telemetry_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_TELEMETRY))
):
    positions = []
    for vehicle in await _visible_vehicles(current_account, fleet_db):
        device_ids = [d.id for d in vehicle.devices]
        rows = await crud.get_positions(telemetry_db, device_ids, limit=1)
        if rows:
            positions.append(_position_dict(rows[0], vehicle))
    return positions

@router.get("/vehicles/{vehicle_id}/positions", response_model=List[schemas.PositionResponse])
async def get_vehicle_positions(
    vehicle_id: int,
    limit: int = Query(100, ge=1),
    fleet_db: AsyncSession = Depends(get_fleet_db),
    telemetry_db: AsyncSession = Depends(get_telemetry_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_TELEMETRY))
):
    vehicles = []
    if vehicle_id in await crud.visible_vehicle_ids(current_account, fleet_db):
        vehicles = await crud.get_vehicles(fleet_db, [vehicle_id])
    if not vehicles:
        raise HTTPException(status_code=404, detail="Vehicle not found")

    vehicle = vehicles[0]
    rows = await crud.get_positions(
        telemetry_db,
        [d.id for d in vehicle.devices],
        limit=min(limit, settings.POSITION_HISTORY_LIMIT),
    )
    return [_position_dict(r, vehicle) for r in rows]

# ============================================================================
# ALERTS
# ============================================================================

@router.get("/alerts", response_model=List[schemas.AlertResponse])
async def get_alerts(
    hours: Optional[float] = Query(None, gt=0, le=MAX_ALERT_WINDOW_HOURS),
    type: Optional[schemas.AlertType] = None,
    search: Optional[str] = None,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    telemetry_db: AsyncSession = Depends(get_telemetry_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_TELEMETRY))
):
    vehicles = await _visible_vehicles(current_account, fleet_db)
    alerts = await collect_alerts(vehicles, telemetry_db, hours or settings.ALERT_WINDOW_HOURS)

    if type:
        alerts = [a for a in alerts if a["type"] == type]
    if search and search.strip():
        alerts = [a for a in alerts if _matches(a, search.strip())]
    return alerts

@router.get("/alerts/summary", response_model=List[schemas.AlertResponse])
async def get_alert_summary(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    telemetry_db: AsyncSession = Depends(get_telemetry_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_TELEMETRY))
):
    """Latest alert of every visible vehicle."""
    vehicles = await _visible_vehicles(current_account, fleet_db)
    return await _latest_alerts(vehicles, telemetry_db)

async def _latest_alerts(vehicles, telemetry_db: AsyncSession) -> List[dict]:
    plates = {v.id: v.plate_number for v in vehicles}
    records = await collect_alert_records(vehicles, telemetry_db, settings.ALERT_WINDOW_HOURS)
    return [_alert_dict(a, plates) for a in latest_per_vehicle(records)]

# ============================================================================
# DASHBOARD
# ============================================================================

@router.get("/dashboard", response_model=schemas.DashboardResponse)
async def get_dashboard(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    telemetry_db: AsyncSession = Depends(get_telemetry_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_TELEMETRY))
):
    vehicles = await _visible_vehicles(current_account, fleet_db)
    statuses = Counter(v.status for v in vehicles)

    developers_total = None
    if current_account.role == auth.Role.ADMIN:
        users_result = await fleet_db.execute(
            select(func.count(model_fleet.FleetUser.id))
            .where(model_fleet.FleetUser.admin_id == current_account.id)
        )
        users_total = users_result.scalar() or 0
        developers_total = len(await crud.get_developers(auth_db, current_account.id))
    else:
        users_total = len(current_account.assigned_user_ids or [])

    latest = await _latest_alerts(vehicles, telemetry_db)
    by_type = Counter(a["type"] for a in latest)

    return {
        "vehicles_total": len(vehicles),
        "vehicles_active": statuses.get("active", 0),
        "vehicles_inactive": statuses.get("inactive", 0),
        "vehicles_maintenance": statuses.get("maintenance", 0),
        "users_total": users_total,
        "developers_total": developers_total,
        "alerts_total": len(latest),
        "alerts_by_type": {t: by_type.get(t, 0) for t in ("critical", "warning", "info")},
    }

# ============================================================================
# AD-HOC CLASSIFICATION
# ============================================================================

@router.post("/classify", response_model=schemas.ClassificationResponse)
async def classify_sample(
    sample_in: schemas.PositionIn,
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_TELEMETRY))
):
    try:
        sample = PositionSample.from_payload(sample_in.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    result = classify(sample)
    return {
        "severity": result.severity.value,
        "reasons": result.reasons,
        "description": result.description,
    }
