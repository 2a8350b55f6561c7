# ==============================================================================
# == backend/fleetwatch/routers/admin.py - Fleet admin console
# ==============================================================================

import logging
import time
from io import BytesIO
from typing import List

import pandas as pd

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from .. import schemas, auth, crud
from ..config import settings
from ..database import get_auth_db, get_fleet_db, get_telemetry_db
from ..models import auth as model_auth
from ..models import fleet as model_fleet
from .telemetry import collect_alerts

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin",
    tags=["Admin Console"]
)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _vehicle_response(vehicle: model_fleet.Vehicle, developers: List[model_auth.Account]) -> dict:
    return {
        "id": vehicle.id,
        "plate_number": vehicle.plate_number,
        "model": vehicle.model,
        "vehicle_type": vehicle.vehicle_type,
        "status": vehicle.status,
        "admin_id": vehicle.admin_id,
        "device_ids": sorted(d.id for d in vehicle.devices),
        "developer_ids": [d.id for d in developers if vehicle.id in (d.assigned_vehicle_ids or [])],
    }

def _developer_response(developer: model_auth.Account) -> schemas.AccountResponse:
    response = schemas.AccountResponse.model_validate(developer)
    response.permissions = auth.get_account_permissions(developer)
    return response

async def _check_developers(auth_db: AsyncSession, admin_id: int, developer_ids: List[int]):
    own = {d.id for d in await crud.get_developers(auth_db, admin_id)}
    unknown = set(developer_ids) - own
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown developers: {sorted(unknown)}")

async def _check_vehicle_ids(fleet_db: AsyncSession, admin_id: int, vehicle_ids: List[int]):
    own = set(await crud.owned_vehicle_ids(fleet_db, admin_id))
    unknown = set(vehicle_ids) - own
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown vehicles: {sorted(unknown)}")

async def _check_user_ids(fleet_db: AsyncSession, admin_id: int, user_ids: List[int]):
    result = await fleet_db.execute(
        select(model_fleet.FleetUser.id).where(model_fleet.FleetUser.admin_id == admin_id)
    )
    unknown = set(user_ids) - set(result.scalars().all())
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown users: {sorted(unknown)}")

async def _check_devices_free(fleet_db: AsyncSession, device_ids: List[str], vehicle_id: int = None):
    if not device_ids:
        return
    result = await fleet_db.execute(
        select(model_fleet.Device).where(model_fleet.Device.id.in_(device_ids))
    )
    taken = [d.id for d in result.scalars().all() if d.vehicle_id != vehicle_id]
    if taken:
        raise HTTPException(status_code=400, detail=f"Devices already mounted: {sorted(taken)}")

async def _plate_taken(fleet_db: AsyncSession, admin_id: int, plate_number: str, exclude_id: int = None) -> bool:
    query = select(model_fleet.Vehicle).where(
        model_fleet.Vehicle.admin_id == admin_id,
        model_fleet.Vehicle.plate_number == plate_number,
    )
    if exclude_id is not None:
        query = query.where(model_fleet.Vehicle.id != exclude_id)
    result = await fleet_db.execute(query)
    return result.scalars().first() is not None

# ============================================================================
# VEHICLES
# ============================================================================

@router.get("/vehicles", response_model=List[schemas.VehicleResponse])
async def get_vehicles(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    vehicle_ids = await crud.visible_vehicle_ids(current_account, fleet_db)
    vehicles = await crud.get_vehicles(fleet_db, vehicle_ids)
    developers = await crud.get_developers(auth_db, current_account.id)
    return [_vehicle_response(v, developers) for v in vehicles]

@router.post("/vehicles", response_model=schemas.VehicleResponse)
async def create_vehicle(
    vehicle_in: schemas.VehicleCreate,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    if await _plate_taken(fleet_db, current_account.id, vehicle_in.plate_number):
        raise HTTPException(status_code=400, detail=f"Plate '{vehicle_in.plate_number}' already registered")
    await _check_developers(auth_db, current_account.id, vehicle_in.developer_ids)
    await _check_devices_free(fleet_db, vehicle_in.device_ids)

    try:
        now = int(time.time())
        new_vehicle = model_fleet.Vehicle(
            plate_number=vehicle_in.plate_number,
            model=vehicle_in.model,
            vehicle_type=vehicle_in.vehicle_type,
            status=vehicle_in.status,
            admin_id=current_account.id,
            created_at=now,
            updated_at=now,
        )
        fleet_db.add(new_vehicle)
        # Flush to get the vehicle id for the device rows
        await fleet_db.flush()

        for device_id in dict.fromkeys(vehicle_in.device_ids):
            fleet_db.add(model_fleet.Device(id=device_id, vehicle_id=new_vehicle.id, created_at=now))
            logger.info(f"➕ Mounted device {device_id} on {new_vehicle.plate_number}")

        await fleet_db.commit()
        vehicle_id = new_vehicle.id
    except Exception as e:
        await fleet_db.rollback()
        logger.error(f"Error creating vehicle: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating vehicle: {str(e)}")

    await crud.set_vehicle_developers(auth_db, current_account.id, vehicle_id, vehicle_in.developer_ids)

    vehicle = await crud.get_owned_vehicle(fleet_db, vehicle_id, current_account.id)
    developers = await crud.get_developers(auth_db, current_account.id)
    logger.info(f"✅ Vehicle {vehicle.plate_number} created by {current_account.username}")
    return _vehicle_response(vehicle, developers)

@router.put("/vehicles/{vehicle_id}", response_model=schemas.VehicleResponse)
async def update_vehicle(
    vehicle_id: int,
    vehicle_in: schemas.VehicleUpdate,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    vehicle = await crud.get_owned_vehicle(fleet_db, vehicle_id, current_account.id)
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")

    updates = vehicle_in.model_dump(exclude_unset=True)
    device_ids = updates.pop("device_ids", None)
    developer_ids = updates.pop("developer_ids", None)

    if "plate_number" in updates and await _plate_taken(
        fleet_db, current_account.id, updates["plate_number"], exclude_id=vehicle_id
    ):
        raise HTTPException(status_code=400, detail=f"Plate '{updates['plate_number']}' already registered")
    if developer_ids is not None:
        await _check_developers(auth_db, current_account.id, developer_ids)
    if device_ids is not None:
        await _check_devices_free(fleet_db, device_ids, vehicle_id=vehicle_id)

    try:
        for key, value in updates.items():
            if value is not None:
                setattr(vehicle, key, value)
        vehicle.updated_at = int(time.time())

        if device_ids is not None:
            wanted = list(dict.fromkeys(device_ids))
            for device in list(vehicle.devices):
                if device.id not in wanted:
                    vehicle.devices.remove(device)
            mounted = {d.id for d in vehicle.devices}
            for device_id in wanted:
                if device_id not in mounted:
                    vehicle.devices.append(model_fleet.Device(id=device_id, created_at=int(time.time())))

        await fleet_db.commit()
    except Exception as e:
        await fleet_db.rollback()
        logger.error(f"Error updating vehicle {vehicle_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    if developer_ids is not None:
        await crud.set_vehicle_developers(auth_db, current_account.id, vehicle_id, developer_ids)

    vehicle = await crud.get_owned_vehicle(fleet_db, vehicle_id, current_account.id)
    developers = await crud.get_developers(auth_db, current_account.id)
    return _vehicle_response(vehicle, developers)

@router.delete("/vehicles/{vehicle_id}")
async def delete_vehicle(
    vehicle_id: int,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    vehicle = await crud.get_owned_vehicle(fleet_db, vehicle_id, current_account.id)
    if not vehicle:
        raise HTTPException(status_code=404, detail="Vehicle not found")

    try:
        # Drivers of this vehicle keep their record, just unlinked
        drivers = await fleet_db.execute(
            select(model_fleet.FleetUser).where(model_fleet.FleetUser.vehicle_id == vehicle_id)
        )
        for driver in drivers.scalars().all():
            driver.vehicle_id = None
        await fleet_db.delete(vehicle)
        await fleet_db.commit()
    except Exception as e:
        await fleet_db.rollback()
        logger.error(f"Error deleting vehicle {vehicle_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    await crud.strip_assignment(auth_db, current_account.id, "assigned_vehicle_ids", vehicle_id)
    return {"status": "success", "message": f"Deleted vehicle {vehicle_id}"}

# ============================================================================
# FLEET USERS
# ============================================================================

@router.get("/users", response_model=List[schemas.FleetUserResponse])
async def get_users(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    result = await fleet_db.execute(
        select(model_fleet.FleetUser)
        .where(model_fleet.FleetUser.admin_id == current_account.id)
        .order_by(model_fleet.FleetUser.id)
    )
    return result.scalars().all()

@router.post("/users", response_model=schemas.FleetUserResponse)
async def create_user(
    user_in: schemas.FleetUserCreate,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    if user_in.vehicle_id is not None:
        await _check_vehicle_ids(fleet_db, current_account.id, [user_in.vehicle_id])

    new_user = model_fleet.FleetUser(
        **user_in.model_dump(),
        admin_id=current_account.id,
        created_at=int(time.time()),
    )
    fleet_db.add(new_user)
    await fleet_db.commit()
    await fleet_db.refresh(new_user)
    return new_user

@router.put("/users/{user_id}", response_model=schemas.FleetUserResponse)
async def update_user(
    user_id: int,
    user_in: schemas.FleetUserUpdate,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    result = await fleet_db.execute(
        select(model_fleet.FleetUser).where(
            model_fleet.FleetUser.id == user_id,
            model_fleet.FleetUser.admin_id == current_account.id,
        )
    )
    fleet_user = result.scalar_one_or_none()
    if not fleet_user:
        raise HTTPException(status_code=404, detail="User not found")

    updates = user_in.model_dump(exclude_unset=True)
    if updates.get("vehicle_id") is not None:
        await _check_vehicle_ids(fleet_db, current_account.id, [updates["vehicle_id"]])

    for key, value in updates.items():
        setattr(fleet_user, key, value)
    await fleet_db.commit()
    await fleet_db.refresh(fleet_user)
    return fleet_user

@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    result = await fleet_db.execute(
        delete(model_fleet.FleetUser).where(
            model_fleet.FleetUser.id == user_id,
            model_fleet.FleetUser.admin_id == current_account.id,
        )
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="User not found")
    await fleet_db.commit()

    await crud.strip_assignment(auth_db, current_account.id, "assigned_user_ids", user_id)
    return {"status": "success"}

# ============================================================================
# DEVELOPER ACCOUNTS
# ============================================================================

@router.get("/developers", response_model=List[schemas.AccountResponse])
async def get_developers(
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    developers = await crud.get_developers(auth_db, current_account.id)
    return [_developer_response(d) for d in developers]

@router.post("/developers", response_model=schemas.AccountResponse)
async def create_developer(
    developer_in: schemas.DeveloperCreate,
    auth_db: AsyncSession = Depends(get_auth_db),
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    if await crud.get_account_by_username(auth_db, developer_in.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    await _check_vehicle_ids(fleet_db, current_account.id, developer_in.assigned_vehicle_ids)
    await _check_user_ids(fleet_db, current_account.id, developer_in.assigned_user_ids)

    profile = developer_in.model_dump(exclude={"username", "password"})
    developer = await crud.create_account(
        auth_db,
        username=developer_in.username,
        hashed_password=await auth.get_password_hash(developer_in.password),
        role=auth.Role.DEVELOPER,
        admin_id=current_account.id,
        **profile
    )
    logger.info(f"✅ Developer {developer.username} created by {current_account.username}")
    return _developer_response(developer)

@router.put("/developers/{developer_id}", response_model=schemas.AccountResponse)
async def update_developer(
    developer_id: int,
    developer_in: schemas.DeveloperUpdate,
    auth_db: AsyncSession = Depends(get_auth_db),
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    developer = next(
        (d for d in await crud.get_developers(auth_db, current_account.id) if d.id == developer_id),
        None,
    )
    if developer is None:
        raise HTTPException(status_code=404, detail="Developer not found")

    updates = developer_in.model_dump(exclude_unset=True)
    if updates.get("assigned_vehicle_ids") is not None:
        await _check_vehicle_ids(fleet_db, current_account.id, updates["assigned_vehicle_ids"])
    if updates.get("assigned_user_ids") is not None:
        await _check_user_ids(fleet_db, current_account.id, updates["assigned_user_ids"])

    for key, value in updates.items():
        if value is not None:
            setattr(developer, key, list(dict.fromkeys(value)) if isinstance(value, list) else value)
    await auth_db.commit()
    await auth_db.refresh(developer)
    return _developer_response(developer)

@router.delete("/developers/{developer_id}")
async def delete_developer(
    developer_id: int,
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    result = await auth_db.execute(
        delete(model_auth.Account).where(
            model_auth.Account.id == developer_id,
            model_auth.Account.role == auth.Role.DEVELOPER,
            model_auth.Account.admin_id == current_account.id,
        )
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Developer not found")
    await auth_db.commit()
    return {"status": "success"}

# ============================================================================
# EXPORT
# ============================================================================

@router.post("/export-excel")
async def export_excel(
    request: schemas.ExportExcelRequest,
    auth_db: AsyncSession = Depends(get_auth_db),
    fleet_db: AsyncSession = Depends(get_fleet_db),
    telemetry_db: AsyncSession = Depends(get_telemetry_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.MANAGE_FLEET))
):
    """
    Export the admin's fleet tables to one Excel workbook, one sheet per table.
    """
    try:
        output = BytesIO()
        dataframes = {}

        vehicle_ids = await crud.visible_vehicle_ids(current_account, fleet_db)
        vehicles = await crud.get_vehicles(fleet_db, vehicle_ids)

        if 'vehicles' in request.tables:
            dataframes['Vehicles'] = pd.DataFrame([
                {
                    'id': v.id,
                    'plate_number': v.plate_number,
                    'model': v.model,
                    'vehicle_type': v.vehicle_type,
                    'status': v.status,
                    'created_at': v.created_at,
                }
                for v in vehicles
            ])

        if 'devices' in request.tables:
            dataframes['Devices'] = pd.DataFrame([
                {'id': d.id, 'vehicle_id': v.id, 'plate_number': v.plate_number}
                for v in vehicles for d in v.devices
            ])

        if 'users' in request.tables:
            users_result = await fleet_db.execute(
                select(model_fleet.FleetUser).where(model_fleet.FleetUser.admin_id == current_account.id)
            )
            dataframes['Users'] = pd.DataFrame([
                {
                    'id': u.id,
                    'first_name': u.first_name,
                    'last_name': u.last_name,
                    'phone': u.phone,
                    'company_name': u.company_name,
                    'vehicle_id': u.vehicle_id,
                }
                for u in users_result.scalars().all()
            ])

        if 'developers' in request.tables:
            dataframes['Developers'] = pd.DataFrame([
                {
                    'id': d.id,
                    'username': d.username,
                    'full_name': d.full_name,
                    'email': d.email,
                    'assigned_vehicle_ids': ", ".join(str(i) for i in d.assigned_vehicle_ids or []),
                    'assigned_user_ids': ", ".join(str(i) for i in d.assigned_user_ids or []),
                    'is_active': d.is_active,
                }
                for d in await crud.get_developers(auth_db, current_account.id)
            ])

        if 'alerts' in request.tables:
            alerts = await collect_alerts(vehicles, telemetry_db, settings.ALERT_WINDOW_HOURS)
            frame = pd.DataFrame(alerts)
            if not frame.empty:
                frame['timestamp'] = frame['timestamp'].map(lambda t: t.isoformat() if t else None)
            dataframes['Alerts'] = frame

        if not dataframes:
            raise HTTPException(status_code=400, detail="No tables selected")

        with pd.ExcelWriter(output, engine='openpyxl') as writer:
            for sheet_name, df in dataframes.items():
                df.to_excel(writer, sheet_name=sheet_name, index=False)

        output.seek(0)
        logger.info(f"✅ Excel file created with {len(dataframes)} sheets by {current_account.username}")

        return StreamingResponse(
            output,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={
                "Content-Disposition": f"attachment; filename=fleet_export_{int(time.time())}.xlsx"
            }
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Export Excel error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
