# ==============================================================================
# == backend/fleetwatch/routers/developer.py - Developer dashboard
# ==============================================================================

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from .. import schemas, auth, crud
from ..database import get_auth_db, get_fleet_db
from ..models import auth as model_auth
from ..models import fleet as model_fleet

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/developer",
    tags=["Developer Console"]
)

async def _admin_users(fleet_db: AsyncSession, admin_id: int) -> List[model_fleet.FleetUser]:
    result = await fleet_db.execute(
        select(model_fleet.FleetUser)
        .where(model_fleet.FleetUser.admin_id == admin_id)
        .order_by(model_fleet.FleetUser.id)
    )
    return list(result.scalars().all())

@router.get("/vehicles", response_model=List[schemas.VehicleResponse])
async def get_assigned_vehicles(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_ASSIGNED))
):
    vehicle_ids = await crud.visible_vehicle_ids(current_account, fleet_db)
    vehicles = await crud.get_vehicles(fleet_db, vehicle_ids)
    return [
        {
            "id": v.id,
            "plate_number": v.plate_number,
            "model": v.model,
            "vehicle_type": v.vehicle_type,
            "status": v.status,
            "admin_id": v.admin_id,
            "device_ids": sorted(d.id for d in v.devices),
        }
        for v in vehicles
    ]

@router.get("/users", response_model=List[schemas.FleetUserResponse])
async def get_assigned_users(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_ASSIGNED))
):
    assigned = set(current_account.assigned_user_ids or [])
    return [u for u in await _admin_users(fleet_db, current_account.admin_id) if u.id in assigned]

@router.get("/available-users", response_model=List[schemas.FleetUserResponse])
async def get_available_users(
    fleet_db: AsyncSession = Depends(get_fleet_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_ASSIGNED))
):
    """Users of the owning admin not yet assigned to this developer."""
    assigned = set(current_account.assigned_user_ids or [])
    return [u for u in await _admin_users(fleet_db, current_account.admin_id) if u.id not in assigned]

@router.post("/users/{user_id}/claim", response_model=schemas.AccountResponse)
async def claim_user(
    user_id: int,
    fleet_db: AsyncSession = Depends(get_fleet_db),
    auth_db: AsyncSession = Depends(get_auth_db),
    current_account: model_auth.Account = Depends(auth.require_permission(auth.Permission.VIEW_ASSIGNED))
):
    if user_id not in {u.id for u in await _admin_users(fleet_db, current_account.admin_id)}:
        raise HTTPException(status_code=404, detail="User not found")

    assigned = list(current_account.assigned_user_ids or [])
    if user_id not in assigned:
        current_account.assigned_user_ids = assigned + [user_id]
        await auth_db.commit()
        await auth_db.refresh(current_account)
        logger.info(f"➕ {current_account.username} claimed user {user_id}")

    response = schemas.AccountResponse.model_validate(current_account)
    response.permissions = auth.get_account_permissions(current_account)
    return response
