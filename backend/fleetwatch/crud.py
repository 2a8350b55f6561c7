# backend/fleetwatch/crud.py
import time
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from sqlalchemy.orm import selectinload

from .auth import Role
from .models import auth as model_auth
from .models import fleet as model_fleet
from .models import telemetry as model_telemetry

# ============================================================================
# ACCOUNTS
# ============================================================================
async def get_account_by_username(db: AsyncSession, username: str):
    result = await db.execute(select(model_auth.Account).where(model_auth.Account.username == username))
    return result.scalar_one_or_none()

async def create_account(db: AsyncSession, username: str, hashed_password: str, role: str,
                         admin_id: int = None, **profile):
    db_account = model_auth.Account(
        username=username,
        hashed_password=hashed_password,
        role=role,
        admin_id=admin_id,
        assigned_vehicle_ids=profile.pop("assigned_vehicle_ids", None) or [],
        assigned_user_ids=profile.pop("assigned_user_ids", None) or [],
        is_active=True,
        created_at=int(time.time()),
        **profile
    )
    db.add(db_account)
    await db.commit()
    await db.refresh(db_account)
    return db_account

async def get_developers(db: AsyncSession, admin_id: int) -> List[model_auth.Account]:
    result = await db.execute(
        select(model_auth.Account)
        .where(model_auth.Account.role == Role.DEVELOPER, model_auth.Account.admin_id == admin_id)
        .order_by(model_auth.Account.id)
    )
    return list(result.scalars().all())

def fleet_owner_id(account) -> Optional[int]:
    """Admin that owns the fleet the account works on."""
    if account.role == Role.ADMIN:
        return account.id
    return account.admin_id

# ============================================================================
# ASSIGNMENTS (stored as JSON id lists on developer accounts)
# ============================================================================
async def set_vehicle_developers(db: AsyncSession, admin_id: int, vehicle_id: int, developer_ids: Iterable[int]):
    """Make exactly developer_ids carry vehicle_id in their assignment lists."""
    wanted = set(developer_ids)
    for developer in await get_developers(db, admin_id):
        current = list(developer.assigned_vehicle_ids or [])
        if developer.id in wanted and vehicle_id not in current:
            developer.assigned_vehicle_ids = current + [vehicle_id]
        elif developer.id not in wanted and vehicle_id in current:
            developer.assigned_vehicle_ids = [v for v in current if v != vehicle_id]
    await db.commit()

async def strip_assignment(db: AsyncSession, admin_id: int, field: str, item_id: int):
    """Remove item_id from the given assignment list of every developer of admin_id."""
    for developer in await get_developers(db, admin_id):
        current = list(getattr(developer, field) or [])
        if item_id in current:
            setattr(developer, field, [i for i in current if i != item_id])
    await db.commit()

# ============================================================================
# FLEET
# ============================================================================
async def owned_vehicle_ids(fleet_db: AsyncSession, admin_id: int) -> List[int]:
    result = await fleet_db.execute(
        select(model_fleet.Vehicle.id).where(model_fleet.Vehicle.admin_id == admin_id)
    )
    return list(result.scalars().all())

async def visible_vehicle_ids(account, fleet_db: AsyncSession) -> List[int]:
    # assignments may outlive an admin change; only the owner's fleet counts
    owned = await owned_vehicle_ids(fleet_db, fleet_owner_id(account))
    if account.role == Role.ADMIN:
        return owned
    assigned = set(account.assigned_vehicle_ids or [])
    return [v for v in owned if v in assigned]

async def get_vehicles(fleet_db: AsyncSession, vehicle_ids: Iterable[int]) -> List[model_fleet.Vehicle]:
    ids = list(vehicle_ids)
    if not ids:
        return []
    result = await fleet_db.execute(
        select(model_fleet.Vehicle)
        .options(selectinload(model_fleet.Vehicle.devices))
        .execution_options(populate_existing=True)
        .where(model_fleet.Vehicle.id.in_(ids))
        .order_by(model_fleet.Vehicle.id)
    )
    return list(result.scalars().all())

async def get_owned_vehicle(fleet_db: AsyncSession, vehicle_id: int, admin_id: int):
    result = await fleet_db.execute(
        select(model_fleet.Vehicle)
        .options(selectinload(model_fleet.Vehicle.devices))
        .execution_options(populate_existing=True)
        .where(model_fleet.Vehicle.id == vehicle_id, model_fleet.Vehicle.admin_id == admin_id)
    )
    return result.scalar_one_or_none()

async def all_device_vehicles(fleet_db: AsyncSession) -> Dict[str, int]:
    result = await fleet_db.execute(select(model_fleet.Device.id, model_fleet.Device.vehicle_id))
    return {device_id: vehicle_id for device_id, vehicle_id in result.all()}

# ============================================================================
# TELEMETRY (read-only)
# ============================================================================
async def get_positions(
    telemetry_db: AsyncSession,
    device_ids: Iterable[str],
    since: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[model_telemetry.VehiclePosition]:
    ids = list(device_ids)
    if not ids:
        return []
    query = select(model_telemetry.VehiclePosition).where(model_telemetry.VehiclePosition.device_id.in_(ids))
    if since is not None:
        query = query.where(model_telemetry.VehiclePosition.created_at >= since)
    query = query.order_by(
        desc(model_telemetry.VehiclePosition.created_at).nulls_last(),
        desc(model_telemetry.VehiclePosition.id),
    )
    if limit:
        query = query.limit(limit)
    result = await telemetry_db.execute(query)
    return list(result.scalars().all())
