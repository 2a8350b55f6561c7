# backend/fleetwatch/database.py
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool
from .config import settings

# Shared engine factory
def create_db_engine(url):
    if url.startswith("sqlite"):
        # sqlite files are opened per connection, no pooling across event loops
        return create_async_engine(url, echo=False, poolclass=NullPool)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True, # reconnect automatically after a dropped connection
    )

# 1. AUTH DB (accounts)
auth_engine = create_db_engine(settings.AUTH_DB_URL)
AuthSessionLocal = sessionmaker(auth_engine, class_=AsyncSession, expire_on_commit=False)
BaseAuth = declarative_base()

# 2. FLEET DB (vehicles, devices, fleet users)
fleet_engine = create_db_engine(settings.FLEET_DB_URL)
FleetSessionLocal = sessionmaker(fleet_engine, class_=AsyncSession, expire_on_commit=False)
BaseFleet = declarative_base()

# 3. TELEMETRY DB (vehicle positions, written by the ingestion feed)
telemetry_engine = create_db_engine(settings.TELEMETRY_DB_URL)
TelemetrySessionLocal = sessionmaker(telemetry_engine, class_=AsyncSession, expire_on_commit=False)
BaseTelemetry = declarative_base()

# FastAPI dependencies
async def get_auth_db():
    async with AuthSessionLocal() as session:
        yield session

async def get_fleet_db():
    async with FleetSessionLocal() as session:
        yield session

async def get_telemetry_db():
    async with TelemetrySessionLocal() as session:
        yield session
