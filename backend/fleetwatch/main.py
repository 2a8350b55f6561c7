# ==============================================================================
# == backend/fleetwatch/main.py - Fleet tracking console API                  ==
# ==============================================================================

import logging
import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from . import schemas, auth, crud
from .config import settings
from .database import (
    auth_engine, fleet_engine, telemetry_engine,
    get_auth_db,
    AuthSessionLocal,
)
from .models import auth as model_auth
from .models import fleet as model_fleet
from .models import telemetry as model_telemetry
from .mqtt_bridge import MQTTBridge
from .routers import admin, developer, telemetry
from .websocket import manager as ws_manager

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - API - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.LOG_FILE, encoding='utf-8'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL INSTANCES
# ============================================================================
mqtt_service = MQTTBridge()

# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Fleet console starting...")

    try:
        # 1. AUTH DB
        async with auth_engine.begin() as conn:
            await conn.run_sync(model_auth.BaseAuth.metadata.create_all)
        logger.info("✓ Auth database initialized")

        # 2. FLEET DB
        async with fleet_engine.begin() as conn:
            await conn.run_sync(model_fleet.BaseFleet.metadata.create_all)
        logger.info("✓ Fleet database initialized")

        # 3. TELEMETRY DB
        async with telemetry_engine.begin() as conn:
            await conn.run_sync(model_telemetry.BaseTelemetry.metadata.create_all)
        logger.info("✓ Telemetry database initialized")

        # 4. Default fleet admin
        async with asyncio.timeout(10):
            async with AuthSessionLocal() as db_auth:
                if not await crud.get_account_by_username(db_auth, settings.DEFAULT_ADMIN_USERNAME):
                    await crud.create_account(
                        db_auth,
                        username=settings.DEFAULT_ADMIN_USERNAME,
                        hashed_password=await auth.get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
                        role=auth.Role.ADMIN,
                        full_name="Administrator",
                    )
                    logger.info(f"✓ Default admin created ({settings.DEFAULT_ADMIN_USERNAME})")

        if settings.MQTT_ENABLED:
            mqtt_service.start()
            logger.info("✓ Background MQTT Service started")
        else:
            logger.info("✓ MQTT disabled, live feed not started")

        logger.info("=" * 60)
        logger.info("🎉 System ready to serve!")
        logger.info("=" * 60)

        yield

    finally:
        logger.info("🛑 Shutting down...")
        if settings.MQTT_ENABLED:
            mqtt_service.stop()
        await auth_engine.dispose()
        await fleet_engine.dispose()
        await telemetry_engine.dispose()
        logger.info("✅ Shutdown complete")

# ============================================================================
# APP SETUP
# ============================================================================
app = FastAPI(
    title="Fleet Tracking Console API",
    lifespan=lifespan,
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin.router)
app.include_router(developer.router)
app.include_router(telemetry.router)

# ============================================================================
# AUTHENTICATION ENDPOINTS
# ============================================================================
@app.post("/api/auth/register", response_model=schemas.AccountResponse)
async def register_admin(
    account_in: schemas.AdminRegister,
    db: AsyncSession = Depends(get_auth_db)
):
    if await crud.get_account_by_username(db, account_in.username):
        raise HTTPException(status_code=400, detail="Username already exists")

    account = await crud.create_account(
        db,
        username=account_in.username,
        hashed_password=await auth.get_password_hash(account_in.password),
        role=auth.Role.ADMIN,
        **account_in.model_dump(exclude={"username", "password"})
    )
    logger.info(f"✅ Fleet admin registered: {account.username}")
    response = schemas.AccountResponse.model_validate(account)
    response.permissions = auth.get_account_permissions(account)
    return response

@app.post("/api/auth/login", response_model=schemas.Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_auth_db)
):
    account = await crud.get_account_by_username(db, form_data.username)

    if not account or not await auth.verify_password(form_data.password, account.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password"
        )

    if not account.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )

    access_token = auth.create_access_token(
        data={"sub": account.username, "role": account.role}
    )

    logger.info(f"✅ Login successful: {account.username}")
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/api/auth/me", response_model=schemas.AccountResponse)
async def get_current_account_info(
    current_account: model_auth.Account = Depends(auth.get_current_account)
):
    response = schemas.AccountResponse.model_validate(current_account)
    response.permissions = auth.get_account_permissions(current_account)
    return response

# ============================================================================
# WEBSOCKET & HEALTH CHECK
# ============================================================================
@app.websocket("/ws/updates")
async def websocket_endpoint(websocket: WebSocket, token: str = Query("")):
    async with AuthSessionLocal() as db_auth:
        account = await auth.get_account_by_token(token, db_auth)
    if account is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    # scope is resolved per broadcast from the account
    await ws_manager.connect(websocket, account.id)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)

@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "time": time.time(),
        "mqtt_enabled": settings.MQTT_ENABLED,
        "devices_tracked": len(mqtt_service.device_map),
    }
