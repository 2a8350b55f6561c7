# backend/fleetwatch/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from .database import get_auth_db
from .models import auth as model_auth
from .config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login")

class Role:
    ADMIN = "admin"
    DEVELOPER = "developer"

class Permission:
    MANAGE_FLEET = "manage_fleet"
    VIEW_ASSIGNED = "view_assigned"
    VIEW_TELEMETRY = "view_telemetry"

# --- Password Hashing ---
async def get_password_hash(password: str) -> str:
    pwd_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(pwd_bytes, salt)
    return hashed.decode('utf-8')

async def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(
        plain_password.encode('utf-8'),
        hashed_password.encode('utf-8')
    )

# --- JWT Token ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_token_subject(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")

async def get_account_by_token(token: str, db: AsyncSession):
    username = decode_token_subject(token)
    if username is None:
        return None
    result = await db.execute(select(model_auth.Account).where(model_auth.Account.username == username))
    account = result.scalar_one_or_none()
    if account is None or not account.is_active:
        return None
    return account

# --- Dependency: current account ---
async def get_current_account(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_auth_db)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    account = await get_account_by_token(token, db)
    if account is None:
        raise credentials_exception
    return account

# --- Permissions ---
def get_account_permissions(account):
    if account.role == Role.ADMIN:
        return [Permission.MANAGE_FLEET, Permission.VIEW_TELEMETRY]
    if account.role == Role.DEVELOPER:
        return [Permission.VIEW_ASSIGNED, Permission.VIEW_TELEMETRY]
    return []

def require_permission(permission: str):
    async def permission_checker(current_account: model_auth.Account = Depends(get_current_account)):
        perms = get_account_permissions(current_account)
        if permission not in perms:
             raise HTTPException(status_code=403, detail="Not enough permissions")
        return current_account
    return permission_checker
