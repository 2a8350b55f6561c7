#backend/fleetwatch/models/auth.py
from sqlalchemy import Column, Integer, String, Boolean, JSON, BigInteger
from fleetwatch.database import BaseAuth

class Account(BaseAuth):
    __tablename__ = "accounts"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    company_name = Column(String, nullable=True)
    role = Column(String, default="developer")
    # Owning fleet admin of a developer account (NULL for admins)
    admin_id = Column(Integer, index=True, nullable=True)
    assigned_vehicle_ids = Column(JSON, default=list)
    assigned_user_ids = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(BigInteger, nullable=False, default=0)
