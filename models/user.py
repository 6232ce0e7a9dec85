"""
Local projection of Firebase Auth identities
"""
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.sql import func
from core.database import Base


class User(Base):
    __tablename__ = "users"

    # Primary key - Firebase Auth UID
    uid = Column(String(128), primary_key=True, index=True)

    email = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)
    email_verified = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

