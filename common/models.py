"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import Date, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class RoleEnum(str, Enum):
    ADMIN = "admin"
    ADVANCED = "advanced"
    BASIC = "basic"


class EquipmentStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in-use"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


class InstallationType(str, Enum):
    PORTABLE = "portable"
    SEMI_PERMANENT = "semi-permanent"
    FIXED = "fixed"


class LogAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    STATUS_CHANGE = "status_change"
    LOCATION_CHANGE = "location_change"


class FileType(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    PDF = "pdf"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.BASIC)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    equipment_logs: Mapped[List["EquipmentLog"]] = relationship(back_populates="user", passive_deletes=True)


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    street: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    city: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    region: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    country: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Category(Base):
    __tablename__ = "equipment_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class EquipmentType(Base):
    __tablename__ = "equipment_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class File(Base):
    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # No FK back to equipment: equipment.reference_image_id already points here.
    equipment_id: Mapped[int] = mapped_column(Integer, index=True)
    file_type: Mapped[str] = mapped_column(String(20), default=FileType.IMAGE.value)
    file_name: Mapped[str] = mapped_column(String(255))
    file_path: Mapped[str] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Equipment(Base):
    __tablename__ = "equipment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(255))
    type_id: Mapped[Optional[int]] = mapped_column(ForeignKey("equipment_types.id"), default=None, index=True)
    category: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("equipment_categories.id", ondelete="SET NULL"), default=None, index=True
    )
    brand: Mapped[str] = mapped_column(String(255), index=True)
    model: Mapped[str] = mapped_column(String(255))
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), default=None, index=True)
    status: Mapped[str] = mapped_column(String(20), default=EquipmentStatus.AVAILABLE.value, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    location: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    # Plain column: an id that no longer resolves falls back to the stored name.
    location_id: Mapped[Optional[int]] = mapped_column(Integer, default=None, index=True)
    reference_image_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("files.id", ondelete="SET NULL"), default=None
    )
    description: Mapped[Optional[str]] = mapped_column(Text, default=None)
    installation_type: Mapped[str] = mapped_column(String(20), default=InstallationType.PORTABLE.value)
    installation_location_id: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    installation_location: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    installation_date: Mapped[Optional[date]] = mapped_column(Date, default=None)
    installation_notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    installation_quantity: Mapped[int] = mapped_column(Integer, default=0)
    maintenance_schedule: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    last_maintenance_date: Mapped[Optional[date]] = mapped_column(Date, default=None)
    next_maintenance_date: Mapped[Optional[date]] = mapped_column(Date, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    files: Mapped[List[File]] = relationship(
        primaryjoin="Equipment.id == foreign(File.equipment_id)",
        cascade="all, delete-orphan",
    )


class EquipmentLog(Base):
    __tablename__ = "equipment_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Soft reference: the deletion entry must survive its equipment row.
    equipment_id: Mapped[int] = mapped_column(Integer, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    action_type: Mapped[str] = mapped_column(String(30), index=True)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    new_status: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    previous_location: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    new_location: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    details: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    user: Mapped[Optional[User]] = relationship(back_populates="equipment_logs")
    equipment: Mapped[Optional[Equipment]] = relationship(
        primaryjoin="foreign(EquipmentLog.equipment_id) == Equipment.id",
        viewonly=True,
    )
