"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .models import EquipmentStatus, InstallationType, RoleEnum


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.BASIC


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(None, min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    id: int
    username: str
    role: RoleEnum

    model_config = {"from_attributes": True}


class LocationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


class LocationCreate(LocationBase):
    pass


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    street: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None


class LocationRead(LocationBase):
    id: int

    model_config = {"from_attributes": True}


class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class CategoryRead(CategoryBase):
    id: int

    model_config = {"from_attributes": True}


class EquipmentTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class EquipmentTypeUpdate(EquipmentTypeCreate):
    pass


class EquipmentTypeRead(EquipmentTypeCreate):
    id: int

    model_config = {"from_attributes": True}


class EquipmentFields(BaseModel):
    """Writable equipment fields; reference ids accept ``""`` to clear them."""

    type_id: Optional[int] = None
    category: Optional[str] = None
    category_id: Optional[int] = None
    brand: Optional[str] = Field(None, min_length=1, max_length=255)
    model: Optional[str] = Field(None, min_length=1, max_length=255)
    serial_number: Optional[str] = Field(None, max_length=255)
    status: Optional[EquipmentStatus] = None
    quantity: Optional[int] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=255)
    location_id: Optional[int] = None
    reference_image_id: Optional[int] = None
    description: Optional[str] = None
    maintenance_schedule: Optional[str] = Field(None, max_length=100)
    last_maintenance_date: Optional[date] = None
    next_maintenance_date: Optional[date] = None

    @field_validator(
        "type_id",
        "category_id",
        "location_id",
        "reference_image_id",
        "serial_number",
        "last_maintenance_date",
        "next_maintenance_date",
        mode="before",
    )
    @classmethod
    def _empty_clears(cls, value: Any) -> Any:
        return _blank_to_none(value)


class EquipmentCreate(EquipmentFields):
    type_id: int
    brand: str = Field(..., min_length=1, max_length=255)
    model: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=0)


class EquipmentUpdate(EquipmentFields):
    pass


class StatusChange(BaseModel):
    status: EquipmentStatus


class LocationChange(BaseModel):
    location_id: Optional[int] = None
    location: Optional[str] = Field(None, max_length=255)

    @field_validator("location_id", mode="before")
    @classmethod
    def _empty_clears(cls, value: Any) -> Any:
        return _blank_to_none(value)


class TypeChange(BaseModel):
    type_id: int


class CategoryChange(BaseModel):
    category_id: Optional[int] = None

    @field_validator("category_id", mode="before")
    @classmethod
    def _empty_clears(cls, value: Any) -> Any:
        return _blank_to_none(value)


class BrandModelChange(BaseModel):
    brand: Optional[str] = Field(None, max_length=255)
    model: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def _one_of(self) -> "BrandModelChange":
        if not self.brand and not self.model:
            raise ValueError("At least one of brand or model must be provided")
        return self


class EquipmentRead(BaseModel):
    id: int
    type: str
    type_id: Optional[int] = None
    category: Optional[str] = None
    category_id: Optional[int] = None
    brand: str
    model: str
    serial_number: Optional[str] = None
    status: EquipmentStatus
    quantity: int
    location: Optional[str] = None
    location_id: Optional[int] = None
    reference_image_id: Optional[int] = None
    description: Optional[str] = None
    installation_type: InstallationType = InstallationType.PORTABLE
    installation_location_id: Optional[int] = None
    installation_location: Optional[str] = None
    installation_date: Optional[date] = None
    installation_notes: Optional[str] = None
    installation_quantity: int = 0
    maintenance_schedule: Optional[str] = None
    last_maintenance_date: Optional[date] = None
    next_maintenance_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InstallationUpdate(BaseModel):
    # Plain string so an unknown type is answered with a 400 by the route.
    installation_type: str
    installation_location_id: Optional[int] = None
    installation_location: Optional[str] = Field(None, max_length=255)
    installation_date: Optional[date] = None
    installation_notes: Optional[str] = None
    installation_quantity: Optional[int] = Field(None, ge=0)

    @field_validator("installation_location_id", "installation_date", mode="before")
    @classmethod
    def _empty_clears(cls, value: Any) -> Any:
        return _blank_to_none(value)


class InstallationReturn(BaseModel):
    quantity: Optional[int] = Field(None, ge=1)


class InstallationResult(BaseModel):
    message: str
    equipment: EquipmentRead


class InstallationReturnResult(InstallationResult):
    returned_quantity: int
    remaining_installation_quantity: int


class AvailabilityWarning(BaseModel):
    type: str
    message: str


class EquipmentAvailability(BaseModel):
    equipment_id: int
    type: str
    brand: str
    model: str
    total_quantity: int
    equipment_status: EquipmentStatus
    installation_allocated: int
    installation_type: InstallationType
    installation_location: Optional[str] = None
    total_unavailable: int
    available_quantity: int
    warnings: List[AvailabilityWarning]


class EquipmentPage(BaseModel):
    total: int
    total_pages: int
    current_page: int
    equipment: List[EquipmentRead]


class EquipmentSummary(BaseModel):
    id: int
    type: str
    brand: str
    model: str
    serial_number: Optional[str] = None
    status: EquipmentStatus
    location_id: Optional[int] = None

    model_config = {"from_attributes": True}


class EquipmentLogRead(BaseModel):
    id: int
    equipment_id: int
    user_id: Optional[int] = None
    action_type: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    previous_location: Optional[str] = None
    new_location: Optional[str] = None
    details: Optional[str] = None
    created_at: datetime
    user: Optional[UserSummary] = None
    equipment: Optional[EquipmentSummary] = None

    model_config = {"from_attributes": True}


class EquipmentLogPage(BaseModel):
    total: int
    total_pages: int
    current_page: int
    logs: List[EquipmentLogRead]
