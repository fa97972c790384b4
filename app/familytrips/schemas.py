"""Pydantic schemas for Family Trips request bodies."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import MemberType


class AdultCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class ChildCreate(BaseModel):
    name: str = Field(..., min_length=1)
    age: int = Field(..., ge=0, le=25)


class FamilyCreate(BaseModel):
    """New family registration; at least one adult is required."""
    name: Optional[str] = None
    adults: List[AdultCreate] = Field(..., min_length=1)
    children: List[ChildCreate] = []


class FamilyUpdate(BaseModel):
    name: Optional[str] = None


class MemberCreate(BaseModel):
    type: MemberType
    name: str = Field(..., min_length=1)
    age: Optional[int] = Field(None, ge=0)
    email: Optional[str] = None

    @model_validator(mode="after")
    def check_member_fields(self):
        """Adults need an email, children need an age."""
        if self.type == MemberType.ADULT and not self.email:
            raise ValueError("Adults require an email")
        if self.type == MemberType.CHILD and self.age is None:
            raise ValueError("Children require an age")
        return self


class TripBase(BaseModel):
    name: str = Field(..., min_length=1)
    location: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TripCreate(TripBase):
    pass


def _not_null(value, field_name: str):
    """Omitting a field leaves it unchanged; null is never a valid update."""
    if value is None:
        raise ValueError(f"{field_name} cannot be null")
    return value


class TripUpdate(TripBase):
    name: Optional[str] = Field(None, min_length=1)

    @field_validator("name")
    @classmethod
    def check_not_null(cls, value, info):
        return _not_null(value, info.field_name)


class TripAdminsSet(BaseModel):
    """Replacement set of trip admin user ids."""
    admin_ids: List[str] = Field(..., min_length=1)

    @field_validator("admin_ids")
    @classmethod
    def check_admin_ids(cls, admin_ids):
        if any(not admin_id.strip() for admin_id in admin_ids):
            raise ValueError("Admin ids must not be blank")
        if len(set(admin_ids)) != len(admin_ids):
            raise ValueError("Admin ids must be unique")
        return admin_ids


class AttendanceUpdate(BaseModel):
    family_id: Optional[int] = None
    attending: bool = True
    dietary_requirements: Optional[str] = None


class DietaryRequirementsUpdate(BaseModel):
    family_id: Optional[int] = None
    dietary_requirements: Optional[str] = None


TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ScheduleItemCreate(BaseModel):
    day: int = Field(..., ge=1)
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        # HH:MM strings order lexically
        if self.end_time and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class ScheduleItemUpdate(BaseModel):
    day: Optional[int] = Field(None, ge=1)
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None

    @field_validator("day", "start_time", "title")
    @classmethod
    def check_not_null(cls, value, info):
        return _not_null(value, info.field_name)


class GearItemCreate(BaseModel):
    trip_id: int
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    quantity_needed: int = Field(1, ge=1)


class GearItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    quantity_needed: Optional[int] = Field(None, ge=1)

    @field_validator("name", "quantity_needed")
    @classmethod
    def check_not_null(cls, value, info):
        return _not_null(value, info.field_name)


class GearAssign(BaseModel):
    family_id: Optional[int] = None
    quantity_assigned: int = Field(1, ge=1)
