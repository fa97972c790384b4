"""SQLAlchemy models for Family Trips."""

import enum
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class FamilyStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class MemberType(str, enum.Enum):
    ADULT = "ADULT"
    CHILD = "CHILD"


class Family(Base):
    """A family unit that attends trips."""
    __tablename__ = "families"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=FamilyStatus.PENDING.value)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    members = relationship("FamilyMember", back_populates="family", cascade="all, delete-orphan")
    attendances = relationship("TripAttendance", back_populates="family", cascade="all, delete-orphan")
    gear_assignments = relationship("GearAssignment", back_populates="family", cascade="all, delete-orphan")

    def get_adults(self) -> List["FamilyMember"]:
        return [m for m in self.members if m.type == MemberType.ADULT.value]

    def get_children(self) -> List["FamilyMember"]:
        return [m for m in self.members if m.type == MemberType.CHILD.value]

    def to_dict(self) -> Dict[str, Any]:
        """Convert family to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "is_active": self.is_active,
            "adult_count": len(self.get_adults()),
            "child_count": len(self.get_children()),
            "members": [member.to_dict() for member in self.members],
        }


class FamilyMember(Base):
    """An adult or child belonging to a family."""
    __tablename__ = "family_members"

    id = Column(Integer, primary_key=True, index=True)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False, default=MemberType.ADULT.value)
    name = Column(String(255), nullable=False)
    age = Column(Integer, nullable=True)
    email = Column(String(255), nullable=True, unique=True)

    family = relationship("Family", back_populates="members")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "family_id": self.family_id,
            "type": self.type,
            "name": self.name,
            "age": self.age,
            "email": self.email,
        }


class Trip(Base):
    """A trip. Drafts are only visible to their admins and super admins."""
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    location = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    draft = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    admins = relationship("TripAdmin", back_populates="trip", cascade="all, delete-orphan")
    attendances = relationship("TripAttendance", back_populates="trip", cascade="all, delete-orphan")
    gear_items = relationship("GearItem", back_populates="trip", cascade="all, delete-orphan")
    schedule_items = relationship("TripScheduleItem", back_populates="trip", cascade="all, delete-orphan")

    def admin_ids(self) -> List[str]:
        return [admin.user_id for admin in self.admins]

    def is_admin(self, user_id: str) -> bool:
        return user_id in self.admin_ids()

    def get_attending(self) -> List["TripAttendance"]:
        return [a for a in self.attendances if a.attending]

    def to_dict(self) -> Dict[str, Any]:
        """Convert trip to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "draft": self.draft,
            "admin_ids": self.admin_ids(),
            "attending_families": len(self.get_attending()),
            "gear_item_count": len(self.gear_items),
            "schedule_item_count": len(self.schedule_items),
        }


class TripAdmin(Base):
    """Assignment of a trip admin user to a trip."""
    __tablename__ = "trip_admins"
    __table_args__ = (UniqueConstraint("trip_id", "user_id", name="uq_trip_admin"),)

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)

    trip = relationship("Trip", back_populates="admins")


class TripAttendance(Base):
    """A family's attendance answer for a trip."""
    __tablename__ = "trip_attendances"
    __table_args__ = (UniqueConstraint("trip_id", "family_id", name="uq_trip_family"),)

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False, index=True)
    attending = Column(Boolean, nullable=False, default=True)
    dietary_requirements = Column(Text, nullable=True)

    trip = relationship("Trip", back_populates="attendances")
    family = relationship("Family", back_populates="attendances")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family_id": self.family_id,
            "family_name": self.family.name if self.family else None,
            "attending": self.attending,
            "dietary_requirements": self.dietary_requirements,
        }


class TripScheduleItem(Base):
    """One entry of a trip's day-by-day schedule."""
    __tablename__ = "trip_schedule_items"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    day = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)

    trip = relationship("Trip", back_populates="schedule_items")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "day": self.day,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "title": self.title,
            "description": self.description,
            "location": self.location,
        }


class GearItem(Base):
    """A piece of shared gear a trip needs."""
    __tablename__ = "gear_items"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity_needed = Column(Integer, nullable=False, default=1)

    trip = relationship("Trip", back_populates="gear_items")
    assignments = relationship("GearAssignment", back_populates="gear_item", cascade="all, delete-orphan")

    def total_assigned(self) -> int:
        return sum(a.quantity_assigned for a in self.assignments)

    def to_dict(self) -> Dict[str, Any]:
        """Convert gear item to dictionary."""
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "name": self.name,
            "description": self.description,
            "quantity_needed": self.quantity_needed,
            "total_assigned": self.total_assigned(),
            "assignments": [a.to_dict() for a in self.assignments],
        }


class GearAssignment(Base):
    """A family volunteering some quantity of a gear item."""
    __tablename__ = "gear_assignments"
    __table_args__ = (UniqueConstraint("gear_item_id", "family_id", name="uq_gear_family"),)

    id = Column(Integer, primary_key=True, index=True)
    gear_item_id = Column(Integer, ForeignKey("gear_items.id"), nullable=False, index=True)
    family_id = Column(Integer, ForeignKey("families.id"), nullable=False, index=True)
    quantity_assigned = Column(Integer, nullable=False, default=1)

    gear_item = relationship("GearItem", back_populates="assignments")
    family = relationship("Family", back_populates="gear_assignments")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "family_id": self.family_id,
            "family_name": self.family.name if self.family else None,
            "quantity_assigned": self.quantity_assigned,
        }
