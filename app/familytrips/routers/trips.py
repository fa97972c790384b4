"""Trip management API routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ..auth import Principal, Role, get_current_user, require_roles
from ..database import get_db
from ..models import Family, Trip, TripAdmin, TripAttendance, TripScheduleItem
from ..schemas import (
    AttendanceUpdate,
    DietaryRequirementsUpdate,
    ScheduleItemCreate,
    ScheduleItemUpdate,
    TripAdminsSet,
    TripCreate,
    TripUpdate,
)
from ..utils.cache_middleware import cached, invalidates

router = APIRouter()

TRIP_READS = r"^GET:.*/api/trips"
GEAR_READS = r"^GET:.*/api/gear"
FAMILY_READS = r"^GET:.*/api/families"

# Cache-busting parameter appended by the frontend
CACHE_BUSTER = "_t"


def _get_trip_or_404(trip_id: int, db: Session) -> Trip:
    """Get trip by ID or raise 404."""
    trip = db.query(Trip).filter(Trip.id == trip_id).first()
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    return trip


def check_trip_visible(trip: Trip, user: Principal) -> None:
    """Families see published trips, trip admins the trips they manage."""
    if user.is_super_admin:
        return
    if user.role is Role.TRIP_ADMIN:
        if not trip.is_admin(user.id):
            raise HTTPException(status_code=403, detail="You do not manage this trip")
        return
    if trip.draft:
        raise HTTPException(status_code=403, detail="Trip is not published")


def check_trip_admin(trip: Trip, user: Principal) -> None:
    """Only super admins and admins of this trip may change it."""
    if user.is_super_admin:
        return
    if user.role is Role.TRIP_ADMIN and trip.is_admin(user.id):
        return
    raise HTTPException(status_code=403, detail="Only admins of this trip can do that")


@router.post("", status_code=201)
@invalidates(TRIP_READS)
def create_trip(
    trip: TripCreate,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Create a trip in draft mode. A trip admin creator manages the new trip."""
    db_trip = Trip(**trip.model_dump(), draft=True)
    if user.role is Role.TRIP_ADMIN:
        db_trip.admins.append(TripAdmin(user_id=user.id))

    db.add(db_trip)
    db.commit()
    db.refresh(db_trip)
    return {
        "success": True,
        "message": f"Trip '{trip.name}' created successfully",
        "data": db_trip.to_dict()
    }


@router.get("")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_trips(
    draft: Optional[bool] = Query(None),
    include_past: bool = Query(False),
    start_date_from: Optional[date] = Query(None),
    start_date_to: Optional[date] = Query(None),
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List trips visible to the caller, upcoming ones first."""
    query = db.query(Trip).options(
        selectinload(Trip.admins),
        selectinload(Trip.attendances),
        selectinload(Trip.gear_items),
        selectinload(Trip.schedule_items)
    )

    if user.role is Role.FAMILY:
        query = query.filter(Trip.draft.is_(False))
    elif draft is not None:
        query = query.filter(Trip.draft.is_(draft))

    if user.role is Role.TRIP_ADMIN:
        query = query.filter(Trip.admins.any(TripAdmin.user_id == user.id))

    if start_date_from:
        query = query.filter(Trip.start_date >= start_date_from)
    if start_date_to:
        query = query.filter(Trip.start_date <= start_date_to)
    if not include_past:
        query = query.filter(or_(Trip.start_date.is_(None), Trip.start_date >= date.today()))

    trips = query.order_by(Trip.start_date.asc(), Trip.id.asc()).all()
    return [trip.to_dict() for trip in trips]


@router.get("/{trip_id}")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_trip(trip_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get a specific trip by ID."""
    trip = _get_trip_or_404(trip_id, db)
    check_trip_visible(trip, user)
    return trip.to_dict()


@router.put("/{trip_id}")
@invalidates(TRIP_READS)
def update_trip(
    trip_id: int,
    trip: TripUpdate,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Update trip details."""
    db_trip = _get_trip_or_404(trip_id, db)
    check_trip_admin(db_trip, user)

    for key, value in trip.model_dump(exclude_unset=True).items():
        setattr(db_trip, key, value)

    if db_trip.start_date and db_trip.end_date and db_trip.end_date < db_trip.start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")

    db.commit()
    db.refresh(db_trip)
    return {
        "success": True,
        "message": f"Trip '{db_trip.name}' updated successfully",
        "data": db_trip.to_dict()
    }


@router.delete("/{trip_id}")
@invalidates(TRIP_READS, GEAR_READS, FAMILY_READS)
def delete_trip(
    trip_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Permanently delete a trip with its gear and attendance."""
    db_trip = _get_trip_or_404(trip_id, db)
    trip_name = db_trip.name
    db.delete(db_trip)
    db.commit()
    return {
        "success": True,
        "message": f"Trip '{trip_name}' deleted successfully"
    }


def _set_draft(trip_id: int, db: Session, draft: bool) -> dict:
    db_trip = _get_trip_or_404(trip_id, db)
    db_trip.draft = draft
    db.commit()
    db.refresh(db_trip)
    return {
        "success": True,
        "message": f"Trip '{db_trip.name}' {'unpublished' if draft else 'published'} successfully",
        "data": db_trip.to_dict()
    }


@router.post("/{trip_id}/publish")
@invalidates(TRIP_READS, GEAR_READS)
def publish_trip(
    trip_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    return _set_draft(trip_id, db, False)


@router.post("/{trip_id}/unpublish")
@invalidates(TRIP_READS, GEAR_READS)
def unpublish_trip(
    trip_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    return _set_draft(trip_id, db, True)


@router.put("/{trip_id}/admins")
@invalidates(TRIP_READS, GEAR_READS, FAMILY_READS)
def set_trip_admins(
    trip_id: int,
    admins: TripAdminsSet,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Replace the trip's admins with the given user ids."""
    db_trip = _get_trip_or_404(trip_id, db)
    wanted = set(admins.admin_ids)

    for admin in list(db_trip.admins):
        if admin.user_id not in wanted:
            db_trip.admins.remove(admin)
    current = set(db_trip.admin_ids())
    for admin_id in admins.admin_ids:
        if admin_id not in current:
            db_trip.admins.append(TripAdmin(user_id=admin_id))
            current.add(admin_id)

    db.commit()
    db.refresh(db_trip)
    return {
        "success": True,
        "message": f"Trip '{db_trip.name}' now has {len(wanted)} admin(s)",
        "data": db_trip.to_dict()
    }


@router.post("/{trip_id}/admins/{admin_id}")
@invalidates(TRIP_READS, GEAR_READS, FAMILY_READS)
def add_trip_admin(
    trip_id: int,
    admin_id: str,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Make a user an admin of the trip."""
    db_trip = _get_trip_or_404(trip_id, db)
    if db_trip.is_admin(admin_id):
        raise HTTPException(status_code=400, detail="User is already an admin of this trip")

    db_trip.admins.append(TripAdmin(user_id=admin_id))
    db.commit()
    db.refresh(db_trip)
    return {
        "success": True,
        "message": f"Admin '{admin_id}' added to trip",
        "data": db_trip.to_dict()
    }


@router.delete("/{trip_id}/admins/{admin_id}")
@invalidates(TRIP_READS, GEAR_READS, FAMILY_READS)
def remove_trip_admin(
    trip_id: int,
    admin_id: str,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    db_trip = _get_trip_or_404(trip_id, db)
    admin = next((a for a in db_trip.admins if a.user_id == admin_id), None)
    if admin is None:
        raise HTTPException(status_code=404, detail="Admin not found on this trip")

    db_trip.admins.remove(admin)
    db.commit()
    db.refresh(db_trip)
    return {
        "success": True,
        "message": f"Admin '{admin_id}' removed from trip",
        "data": db_trip.to_dict()
    }


def _resolve_attendance_family(user: Principal, requested_family_id: Optional[int]) -> int:
    """Families answer for themselves; trip admins and super admins for any family."""
    if user.role is Role.FAMILY:
        if requested_family_id is not None and requested_family_id != user.family_id:
            raise HTTPException(status_code=403, detail="You can only answer for your own family")
        family_id = user.family_id
    else:
        family_id = requested_family_id
    if family_id is None:
        raise HTTPException(status_code=400, detail="family_id is required")
    return family_id


@router.post("/{trip_id}/attendance")
@invalidates(TRIP_READS, FAMILY_READS)
def mark_attendance(
    trip_id: int,
    attendance: AttendanceUpdate,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Record whether a family attends, with its dietary requirements.

    Families answer for themselves; trip admins and super admins may answer
    for any family.
    """
    trip = _get_trip_or_404(trip_id, db)
    check_trip_visible(trip, user)
    family_id = _resolve_attendance_family(user, attendance.family_id)

    if not db.query(Family).filter(Family.id == family_id).first():
        raise HTTPException(status_code=404, detail="Family not found")

    record = db.query(TripAttendance).filter(
        TripAttendance.trip_id == trip_id,
        TripAttendance.family_id == family_id
    ).first()
    if record is None:
        record = TripAttendance(trip_id=trip_id, family_id=family_id)
        db.add(record)
    record.attending = attendance.attending
    record.dietary_requirements = attendance.dietary_requirements

    db.commit()
    db.refresh(record)
    return {
        "success": True,
        "message": "Attendance updated",
        "data": record.to_dict()
    }


@router.get("/{trip_id}/attendees")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_trip_attendees(trip_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """List families attending a trip."""
    trip = _get_trip_or_404(trip_id, db)
    check_trip_visible(trip, user)
    return [record.to_dict() for record in trip.get_attending()]


@router.put("/{trip_id}/dietary-requirements")
@invalidates(TRIP_READS)
def update_dietary_requirements(
    trip_id: int,
    update: DietaryRequirementsUpdate,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change an attending family's dietary requirements without touching attendance."""
    trip = _get_trip_or_404(trip_id, db)
    check_trip_visible(trip, user)
    family_id = _resolve_attendance_family(user, update.family_id)

    record = db.query(TripAttendance).filter(
        TripAttendance.trip_id == trip_id,
        TripAttendance.family_id == family_id
    ).first()
    if record is None:
        raise HTTPException(status_code=404, detail="Family has no attendance record for this trip")

    record.dietary_requirements = update.dietary_requirements
    db.commit()
    db.refresh(record)
    return {
        "success": True,
        "message": "Dietary requirements updated",
        "data": record.to_dict()
    }


def _get_schedule_item_or_404(trip_id: int, item_id: int, db: Session) -> TripScheduleItem:
    item = db.query(TripScheduleItem).filter(
        TripScheduleItem.id == item_id,
        TripScheduleItem.trip_id == trip_id
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail="Schedule item not found")
    return item


@router.get("/{trip_id}/schedule")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_trip_schedule(trip_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """The trip's schedule ordered by day and start time."""
    trip = _get_trip_or_404(trip_id, db)
    check_trip_visible(trip, user)
    items = db.query(TripScheduleItem).filter(TripScheduleItem.trip_id == trip_id).order_by(
        TripScheduleItem.day.asc(),
        TripScheduleItem.start_time.asc(),
        TripScheduleItem.id.asc()
    ).all()
    return [item.to_dict() for item in items]


@router.post("/{trip_id}/schedule", status_code=201)
@invalidates(TRIP_READS)
def add_schedule_item(
    trip_id: int,
    item: ScheduleItemCreate,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    trip = _get_trip_or_404(trip_id, db)
    check_trip_admin(trip, user)

    db_item = TripScheduleItem(trip_id=trip_id, **item.model_dump())
    db.add(db_item)
    db.commit()
    db.refresh(db_item)
    return {
        "success": True,
        "message": f"Schedule item '{item.title}' added",
        "data": db_item.to_dict()
    }


@router.put("/{trip_id}/schedule/{item_id}")
@invalidates(TRIP_READS)
def update_schedule_item(
    trip_id: int,
    item_id: int,
    item: ScheduleItemUpdate,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    trip = _get_trip_or_404(trip_id, db)
    check_trip_admin(trip, user)
    db_item = _get_schedule_item_or_404(trip_id, item_id, db)

    for key, value in item.model_dump(exclude_unset=True).items():
        setattr(db_item, key, value)

    if db_item.end_time and db_item.end_time < db_item.start_time:
        raise HTTPException(status_code=400, detail="end_time must not be before start_time")

    db.commit()
    db.refresh(db_item)
    return {
        "success": True,
        "message": f"Schedule item '{db_item.title}' updated",
        "data": db_item.to_dict()
    }


@router.delete("/{trip_id}/schedule/{item_id}")
@invalidates(TRIP_READS)
def delete_schedule_item(
    trip_id: int,
    item_id: int,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    trip = _get_trip_or_404(trip_id, db)
    check_trip_admin(trip, user)
    db_item = _get_schedule_item_or_404(trip_id, item_id, db)

    title = db_item.title
    db.delete(db_item)
    db.commit()
    return {
        "success": True,
        "message": f"Schedule item '{title}' deleted"
    }
