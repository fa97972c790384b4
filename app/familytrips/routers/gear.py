"""Trip gear API routes."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, selectinload

from ..auth import Principal, Role, get_current_user, require_roles
from ..database import get_db
from ..models import Family, GearAssignment, GearItem, Trip
from ..schemas import GearAssign, GearItemCreate, GearItemUpdate
from ..utils.cache_middleware import cached, invalidates
from .trips import CACHE_BUSTER, TRIP_READS, check_trip_admin

router = APIRouter()

GEAR_READS = r"^GET:.*/api/gear"


def _get_trip_or_404(trip_id: int, db: Session) -> Trip:
    trip = db.query(Trip).filter(Trip.id == trip_id).first()
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    return trip


def _get_gear_or_404(gear_id: int, db: Session) -> GearItem:
    """Get gear item by ID or raise 404."""
    item = db.query(GearItem).filter(GearItem.id == gear_id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Gear item not found")
    return item


def _check_gear_visible(trip: Trip, user: Principal) -> None:
    """Gear of a draft trip is only visible to super admins and the trip's admins."""
    if trip.draft and not user.is_super_admin and not trip.is_admin(user.id):
        raise HTTPException(status_code=403, detail="Cannot view gear for draft trips")


def _resolve_family(user: Principal, trip: Trip, requested_family_id) -> int:
    """Families act for themselves; trip admins and super admins for anyone."""
    if user.role is Role.FAMILY:
        if requested_family_id is not None and requested_family_id != user.family_id:
            raise HTTPException(status_code=403, detail="You can only manage your own family's gear")
        if user.family_id is None:
            raise HTTPException(status_code=400, detail="family_id is required")
        return user.family_id
    check_trip_admin(trip, user)
    if requested_family_id is None:
        raise HTTPException(status_code=400, detail="family_id is required")
    return requested_family_id


@router.post("", status_code=201)
@invalidates(GEAR_READS, TRIP_READS)
def create_gear_item(
    gear: GearItemCreate,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Add a gear item to a trip."""
    trip = _get_trip_or_404(gear.trip_id, db)
    check_trip_admin(trip, user)

    db_item = GearItem(**gear.model_dump())
    db.add(db_item)
    db.commit()
    db.refresh(db_item)
    return {
        "success": True,
        "message": f"Gear item '{gear.name}' created successfully",
        "data": db_item.to_dict()
    }


@router.get("/trip/{trip_id}")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_trip_gear(trip_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """List the gear items of a trip."""
    trip = _get_trip_or_404(trip_id, db)
    _check_gear_visible(trip, user)
    items = db.query(GearItem).options(
        selectinload(GearItem.assignments)
    ).filter(GearItem.trip_id == trip_id).order_by(GearItem.name.asc()).all()
    return [item.to_dict() for item in items]


@router.get("/trip/{trip_id}/summary")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_gear_summary(trip_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """How much of each item is covered, and by whom."""
    trip = _get_trip_or_404(trip_id, db)
    _check_gear_visible(trip, user)

    items = db.query(GearItem).filter(GearItem.trip_id == trip_id).order_by(GearItem.name.asc()).all()
    summary = []
    for item in items:
        total_assigned = item.total_assigned()
        summary.append({
            "gear_item_id": item.id,
            "name": item.name,
            "quantity_needed": item.quantity_needed,
            "total_assigned": total_assigned,
            "fully_covered": total_assigned >= item.quantity_needed,
            "assignments": [a.to_dict() for a in item.assignments],
        })
    return summary


@router.get("/trip/{trip_id}/family/{family_id}")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_family_gear(
    trip_id: int,
    family_id: int,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """A family's gear assignments for a trip."""
    trip = _get_trip_or_404(trip_id, db)
    _check_gear_visible(trip, user)
    if user.role is Role.FAMILY and user.family_id != family_id:
        raise HTTPException(status_code=403, detail="You can only view your own family's gear")

    assignments = db.query(GearAssignment).join(GearItem).filter(
        GearItem.trip_id == trip_id,
        GearAssignment.family_id == family_id
    ).all()
    return [
        {
            "gear_item_id": a.gear_item_id,
            "name": a.gear_item.name,
            "quantity_assigned": a.quantity_assigned,
        }
        for a in assignments
    ]


@router.get("/{gear_id}")
@cached(exclude_query_params=[CACHE_BUSTER])
def get_gear_item(gear_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get a specific gear item."""
    item = _get_gear_or_404(gear_id, db)
    _check_gear_visible(item.trip, user)
    return item.to_dict()


@router.put("/{gear_id}")
@invalidates(GEAR_READS)
def update_gear_item(
    gear_id: int,
    gear: GearItemUpdate,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Update a gear item."""
    db_item = _get_gear_or_404(gear_id, db)
    check_trip_admin(db_item.trip, user)

    for key, value in gear.model_dump(exclude_unset=True).items():
        setattr(db_item, key, value)

    db.commit()
    db.refresh(db_item)
    return {
        "success": True,
        "message": f"Gear item '{db_item.name}' updated successfully",
        "data": db_item.to_dict()
    }


@router.delete("/{gear_id}")
@invalidates(GEAR_READS, TRIP_READS)
def delete_gear_item(
    gear_id: int,
    user: Principal = Depends(require_roles(Role.TRIP_ADMIN, Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Delete a gear item and its assignments."""
    db_item = _get_gear_or_404(gear_id, db)
    check_trip_admin(db_item.trip, user)

    item_name = db_item.name
    db.delete(db_item)
    db.commit()
    return {
        "success": True,
        "message": f"Gear item '{item_name}' deleted successfully"
    }


@router.post("/{gear_id}/assign", status_code=201)
@invalidates(GEAR_READS)
def assign_gear(
    gear_id: int,
    assignment: GearAssign,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Volunteer (or assign) a family for some quantity of a gear item."""
    item = _get_gear_or_404(gear_id, db)
    _check_gear_visible(item.trip, user)
    family_id = _resolve_family(user, item.trip, assignment.family_id)

    if not db.query(Family).filter(Family.id == family_id).first():
        raise HTTPException(status_code=404, detail="Family not found")

    existing = next((a for a in item.assignments if a.family_id == family_id), None)
    already_assigned = item.total_assigned() - (existing.quantity_assigned if existing else 0)
    if already_assigned + assignment.quantity_assigned > item.quantity_needed:
        raise HTTPException(status_code=400, detail="Assignment exceeds the quantity needed")

    if existing is None:
        existing = GearAssignment(gear_item_id=item.id, family_id=family_id)
        db.add(existing)
    existing.quantity_assigned = assignment.quantity_assigned

    db.commit()
    db.refresh(existing)
    return {
        "success": True,
        "message": f"Gear item '{item.name}' assigned",
        "data": existing.to_dict()
    }


@router.delete("/{gear_id}/assign/{family_id}")
@invalidates(GEAR_READS)
def remove_gear_assignment(
    gear_id: int,
    family_id: int,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    item = _get_gear_or_404(gear_id, db)
    family_id = _resolve_family(user, item.trip, family_id)

    existing = next((a for a in item.assignments if a.family_id == family_id), None)
    if existing is None:
        raise HTTPException(status_code=404, detail="Assignment not found")

    db.delete(existing)
    db.commit()
    return {
        "success": True,
        "message": f"Gear assignment for '{item.name}' removed"
    }
