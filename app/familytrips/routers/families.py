"""Family management API routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, selectinload

from ..auth import Principal, Role, get_current_user, require_roles
from ..database import get_db
from ..models import Family, FamilyMember, FamilyStatus, MemberType, TripAdmin, TripAttendance
from ..schemas import FamilyCreate, FamilyUpdate, MemberCreate
from ..utils.cache_middleware import cached, invalidates

router = APIRouter()

FAMILY_READS = r"^GET:.*/api/families"
# Trip reads embed attendance (names and counts); gear reads embed family names
FAMILY_DEPENDENT_READS = r"^GET:.*/api/(trips|gear)"


def _get_family_or_404(family_id: int, db: Session) -> Family:
    """Get family by ID or raise 404."""
    family = db.query(Family).filter(Family.id == family_id).first()
    if not family:
        raise HTTPException(status_code=404, detail="Family not found")
    return family


def _check_family_access(user: Principal, family_id: int) -> None:
    """FAMILY principals may only touch their own family."""
    if user.role is Role.FAMILY and not user.owns_family(family_id):
        raise HTTPException(status_code=403, detail="You can only access your own family")


def _check_email_available(email: str, db: Session) -> None:
    if db.query(FamilyMember).filter(FamilyMember.email == email).first():
        raise HTTPException(status_code=400, detail=f"Email already exists: {email}")


@router.post("", status_code=201)
@invalidates(FAMILY_READS)
def create_family(family: FamilyCreate, db: Session = Depends(get_db)):
    """Register a new family. New families start out pending approval."""
    for adult in family.adults:
        _check_email_available(adult.email, db)

    db_family = Family(name=family.name, status=FamilyStatus.PENDING.value, is_active=True)
    for adult in family.adults:
        db_family.members.append(FamilyMember(type=MemberType.ADULT.value, name=adult.name, email=adult.email))
    for child in family.children:
        db_family.members.append(FamilyMember(type=MemberType.CHILD.value, name=child.name, age=child.age))

    db.add(db_family)
    db.commit()
    db.refresh(db_family)

    return {
        "success": True,
        "message": "Family created successfully",
        "data": db_family.to_dict()
    }


@router.get("")
@cached()
def get_families(
    status: Optional[FamilyStatus] = Query(None),
    is_active: Optional[bool] = Query(None),
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List families visible to the caller.

    Super admins see every family, trip admins the families attending trips
    they manage, and families only themselves.
    """
    query = db.query(Family).options(selectinload(Family.members))

    if user.role is Role.FAMILY:
        query = query.filter(Family.id == user.family_id)
    elif user.role is Role.TRIP_ADMIN:
        managed_trips = db.query(TripAdmin.trip_id).filter(TripAdmin.user_id == user.id)
        attending = db.query(TripAttendance.family_id).filter(TripAttendance.trip_id.in_(managed_trips))
        query = query.filter(Family.id.in_(attending))

    if status is not None:
        query = query.filter(Family.status == status.value)
    if is_active is not None:
        query = query.filter(Family.is_active == is_active)

    families = query.order_by(Family.created_at.desc(), Family.id.desc()).all()
    return [family.to_dict() for family in families]


@router.get("/{family_id}")
@cached()
def get_family(family_id: int, user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    """Get a specific family with its members."""
    _check_family_access(user, family_id)
    return _get_family_or_404(family_id, db).to_dict()


@router.put("/{family_id}")
@invalidates(FAMILY_READS, FAMILY_DEPENDENT_READS)
def update_family(
    family_id: int,
    family: FamilyUpdate,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN, Role.FAMILY)),
    db: Session = Depends(get_db)
):
    """Update family details."""
    _check_family_access(user, family_id)
    db_family = _get_family_or_404(family_id, db)

    for key, value in family.model_dump(exclude_unset=True).items():
        setattr(db_family, key, value)

    db.commit()
    db.refresh(db_family)
    return {
        "success": True,
        "message": "Family updated successfully",
        "data": db_family.to_dict()
    }


def _set_status(family_id: int, db: Session, status: FamilyStatus, is_active: bool, verb: str) -> dict:
    db_family = _get_family_or_404(family_id, db)
    db_family.status = status.value
    db_family.is_active = is_active
    db.commit()
    db.refresh(db_family)
    return {
        "success": True,
        "message": f"Family {verb} successfully",
        "data": db_family.to_dict()
    }


@router.post("/{family_id}/approve")
@invalidates(FAMILY_READS)
def approve_family(
    family_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Approve a pending family."""
    return _set_status(family_id, db, FamilyStatus.ACTIVE, True, "approved")


@router.post("/{family_id}/deactivate")
@invalidates(FAMILY_READS)
def deactivate_family(
    family_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    return _set_status(family_id, db, FamilyStatus.INACTIVE, False, "deactivated")


@router.post("/{family_id}/reactivate")
@invalidates(FAMILY_READS)
def reactivate_family(
    family_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    return _set_status(family_id, db, FamilyStatus.ACTIVE, True, "reactivated")


@router.delete("/{family_id}")
@invalidates(FAMILY_READS, FAMILY_DEPENDENT_READS)
def delete_family(
    family_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN)),
    db: Session = Depends(get_db)
):
    """Permanently delete a family together with its members and assignments."""
    db_family = _get_family_or_404(family_id, db)
    family_name = db_family.name
    db.delete(db_family)
    db.commit()
    return {
        "success": True,
        "message": f"Family '{family_name}' deleted successfully"
    }


@router.get("/{family_id}/members")
@cached()
def get_family_members(
    family_id: int,
    type: Optional[MemberType] = Query(None),
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List a family's members, optionally only adults or children."""
    _check_family_access(user, family_id)
    family = _get_family_or_404(family_id, db)
    members = family.members
    if type is MemberType.ADULT:
        members = family.get_adults()
    elif type is MemberType.CHILD:
        members = family.get_children()
    return [member.to_dict() for member in members]


@router.post("/{family_id}/members", status_code=201)
@invalidates(FAMILY_READS)
def add_member(
    family_id: int,
    member: MemberCreate,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN, Role.FAMILY)),
    db: Session = Depends(get_db)
):
    """Add an adult or child to a family."""
    _check_family_access(user, family_id)
    family = _get_family_or_404(family_id, db)
    if member.email:
        _check_email_available(member.email, db)

    db_member = FamilyMember(
        family_id=family.id,
        type=member.type.value,
        name=member.name,
        age=member.age,
        email=member.email
    )
    db.add(db_member)
    db.commit()
    db.refresh(db_member)
    return {
        "success": True,
        "message": f"Member '{member.name}' added successfully",
        "data": db_member.to_dict()
    }


@router.delete("/{family_id}/members/{member_id}")
@invalidates(FAMILY_READS)
def remove_member(
    family_id: int,
    member_id: int,
    user: Principal = Depends(require_roles(Role.SUPER_ADMIN, Role.FAMILY)),
    db: Session = Depends(get_db)
):
    """Remove a member; a family always keeps at least one adult."""
    _check_family_access(user, family_id)
    family = _get_family_or_404(family_id, db)
    member = next((m for m in family.members if m.id == member_id), None)
    if member is None:
        raise HTTPException(status_code=404, detail="Member not found")
    if member.type == MemberType.ADULT.value and len(family.get_adults()) == 1:
        raise HTTPException(status_code=400, detail="Cannot remove the last adult of a family")

    member_name = member.name
    db.delete(member)
    db.commit()
    return {
        "success": True,
        "message": f"Member '{member_name}' removed successfully"
    }
