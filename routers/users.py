from fastapi import APIRouter, Depends
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from database import get_db
from errors import ApiError, ok
from models import Address, User
from schemas import AddressIn, AddressOut, AddressUpdate, ProfileUpdate, UserOut
from security import get_current_user

router = APIRouter(prefix="/users", tags=["users"])


def _user_addresses(db: Session, user_id: int):
    stmt = (
        select(Address)
        .where(Address.user_id == user_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
    )
    return db.execute(stmt).scalars().all()


def _get_address(db: Session, user_id: int, address_id: int) -> Address:
    address = db.get(Address, address_id)
    if not address or address.user_id != user_id:
        raise ApiError(404, "Address not found.")
    return address


def _clear_default(db: Session, user_id: int, keep_id: int | None = None):
    stmt = update(Address).where(Address.user_id == user_id, Address.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(Address.id != keep_id)
    db.execute(stmt.values(is_default=False))


@router.get("/profile")
def get_profile(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    addresses = [AddressOut.model_validate(a) for a in _user_addresses(db, current.id)]
    return ok({"user": UserOut.model_validate(current), "addresses": addresses})


@router.put("/profile")
def update_profile(body: ProfileUpdate, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(current, field, value)
    db.commit()
    return ok({"user": UserOut.model_validate(current)}, "Profile updated successfully")


@router.get("/addresses")
def list_addresses(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok({"addresses": [AddressOut.model_validate(a) for a in _user_addresses(db, current.id)]})


@router.post("/addresses", status_code=201)
def create_address(body: AddressIn, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    has_any = db.execute(select(Address.id).where(Address.user_id == current.id).limit(1)).first()
    # first address is always the default
    is_default = body.is_default or not has_any
    if is_default:
        _clear_default(db, current.id)

    data = body.model_dump()
    data["type"] = body.type.value
    data["is_default"] = is_default
    address = Address(user_id=current.id, **data)
    db.add(address)
    db.commit()
    return ok({"address": AddressOut.model_validate(address)}, "Address added successfully")


@router.put("/addresses/{address_id}")
def update_address(address_id: int, body: AddressUpdate, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    address = _get_address(db, current.id, address_id)
    data = body.model_dump(exclude_unset=True)
    if "type" in data and data["type"] is not None:
        data["type"] = data["type"].value
    if data.get("is_default"):
        _clear_default(db, current.id, keep_id=address.id)
    elif data.get("is_default") is False and address.is_default:
        # the default can only move, never disappear
        data.pop("is_default")
    for field, value in data.items():
        setattr(address, field, value)
    db.commit()
    return ok({"address": AddressOut.model_validate(address)}, "Address updated successfully")


@router.patch("/addresses/{address_id}/default")
def set_default_address(address_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    address = _get_address(db, current.id, address_id)
    _clear_default(db, current.id, keep_id=address.id)
    address.is_default = True
    db.commit()
    return ok({"address": AddressOut.model_validate(address)}, "Default address updated")


@router.delete("/addresses/{address_id}")
def delete_address(address_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    address = _get_address(db, current.id, address_id)
    was_default = address.is_default
    db.delete(address)
    db.flush()

    if was_default:
        newest = db.execute(
            select(Address)
            .where(Address.user_id == current.id)
            .order_by(Address.created_at.desc(), Address.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if newest:
            newest.is_default = True
    db.commit()
    return ok(message="Address deleted successfully")
