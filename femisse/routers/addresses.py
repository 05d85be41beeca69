import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user
from femisse.db import get_db

router = APIRouter(prefix="/addresses", tags=["addresses"])

MAX_ADDRESSES = 10


def _get_owned(db: Session, address_id: str, user: models.User) -> models.Address:
    address = (
        db.query(models.Address)
        .filter(models.Address.id == address_id, models.Address.user_id == user.id)
        .first()
    )
    if not address:
        raise HTTPException(status_code=404, detail="Endereço não encontrado")
    return address


def _clear_default(db: Session, user_id: str, keep_id: str | None = None) -> None:
    query = db.query(models.Address).filter(
        models.Address.user_id == user_id, models.Address.is_default.is_(True)
    )
    if keep_id:
        query = query.filter(models.Address.id != keep_id)
    query.update({"is_default": False}, synchronize_session=False)


@router.get("", response_model=list[schemas.AddressOut])
def list_addresses(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    return (
        db.query(models.Address)
        .filter(models.Address.user_id == user.id)
        .order_by(models.Address.is_default.desc(), models.Address.created_at.asc())
        .all()
    )


@router.post("", response_model=schemas.AddressOut, status_code=status.HTTP_201_CREATED)
def create_address(
    payload: schemas.AddressIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    count = db.query(models.Address).filter(models.Address.user_id == user.id).count()
    if count >= MAX_ADDRESSES:
        raise HTTPException(status_code=400, detail=f"Limite de {MAX_ADDRESSES} endereços atingido")
    # primeiro endereço vira padrão
    is_default = payload.is_default or count == 0
    if is_default:
        _clear_default(db, user.id)
    address = models.Address(
        id=str(uuid.uuid4()),
        user_id=user.id,
        **payload.model_dump(exclude={"is_default"}),
        is_default=is_default,
    )
    db.add(address)
    db.commit()
    db.refresh(address)
    return address


@router.put("/{address_id}", response_model=schemas.AddressOut)
def update_address(
    address_id: str,
    payload: schemas.AddressIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    address = _get_owned(db, address_id, user)
    for field, value in payload.model_dump(exclude={"is_default"}).items():
        setattr(address, field, value)
    if payload.is_default:
        _clear_default(db, user.id, keep_id=address.id)
        address.is_default = True
    db.commit()
    db.refresh(address)
    return address


@router.post("/{address_id}/default", response_model=schemas.AddressOut)
def set_default_address(
    address_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    address = _get_owned(db, address_id, user)
    _clear_default(db, user.id, keep_id=address.id)
    address.is_default = True
    db.commit()
    db.refresh(address)
    return address


@router.delete("/{address_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_address(
    address_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    address = _get_owned(db, address_id, user)
    was_default = address.is_default
    db.delete(address)
    db.flush()
    if was_default:
        replacement = (
            db.query(models.Address)
            .filter(models.Address.user_id == user.id)
            .order_by(models.Address.created_at.asc())
            .first()
        )
        if replacement:
            replacement.is_default = True
    db.commit()
