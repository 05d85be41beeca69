import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user
from femisse.db import get_db
from femisse.dto import card_to_public

router = APIRouter(prefix="/cards", tags=["cards"])


def _get_owned(db: Session, card_id: str, user: models.User) -> models.Card:
    card = db.query(models.Card).filter(models.Card.id == card_id, models.Card.user_id == user.id).first()
    if not card:
        raise HTTPException(status_code=404, detail="Cartão não encontrado")
    return card


def _clear_default(db: Session, user_id: str) -> None:
    (
        db.query(models.Card)
        .filter(models.Card.user_id == user_id, models.Card.is_default.is_(True))
        .update({"is_default": False}, synchronize_session=False)
    )


@router.get("", response_model=list[schemas.CardOut])
def list_cards(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    cards = (
        db.query(models.Card)
        .filter(models.Card.user_id == user.id)
        .order_by(models.Card.is_default.desc(), models.Card.created_at.desc())
        .all()
    )
    return [card_to_public(card) for card in cards]


@router.post("", response_model=schemas.CardOut, status_code=status.HTTP_201_CREATED)
def create_card(
    payload: schemas.CardIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    has_cards = db.query(models.Card).filter(models.Card.user_id == user.id).first() is not None
    is_default = payload.is_default or not has_cards
    if is_default:
        _clear_default(db, user.id)
    card = models.Card(
        id=str(uuid.uuid4()),
        user_id=user.id,
        holder_name=payload.holder_name.strip(),
        last_four=payload.last_four,
        brand=payload.brand.strip().lower(),
        expiry_month=payload.expiry_month,
        expiry_year=payload.expiry_year,
        is_default=is_default,
    )
    db.add(card)
    db.commit()
    db.refresh(card)
    return card_to_public(card)


@router.post("/{card_id}/default", response_model=schemas.CardOut)
def set_default_card(
    card_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    card = _get_owned(db, card_id, user)
    _clear_default(db, user.id)
    card.is_default = True
    db.commit()
    db.refresh(card)
    return card_to_public(card)


@router.delete("/{card_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_card(
    card_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    card = _get_owned(db, card_id, user)
    db.delete(card)
    db.commit()
