import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import get_current_user
from femisse.db import get_db
from femisse.dto import favorite_to_public

router = APIRouter(prefix="/favorites", tags=["favorites"])


@router.get("", response_model=list[schemas.FavoriteOut])
def list_favorites(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    rows = (
        db.query(models.Favorite, models.Product)
        .join(models.Product, models.Product.id == models.Favorite.product_id)
        .filter(models.Favorite.user_id == user.id, models.Product.is_active.is_(True))
        .order_by(models.Favorite.created_at.desc())
        .all()
    )
    return [favorite_to_public(favorite, product) for favorite, product in rows]


@router.post("", response_model=schemas.FavoriteOut, status_code=status.HTTP_201_CREATED)
def add_favorite(
    payload: schemas.FavoriteIn,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    product = (
        db.query(models.Product)
        .filter(models.Product.id == payload.product_id, models.Product.is_active.is_(True))
        .first()
    )
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    favorite = models.Favorite(id=str(uuid.uuid4()), user_id=user.id, product_id=product.id)
    db.add(favorite)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail="Produto já está nos favoritos") from exc
    db.refresh(favorite)
    return favorite_to_public(favorite, product)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_favorite(
    product_id: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    deleted = (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == user.id, models.Favorite.product_id == product_id)
        .delete(synchronize_session=False)
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Favorito não encontrado")
    db.commit()
