import json
import re
import unicodedata
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.auth.dependencies import require_admin
from femisse.db import get_db
from femisse.services.inventory import invalidate_product_caches

router = APIRouter(prefix="/admin/catalog", tags=["admin-catalog"])


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    return slug or uuid.uuid4().hex[:8]


def _unique_slug(db: Session, model, name: str, exclude_id: str | None = None) -> str:
    base = slugify(name)
    slug = base
    suffix = 2
    while True:
        query = db.query(model).filter(model.slug == slug)
        if exclude_id:
            query = query.filter(model.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f"{base}-{suffix}"
        suffix += 1


def _ensure_category(db: Session, category_id: str | None) -> None:
    if category_id and not db.query(models.Category).filter(models.Category.id == category_id).first():
        raise HTTPException(status_code=400, detail="Categoria inválida")


def _commit(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail) from exc


@router.post("/categories", response_model=schemas.CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: schemas.CategoryIn,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    category = models.Category(
        id=str(uuid.uuid4()),
        name=payload.name.strip(),
        slug=_unique_slug(db, models.Category, payload.name),
        display_order=payload.display_order,
        is_active=payload.is_active,
    )
    db.add(category)
    _commit(db, "Categoria já existe")
    db.refresh(category)
    invalidate_product_caches()
    return category


@router.put("/categories/{category_id}", response_model=schemas.CategoryOut)
def update_category(
    category_id: str,
    payload: schemas.CategoryIn,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    category = db.query(models.Category).filter(models.Category.id == category_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Categoria não encontrada")
    if payload.name.strip() != category.name:
        category.name = payload.name.strip()
        category.slug = _unique_slug(db, models.Category, payload.name, exclude_id=category.id)
    category.display_order = payload.display_order
    category.is_active = payload.is_active
    _commit(db, "Categoria já existe")
    db.refresh(category)
    invalidate_product_caches()
    return category


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    category = db.query(models.Category).filter(models.Category.id == category_id).first()
    if not category:
        raise HTTPException(status_code=404, detail="Categoria não encontrada")
    db.query(models.Product).filter(models.Product.category_id == category.id).update(
        {"category_id": None}, synchronize_session=False
    )
    db.delete(category)
    db.commit()
    invalidate_product_caches()


@router.post("/products", response_model=schemas.ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: schemas.ProductIn,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    _ensure_category(db, payload.category_id)
    data = payload.model_dump(exclude={"variants"})
    product = models.Product(
        id=str(uuid.uuid4()),
        slug=_unique_slug(db, models.Product, payload.name),
        variants_json=json.dumps(payload.variants, ensure_ascii=False) if payload.variants else None,
        **data,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    invalidate_product_caches(product.id)
    return product


@router.patch("/products/{product_id}", response_model=schemas.ProductOut)
def update_product(
    product_id: str,
    payload: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    data = payload.model_dump(exclude_unset=True)
    if "category_id" in data:
        _ensure_category(db, data["category_id"])
    if "variants" in data:
        variants = data.pop("variants")
        product.variants_json = json.dumps(variants, ensure_ascii=False) if variants else None
    if data.get("name") and data["name"] != product.name:
        product.slug = _unique_slug(db, models.Product, data["name"], exclude_id=product.id)
    for field, value in data.items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    invalidate_product_caches(product.id)
    return product


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_admin),
):
    """Desativa o produto; itens de pedidos antigos continuam apontando para ele."""
    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    product.is_active = False
    db.commit()
    invalidate_product_caches(product.id)
