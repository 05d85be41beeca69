from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import asc, func, or_
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.cache import cache_add_to_set, cache_get, cache_set, hash_params
from femisse.db import get_db
from femisse.services.inventory import PRODUCTS_LIST_KEYS_SET, product_detail_cache_key

router = APIRouter(tags=["catalog"])

PRODUCT_LIST_TTL = 300
PRODUCT_DETAIL_TTL = 300
MAX_IDS = 50


def _product_out(product: models.Product) -> dict:
    return schemas.ProductOut.model_validate(product).model_dump(mode="json")


@router.get("/categories", response_model=list[schemas.CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return (
        db.query(models.Category)
        .filter(models.Category.is_active.is_(True))
        .order_by(asc(models.Category.display_order), asc(models.Category.name))
        .all()
    )


@router.get("/products", response_model=list[schemas.ProductOut])
def list_products(
    category: str | None = Query(default=None, description="Slug ou nome da categoria"),
    search: str | None = Query(default=None, max_length=100),
    ids: str | None = Query(default=None, description="IDs separados por vírgula"),
    popular: bool | None = None,
    limit: int = Query(default=24, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
):
    params = {"category": category, "search": search, "ids": ids, "popular": popular, "limit": limit, "page": page}
    key = f"cache:products:list:{hash_params(params)}"
    cached = cache_get(key)
    if cached is not None:
        return cached

    query = db.query(models.Product).filter(models.Product.is_active.is_(True))
    if category:
        token = category.strip().lower()
        query = query.join(models.Category, models.Category.id == models.Product.category_id).filter(
            or_(models.Category.slug == token, func.lower(models.Category.name) == token)
        )
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(func.lower(models.Product.name).like(like), func.lower(models.Product.description).like(like))
        )
    if ids:
        id_list = [item.strip() for item in ids.split(",") if item.strip()][:MAX_IDS]
        query = query.filter(models.Product.id.in_(id_list))
    if popular is not None:
        query = query.filter(models.Product.is_popular.is_(popular))

    products = (
        query.order_by(models.Product.created_at.desc(), asc(models.Product.name))
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    data = [_product_out(product) for product in products]
    cache_set(key, data, PRODUCT_LIST_TTL)
    cache_add_to_set(PRODUCTS_LIST_KEYS_SET, key, PRODUCT_LIST_TTL)
    return data


@router.get("/products/popular", response_model=list[schemas.ProductOut])
def list_popular_products(limit: int = Query(default=12, ge=1, le=50), db: Session = Depends(get_db)):
    return list_products(category=None, search=None, ids=None, popular=True, limit=limit, page=1, db=db)


@router.get("/products/{product_ref}", response_model=schemas.ProductOut)
def get_product(product_ref: str, db: Session = Depends(get_db)):
    """Aceita id ou slug."""
    cached = cache_get(product_detail_cache_key(product_ref))
    if cached is not None:
        return cached
    product = (
        db.query(models.Product)
        .filter(
            or_(models.Product.id == product_ref, models.Product.slug == product_ref),
            models.Product.is_active.is_(True),
        )
        .first()
    )
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")
    data = _product_out(product)
    # cache sempre pelo id para que a invalidação encontre a chave
    if product_ref == product.id:
        cache_set(product_detail_cache_key(product.id), data, PRODUCT_DETAIL_TTL)
    return data
