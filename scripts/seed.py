import logging
import os
import uuid
from sqlalchemy import select
from sqlalchemy.orm import Session

from femisse import models
from femisse.db import SessionLocal
from femisse.routers.catalog_admin import slugify
from femisse.security import hash_password

logger = logging.getLogger("femisse.seed")

CATEGORIES = ["Vestidos", "Blusas", "Calças", "Saias", "Conjuntos", "Acessórios"]

TESTIMONIALS = [
    ("Mariana", "Peças lindas e a entrega chegou antes do prazo.", 5),
    ("Juliana", "Tecido de ótima qualidade, já virei cliente.", 5),
    ("Camila", "Atendimento atencioso e troca sem complicação.", 4),
]


def uid() -> str:
    return str(uuid.uuid4())


def get_or_create_category(db: Session, name: str, order: int) -> models.Category:
    category = db.scalar(select(models.Category).where(models.Category.name == name))
    if category:
        category.display_order = order
        return category
    category = models.Category(id=uid(), name=name, slug=slugify(name), display_order=order)
    db.add(category)
    db.flush()
    return category


def ensure_testimonial(db: Session, name: str, text: str, rating: int, order: int) -> models.Testimonial:
    testimonial = db.scalar(
        select(models.Testimonial).where(
            models.Testimonial.name == name,
            models.Testimonial.text == text,
        )
    )
    if testimonial:
        return testimonial
    testimonial = models.Testimonial(id=uid(), name=name, text=text, rating=rating, display_order=order)
    db.add(testimonial)
    return testimonial


def ensure_admin_user(db: Session, email: str, password: str, name: str = "Administradora") -> models.User:
    normalized = email.strip().lower()
    user = db.query(models.User).filter(models.User.email == normalized).first()
    if user:
        if user.role != models.UserRole.admin.value:
            user.role = models.UserRole.admin.value
        return user
    user = models.User(
        id=uid(),
        name=name,
        email=normalized,
        password_hash=hash_password(password),
        role=models.UserRole.admin.value,
    )
    db.add(user)
    return user


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    db: Session = SessionLocal()
    try:
        for order, name in enumerate(CATEGORIES, start=1):
            get_or_create_category(db, name, order)

        for order, (name, text, rating) in enumerate(TESTIMONIALS, start=1):
            ensure_testimonial(db, name, text, rating, order)

        default_admin_email = os.getenv("DEFAULT_ADMIN_EMAIL")
        default_admin_password = os.getenv("DEFAULT_ADMIN_PASSWORD")
        if default_admin_email and default_admin_password:
            ensure_admin_user(
                db,
                email=default_admin_email,
                password=default_admin_password,
                name=os.getenv("DEFAULT_ADMIN_NAME", "Administradora"),
            )

        db.commit()
        logger.info("Seed OK")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    main()
