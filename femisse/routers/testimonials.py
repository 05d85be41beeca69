from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from femisse import models, schemas
from femisse.db import get_db

router = APIRouter(prefix="/testimonials", tags=["testimonials"])


@router.get("", response_model=list[schemas.TestimonialOut])
def list_testimonials(db: Session = Depends(get_db)):
    return (
        db.query(models.Testimonial)
        .filter(models.Testimonial.is_active.is_(True))
        .order_by(models.Testimonial.display_order, models.Testimonial.created_at.desc())
        .all()
    )
