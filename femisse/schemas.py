from datetime import datetime, date
from typing import List, Optional, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from femisse import models
from femisse.documents import digits, is_valid_cpf, is_valid_phone, normalize_zip_code


# Catalog


class CategoryOut(BaseModel):
    id: str
    name: str
    slug: str
    display_order: int

    class Config:
        from_attributes = True


class ProductOut(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    price_cents: int
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    variants: List[dict] = Field(default_factory=list)
    is_popular: bool = False

    class Config:
        from_attributes = True


class CategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    display_order: int = 0
    is_active: bool = True


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    price_cents: int = Field(gt=0)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    variants: List[dict] = Field(default_factory=list)
    weight_kg: Optional[float] = Field(default=None, gt=0)
    height_cm: Optional[int] = Field(default=None, gt=0)
    width_cm: Optional[int] = Field(default=None, gt=0)
    length_cm: Optional[int] = Field(default=None, gt=0)
    is_popular: bool = False
    is_active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, gt=0)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    variants: Optional[List[dict]] = None
    weight_kg: Optional[float] = Field(default=None, gt=0)
    height_cm: Optional[int] = Field(default=None, gt=0)
    width_cm: Optional[int] = Field(default=None, gt=0)
    length_cm: Optional[int] = Field(default=None, gt=0)
    is_popular: Optional[bool] = None
    is_active: Optional[bool] = None


# Auth


class RegisterIn(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    cpf: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[date] = None

    @field_validator("cpf")
    @classmethod
    def validate_cpf(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if not is_valid_cpf(value):
            raise ValueError("CPF inválido")
        return digits(value)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if not is_valid_phone(value):
            raise ValueError("Telefone inválido")
        return digits(value)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    phone: Optional[str] = None
    birth_date: Optional[date] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        if not is_valid_phone(value):
            raise ValueError("Telefone inválido")
        return digits(value)


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    birth_date: Optional[date] = None
    role: str

    class Config:
        from_attributes = True


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
    expires_in_seconds: int
    expires_at: datetime


# Addresses


class AddressIn(BaseModel):
    label: Optional[str] = Field(default=None, max_length=60)
    zip_code: str
    street: str = Field(min_length=1, max_length=255)
    number: str = Field(min_length=1, max_length=20)
    complement: Optional[str] = Field(default=None, max_length=255)
    neighborhood: Optional[str] = Field(default=None, max_length=120)
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(min_length=2, max_length=2)
    is_default: bool = False

    @field_validator("zip_code")
    @classmethod
    def validate_zip_code(cls, value: str) -> str:
        normalized = normalize_zip_code(value)
        if len(normalized) != 8:
            raise ValueError("CEP inválido")
        return normalized

    @field_validator("state")
    @classmethod
    def upper_state(cls, value: str) -> str:
        return value.strip().upper()


class AddressOut(BaseModel):
    id: str
    label: Optional[str] = None
    zip_code: str
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: Optional[str] = None
    city: str
    state: str
    is_default: bool

    class Config:
        from_attributes = True


# Cards


class CardIn(BaseModel):
    holder_name: str = Field(min_length=2, max_length=255)
    last_four: str
    brand: str = Field(min_length=2, max_length=30)
    expiry_month: int = Field(ge=1, le=12)
    expiry_year: int = Field(ge=2000, le=2100)
    is_default: bool = False

    @field_validator("last_four")
    @classmethod
    def validate_last_four(cls, value: str) -> str:
        cleaned = digits(value)
        if len(cleaned) != 4:
            raise ValueError("Informe apenas os 4 últimos dígitos")
        return cleaned


class CardOut(BaseModel):
    id: str
    holder_name: str
    brand: str
    last_four: str
    masked_number: str
    expiry: str
    is_default: bool


# Favorites


class FavoriteIn(BaseModel):
    product_id: str


class FavoriteOut(BaseModel):
    id: str
    product: ProductOut
    created_at: Optional[datetime] = None


# Coupons


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, le=100)


class CouponValidateIn(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    items: List[CartItemIn] = Field(min_length=1, max_length=50)


class CouponValidationOut(BaseModel):
    valid: bool = True
    code: str
    description: Optional[str] = None
    discount_type: str
    scope: str
    subtotal_cents: int
    discount_cents: int
    applicable_items: List[str]


class CouponPublicOut(BaseModel):
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: int
    scope: str
    min_purchase_cents: int
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    class Config:
        from_attributes = True


class CouponAdminOut(CouponPublicOut):
    id: str
    applicable_categories: List[str] = Field(default_factory=list)
    applicable_products: List[str] = Field(default_factory=list)
    max_uses: Optional[int] = None
    max_uses_per_user: int
    used_count: int
    is_active: bool
    created_at: Optional[datetime] = None


class CouponIn(BaseModel):
    code: str = Field(min_length=3, max_length=50)
    description: Optional[str] = None
    discount_type: models.CouponType
    discount_value: int = Field(gt=0)
    scope: models.CouponScope = models.CouponScope.storewide
    applicable_categories: List[str] = Field(default_factory=list)
    applicable_products: List[str] = Field(default_factory=list)
    min_purchase_cents: int = Field(default=0, ge=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: int = Field(default=1, ge=1)
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    @field_validator("discount_value")
    @classmethod
    def validate_percentage(cls, value: int, info) -> int:
        if info.data.get("discount_type") == models.CouponType.percentage and value > 100:
            raise ValueError("Percentual deve estar entre 1 e 100")
        return value


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=3, max_length=50)
    description: Optional[str] = None
    discount_type: Optional[models.CouponType] = None
    discount_value: Optional[int] = Field(default=None, gt=0)
    scope: Optional[models.CouponScope] = None
    applicable_categories: Optional[List[str]] = None
    applicable_products: Optional[List[str]] = None
    min_purchase_cents: Optional[int] = Field(default=None, ge=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    max_uses_per_user: Optional[int] = Field(default=None, ge=1)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


class CouponUsageOut(BaseModel):
    code: str
    description: Optional[str] = None
    order_id: Optional[str] = None
    discount_cents: int
    used_at: datetime


# Orders


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, le=100)
    variant_color: Optional[str] = Field(default=None, max_length=60)
    variant_size: Optional[str] = Field(default=None, max_length=20)


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(min_length=1, max_length=50)
    address_id: str
    shipping_quote_id: str
    coupon_code: Optional[str] = Field(default=None, max_length=50)
    payment_method: Optional[models.PaymentMethod] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class OrderUpdate(BaseModel):
    status: Optional[models.OrderStatus] = None
    payment_status: Optional[models.PaymentStatus] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price_cents: int
    variant_color: Optional[str] = None
    variant_size: Optional[str] = None

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: str
    order_number: str
    user_id: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    subtotal_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int
    coupon_code: Optional[str] = None
    shipping_service: Optional[str] = None
    notes: Optional[str] = None
    items: List[OrderItemOut]
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Payments


class PayerIdentification(BaseModel):
    type: Literal["CPF"] = "CPF"
    number: str

    @field_validator("number")
    @classmethod
    def validate_number(cls, value: str) -> str:
        if not is_valid_cpf(value):
            raise ValueError("CPF inválido")
        return digits(value)


class PayerIn(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    identification: Optional[PayerIdentification] = None


class PaymentProcessIn(BaseModel):
    order_id: str
    payment_method: models.PaymentMethod
    card_token: Optional[str] = Field(default=None, max_length=255)
    payment_method_id: Optional[str] = Field(default=None, max_length=50)
    issuer_id: Optional[str] = Field(default=None, max_length=50)
    installments: int = Field(default=1, ge=1, le=12)
    total_amount: float = Field(ge=0.01, le=50000)
    payer: PayerIn

    @field_validator("total_amount")
    @classmethod
    def two_decimals(cls, value: float) -> float:
        if round(value, 2) != round(value, 6):
            raise ValueError("Valor deve ter no máximo 2 casas decimais")
        return value

    @field_validator("card_token")
    @classmethod
    def strip_token(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else value


class PaymentPreferenceIn(BaseModel):
    order_id: str
    total_amount: float = Field(ge=0.01, le=50000)
    payer: Optional[PayerIn] = None


class PaymentOut(BaseModel):
    id: str
    order_id: str
    mp_payment_id: Optional[str] = None
    method: str
    status: str
    status_detail: Optional[str] = None
    amount_cents: int
    installments: int
    pix_qr_code: Optional[str] = None
    pix_qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentProcessOut(BaseModel):
    payment: PaymentOut
    order_status: str
    payment_status: str


class PreferenceOut(BaseModel):
    preference_id: str
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None


class PublicKeyOut(BaseModel):
    public_key: str


# Shipping


class ShippingProductIn(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1, le=100)


class ShippingCalculateIn(BaseModel):
    to_zip_code: str
    products: List[ShippingProductIn] = Field(min_length=1, max_length=50)

    @field_validator("to_zip_code")
    @classmethod
    def validate_zip_code(cls, value: str) -> str:
        normalized = normalize_zip_code(value)
        if len(normalized) != 8:
            raise ValueError("CEP inválido")
        return normalized


class ShippingQuoteOut(BaseModel):
    id: Optional[str] = None
    service_id: int
    service_name: str
    company_name: Optional[str] = None
    company_picture: Optional[str] = None
    price_cents: int
    discount_cents: int = 0
    delivery_time: Optional[int] = None

    class Config:
        from_attributes = True


class LabelCreateIn(BaseModel):
    order_id: str
    quote_id: Optional[str] = None
    service_id: Optional[int] = None


class LabelIdsIn(BaseModel):
    label_ids: List[str] = Field(min_length=1, max_length=50)


class ShippingLabelOut(BaseModel):
    id: str
    order_id: str
    melhorenvio_order_id: str
    protocol: Optional[str] = None
    service_id: int
    service_name: Optional[str] = None
    status: str
    payment_status: str
    tracking_code: Optional[str] = None
    tracking_url: Optional[str] = None
    label_url: Optional[str] = None
    price_cents: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ShippingEventOut(BaseModel):
    id: str
    event_type: str
    status: Optional[str] = None
    tracking_code: Optional[str] = None
    processed: bool
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Reviews


class ReviewIn(BaseModel):
    product_id: str
    order_id: str
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewOut(BaseModel):
    id: str
    product_id: str
    order_id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PublicReviewOut(BaseModel):
    id: str
    rating: int
    comment: Optional[str] = None
    author: str
    created_at: Optional[datetime] = None


class RatingStatsOut(BaseModel):
    product_id: str
    average: float
    total: int
    distribution: dict[str, int]


class ReviewableProductOut(BaseModel):
    order_id: str
    order_number: str
    product_id: str
    product_name: str
    image_url: Optional[str] = None
    delivered_at: Optional[datetime] = None


# Testimonials


class TestimonialOut(BaseModel):
    name: str
    text: str
    rating: int
    image_url: Optional[str] = None

    class Config:
        from_attributes = True
