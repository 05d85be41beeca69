import enum


class UserRole(str, enum.Enum):
    customer = "customer"
    admin = "admin"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    cancelled = "cancelled"
    expired = "expired"
    refunded = "refunded"


class PaymentMethod(str, enum.Enum):
    pix = "pix"
    credit_card = "credit_card"
    debit_card = "debit_card"


class CouponType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class CouponScope(str, enum.Enum):
    storewide = "storewide"
    category = "category"
    product = "product"


class ShippingLabelStatus(str, enum.Enum):
    pending = "pending"
    released = "released"
    generated = "generated"
    posted = "posted"
    delivered = "delivered"
    cancelled = "cancelled"
    expired = "expired"
