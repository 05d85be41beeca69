from femisse.domain.core.enums import (
    CouponScope,
    CouponType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingLabelStatus,
    UserRole,
)
from femisse.domain.account.models import User, UserSession
from femisse.domain.catalog.models import Category, Product
from femisse.domain.customer.models import Address, Card, Favorite
from femisse.domain.coupon.models import Coupon, CouponUsage
from femisse.domain.order.models import Order, OrderItem, Payment
from femisse.domain.review.models import Review, Testimonial
from femisse.domain.shipping.models import (
    MelhorEnvioLog,
    MelhorEnvioToken,
    ShippingEvent,
    ShippingLabel,
    ShippingQuote,
)
from femisse.domain.webhook.models import ProcessedWebhook

__all__ = [
    "CouponScope",
    "CouponType",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "ShippingLabelStatus",
    "UserRole",
    "User",
    "UserSession",
    "Category",
    "Product",
    "Address",
    "Card",
    "Favorite",
    "Coupon",
    "CouponUsage",
    "Order",
    "OrderItem",
    "Payment",
    "Review",
    "Testimonial",
    "MelhorEnvioLog",
    "MelhorEnvioToken",
    "ShippingEvent",
    "ShippingLabel",
    "ShippingQuote",
    "ProcessedWebhook",
]
