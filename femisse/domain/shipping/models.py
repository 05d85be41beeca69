from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from femisse.db import Base
from femisse.domain.core.enums import ShippingLabelStatus


class MelhorEnvioToken(Base):
    __tablename__ = "melhorenvio_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    token_type: Mapped[str] = mapped_column(String(50), default="Bearer", nullable=False)
    scope: Mapped[str | None] = mapped_column(Text)
    expires_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ShippingQuote(Base):
    __tablename__ = "shipping_quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    service_id: Mapped[int] = mapped_column(Integer, nullable=False)
    service_name: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[int | None] = mapped_column(Integer)
    company_name: Mapped[str | None] = mapped_column(String(100))
    company_picture: Mapped[str | None] = mapped_column(Text)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    delivery_time: Mapped[int | None] = mapped_column(Integer)
    delivery_range_json: Mapped[str | None] = mapped_column(Text)
    packages_json: Mapped[str | None] = mapped_column(Text)
    from_zip_code: Mapped[str] = mapped_column(String(9), nullable=False)
    to_zip_code: Mapped[str] = mapped_column(String(9), nullable=False)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ShippingLabel(Base):
    __tablename__ = "shipping_labels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    quote_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("shipping_quotes.id", ondelete="SET NULL"))
    melhorenvio_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    protocol: Mapped[str | None] = mapped_column(String(50))
    service_id: Mapped[int] = mapped_column(Integer, nullable=False)
    service_name: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(30), default=ShippingLabelStatus.pending.value, nullable=False)
    payment_status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)
    tracking_code: Mapped[str | None] = mapped_column(String(50))
    tracking_url: Mapped[str | None] = mapped_column(Text)
    label_url: Mapped[str | None] = mapped_column(Text)
    price_cents: Mapped[int | None] = mapped_column(Integer)
    paid_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    generated_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    posted_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ShippingEvent(Base):
    __tablename__ = "shipping_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    shipping_label_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("shipping_labels.id", ondelete="CASCADE"), index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str | None] = mapped_column(String(50))
    melhorenvio_order_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    tracking_code: Mapped[str | None] = mapped_column(String(50))
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    signature: Mapped[str | None] = mapped_column(String(255))
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped["DateTime | None"] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class MelhorEnvioLog(Base):
    __tablename__ = "melhorenvio_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("orders.id", ondelete="SET NULL"))
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text)
    request_json: Mapped[str | None] = mapped_column(Text)
    response_json: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
