from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from femisse.db import Base


class ProcessedWebhook(Base):
    __tablename__ = "webhook_processed_ids"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    webhook_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    webhook_type: Mapped[str | None] = mapped_column(String(60))
    created_at: Mapped["DateTime"] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
