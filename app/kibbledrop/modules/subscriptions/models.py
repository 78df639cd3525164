from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.kibbledrop.models import Base
from app.kibbledrop.utils import utcnow

if TYPE_CHECKING:
    from app.kibbledrop.models import User
    from app.kibbledrop.modules.catalog.models import Product


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("idx_subscriptions_user", "user_id"),
        Index("idx_subscriptions_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    pet_profile_id: Mapped[int | None] = mapped_column(ForeignKey("pet_profiles.id", ondelete="SET NULL"), nullable=True)

    frequency: Mapped[str] = mapped_column(String(32), nullable=False)  # weekly, bi-weekly, tri-weekly, monthly
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # pending, active, paused, cancelled

    # Delivery details
    delivery_name: Mapped[str] = mapped_column(String(255), nullable=False)
    delivery_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    delivery_address: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str] = mapped_column(String(128), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(16), nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    next_delivery: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped["User"] = relationship("User", lazy="selectin")
    items: Mapped[list["SubscriptionItem"]] = relationship(
        "SubscriptionItem",
        back_populates="subscription",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SubscriptionItem.id",
    )


class SubscriptionItem(Base):
    __tablename__ = "subscription_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    subscription: Mapped[Subscription] = relationship("Subscription", back_populates="items")
    product: Mapped["Product"] = relationship("Product", lazy="selectin")
